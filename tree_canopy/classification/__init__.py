"""Training-set assembly, random-forest classification and accuracy assessment."""
