"""Cloud masking, compositing, radiometric scaling and spectral indices."""
