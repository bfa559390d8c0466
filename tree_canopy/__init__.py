"""Land-cover classification and zonal statistics from fused Sentinel-2 and Landsat imagery."""

from .classification.accuracy import ConfusionMatrix, error_matrix
from .preprocess.composite import ImageCollection, build_composite
from .preprocess.features import compute_indices, evaluate_expression
from .raster import BandStack

__version__ = "0.1.0"

__all__ = [
    "BandStack",
    "ConfusionMatrix",
    "ImageCollection",
    "build_composite",
    "compute_indices",
    "error_matrix",
    "evaluate_expression",
]
