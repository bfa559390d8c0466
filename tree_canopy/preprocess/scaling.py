"""Linear radiometric rescaling of raw digital numbers."""

from __future__ import annotations

from typing import Iterable, Tuple

from ..raster import BandStack

# (band pattern, scale, offset)
ScaleGroup = Tuple[str, float, float]

SENTINEL2_SR_SCALING: list[ScaleGroup] = [(r"B\d+A?", 1e-4, 0.0)]
LANDSAT_C2_L2_SCALING: list[ScaleGroup] = [
    (r"SR_B.", 0.0000275, -0.2),
    (r"ST_B.*", 0.00341802, 149.0),
]

PRESETS = {
    "sentinel2_sr": SENTINEL2_SR_SCALING,
    "landsat_c2_l2": LANDSAT_C2_L2_SCALING,
}


def apply_scale_factors(stack: BandStack, groups: Iterable[ScaleGroup]) -> BandStack:
    """Apply ``value * scale + offset`` to each band group of ``stack``.

    Scaled bands replace the originals in place; bands outside every group
    are kept as they are. NaN stays NaN.
    """
    out = stack
    for pattern, scale, offset in groups:
        selected = stack.select(pattern)
        out = out.add_bands(selected.with_data(selected.data * scale + offset), overwrite=True)
    return out


def scaling_function(groups: Iterable[ScaleGroup]):
    groups = list(groups)

    def _scale(stack: BandStack) -> BandStack:
        return apply_scale_factors(stack, groups)

    return _scale
