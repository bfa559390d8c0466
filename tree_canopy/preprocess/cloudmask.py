from __future__ import annotations

import logging
from typing import Callable, Mapping

import numpy as np

from ..errors import MissingBandError, QualityMaskError
from ..raster import BandStack

logger = logging.getLogger(__name__)

# Sentinel-2 QA60: opaque clouds and cirrus.
SENTINEL2_QA60 = {"cloud": 10, "cirrus": 11}
# Landsat Collection 2 QA_PIXEL: cloud, cloud shadow and snow.
LANDSAT_QA_PIXEL = {"cloud": 3, "cloud_shadow": 4, "snow": 5}


def _bitmask(bits: Mapping[str, int]) -> int:
    if not bits:
        raise QualityMaskError("At least one QA bit must be given")
    mask = 0
    for name, bit in bits.items():
        if isinstance(bit, bool) or not isinstance(bit, (int, np.integer)):
            raise QualityMaskError(f"QA bit {name!r} is undefined ({bit!r})")
        if not 0 <= bit <= 63:
            raise QualityMaskError(f"QA bit {name!r}={bit} is outside 0..63")
        mask |= 1 << int(bit)
    return mask


def qa_valid_mask(qa: np.ndarray, bits: Mapping[str, int]) -> np.ndarray:
    """Return a boolean mask that is True where all ``bits`` of ``qa`` are zero.

    Parameters
    ----------
    qa : numpy.ndarray
        Bit-encoded quality band. NaN (no data) pixels are reported invalid.
    bits : mapping of str to int
        Flag name to bit position, e.g. ``{"cloud": 10, "cirrus": 11}``.

    Returns
    -------
    numpy.ndarray
        Boolean array where ``True`` indicates a clear pixel.
    """
    flags = _bitmask(bits)
    qa = np.asarray(qa)
    present = np.isfinite(qa) if np.issubdtype(qa.dtype, np.floating) else np.ones(qa.shape, bool)
    values = np.where(present, qa, 0).astype(np.uint64)
    return present & ((values & np.uint64(flags)) == 0)


def mask_qa_bits(stack: BandStack, qa_band: str, bits: Mapping[str, int]) -> BandStack:
    """Null out every band of ``stack`` where any of ``bits`` is set in ``qa_band``."""
    if qa_band not in stack.band_names:
        raise MissingBandError(f"QA band {qa_band!r} not found in {list(stack.band_names)}")
    mask = qa_valid_mask(stack.band(qa_band), bits)
    logger.debug("%s: %d of %d pixels clear", qa_band, int(mask.sum()), mask.size)
    return stack.update_mask(mask)


def make_qa_mask(qa_band: str, bits: Mapping[str, int]) -> Callable[[BandStack], BandStack]:
    """Build a per-scene mask function for :meth:`ImageCollection.map`."""
    _bitmask(bits)  # fail before any scene is read

    def _mask(stack: BandStack) -> BandStack:
        return mask_qa_bits(stack, qa_band, bits)

    return _mask


def mask_s2_clouds(stack: BandStack) -> BandStack:
    return mask_qa_bits(stack, "QA60", SENTINEL2_QA60)


def mask_landsat_clouds(stack: BandStack) -> BandStack:
    return mask_qa_bits(stack, "QA_PIXEL", LANDSAT_QA_PIXEL)


MASKS = {
    "s2_qa60": mask_s2_clouds,
    "landsat_qa_pixel": mask_landsat_clouds,
}
