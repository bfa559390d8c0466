from __future__ import annotations

from pathlib import Path
from typing import Mapping, Optional, Sequence, Tuple

import numpy as np
import rasterio

from ..raster import BandStack


def read_stack(path, band_names: Optional[Sequence[str]] = None) -> BandStack:
    """Read a GeoTIFF into a :class:`BandStack`.

    Band names come from ``band_names`` or, failing that, from the band
    descriptions stored in the file. Pixels equal to the file's nodata value
    become NaN.
    """
    with rasterio.open(path) as src:
        data = src.read().astype("float64")
        nodata = src.nodata
        descriptions = src.descriptions
        transform = src.transform
        crs = src.crs

    if band_names is None:
        if not all(descriptions):
            raise ValueError(
                f"{path} has unnamed bands; pass band_names or set band descriptions"
            )
        band_names = list(descriptions)
    elif len(band_names) != data.shape[0]:
        raise ValueError(
            f"{path} has {data.shape[0]} bands but {len(band_names)} names were given"
        )
    if nodata is not None and not np.isnan(nodata):
        data[data == nodata] = np.nan
    return BandStack(data, tuple(band_names), transform, crs)


def write_raster(
    path,
    array,
    meta,
    colormap: Optional[Mapping[int, Mapping[int, Tuple[int, int, int, int]]]] = None,
    descriptions: Optional[Sequence[str]] = None,
):
    """Write a raster array to disk."""
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    with rasterio.open(path, 'w', **meta) as dst:
        dst.write(array)
        if descriptions:
            for i, name in enumerate(descriptions, 1):
                dst.set_band_description(i, name)
        if colormap:
            for band, cmap in colormap.items():
                dst.write_colormap(band, dict(cmap))


def write_stack(path, stack: BandStack, dtype: str = "float32") -> Path:
    """Write a float stack, keeping NaN as nodata and band names as descriptions."""
    meta = stack.profile(dtype=dtype, nodata=np.nan)
    write_raster(path, stack.data.astype(dtype), meta, descriptions=stack.band_names)
    return Path(path)


def write_classification(
    path,
    classified: BandStack,
    nodata: int = 255,
    colormap: Optional[Mapping[int, Tuple[int, int, int, int]]] = None,
) -> Path:
    """Write a one-band class raster as ``uint8`` with ``nodata`` for masked pixels."""
    labels = classified.data[0]
    out = np.full(labels.shape, nodata, dtype=np.uint8)
    valid = np.isfinite(labels)
    out[valid] = labels[valid].astype(np.uint8)
    meta = classified.profile(dtype="uint8", nodata=nodata)
    write_raster(
        path,
        out[np.newaxis, ...],
        meta,
        colormap={1: colormap} if colormap else None,
        descriptions=classified.band_names,
    )
    return Path(path)
