"""Zonal statistics over classified and continuous rasters.

Each zone is reduced on a square grid whose pixel size ``scale`` is given in
metres, whatever the raster's CRS. The number of pixels covering a zone's
bounding box is checked against ``max_pixels``; over budget,
``best_effort=True`` doubles the scale until the zone fits, otherwise
:class:`~tree_canopy.errors.ResourceBudgetError` is raised. The scale
actually used is returned with every record.
"""

from __future__ import annotations

import logging
import math
from typing import Dict, List, Optional, Sequence

import geopandas as gpd
import numpy as np
from pyproj import Geod
from rasterio.warp import Resampling
from rasterstats import zonal_stats

from ..errors import ResourceBudgetError
from ..raster import BandStack
from ..utils.io_vector import to_crs_of

logger = logging.getLogger(__name__)

DEFAULT_MAX_PIXELS = 10_000_000


def pixel_area(stack: BandStack) -> np.ndarray:
    """Area of every pixel in square metres.

    Projected grids have a constant pixel area; geographic grids get the
    geodesic area of each row on the WGS84 ellipsoid.
    """
    if stack.crs is None:
        raise ValueError("Pixel area needs a CRS")
    t = stack.transform
    if t.b or t.d:
        raise ValueError("Rotated grids are not supported")
    rows, cols = stack.shape
    if stack.crs.is_geographic:
        geod = Geod(ellps="WGS84")
        west = t.c
        east = t.c + t.a
        areas = np.empty(rows)
        for r in range(rows):
            top = t.f + r * t.e
            bottom = top + t.e
            area, _ = geod.polygon_area_perimeter(
                [west, east, east, west], [top, top, bottom, bottom]
            )
            areas[r] = abs(area)
        return np.repeat(areas[:, np.newaxis], cols, axis=1)

    return np.full((rows, cols), abs(t.a * t.e) / stack.units_per_metre() ** 2)


def effective_scale(
    bounds: Sequence[float],
    scale: float,
    max_pixels: int = DEFAULT_MAX_PIXELS,
    best_effort: bool = False,
    units_per_metre: float = 1.0,
) -> float:
    """Return the scale in metres at which a zone with ``bounds`` fits in ``max_pixels``.

    ``bounds`` are in CRS units; ``units_per_metre`` converts the scale to them.
    """
    west, south, east, north = bounds
    current = float(scale)
    if not all(math.isfinite(b) for b in bounds):
        # empty geometry
        return current
    while True:
        step = current * units_per_metre
        n_pixels = math.ceil((east - west) / step) * math.ceil((north - south) / step)
        if n_pixels <= max_pixels:
            if current != scale:
                logger.warning("Best effort: scale raised from %s to %s", scale, current)
            return current
        if not best_effort:
            raise ResourceBudgetError(
                f"{n_pixels} pixels at scale {current} exceed max_pixels={max_pixels}; "
                "raise max_pixels, use a coarser scale or enable best_effort"
            )
        current *= 2


class _GridCache:
    """Resampled copies of one stack, keyed by scale in metres."""

    def __init__(self, stack: BandStack, resampling: Resampling):
        self.stack = stack
        self.resampling = resampling
        self.units_per_metre = stack.units_per_metre()
        self._grids: Dict[float, BandStack] = {}

    def native_scale(self) -> float:
        return self.stack.res[0] / self.units_per_metre

    def scale_for(self, geometry, scale, max_pixels, best_effort) -> float:
        return effective_scale(geometry.bounds, scale, max_pixels, best_effort, self.units_per_metre)

    def at(self, scale: float) -> BandStack:
        if scale not in self._grids:
            self._grids[scale] = self.stack.at_scale(scale, self.resampling)
        return self._grids[scale]


def _plain(value):
    return value.item() if hasattr(value, "item") else value


def _zone_stats(geometry, array: np.ndarray, grid: BandStack, stats) -> Dict[str, object]:
    if geometry is None or geometry.is_empty:
        return {"count": 0}
    return zonal_stats([geometry], array, affine=grid.transform, nodata=np.nan, stats=stats)[0]


def _class_groups(grid: BandStack, geometry) -> List[Dict[str, float]]:
    labels = grid.data[0]
    classes = np.unique(labels[np.isfinite(labels)])
    if not classes.size:
        return []
    area = pixel_area(grid)
    groups = []
    for c in classes:
        # area of the pixels of class c, no-data elsewhere
        stats = _zone_stats(geometry, np.where(labels == c, area, np.nan), grid, ["sum", "count"])
        if stats["count"]:
            groups.append({"group": int(c), "sum": float(stats["sum"])})
    return groups


def class_area(
    classified: BandStack,
    geometry,
    scale: Optional[float] = None,
    best_effort: bool = False,
    max_pixels: int = DEFAULT_MAX_PIXELS,
) -> Dict[str, object]:
    """Sum pixel area per class inside ``geometry`` (given in the raster's CRS).

    Returns ``{"groups": [{"group": class, "sum": m2}, ...], "scale": s,
    "empty": bool}``; ``groups`` is empty when no valid pixel falls inside.
    """
    cache = _GridCache(classified, Resampling.mode)
    eff = cache.scale_for(geometry, scale or cache.native_scale(), max_pixels, best_effort)
    groups = _class_groups(cache.at(eff), geometry)
    return {"groups": groups, "scale": eff, "empty": not groups}


def class_area_by_zone(
    classified: BandStack,
    zones: gpd.GeoDataFrame,
    id_field: str,
    scale: Optional[float] = None,
    best_effort: bool = False,
    max_pixels: int = DEFAULT_MAX_PIXELS,
) -> List[Dict[str, object]]:
    """Per-zone class areas, one record per zone in ``zones`` order."""
    zones = to_crs_of(zones, classified.crs)
    cache = _GridCache(classified, Resampling.mode)
    scale = scale or cache.native_scale()
    records = []
    for zone_id, geom in zip(zones[id_field], zones.geometry):
        eff = cache.scale_for(geom, scale, max_pixels, best_effort)
        groups = _class_groups(cache.at(eff), geom)
        records.append({id_field: _plain(zone_id), "groups": groups, "scale": eff, "empty": not groups})
    logger.info("Class areas computed for %d zones", len(records))
    return records


def zonal_mean(
    stack: BandStack,
    zones: gpd.GeoDataFrame,
    id_field: str,
    bands: Optional[Sequence[str]] = None,
    scale: Optional[float] = None,
    best_effort: bool = False,
    max_pixels: int = DEFAULT_MAX_PIXELS,
) -> List[Dict[str, object]]:
    """Unweighted mean of each band over the pixels inside each zone.

    A band with no valid pixel in a zone is reported as ``None``; a zone
    where every band is ``None`` is flagged ``empty``.
    """
    image = stack.select(list(bands)) if bands else stack
    zones = to_crs_of(zones, image.crs)
    cache = _GridCache(image, Resampling.average)
    scale = scale or cache.native_scale()
    records = []
    for zone_id, geom in zip(zones[id_field], zones.geometry):
        eff = cache.scale_for(geom, scale, max_pixels, best_effort)
        grid = cache.at(eff)
        record = {id_field: _plain(zone_id)}
        for name, band in zip(grid.band_names, grid.data):
            stats = _zone_stats(geom, band, grid, ["mean", "count"])
            record[name] = float(stats["mean"]) if stats["count"] else None
        record["scale"] = eff
        record["empty"] = all(record[n] is None for n in grid.band_names)
        records.append(record)
    logger.info("Zonal means computed for %d zones", len(records))
    return records


def empty_zones(records: Sequence[Dict[str, object]], id_field: str) -> List[object]:
    """Identifiers of the zones that produced no valid pixel."""
    return [r[id_field] for r in records if r.get("empty")]
