"""Area-of-interest selection."""

from __future__ import annotations

import geopandas as gpd
import pandas as pd
from shapely.ops import unary_union

from ..errors import RegionNotFoundError
from ..utils.io_vector import to_crs_of


def _as_int(value):
    try:
        return int(str(value).strip())
    except ValueError:
        return None


def select_region(boundaries: gpd.GeoDataFrame, field: str, value) -> gpd.GeoSeries:
    """Return the (dissolved) geometry of the features where ``field == value``.

    Values are compared as text; when that finds nothing and ``value`` is an
    integer code, numerically (so ``"097"`` matches a stored ``97``). The
    result is a one-element GeoSeries so that it keeps its CRS.
    """
    if field not in boundaries.columns:
        raise RegionNotFoundError(f"Boundary layer has no {field!r} attribute")
    matched = boundaries[boundaries[field].astype(str) == str(value)]
    number = _as_int(value)
    if matched.empty and number is not None:
        matched = boundaries[pd.to_numeric(boundaries[field], errors="coerce") == number]
    if matched.empty:
        raise RegionNotFoundError(f"No feature with {field} == {value!r}")
    return gpd.GeoSeries([unary_union(list(matched.geometry))], crs=boundaries.crs)


def filter_bounds(zones: gpd.GeoDataFrame, region: gpd.GeoSeries) -> gpd.GeoDataFrame:
    """Keep the zones that intersect ``region``."""
    geom = to_crs_of(region, zones.crs).iloc[0]
    return zones[zones.intersects(geom)].reset_index(drop=True)


def region_geometry(region: gpd.GeoSeries, crs):
    """The region's shapely geometry in ``crs``."""
    return to_crs_of(region, crs).iloc[0]
