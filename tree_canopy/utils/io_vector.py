from __future__ import annotations

from pathlib import Path

import geopandas as gpd


def read_features(path, layer: str | None = None) -> gpd.GeoDataFrame:
    """Read a vector dataset (GeoJSON, shapefile, GeoPackage ...)."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Vector dataset not found: {path}")
    kwargs = {"layer": layer} if layer else {}
    gdf = gpd.read_file(path, **kwargs)
    if gdf.crs is None:
        raise ValueError(f"{path} has no CRS; cannot align it with the rasters")
    return gdf


def to_crs_of(gdf: gpd.GeoDataFrame, crs) -> gpd.GeoDataFrame:
    """Reproject ``gdf`` to ``crs`` unless it is already there."""
    if crs is None or gdf.crs == crs:
        return gdf
    return gdf.to_crs(crs)
