"""Map display port: named raster/vector layers with palettes and value ranges."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Mapping, Optional

import folium
import numpy as np
from rasterio.warp import transform_bounds

from ..raster import BandStack

logger = logging.getLogger(__name__)

# British spellings of CSS colour names, missing from folium's colour table
_COLOR_ALIASES = {
    "grey": "#808080",
    "darkgrey": "#a9a9a9",
    "darkslategrey": "#2f4f4f",
    "dimgrey": "#696969",
    "lightgrey": "#d3d3d3",
    "lightslategrey": "#778899",
    "slategrey": "#708090",
}


def _color(value):
    if isinstance(value, str):
        return _COLOR_ALIASES.get(value.strip().lower(), value)
    return value


def colorize(stack: BandStack, vis: Mapping) -> np.ndarray:
    """Render ``stack`` to an RGBA ``uint8`` array using ``vis`` parameters.

    ``vis`` follows the usual map-display keys: ``bands`` (one or three),
    ``min``, ``max`` and an optional ``palette`` for single-band layers.
    No-data pixels are transparent.
    """
    bands = list(vis.get("bands") or stack.band_names[:1])
    image = stack.select(bands).data
    vmin = float(vis.get("min", np.nanmin(image)))
    vmax = float(vis.get("max", np.nanmax(image)))
    span = (vmax - vmin) or 1.0
    valid = np.isfinite(image).all(axis=0)
    scaled = np.clip((np.nan_to_num(image, nan=vmin) - vmin) / span, 0, 1)

    rows, cols = stack.shape
    rgba = np.zeros((rows, cols, 4), dtype=np.uint8)
    if len(bands) == 3:
        rgba[..., :3] = np.moveaxis(np.rint(scaled * 255), 0, -1).astype(np.uint8)
    elif len(bands) == 1:
        palette = vis.get("palette")
        if isinstance(palette, str):
            palette = [palette]
        if palette:
            colors = [_color(c) for c in palette]
            if len(colors) == 1:
                colors = colors * 2
            cmap = folium.LinearColormap(colors, vmin=0.0, vmax=1.0)
            lut = np.array([cmap.rgba_bytes_tuple(v)[:3] for v in np.linspace(0, 1, 256)], dtype=np.uint8)
            rgba[..., :3] = lut[np.rint(scaled[0] * 255).astype(int)]
        else:
            rgba[..., :3] = np.rint(scaled[0] * 255).astype(np.uint8)[..., np.newaxis]
    else:
        raise ValueError(f"Display needs one or three bands, got {bands}")
    rgba[..., 3] = np.where(valid, 255, 0)
    return rgba


class NullMapDisplay:
    """Discards every layer."""

    def add_layer(self, name, stack, vis, shown=True):
        pass

    def add_zones(self, name, zones, color="cyan", shown=True):
        pass

    def set_center(self, lon, lat, zoom=11):
        pass

    def save(self, path):
        return None


class FoliumMapDisplay:
    """Collects layers and writes them to an interactive HTML map."""

    def __init__(self):
        self._layers = []
        self._center: Optional[tuple] = None
        self._zoom = 11

    def add_layer(self, name, stack: BandStack, vis, shown=True):
        west, south, east, north = transform_bounds(stack.crs, "EPSG:4326", *stack.bounds)
        overlay = folium.raster_layers.ImageOverlay(
            image=colorize(stack, vis),
            bounds=[[south, west], [north, east]],
            opacity=vis.get("opacity", 0.7),
            name=name,
            show=shown,
        )
        self._layers.append(overlay)
        if self._center is None:
            self._center = ((south + north) / 2, (west + east) / 2)

    def add_zones(self, name, zones, color="cyan", shown=True):
        layer = folium.GeoJson(
            zones.to_crs("EPSG:4326").to_json(),
            name=name,
            style_function=lambda _: {"color": color, "weight": 2, "fill": False},
            show=shown,
        )
        self._layers.append(layer)

    def set_center(self, lon, lat, zoom=11):
        self._center = (lat, lon)
        self._zoom = zoom

    def save(self, path):
        m = folium.Map(location=self._center or (0, 0), zoom_start=self._zoom)
        for layer in self._layers:
            layer.add_to(m)
        folium.LayerControl().add_to(m)
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        m.save(str(path))
        logger.info("Saved map with %d layers to %s", len(self._layers), path)
        return path
