"""In-memory multi-band raster with explicit no-data handling.

A :class:`BandStack` holds a ``(bands, rows, cols)`` float array together with
its band names and georeferencing. Masked (no-data) pixels are stored as NaN;
every operation in the package reads only finite values and writes NaN
wherever a result is undefined, so no-data is never mistaken for zero.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Iterable, Mapping, Sequence

import numpy as np
from pyproj import CRS as ProjCRS
from pyproj import Geod
from rasterio.crs import CRS
from rasterio.features import geometry_mask
from rasterio.transform import Affine, array_bounds
from rasterio.warp import Resampling, reproject

from .errors import MissingBandError


@dataclass(frozen=True, eq=False)
class BandStack:
    data: np.ndarray
    band_names: tuple[str, ...]
    transform: Affine
    crs: CRS | None = None

    def __post_init__(self) -> None:
        data = np.asarray(self.data)
        if data.ndim == 2:
            data = data[np.newaxis, ...]
        if data.ndim != 3:
            raise ValueError(f"Expected a (bands, rows, cols) array, got shape {data.shape}")
        if not np.issubdtype(data.dtype, np.floating):
            data = data.astype("float64")
        names = tuple(self.band_names)
        if len(names) != data.shape[0]:
            raise ValueError(
                f"{data.shape[0]} bands in data but {len(names)} band names given"
            )
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate band names: {names}")
        crs = CRS.from_user_input(self.crs) if self.crs is not None else None
        object.__setattr__(self, "data", data)
        object.__setattr__(self, "band_names", names)
        object.__setattr__(self, "crs", crs)

    # ------------------------------------------------------------------
    # geometry of the grid
    @property
    def count(self) -> int:
        return self.data.shape[0]

    @property
    def shape(self) -> tuple[int, int]:
        return self.data.shape[1], self.data.shape[2]

    @property
    def res(self) -> tuple[float, float]:
        return abs(self.transform.a), abs(self.transform.e)

    @property
    def bounds(self) -> tuple[float, float, float, float]:
        """``(west, south, east, north)`` of the grid."""
        return array_bounds(self.shape[0], self.shape[1], self.transform)

    def same_grid(self, other: "BandStack") -> bool:
        return (
            self.shape == other.shape
            and self.transform.almost_equals(other.transform)
            and self.crs == other.crs
        )

    # ------------------------------------------------------------------
    # band access
    def _resolve(self, selectors: Iterable[str]) -> list[str]:
        """Resolve exact names or regular expressions to band names, in order."""
        resolved: list[str] = []
        for sel in selectors:
            if sel in self.band_names:
                matches = [sel]
            else:
                try:
                    pattern = re.compile(sel)
                except re.error:
                    matches = []
                else:
                    matches = [n for n in self.band_names if pattern.fullmatch(n)]
            if not matches:
                raise MissingBandError(
                    f"Band {sel!r} not found; available bands: {list(self.band_names)}"
                )
            resolved.extend(m for m in matches if m not in resolved)
        return resolved

    def band(self, name: str) -> np.ndarray:
        if name not in self.band_names:
            raise MissingBandError(
                f"Band {name!r} not found; available bands: {list(self.band_names)}"
            )
        return self.data[self.band_names.index(name)]

    def select(self, selectors: str | Sequence[str]) -> "BandStack":
        if isinstance(selectors, str):
            selectors = [selectors]
        names = self._resolve(selectors)
        idx = [self.band_names.index(n) for n in names]
        return self.with_data(self.data[idx], names)

    def rename(self, names: Sequence[str] | Mapping[str, str]) -> "BandStack":
        if isinstance(names, Mapping):
            new = [names.get(n, n) for n in self.band_names]
        else:
            new = list(names)
        return self.with_data(self.data, new)

    def with_data(self, data: np.ndarray, names: Sequence[str] | None = None) -> "BandStack":
        """Return a stack on the same grid holding ``data``."""
        return BandStack(
            data=data,
            band_names=tuple(self.band_names if names is None else names),
            transform=self.transform,
            crs=self.crs,
        )

    def add_bands(self, other: "BandStack", overwrite: bool = False) -> "BandStack":
        """Append the bands of ``other``.

        With ``overwrite=True`` bands of the same name are replaced in their
        original position; otherwise a name clash raises ``ValueError``.
        """
        if other.shape != self.shape:
            raise ValueError(f"Grid mismatch: {self.shape} vs {other.shape}")
        data = [b for b in self.data]
        names = list(self.band_names)
        for name, arr in zip(other.band_names, other.data):
            if name in names:
                if not overwrite:
                    raise ValueError(f"Band {name!r} already exists")
                data[names.index(name)] = arr
            else:
                names.append(name)
                data.append(arr)
        dtype = np.result_type(self.data.dtype, other.data.dtype)
        return self.with_data(np.stack(data).astype(dtype, copy=False), names)

    # ------------------------------------------------------------------
    # masks
    def valid_mask(self, names: Sequence[str] | None = None) -> np.ndarray:
        """Boolean array, True where every selected band holds a finite value."""
        data = self.data if names is None else self.select(names).data
        return np.isfinite(data).all(axis=0)

    def update_mask(self, mask: np.ndarray) -> "BandStack":
        """Set every band to no-data where ``mask`` is False."""
        mask = np.asarray(mask, dtype=bool)
        if mask.shape != self.shape:
            raise ValueError(f"Mask shape {mask.shape} does not match grid {self.shape}")
        data = self.data.copy()
        data[:, ~mask] = np.nan
        return self.with_data(data)

    def inside(self, geometries) -> np.ndarray:
        """Boolean array, True for pixels whose centre falls inside ``geometries``."""
        if not isinstance(geometries, (list, tuple)):
            geometries = [geometries]
        geometries = [g for g in geometries if g is not None and not g.is_empty]
        if not geometries:
            return np.zeros(self.shape, dtype=bool)
        return geometry_mask(
            geometries, out_shape=self.shape, transform=self.transform, invert=True
        )

    def clip(self, geometry) -> "BandStack":
        """Mask everything outside ``geometry`` (given in this stack's CRS)."""
        return self.update_mask(self.inside(geometry))

    # ------------------------------------------------------------------
    # resampling
    def resample(self, scale: float, resampling: Resampling = Resampling.average) -> "BandStack":
        """Return the stack on a square grid of pixel size ``scale``.

        The grid keeps the north-west corner. Asking for the native resolution
        returns the stack unchanged.
        """
        if scale <= 0:
            raise ValueError("scale must be positive")
        xres, yres = self.res
        if math.isclose(scale, xres) and math.isclose(scale, yres):
            return self
        if self.crs is None:
            raise ValueError("Cannot resample a stack without a CRS")
        west, south, east, north = self.bounds
        width = max(1, math.ceil(round((east - west) / scale, 9)))
        height = max(1, math.ceil(round((north - south) / scale, 9)))
        dst_transform = Affine(scale, 0.0, west, 0.0, -scale, north)
        dest = np.full((self.count, height, width), np.nan, dtype="float64")
        reproject(
            source=self.data.astype("float64", copy=False),
            destination=dest,
            src_transform=self.transform,
            src_crs=self.crs,
            src_nodata=np.nan,
            dst_transform=dst_transform,
            dst_crs=self.crs,
            dst_nodata=np.nan,
            resampling=resampling,
        )
        return BandStack(dest, self.band_names, dst_transform, self.crs)

    def units_per_metre(self) -> float:
        """CRS units covered by one metre on the ground.

        For geographic grids this is measured along the meridian through the
        centre of the grid.
        """
        if self.crs is None:
            raise ValueError("A metric scale needs a CRS")
        if self.crs.is_geographic:
            west, south, east, north = self.bounds
            lon = (west + east) / 2
            lat = min(max((south + north) / 2, -89.0), 89.0)
            _, _, metres = Geod(ellps="WGS84").inv(lon, lat - 0.5, lon, lat + 0.5)
            return 1.0 / metres
        unit = ProjCRS.from_user_input(self.crs.to_wkt()).axis_info[0].unit_conversion_factor
        return 1.0 / unit

    def at_scale(self, metres: float, resampling: Resampling = Resampling.average) -> "BandStack":
        """Like :meth:`resample`, with the pixel size given in metres."""
        return self.resample(metres * self.units_per_metre(), resampling)

    def profile(self, dtype: str = "float32", nodata: float | None = np.nan) -> dict:
        """rasterio write profile for this stack."""
        return {
            "driver": "GTiff",
            "height": self.shape[0],
            "width": self.shape[1],
            "count": self.count,
            "dtype": dtype,
            "crs": self.crs,
            "transform": self.transform,
            "nodata": nodata,
        }
