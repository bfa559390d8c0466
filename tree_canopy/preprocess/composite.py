"""Image collections and temporal compositing."""

from __future__ import annotations

import logging
import operator
import warnings
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Optional, Sequence

import numpy as np
import yaml

from ..errors import EmptyCollectionError
from ..raster import BandStack
from ..utils.io_raster import read_stack

logger = logging.getLogger(__name__)

_COMPARATORS = {
    "lt": operator.lt,
    "lte": operator.le,
    "gt": operator.gt,
    "gte": operator.ge,
    "eq": operator.eq,
    "neq": operator.ne,
}


def normalize_date(value) -> date:
    """Return ``value`` as a :class:`datetime.date` (accepts YYYY-MM-DD, YYYY-M-D, YYYYMMDD)."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    for fmt in ("%Y-%m-%d", "%Y%m%d", "%Y-%m-%dT%H:%M:%S", "%Y-%m-%dT%H%M%S"):
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    raise ValueError(f"Unrecognised date: {value!r}")


@dataclass(frozen=True)
class Scene:
    """One acquisition of a catalog. Pixels are read lazily."""

    id: str
    date: date
    path: Optional[Path] = None
    band_names: tuple[str, ...] = ()
    properties: Mapping[str, Any] = field(default_factory=dict)
    image: Optional[BandStack] = None

    def load(self) -> BandStack:
        if self.image is not None:
            return self.image
        if self.path is None:
            raise ValueError(f"Scene {self.id} has neither a path nor pixel data")
        return read_stack(self.path, self.band_names or None)


class ImageCollection:
    """An ordered, immutable set of scenes on one grid.

    ``filter_*`` and ``select``/``map`` return new collections; nothing is
    read from disk until :meth:`reduce`.
    """

    def __init__(
        self,
        scenes: Iterable[Scene],
        collection_id: str = "",
        steps: Sequence[Callable[[BandStack], BandStack]] = (),
    ):
        self.scenes = tuple(scenes)
        self.id = collection_id
        self._steps = tuple(steps)

    @classmethod
    def from_catalog(cls, catalog_dir) -> "ImageCollection":
        """Load a collection from ``<catalog_dir>/catalog.yaml``.

        The catalog lists ``bands`` and ``scenes``; each scene has a ``path``
        relative to the catalog, a ``date`` and optional ``properties``.
        """
        catalog_dir = Path(catalog_dir)
        cfg_path = catalog_dir / "catalog.yaml"
        if not cfg_path.exists():
            raise FileNotFoundError(f"catalog.yaml not found in {catalog_dir}")
        cfg = yaml.safe_load(cfg_path.read_text()) or {}
        bands = tuple(cfg.get("bands") or ())
        scenes = []
        for i, entry in enumerate(cfg.get("scenes") or []):
            path = catalog_dir / entry["path"]
            scenes.append(
                Scene(
                    id=str(entry.get("id", Path(entry["path"]).parent.name or i)),
                    date=normalize_date(entry["date"]),
                    path=path,
                    band_names=tuple(entry.get("bands") or bands),
                    properties=dict(entry.get("properties") or {}),
                )
            )
        logger.info("Loaded %d scenes from %s", len(scenes), cfg_path)
        return cls(scenes, cfg.get("id", catalog_dir.name))

    def __len__(self) -> int:
        return len(self.scenes)

    def _derive(self, scenes=None, steps=None) -> "ImageCollection":
        return ImageCollection(
            self.scenes if scenes is None else scenes,
            self.id,
            self._steps if steps is None else steps,
        )

    def filter_date(self, start, end) -> "ImageCollection":
        """Keep scenes with ``start <= date < end``."""
        start, end = normalize_date(start), normalize_date(end)
        if end <= start:
            raise ValueError(f"Empty date range {start} .. {end}")
        return self._derive(scenes=[s for s in self.scenes if start <= s.date < end])

    def filter_metadata(self, name: str, op: str, value) -> "ImageCollection":
        """Keep scenes whose property ``name`` satisfies ``op`` against ``value``."""
        if op not in _COMPARATORS:
            raise ValueError(f"Unknown comparison {op!r}; expected one of {sorted(_COMPARATORS)}")
        compare = _COMPARATORS[op]
        kept = []
        for scene in self.scenes:
            if name not in scene.properties:
                logger.warning("Scene %s has no %r property; dropped", scene.id, name)
                continue
            if compare(scene.properties[name], value):
                kept.append(scene)
        return self._derive(scenes=kept)

    def map(self, fn: Callable[[BandStack], BandStack]) -> "ImageCollection":
        return self._derive(steps=self._steps + (fn,))

    def select(self, bands: Sequence[str]) -> "ImageCollection":
        bands = list(bands)
        return self.map(lambda stack: stack.select(bands))

    def images(self) -> Iterable[BandStack]:
        for scene in self.scenes:
            stack = scene.load()
            for step in self._steps:
                stack = step(stack)
            yield stack

    def reduce(self, reducer: str = "mean") -> BandStack:
        """Reduce the collection pixel-wise with ``"mean"`` or ``"median"``.

        Masked pixels are ignored; a pixel masked in every scene stays NaN.
        """
        if reducer not in {"mean", "median"}:
            raise ValueError("reducer must be 'mean' or 'median'")
        if not self.scenes:
            raise EmptyCollectionError(f"No scenes in collection {self.id!r} for the requested period")

        images = list(self.images())
        first = images[0]
        for scene, image in zip(self.scenes[1:], images[1:]):
            if not first.same_grid(image):
                raise ValueError(f"Scene {scene.id} is not on the same grid as {self.scenes[0].id}")
            if image.band_names != first.band_names:
                raise ValueError(f"Scene {scene.id} has bands {image.band_names}, expected {first.band_names}")

        data = np.stack([img.data for img in images]).astype("float64")
        with warnings.catch_warnings():
            # all-NaN pixels legitimately reduce to NaN
            warnings.simplefilter("ignore", category=RuntimeWarning)
            if reducer == "mean":
                out = np.nanmean(data, axis=0)
            else:
                out = np.nanmedian(data, axis=0)
        logger.info("Reduced %d scenes of %s with %s", len(images), self.id, reducer)
        return first.with_data(out)


def build_composite(
    collection: ImageCollection,
    start,
    end,
    mask_fn: Callable[[BandStack], BandStack],
    reducer: str = "mean",
    max_cloud: Optional[float] = None,
    cloud_property: str = "CLOUDY_PIXEL_PERCENTAGE",
    bands: Optional[Sequence[str]] = None,
    transforms: Sequence[Callable[[BandStack], BandStack]] = (),
) -> BandStack:
    """Filter, mask, transform and reduce ``collection`` into one composite.

    Parameters
    ----------
    collection : ImageCollection
        Source scenes.
    start, end : str or date
        Date window, start inclusive and end exclusive.
    mask_fn : callable
        Per-scene quality mask, e.g. :func:`~tree_canopy.preprocess.cloudmask.mask_s2_clouds`.
    reducer : {"mean", "median"}
        Pixel-wise temporal reduction.
    max_cloud : float, optional
        Drop scenes whose ``cloud_property`` is not strictly below this value.
    bands : sequence of str, optional
        Bands to keep before masking; the QA band must be among them.
    transforms : sequence of callables
        Applied to each masked scene before reduction (e.g. scale factors).
    """
    filtered = collection.filter_date(start, end)
    if max_cloud is not None:
        filtered = filtered.filter_metadata(cloud_property, "lt", max_cloud)
    if len(filtered) == 0:
        raise EmptyCollectionError(
            f"No data for period {start} .. {end} in {collection.id!r}"
            + (f" with {cloud_property} < {max_cloud}" if max_cloud is not None else "")
        )
    logger.info(
        "%s: %d of %d scenes between %s and %s",
        collection.id, len(filtered), len(collection), start, end,
    )
    if bands:
        filtered = filtered.select(bands)
    filtered = filtered.map(mask_fn)
    for fn in transforms:
        filtered = filtered.map(fn)
    return filtered.reduce(reducer)
