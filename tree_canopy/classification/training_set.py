from __future__ import annotations

import logging
from typing import Iterable, Optional, Sequence

import geopandas as gpd
import numpy as np
import pandas as pd
from rasterio.warp import Resampling

from ..errors import TrainingDataError
from ..raster import BandStack
from ..utils.io_vector import to_crs_of

logger = logging.getLogger(__name__)


def merge_collections(
    collections: Sequence[gpd.GeoDataFrame],
    label_property: str = "id",
    class_ids: Optional[Sequence[Optional[int]]] = None,
) -> gpd.GeoDataFrame:
    """Union labelled polygon collections, one per class, into one collection.

    A collection whose features lack ``label_property`` takes its label from
    the matching entry of ``class_ids``.
    """
    if not collections:
        raise TrainingDataError("No labelled collections given")
    if class_ids is None:
        class_ids = [None] * len(collections)
    if len(class_ids) != len(collections):
        raise ValueError("class_ids must match collections one to one")

    crs = collections[0].crs
    parts = []
    for i, (gdf, class_id) in enumerate(zip(collections, class_ids)):
        gdf = to_crs_of(gdf, crs).copy()
        if label_property not in gdf.columns:
            if class_id is None:
                raise TrainingDataError(
                    f"Collection {i} has no {label_property!r} attribute and no class_id"
                )
            gdf[label_property] = class_id
        elif class_id is not None:
            gdf[label_property] = gdf[label_property].fillna(class_id)
        parts.append(gdf[[label_property, "geometry"]])
    merged = gpd.GeoDataFrame(pd.concat(parts, ignore_index=True), geometry="geometry", crs=crs)
    logger.info("Merged %d labelled features from %d collections", len(merged), len(parts))
    return merged


def sample_regions(
    stack: BandStack,
    collection: gpd.GeoDataFrame,
    bands: Sequence[str],
    label_property: str = "id",
    scale: Optional[float] = None,
) -> pd.DataFrame:
    """Sample pixel values of ``bands`` inside each feature of ``collection``.

    One row is produced per pixel whose centre falls in a feature, carrying
    that feature's ``label_property``. Pixels with no data in any selected
    band are skipped. ``scale`` is a pixel size in metres.
    """
    image = stack.select(list(bands))
    if scale is not None:
        image = image.at_scale(scale, Resampling.average)
    collection = to_crs_of(collection, image.crs)

    columns = list(image.band_names)
    frames = []
    for label, geom in zip(collection[label_property], collection.geometry):
        inside = image.inside(geom)
        values = image.data[:, inside].T
        values = values[np.isfinite(values).all(axis=1)]
        if not len(values):
            continue
        frame = pd.DataFrame(values, columns=columns)
        frame[label_property] = label
        frames.append(frame)

    if not frames:
        return pd.DataFrame(columns=columns + [label_property])
    samples = pd.concat(frames, ignore_index=True)
    logger.info("Sampled %d pixels from %d features", len(samples), len(collection))
    return samples


def validate_labels(samples: pd.DataFrame, label_property: str, classes: Iterable[int]) -> pd.DataFrame:
    """Ensure every sample carries a label from ``classes``; cast labels to int."""
    if label_property not in samples.columns:
        raise TrainingDataError(f"Samples have no {label_property!r} column")
    labels = samples[label_property]
    if labels.isna().any():
        raise TrainingDataError(f"{int(labels.isna().sum())} samples have no label")
    allowed = {int(c) for c in classes}
    unknown = sorted({v for v in labels.unique() if v not in allowed})
    if unknown:
        raise TrainingDataError(f"Labels {unknown} are not in the class set {sorted(allowed)}")
    samples = samples.copy()
    samples[label_property] = labels.astype(int)
    return samples


def add_random_column(
    samples: pd.DataFrame, seed: Optional[int] = None, column: str = "random"
) -> pd.DataFrame:
    """Append a uniform [0, 1) column; ``seed=None`` draws fresh entropy."""
    rng = np.random.default_rng(seed)
    samples = samples.copy()
    samples[column] = rng.random(len(samples))
    return samples


def split_train_test(
    samples: pd.DataFrame, threshold: float = 0.8, column: str = "random"
) -> tuple[pd.DataFrame, pd.DataFrame]:
    """Split rows into ``column < threshold`` (train) and the rest (test)."""
    if not 0 < threshold < 1:
        raise ValueError(f"Split threshold must be in (0, 1), got {threshold}")
    if column not in samples.columns:
        raise KeyError(f"Samples have no {column!r} column; call add_random_column first")
    in_train = samples[column] < threshold
    return samples[in_train], samples[~in_train]
