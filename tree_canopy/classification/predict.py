from dataclasses import dataclass

import numpy as np
import pandas as pd

from ..raster import BandStack


@dataclass(frozen=True)
class TrainedClassifier:
    """A fitted model plus the feature and label columns it was trained on."""

    model: object
    features: tuple
    label: str = "id"
    output: str = "classification"

    def classify(self, data):
        """Predict labels for a :class:`BandStack` or a sample table."""
        if isinstance(data, BandStack):
            return predict_raster(self, data)
        if isinstance(data, pd.DataFrame):
            return predict_table(self, data)
        raise TypeError(f"Cannot classify {type(data).__name__}")


def predict_raster(clf, stack):
    """Generate a one-band classification stack; pixels with missing features stay NaN."""
    features = stack.select(list(clf.features))
    X = features.data.reshape(features.count, -1).T
    valid_idx = np.isfinite(X).all(axis=1)
    preds = np.full(X.shape[0], np.nan)
    if valid_idx.any():
        preds[valid_idx] = clf.model.predict(X[valid_idx])
    pred_raster = preds.reshape(stack.shape)
    return stack.with_data(pred_raster[np.newaxis, ...], [clf.output])


def predict_table(clf, samples):
    """Return a copy of ``samples`` with a prediction column."""
    missing = [c for c in clf.features if c not in samples.columns]
    if missing:
        raise KeyError(f"Samples lack feature columns {missing}")
    out = samples.copy()
    X = out[list(clf.features)].to_numpy(dtype=float)
    valid_idx = np.isfinite(X).all(axis=1)
    preds = np.full(len(out), np.nan)
    if valid_idx.any():
        preds[valid_idx] = clf.model.predict(X[valid_idx])
    out[clf.output] = preds
    return out
