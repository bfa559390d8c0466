import logging

import joblib
import numpy as np
from sklearn.ensemble import RandomForestClassifier

from ..errors import TrainingDataError
from .predict import TrainedClassifier

logger = logging.getLogger(__name__)


def train_classifier(
    samples,
    features,
    label="id",
    n_estimators=10,
    random_state=None,
    max_depth=None,
    verbose=0,
):
    """Train a RandomForest land-cover model.

    Parameters
    ----------
    samples : pandas.DataFrame
        Training rows holding the feature columns and the label column.
    features : list of str
        Feature columns, in the order the model will expect them.
    label : str, optional
        Label column.
    n_estimators : int, optional
        Number of trees in the forest.
    random_state : int or None, optional
        Seed for the ``RandomForestClassifier``.
    max_depth : int or None, optional
        Maximum depth of the trees.
    verbose : int, optional
        Verbosity level for ``RandomForestClassifier``.

    Raises
    ------
    TrainingDataError
        If there are no rows, a column is missing, or any feature or label
        value is missing.
    """
    features = list(features)
    missing_cols = [c for c in features + [label] if c not in samples.columns]
    if missing_cols:
        raise TrainingDataError(f"Training samples lack columns {missing_cols}")
    if len(samples) == 0:
        raise TrainingDataError("No training samples")

    X = samples[features].to_numpy(dtype=float)
    y = samples[label].to_numpy()
    bad_rows = ~np.isfinite(X).all(axis=1)
    if bad_rows.any():
        raise TrainingDataError(f"{int(bad_rows.sum())} training rows have missing feature values")
    if samples[label].isna().any():
        raise TrainingDataError(f"{int(samples[label].isna().sum())} training rows have no label")

    clf = RandomForestClassifier(
        n_estimators=n_estimators,
        random_state=random_state,
        max_depth=max_depth,
        verbose=verbose,
    )
    clf.fit(X, y.astype(int))
    logger.info(
        "Trained %d-tree random forest on %d samples, classes %s",
        n_estimators, len(X), clf.classes_.tolist(),
    )
    return TrainedClassifier(model=clf, features=tuple(features), label=label)


def save_classifier(classifier, path):
    """Dump the fitted model and its column names with joblib."""
    joblib.dump(
        {"model": classifier.model, "features": classifier.features, "label": classifier.label},
        path,
    )
    return path
