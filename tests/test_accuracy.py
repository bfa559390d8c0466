import numpy as np
import pytest

from tree_canopy.classification.accuracy import error_matrix
from tree_canopy.errors import EmptyTestSetError


def test_matrix_counts_and_accuracy():
    cm = error_matrix([0, 0, 1, 2, 2, 2], [0, 1, 1, 2, 2, 0], labels=[0, 1, 2, 3])
    assert cm.labels == (0, 1, 2, 3)
    expected = np.array(
        [
            [1, 1, 0, 0],
            [0, 1, 0, 0],
            [1, 0, 2, 0],
            [0, 0, 0, 0],
        ]
    )
    np.testing.assert_array_equal(cm.matrix, expected)
    assert cm.accuracy() == pytest.approx(4 / 6)


def test_trace_plus_off_diagonal_is_total(rng):
    actual = rng.integers(0, 4, 200)
    predicted = np.where(rng.random(200) < 0.7, actual, rng.integers(0, 4, 200))
    cm = error_matrix(actual, predicted, labels=range(4))
    off_diagonal = cm.matrix.sum() - np.trace(cm.matrix)
    assert np.trace(cm.matrix) + off_diagonal == 200
    assert 0.0 <= cm.accuracy() <= 1.0


def test_per_class_accuracy_and_kappa():
    cm = error_matrix([0, 0, 1, 1], [0, 1, 1, 1], labels=[0, 1, 2])
    assert cm.producers_accuracy() == {0: 0.5, 1: 1.0, 2: None}
    assert cm.consumers_accuracy() == {0: 1.0, 1: pytest.approx(2 / 3), 2: None}
    # p_o = 0.75, p_e = (1*2 + 3*2) / 16 = 0.5
    assert cm.kappa() == pytest.approx(0.5)
    summary = cm.to_dict()
    assert summary["confusion_matrix"] == [[1, 1, 0], [0, 2, 0], [0, 0, 0]]
    assert summary["overall_accuracy"] == pytest.approx(0.75)


def test_perfect_agreement_on_one_class_has_no_kappa():
    cm = error_matrix([1, 1], [1, 1], labels=[0, 1])
    assert cm.accuracy() == 1.0
    assert cm.kappa() is None


def test_empty_test_set_fails():
    with pytest.raises(EmptyTestSetError):
        error_matrix([], [], labels=[0, 1])


def test_labels_outside_set_fail():
    with pytest.raises(ValueError, match="outside the class set"):
        error_matrix([0, 5], [0, 0], labels=[0, 1])
    with pytest.raises(ValueError, match="predicted"):
        error_matrix([0, 1], [0, np.nan], labels=[0, 1])
