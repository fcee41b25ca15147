# tests/conftest.py - Pytest configuration and fixtures

import numpy as np
import pytest

from svmkit.core.structs import Problem
from svmkit.utils.data import to_problem


@pytest.fixture
def xor_problem() -> Problem:
    """Four corners of the unit square with XOR labels."""
    X = np.array([[0, 0], [0, 1], [1, 0], [1, 1]], dtype=float)
    y = np.array([-1, 1, 1, -1])
    return to_problem(X, y)


@pytest.fixture
def two_blobs():
    """Two well separated Gaussian blobs, labels +1 and -1."""
    rng = np.random.default_rng(0)
    X = np.vstack([rng.normal([2, 2], 0.5, size=(20, 2)),
                   rng.normal([-2, -2], 0.5, size=(20, 2))])
    y = np.array([1] * 20 + [-1] * 20)
    return X, y


@pytest.fixture
def three_blobs():
    """Three separated blobs labelled 2, 0 and 5 in order of appearance."""
    rng = np.random.default_rng(1)
    X = np.vstack([rng.normal([0, 4], 0.5, size=(15, 2)),
                   rng.normal([4, -2], 0.5, size=(15, 2)),
                   rng.normal([-4, -2], 0.5, size=(15, 2))])
    y = np.array([2] * 15 + [0] * 15 + [5] * 15)
    return X, y


@pytest.fixture
def overlapping_blobs():
    """Two overlapping blobs, so that many multipliers end up at the bound."""
    rng = np.random.default_rng(2)
    X = np.vstack([rng.normal([0.5, 0.5], 1.0, size=(30, 2)),
                   rng.normal([-0.5, -0.5], 1.0, size=(30, 2))])
    y = np.array([1] * 30 + [-1] * 30)
    return X, y


@pytest.fixture
def linear_targets():
    """Noise-free targets y = 2x on [0, 1]."""
    x = np.linspace(0, 1, 21).reshape(-1, 1)
    return x, 2 * x.ravel()
