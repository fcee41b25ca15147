"""
Conversion of array-like inputs into svmkit feature vectors and problems.
"""

from typing import List, Sequence, Union

import numpy as np
import scipy.sparse as sp

from ..core.structs import FeatureVector, Problem

ArrayLike = Union[np.ndarray, sp.spmatrix, Sequence[FeatureVector]]


def to_feature_vectors(X: ArrayLike, precomputed: bool = False) -> List[FeatureVector]:
    """
    Convert rows of X into sparse feature vectors.

    Feature k of a vector holds column k-1 of X. Zeros are omitted, except
    for precomputed kernel rows, which are kept dense and prefixed with
    feature 0 holding the 1-based row number.

    Args:
        X: Dense array of shape (n_samples, n_features), a scipy.sparse
           matrix, or a sequence of FeatureVector
        precomputed: Whether rows are kernel values against training samples

    Returns:
        One FeatureVector per row
    """
    if isinstance(X, (list, tuple)) and all(isinstance(v, FeatureVector) for v in X):
        return list(X)

    if precomputed:
        K = X.toarray() if sp.issparse(X) else np.asarray(X, dtype=np.float64)
        if K.ndim != 2:
            raise ValueError(f"Expected a 2D kernel matrix, got shape {K.shape}")
        columns = np.arange(K.shape[1] + 1)
        return [FeatureVector(columns, np.concatenate([[i + 1], row])) for i, row in enumerate(K)]

    if sp.issparse(X):
        X = sp.csr_matrix(X, dtype=np.float64, copy=True)
        X.sum_duplicates()
        X.eliminate_zeros()
        X.sort_indices()
        return [FeatureVector(X.indices[X.indptr[i]:X.indptr[i + 1]] + 1,
                              X.data[X.indptr[i]:X.indptr[i + 1]])
                for i in range(X.shape[0])]

    X = np.asarray(X, dtype=np.float64)
    if X.ndim != 2:
        raise ValueError(f"Expected 2D array, got {X.ndim}D array instead")
    return [FeatureVector.from_dense(row) for row in X]


def to_problem(X: ArrayLike, y: Sequence[float], precomputed: bool = False) -> Problem:
    """
    Build a training problem from samples and labels.

    Args:
        X: Samples, see `to_feature_vectors`
        y: Labels or targets of shape (n_samples,)
        precomputed: Whether X is a precomputed kernel matrix

    Returns:
        Problem
    """
    vectors = to_feature_vectors(X, precomputed=precomputed)
    y = np.asarray(y, dtype=np.float64).ravel()

    if len(vectors) != y.shape[0]:
        raise ValueError("X and y must have the same number of samples")

    return Problem(zip(y.tolist(), vectors))
