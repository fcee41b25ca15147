"""
Kernel functions and Q-matrix adapters for the svmkit SMO engine.

The adapters expose the implicit matrix Q the solver works on: row access
through a per-run LRU cache, the diagonal, and index swapping for shrinking.
"""

import math
from abc import ABC, abstractmethod
from typing import List, Optional, Sequence

import numpy as np
import scipy.sparse as sp

from .cache import Cache
from .structs import FeatureVector, KernelType, Parameter, Problem


def dot(x: FeatureVector, y: FeatureVector) -> float:
    """Sparse dot product, merging the two ascending index sequences."""
    xi, xv = x.indices.tolist(), x.values.tolist()
    yi, yv = y.indices.tolist(), y.values.tolist()
    total = 0.0
    i = j = 0
    while i < len(xi) and j < len(yi):
        if xi[i] == yi[j]:
            total += xv[i] * yv[j]
            i += 1
            j += 1
        elif xi[i] > yi[j]:
            j += 1
        else:
            i += 1
    return total


def squared_distance(x: FeatureVector, y: FeatureVector) -> float:
    """
    Squared Euclidean distance between two sparse vectors.

    Shared indices contribute their squared difference; indices present on
    only one side contribute their squared value. The difference vector is
    never built.
    """
    xi, xv = x.indices.tolist(), x.values.tolist()
    yi, yv = y.indices.tolist(), y.values.tolist()
    total = 0.0
    i = j = 0
    while i < len(xi) and j < len(yi):
        if xi[i] == yi[j]:
            d = xv[i] - yv[j]
            total += d * d
            i += 1
            j += 1
        elif xi[i] > yi[j]:
            total += yv[j] * yv[j]
            j += 1
        else:
            total += xv[i] * xv[i]
            i += 1
    total += sum(v * v for v in xv[i:])
    total += sum(v * v for v in yv[j:])
    return total


def _value_at(x: FeatureVector, index: int) -> float:
    pos = int(np.searchsorted(x.indices, index))
    if pos < len(x) and x.indices[pos] == index:
        return float(x.values[pos])
    return 0.0


def k_function(x: FeatureVector, y: FeatureVector, param: Parameter) -> float:
    """
    Evaluate the kernel between two vectors.

    Args:
        x: First vector
        y: Second vector; for a precomputed kernel, its entry 0 holds the
           column to read from x
        param: Parameters carrying the kernel type and hyper-parameters

    Returns:
        Kernel value
    """
    kernel_type = param.kernel_type

    if kernel_type == KernelType.LINEAR:
        return dot(x, y)
    elif kernel_type == KernelType.POLYNOMIAL:
        return (param.gamma * dot(x, y) + param.coef0) ** int(param.degree)
    elif kernel_type == KernelType.RBF:
        return math.exp(-param.gamma * squared_distance(x, y))
    elif kernel_type == KernelType.SIGMOID:
        return math.tanh(param.gamma * dot(x, y) + param.coef0)
    elif kernel_type == KernelType.PRECOMPUTED:
        return _value_at(x, int(y.values[0]))
    else:
        raise ValueError(f"Unknown kernel: {kernel_type}")


def _swap(array: np.ndarray, i: int, j: int):
    array[[i, j]] = array[[j, i]]


def _stack(vectors: Sequence[FeatureVector]) -> sp.csr_matrix:
    """Rows of a CSR matrix; column k holds feature index k."""
    indptr = np.concatenate([[0], np.cumsum([len(v) for v in vectors])]).astype(np.int64)
    indices = np.concatenate([v.indices for v in vectors] + [np.empty(0, dtype=np.int64)])
    data = np.concatenate([v.values for v in vectors] + [np.empty(0, dtype=np.float64)])
    n_columns = max((v.max_index for v in vectors), default=0) + 1
    return sp.csr_matrix((data, indices, indptr), shape=(len(vectors), n_columns))


class Kernel(ABC):
    """
    Kernel evaluation over the training vectors of one run.

    Holds a private copy of the vector list so that shrinking may reorder it.
    Whole rows are computed in one batch against a CSR copy of the vectors,
    which stays in the original order and is reached through `order`.
    The RBF kernel additionally keeps each vector's self dot product.
    """

    def __init__(self, l: int, x: Sequence[FeatureVector], param: Parameter):
        self.kernel_type = param.kernel_type
        self.degree = int(param.degree)
        self.gamma = param.gamma
        self.coef0 = param.coef0

        self.x: List[FeatureVector] = list(x[:l])
        self.order = np.arange(len(self.x))
        self.matrix = _stack(self.x)

        if self.kernel_type == KernelType.PRECOMPUTED:
            self.serial = np.array([int(v.values[0]) if len(v) else 0 for v in self.x],
                                   dtype=np.int64)

        if self.kernel_type == KernelType.RBF:
            self.x_square: Optional[np.ndarray] = np.array([dot(v, v) for v in self.x],
                                                           dtype=np.float64)
        else:
            self.x_square = None

    def kernel_function(self, i: int, j: int) -> float:
        """Kernel value between training vectors i and j."""
        kernel_type = self.kernel_type
        x = self.x

        if kernel_type == KernelType.LINEAR:
            return dot(x[i], x[j])
        elif kernel_type == KernelType.POLYNOMIAL:
            return (self.gamma * dot(x[i], x[j]) + self.coef0) ** self.degree
        elif kernel_type == KernelType.RBF:
            return math.exp(-self.gamma * (self.x_square[i] + self.x_square[j]
                                           - 2 * dot(x[i], x[j])))
        elif kernel_type == KernelType.SIGMOID:
            return math.tanh(self.gamma * dot(x[i], x[j]) + self.coef0)
        elif kernel_type == KernelType.PRECOMPUTED:
            return _value_at(x[i], int(x[j].values[0]))
        else:
            raise ValueError(f"Unknown kernel: {kernel_type}")

    def kernel_row(self, i: int, start: int, stop: int) -> np.ndarray:
        """Kernel values between vector i and vectors start..stop-1."""
        rows = self.order[start:stop]
        anchor = self.matrix[self.order[i]].toarray().ravel()
        kernel_type = self.kernel_type

        if kernel_type == KernelType.PRECOMPUTED:
            columns = self.serial[rows]
            inside = (columns >= 0) & (columns < anchor.size)
            return np.where(inside, anchor[np.where(inside, columns, 0)], 0.0)

        dots = np.asarray(self.matrix[rows] @ anchor, dtype=np.float64).ravel()

        if kernel_type == KernelType.LINEAR:
            return dots
        elif kernel_type == KernelType.POLYNOMIAL:
            return (self.gamma * dots + self.coef0) ** self.degree
        elif kernel_type == KernelType.RBF:
            return np.exp(-self.gamma * (self.x_square[i] + self.x_square[start:stop] - 2 * dots))
        elif kernel_type == KernelType.SIGMOID:
            return np.tanh(self.gamma * dots + self.coef0)
        else:
            raise ValueError(f"Unknown kernel: {kernel_type}")

    def swap_index(self, i: int, j: int):
        self.x[i], self.x[j] = self.x[j], self.x[i]
        _swap(self.order, i, j)
        if self.x_square is not None:
            _swap(self.x_square, i, j)

    @abstractmethod
    def get_q(self, i: int, length: int) -> np.ndarray:
        """Return the first `length` entries of row i of Q."""

    @abstractmethod
    def get_qd(self) -> np.ndarray:
        """Return the diagonal of Q."""


def _cache_bytes(param: Parameter) -> int:
    return int(param.cache_size * (1 << 20))


class SVCQ(Kernel):
    """Q matrix for classification: Q_ij = y_i * y_j * K(x_i, x_j)."""

    def __init__(self, problem: Problem, param: Parameter, y: Sequence[int]):
        super().__init__(problem.l, problem.x, param)
        self.y = np.array(y, dtype=np.int8)
        self.cache = Cache(problem.l, _cache_bytes(param))
        self.QD = np.array([self.kernel_function(i, i) for i in range(problem.l)],
                           dtype=np.float64)

    def get_q(self, i: int, length: int) -> np.ndarray:
        data, start = self.cache.get_data(i, length)
        if start < length:
            data[start:length] = (self.y[i] * self.y[start:length]) * self.kernel_row(i, start, length)
        return data[:length]

    def get_qd(self) -> np.ndarray:
        return self.QD

    def swap_index(self, i: int, j: int):
        self.cache.swap_index(i, j)
        super().swap_index(i, j)
        _swap(self.y, i, j)
        _swap(self.QD, i, j)


class OneClassQ(Kernel):
    """Q matrix for one-class SVM: Q_ij = K(x_i, x_j)."""

    def __init__(self, problem: Problem, param: Parameter):
        super().__init__(problem.l, problem.x, param)
        self.cache = Cache(problem.l, _cache_bytes(param))
        self.QD = np.array([self.kernel_function(i, i) for i in range(problem.l)],
                           dtype=np.float64)

    def get_q(self, i: int, length: int) -> np.ndarray:
        data, start = self.cache.get_data(i, length)
        if start < length:
            data[start:length] = self.kernel_row(i, start, length)
        return data[:length]

    def get_qd(self) -> np.ndarray:
        return self.QD

    def swap_index(self, i: int, j: int):
        self.cache.swap_index(i, j)
        super().swap_index(i, j)
        _swap(self.QD, i, j)


class SVRQ(Kernel):
    """
    Q matrix for regression over 2l mirrored variables.

    Variable k < l stands for example k with sign +1 and variable k + l for
    the same example with sign -1. The cache stores full rows of the l
    original examples; swapping only permutes the sign/index/diagonal maps.
    """

    def __init__(self, problem: Problem, param: Parameter):
        super().__init__(problem.l, problem.x, param)
        l = problem.l
        self.l = l
        self.cache = Cache(l, _cache_bytes(param))

        self.sign = np.concatenate([np.ones(l, dtype=np.int8), -np.ones(l, dtype=np.int8)])
        self.index = np.concatenate([np.arange(l), np.arange(l)])
        diagonal = np.array([self.kernel_function(k, k) for k in range(l)], dtype=np.float64)
        self.QD = np.concatenate([diagonal, diagonal])

    def swap_index(self, i: int, j: int):
        _swap(self.sign, i, j)
        _swap(self.index, i, j)
        _swap(self.QD, i, j)

    def get_q(self, i: int, length: int) -> np.ndarray:
        real_i = int(self.index[i])
        data, start = self.cache.get_data(real_i, self.l)
        if start < self.l:
            data[start:self.l] = self.kernel_row(real_i, start, self.l)

        # reorder into the current variable order
        signs = self.sign[i] * self.sign[:length]
        return (signs * data[self.index[:length]]).astype(np.float32)

    def get_qd(self) -> np.ndarray:
        return self.QD
