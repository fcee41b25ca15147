"""
Data structures for the svmkit SMO engine.
Sparse feature vectors, training problems, parameters and solver results.
"""

import dataclasses
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np


class SVMType(Enum):
    """SVM formulations. Values are the keywords used in model files."""

    C_SVC = 'c_svc'
    NU_SVC = 'nu_svc'
    ONE_CLASS = 'one_class'
    EPSILON_SVR = 'epsilon_svr'
    NU_SVR = 'nu_svr'

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str):
            value = value.lower()
            for member in cls:
                if member.value == value:
                    return member
        elif isinstance(value, int) and not isinstance(value, bool) and 0 <= value < len(cls):
            return list(cls)[value]
        return None

    @property
    def is_classification(self) -> bool:
        return self in (SVMType.C_SVC, SVMType.NU_SVC)

    @property
    def is_regression(self) -> bool:
        return self in (SVMType.EPSILON_SVR, SVMType.NU_SVR)


class KernelType(Enum):
    """Kernel families. Values are the keywords used in model files."""

    LINEAR = 'linear'
    POLYNOMIAL = 'polynomial'
    RBF = 'rbf'
    SIGMOID = 'sigmoid'
    PRECOMPUTED = 'precomputed'

    @classmethod
    def _missing_(cls, value):
        if isinstance(value, str):
            value = {'poly': 'polynomial'}.get(value.lower(), value.lower())
            for member in cls:
                if member.value == value:
                    return member
        elif isinstance(value, int) and not isinstance(value, bool) and 0 <= value < len(cls):
            return list(cls)[value]
        return None


def _coerce(enum_cls, value):
    # Unknown values are kept as-is so that check_parameter can report them.
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        return value


class FeatureVector:
    """
    Sparse feature vector.

    Stores (index, value) pairs as two numpy arrays with strictly increasing
    indices. Indices that are not stored are implicitly zero.
    """

    __slots__ = ('indices', 'values')

    def __init__(self, indices: Iterable[int] = (), values: Iterable[float] = ()):
        """
        Create a feature vector.

        Args:
            indices: Feature indices, strictly increasing
            values: Feature values, one per index
        """
        indices = np.asarray(list(indices) if not isinstance(indices, np.ndarray) else indices,
                             dtype=np.int64).ravel()
        values = np.asarray(list(values) if not isinstance(values, np.ndarray) else values,
                            dtype=np.float64).ravel()

        if indices.shape != values.shape:
            raise ValueError(f"Got {indices.size} indices but {values.size} values")

        if indices.size > 1 and np.any(np.diff(indices) <= 0):
            raise ValueError("Feature indices must be strictly increasing")

        self.indices = indices
        self.values = values

    @classmethod
    def from_dict(cls, mapping: Mapping[int, float]) -> 'FeatureVector':
        """Build a vector from an {index: value} mapping."""
        items = sorted(mapping.items())
        return cls([k for k, _ in items], [v for _, v in items])

    @classmethod
    def from_dense(cls, row: Sequence[float]) -> 'FeatureVector':
        """
        Build a vector from a dense row.

        Zero entries are dropped and indices start at 1, as in the libsvm
        text format.
        """
        row = np.asarray(row, dtype=np.float64).ravel()
        nonzero = np.flatnonzero(row)
        return cls(nonzero + 1, row[nonzero])

    @property
    def max_index(self) -> int:
        return int(self.indices[-1]) if self.indices.size else 0

    def to_dense(self, n_features: Optional[int] = None) -> np.ndarray:
        """Expand to a dense array where position k holds feature k+1."""
        if n_features is None:
            n_features = self.max_index
        dense = np.zeros(n_features, dtype=np.float64)
        mask = (self.indices >= 1) & (self.indices <= n_features)
        dense[self.indices[mask] - 1] = self.values[mask]
        return dense

    def __len__(self) -> int:
        return int(self.indices.size)

    def __iter__(self) -> Iterator[Tuple[int, float]]:
        return zip(self.indices.tolist(), self.values.tolist())

    def __getitem__(self, position: int) -> Tuple[int, float]:
        return int(self.indices[position]), float(self.values[position])

    def __eq__(self, other) -> bool:
        if not isinstance(other, FeatureVector):
            return NotImplemented
        return (np.array_equal(self.indices, other.indices)
                and np.array_equal(self.values, other.values))

    __hash__ = None

    def __repr__(self) -> str:
        pairs = ' '.join(f"{i}:{v:g}" for i, v in self)
        return f"FeatureVector({pairs})"


class Problem:
    """
    Training data: labels paired with sparse feature vectors.

    The problem is built once by the caller and is only read during training.
    """

    def __init__(self, pairs: Optional[Iterable[Tuple[float, FeatureVector]]] = None):
        self.y: List[float] = []
        self.x: List[FeatureVector] = []
        self.max_index = 0

        if pairs is not None:
            for label, vector in pairs:
                self.add(label, vector)

    def add(self, label: float, x: Union[FeatureVector, Mapping[int, float]]) -> 'Problem':
        """
        Append one example.

        Args:
            label: Class label or regression target
            x: Feature vector, or an {index: value} mapping

        Returns:
            self, so calls can be chained
        """
        if not isinstance(x, FeatureVector):
            x = FeatureVector.from_dict(x)
        self.y.append(float(label))
        self.x.append(x)
        self.max_index = max(self.max_index, x.max_index)
        return self

    @property
    def l(self) -> int:
        return len(self.y)

    def subset(self, indices: Iterable[int]) -> 'Problem':
        """Return a new problem made of the examples at the given positions."""
        return Problem((self.y[i], self.x[i]) for i in indices)

    def __len__(self) -> int:
        return len(self.y)

    def __iter__(self) -> Iterator[Tuple[float, FeatureVector]]:
        return zip(self.y, self.x)


@dataclass(frozen=True)
class Parameter:
    """
    Configuration for one training run.

    Attributes:
        svm_type: SVM formulation
        kernel_type: Kernel family
        degree: Degree of the polynomial kernel
        gamma: Kernel coefficient; 0 means 1/max_index at training time
        coef0: Independent term of the polynomial and sigmoid kernels
        C: Cost of constraint violation (C-SVC, epsilon-SVR, nu-SVR)
        nu: Fraction parameter (nu-SVC, one-class, nu-SVR)
        p: Width of the epsilon-insensitive tube (epsilon-SVR)
        cache_size: Kernel cache budget in MB
        eps: Stopping tolerance on the KKT gap
        shrinking: Whether to use the shrinking heuristic
        probability: Whether to calibrate probability estimates
        weights: Per-label multipliers for C
    """

    svm_type: SVMType = SVMType.C_SVC
    kernel_type: KernelType = KernelType.RBF
    degree: int = 3
    gamma: float = 0.0
    coef0: float = 0.0
    C: float = 1.0
    nu: float = 0.5
    p: float = 0.1
    cache_size: float = 100.0
    eps: float = 1e-3
    shrinking: bool = True
    probability: bool = False
    weights: Dict[int, float] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, 'svm_type', _coerce(SVMType, self.svm_type))
        object.__setattr__(self, 'kernel_type', _coerce(KernelType, self.kernel_type))
        object.__setattr__(self, 'weights', dict(self.weights or {}))

    def replace(self, **changes) -> 'Parameter':
        """Return a copy with the given fields changed."""
        return dataclasses.replace(self, **changes)


@dataclass
class SolutionInfo:
    """Outcome of one solver run."""

    obj: float = 0.0
    rho: float = 0.0
    upper_bound_p: float = 0.0
    upper_bound_n: float = 0.0
    r: float = 0.0  # nu-solver only
    iterations: int = 0
    converged: bool = True


@dataclass
class DecisionFunction:
    """One trained binary sub-model."""

    alpha: np.ndarray
    rho: float


def check_parameter(problem: Problem, param: Parameter) -> Optional[str]:
    """
    Validate a parameter set against a problem before training.

    Args:
        problem: Training data
        param: Parameters to check

    Returns:
        None if the parameters are usable, otherwise the reason they are not
    """
    svm_type = param.svm_type
    if not isinstance(svm_type, SVMType):
        return "unknown svm type"

    if not isinstance(param.kernel_type, KernelType):
        return "unknown kernel type"

    if param.gamma < 0:
        return "gamma < 0"

    if param.degree < 0:
        return "degree of polynomial kernel < 0"

    if param.cache_size <= 0:
        return "cache_size <= 0"

    if param.eps <= 0:
        return "eps <= 0"

    if svm_type in (SVMType.C_SVC, SVMType.EPSILON_SVR, SVMType.NU_SVR) and param.C <= 0:
        return "C <= 0"

    if svm_type in (SVMType.NU_SVC, SVMType.ONE_CLASS, SVMType.NU_SVR):
        if param.nu <= 0 or param.nu > 1:
            return "nu <= 0 or nu > 1"

    if svm_type == SVMType.EPSILON_SVR and param.p < 0:
        return "p < 0"

    if param.shrinking not in (0, 1):
        return "shrinking != 0 and shrinking != 1"

    if param.probability not in (0, 1):
        return "probability != 0 and probability != 1"

    if param.probability and svm_type == SVMType.ONE_CLASS:
        return "one-class SVM probability output not supported yet"

    if svm_type == SVMType.NU_SVC:
        counts = list(Counter(int(label) for label in problem.y).values())
        for i in range(len(counts)):
            for j in range(i + 1, len(counts)):
                n1, n2 = counts[i], counts[j]
                if param.nu * (n1 + n2) / 2 > min(n1, n2):
                    return "specified nu is infeasible"

    return None
