"""
Trained SVM model for the svmkit framework.
Pairwise voting, decision values and probability estimates.
"""

import math
import warnings
from typing import List, Optional, Sequence, Tuple

import numpy as np

from ..core.kernel import k_function
from ..core.structs import FeatureVector, Parameter, SVMType
from ..exceptions import ConvergenceWarning

MIN_PROB = 1e-7


def sigmoid_predict(decision_value: float, A: float, B: float) -> float:
    """Platt sigmoid 1 / (1 + exp(A*f + B)), evaluated without overflow."""
    fApB = decision_value * A + B
    if fApB >= 0:
        return math.exp(-fApB) / (1.0 + math.exp(-fApB))
    return 1.0 / (1 + math.exp(fApB))


def multiclass_probability(r: np.ndarray) -> np.ndarray:
    """
    Couple pairwise probabilities into one class distribution.

    Method 2 of Wu, Lin and Weng (2004): a fixed-point iteration on
    min_p 1/2 p^T Q p subject to sum(p) = 1.

    Args:
        r: (k, k) matrix with r[i, j] = P(class i | class i or j)

    Returns:
        Probability vector of length k
    """
    k = r.shape[0]
    max_iter = max(100, k)
    eps = 0.005 / k

    # Q[t, j] = -r[j, t] * r[t, j], Q[t, t] = sum over j != t of r[j, t]^2
    Q = -r.T * r
    np.fill_diagonal(Q, (r * r).sum(axis=0) - np.diag(r) ** 2)

    p = np.full(k, 1.0 / k)
    Qp = np.zeros(k)

    iteration = 0
    while iteration < max_iter:
        # Qp and pQp are recomputed each sweep to limit drift
        Qp = Q @ p
        pQp = float(p @ Qp)
        max_error = float(np.max(np.abs(Qp - pQp)))
        if max_error < eps:
            break

        for t in range(k):
            diff = (-Qp[t] + pQp) / Q[t, t]
            p[t] += diff
            pQp = (pQp + diff * (diff * Q[t, t] + 2 * Qp[t])) / (1 + diff) / (1 + diff)
            Qp = (Qp + diff * Q[t]) / (1 + diff)
            p /= (1 + diff)
        iteration += 1

    if iteration >= max_iter:
        warnings.warn("Exceeds max_iter in multiclass_prob", ConvergenceWarning)

    return p


class Model:
    """
    Trained SVM model.

    Built once by `svmkit.ml.training.train` (or read from a model file) and
    read-only afterwards.

    Attributes:
        param: Parameters the model was trained with
        nr_class: Number of classes (2 for regression and one-class)
        SV: Support vectors, grouped by class for classification
        sv_coef: (nr_class - 1, l) dual coefficients
        rho: One bias per class pair
        label: Class labels (classification only)
        nSV: Support vectors per class (classification only)
        probA, probB: Platt parameters per pair; probA holds the Laplace
            scale for regression
        sv_indices: 1-based positions of the support vectors in the
            training problem
    """

    def __init__(self, param: Parameter, nr_class: int, SV: Sequence[FeatureVector],
                 sv_coef: np.ndarray, rho: Sequence[float],
                 label: Optional[Sequence[int]] = None, nSV: Optional[Sequence[int]] = None,
                 probA: Optional[Sequence[float]] = None, probB: Optional[Sequence[float]] = None,
                 sv_indices: Optional[Sequence[int]] = None):
        self.param = param
        self.nr_class = nr_class
        self.SV: List[FeatureVector] = list(SV)
        self.sv_coef = self._frozen(np.asarray(sv_coef, dtype=np.float64).reshape(max(nr_class - 1, 1), -1))
        self.rho = self._frozen(rho)
        self.label = None if label is None else [int(v) for v in label]
        self.nSV = None if nSV is None else [int(v) for v in nSV]
        self.probA = None if probA is None else self._frozen(probA)
        self.probB = None if probB is None else self._frozen(probB)
        self.sv_indices = None if sv_indices is None else [int(v) for v in sv_indices]

    @staticmethod
    def _frozen(values) -> np.ndarray:
        array = np.array(values, dtype=np.float64)
        array.setflags(write=False)
        return array

    @property
    def l(self) -> int:
        return len(self.SV)

    def get_svm_type(self) -> SVMType:
        return self.param.svm_type

    def get_nr_class(self) -> int:
        return self.nr_class

    def get_labels(self) -> Optional[List[int]]:
        return None if self.label is None else list(self.label)

    def get_sv_indices(self) -> Optional[List[int]]:
        return None if self.sv_indices is None else list(self.sv_indices)

    def get_nr_sv(self) -> int:
        return self.l

    def get_svr_probability(self) -> float:
        """Scale of the Laplace noise model of a regression model."""
        if self.param.svm_type.is_regression and self.probA is not None:
            return float(self.probA[0])
        raise ValueError("Model doesn't contain information for SVR probability inference")

    def check_probability_model(self) -> bool:
        """Whether the model carries probability information."""
        svm_type = self.param.svm_type
        return ((svm_type.is_classification and self.probA is not None and self.probB is not None)
                or (svm_type.is_regression and self.probA is not None))

    def _kernel_values(self, x: FeatureVector) -> np.ndarray:
        return np.array([k_function(x, sv, self.param) for sv in self.SV], dtype=np.float64)

    def predict_values(self, x: FeatureVector) -> Tuple[float, np.ndarray]:
        """
        Evaluate the decision functions for one vector.

        Args:
            x: Feature vector

        Returns:
            (prediction, decision values); one decision value for regression
            and one-class, k*(k-1)/2 values in pair order for classification
        """
        svm_type = self.param.svm_type
        kvalue = self._kernel_values(x)

        if not svm_type.is_classification:
            value = float(self.sv_coef[0] @ kvalue) - float(self.rho[0])
            dec_values = np.array([value])
            if svm_type == SVMType.ONE_CLASS:
                return (1.0 if value > 0 else -1.0), dec_values
            return value, dec_values

        nr_class = self.nr_class
        start = np.concatenate([[0], np.cumsum(self.nSV)[:-1]]).astype(int)
        vote = np.zeros(nr_class, dtype=int)
        dec_values = np.empty(nr_class * (nr_class - 1) // 2)

        p = 0
        for i in range(nr_class):
            for j in range(i + 1, nr_class):
                si, sj = start[i], start[j]
                ci, cj = self.nSV[i], self.nSV[j]
                coef1 = self.sv_coef[j - 1]
                coef2 = self.sv_coef[i]
                total = (coef1[si:si + ci] @ kvalue[si:si + ci]
                         + coef2[sj:sj + cj] @ kvalue[sj:sj + cj])
                dec_values[p] = total - self.rho[p]

                if dec_values[p] > 0:
                    vote[i] += 1
                else:
                    vote[j] += 1
                p += 1

        # first class with the most votes wins
        return float(self.label[int(np.argmax(vote))]), dec_values

    def predict(self, x: FeatureVector) -> float:
        """Predict the label (classification, one-class) or target (regression) of x."""
        return self.predict_values(x)[0]

    def predict_probability(self, x: FeatureVector) -> Tuple[float, Optional[np.ndarray]]:
        """
        Predict with class probability estimates.

        Args:
            x: Feature vector

        Returns:
            (label, estimates) where estimates follow the order of `label`;
            estimates is None when the model has no probability information
            (the prediction then equals `predict`)
        """
        if not (self.param.svm_type.is_classification
                and self.probA is not None and self.probB is not None):
            return self.predict(x), None

        nr_class = self.nr_class
        _, dec_values = self.predict_values(x)

        pairwise = np.zeros((nr_class, nr_class))
        k = 0
        for i in range(nr_class):
            for j in range(i + 1, nr_class):
                prob = sigmoid_predict(dec_values[k], self.probA[k], self.probB[k])
                pairwise[i, j] = min(max(prob, MIN_PROB), 1 - MIN_PROB)
                pairwise[j, i] = 1 - pairwise[i, j]
                k += 1

        estimates = multiclass_probability(pairwise)
        return float(self.label[int(np.argmax(estimates))]), estimates

    def __repr__(self) -> str:
        return (f"Model(svm_type={self.param.svm_type.value}, "
                f"kernel_type={self.param.kernel_type.value}, "
                f"nr_class={self.nr_class}, total_sv={self.l})")
