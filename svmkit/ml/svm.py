"""
Support Vector Machine estimators for the svmkit framework.
Supports classification, regression and novelty detection with various kernels.
"""

import inspect
import warnings
from typing import Dict, Optional, Union

import numpy as np
import scipy.sparse as sp

from ..core.structs import KernelType, Parameter, Problem, SVMType
from ..utils.data import to_feature_vectors
from ..utils.model_io import save_model
from .training import train


class SVM:
    """
    Support Vector Machine estimator.

    Wraps the SMO training engine in a fit/predict interface. X may be a
    dense array of shape (n_samples, n_features), a scipy.sparse matrix, or
    a list of FeatureVector; with kernel='precomputed' it is the kernel
    matrix between the samples and the training samples.
    """

    def __init__(self, svm_type: str = 'c_svc', kernel: str = 'rbf', degree: int = 3,
                 gamma: Union[str, float] = 'scale', coef0: float = 0.0, C: float = 1.0,
                 nu: float = 0.5, epsilon: float = 0.1, tol: float = 1e-3,
                 cache_size: float = 100.0, shrinking: bool = True, probability: bool = False,
                 class_weight: Optional[Union[str, Dict]] = None, verbose: bool = False,
                 random_state: Optional[int] = None):
        """
        Initialize SVM.

        Args:
            svm_type: Formulation ('c_svc', 'nu_svc', 'one_class', 'epsilon_svr', 'nu_svr')
            kernel: Kernel type ('linear', 'poly', 'rbf', 'sigmoid', 'precomputed')
            degree: Degree of polynomial kernel
            gamma: Kernel coefficient for 'rbf', 'poly', 'sigmoid'; 'scale'
                uses 1 / (n_features * X.var()), 'auto' uses 1 / n_features
            coef0: Independent term in kernel function
            C: Regularization parameter
            nu: Bound on the fraction of margin errors and support vectors
            epsilon: Width of the epsilon-insensitive tube
            tol: Tolerance for stopping criterion
            cache_size: Kernel cache size in MB
            shrinking: Whether to use the shrinking heuristic
            probability: Whether to fit probability estimates
            class_weight: Multipliers of C per class, or 'balanced'
            verbose: Print solver progress
            random_state: Random seed for the probability-calibration folds
        """
        self.svm_type = svm_type
        self.kernel = kernel
        self.degree = degree
        self.gamma = gamma
        self.coef0 = coef0
        self.C = C
        self.nu = nu
        self.epsilon = epsilon
        self.tol = tol
        self.cache_size = cache_size
        self.shrinking = shrinking
        self.probability = probability
        self.class_weight = class_weight
        self.verbose = verbose
        self.random_state = random_state

        # Model parameters (set during training)
        self.model_ = None
        self.classes_ = None
        self.support_ = None
        self.support_vectors_ = None
        self.n_support_ = None
        self.dual_coef_ = None
        self.intercept_ = None
        self._label_values = None

        # Validate parameters
        try:
            SVMType(svm_type)
        except ValueError:
            raise ValueError(f"Unknown svm_type: {svm_type}") from None

        try:
            KernelType(kernel)
        except ValueError:
            raise ValueError(f"Unknown kernel: {kernel}") from None

        if isinstance(gamma, str):
            if gamma not in ('scale', 'auto'):
                raise ValueError(f"gamma must be 'scale', 'auto' or a float, got {gamma!r}")
        elif gamma < 0:
            raise ValueError("gamma must be non-negative")

        if C <= 0:
            raise ValueError("C must be positive")

        if not 0 < nu <= 1:
            raise ValueError("nu must be in (0, 1]")

        if epsilon < 0:
            raise ValueError("epsilon must be non-negative")

        if tol <= 0:
            raise ValueError("tol must be positive")

        if cache_size <= 0:
            raise ValueError("cache_size must be positive")

        if degree < 0:
            raise ValueError("degree must be non-negative")

    @property
    def _svm_type(self) -> SVMType:
        return SVMType(self.svm_type)

    @property
    def _precomputed(self) -> bool:
        return KernelType(self.kernel) == KernelType.PRECOMPUTED

    def _check_fitted(self):
        if self.model_ is None:
            raise ValueError("Model must be fitted before making predictions")

    def _resolve_gamma(self, X, vectors) -> float:
        if not isinstance(self.gamma, str):
            return float(self.gamma)

        n_features = self._n_features(X, vectors)
        if n_features == 0:
            return 0.0

        if self.gamma == 'auto':
            return 1.0 / n_features

        # 'scale'
        if sp.issparse(X):
            X = sp.csr_matrix(X, dtype=np.float64)
            variance = X.multiply(X).mean() - X.mean() ** 2
        elif isinstance(X, np.ndarray):
            variance = X.astype(np.float64).var()
        else:
            variance = np.vstack([v.to_dense(n_features) for v in vectors]).var()
        return 1.0 / (n_features * variance) if variance > 0 else 1.0

    @staticmethod
    def _n_features(X, vectors) -> int:
        shape = getattr(X, 'shape', None)
        if shape is not None and len(shape) == 2:
            return int(shape[1])
        return max((v.max_index for v in vectors), default=0)

    def _class_weights(self, y: np.ndarray) -> Dict[int, float]:
        if self.class_weight is None:
            return {}

        if isinstance(self.class_weight, str):
            if self.class_weight != 'balanced':
                raise ValueError(f"Unknown class_weight: {self.class_weight}")
            counts = np.array([np.sum(y == c) for c in self.classes_])
            weights = len(y) / (len(self.classes_) * counts)
            return {int(label): float(w) for label, w in zip(self._label_values, weights)}

        weights = {}
        for cls, weight in self.class_weight.items():
            position = np.flatnonzero(self.classes_ == cls)
            if position.size == 0:
                warnings.warn(f"Class label {cls} specified in weight is not found", UserWarning)
                continue
            weights[int(self._label_values[position[0]])] = float(weight)
        return weights

    def fit(self, X, y=None):
        """
        Fit the SVM model.

        Args:
            X: Training data of shape (n_samples, n_features)
            y: Target values of shape (n_samples,); optional for one-class

        Returns:
            self: Returns the instance itself
        """
        svm_type = self._svm_type
        vectors = to_feature_vectors(X, precomputed=self._precomputed)

        if y is None:
            if svm_type != SVMType.ONE_CLASS:
                raise ValueError("y is required for classification and regression")
            y = np.ones(len(vectors))
        y = np.asarray(y).ravel()

        if len(vectors) != y.shape[0]:
            raise ValueError("X and y must have the same number of samples")

        if svm_type.is_classification:
            # Integral labels are passed through; anything else is trained
            # on its position in classes_
            self.classes_, codes = np.unique(y, return_inverse=True)
            if (np.issubdtype(self.classes_.dtype, np.number)
                    and np.all(np.mod(self.classes_, 1) == 0)):
                self._label_values = self.classes_.astype(np.int64)
            else:
                self._label_values = np.arange(len(self.classes_))
            labels = self._label_values[codes]
        else:
            self.classes_ = None
            self._label_values = None
            labels = y.astype(np.float64)

        self.n_features_in_ = self._n_features(X, vectors)

        param = Parameter(svm_type=svm_type, kernel_type=KernelType(self.kernel),
                          degree=self.degree, gamma=self._resolve_gamma(X, vectors),
                          coef0=self.coef0, C=self.C, nu=self.nu, p=self.epsilon,
                          cache_size=self.cache_size, eps=self.tol,
                          shrinking=bool(self.shrinking), probability=bool(self.probability),
                          weights=self._class_weights(y) if svm_type.is_classification else {})

        problem = Problem(zip(labels.tolist(), vectors))
        self.model_ = train(problem, param, verbose=self.verbose, random_state=self.random_state)

        # Extract support vectors
        model = self.model_
        self.support_ = np.array(model.get_sv_indices(), dtype=np.int64) - 1
        if sp.issparse(X):
            self.support_vectors_ = sp.csr_matrix(X)[self.support_]
        else:
            self.support_vectors_ = np.array([sv.to_dense(self.n_features_in_) for sv in model.SV])
        self.dual_coef_ = np.array(model.sv_coef)
        self.intercept_ = -np.array(model.rho)

        if svm_type.is_classification:
            self.n_support_ = np.zeros(len(self.classes_), dtype=np.int64)
            self.n_support_[self._class_positions(model.label)] = model.nSV
        else:
            self.n_support_ = np.array([model.l], dtype=np.int64)

        return self

    def _class_positions(self, labels) -> np.ndarray:
        return np.searchsorted(self._label_values, np.asarray(labels, dtype=np.int64))

    def _vectors(self, X):
        return to_feature_vectors(X, precomputed=self._precomputed)

    def predict(self, X) -> np.ndarray:
        """
        Predict class labels or target values for samples in X.

        Args:
            X: Test data of shape (n_samples, n_features)

        Returns:
            Predictions of shape (n_samples,); +1/-1 for one-class
        """
        self._check_fitted()

        predictions = np.array([self.model_.predict(x) for x in self._vectors(X)])

        if self._svm_type.is_classification:
            return self.classes_[self._class_positions(predictions)]
        return predictions

    def decision_function(self, X) -> np.ndarray:
        """
        Evaluate the decision function for the samples in X.

        For two classes the value is positive for classes_[1]. For more
        classes the result has one column per class pair (i, j), i < j, in
        the order the model stores its labels, positive for class i.

        Args:
            X: Test data of shape (n_samples, n_features)

        Returns:
            Decision function values of shape (n_samples,) or
            (n_samples, n_classes * (n_classes - 1) / 2)
        """
        self._check_fitted()

        decision = np.array([self.model_.predict_values(x)[1] for x in self._vectors(X)])

        if not self._svm_type.is_classification:
            return decision[:, 0]

        if len(self.classes_) == 2:
            sign = 1.0 if self._class_positions(self.model_.label[:1])[0] == 1 else -1.0
            return sign * decision[:, 0]

        return decision

    def predict_proba(self, X) -> np.ndarray:
        """
        Predict class probabilities for samples in X.

        Args:
            X: Test data of shape (n_samples, n_features)

        Returns:
            Probabilities of shape (n_samples, n_classes), columns ordered
            as classes_
        """
        self._check_fitted()

        if not (self._svm_type.is_classification and self.model_.check_probability_model()):
            raise ValueError("predict_proba is only available for classifiers fitted "
                             "with probability=True")

        columns = self._class_positions(self.model_.label)
        vectors = self._vectors(X)
        probabilities = np.zeros((len(vectors), len(self.classes_)))
        for row, x in enumerate(vectors):
            _, estimates = self.model_.predict_probability(x)
            probabilities[row, columns] = estimates

        return probabilities

    def score(self, X, y) -> float:
        """
        Return the accuracy (classification, one-class) or the coefficient
        of determination R^2 (regression) on the given data.

        Args:
            X: Test data of shape (n_samples, n_features)
            y: True labels or targets of shape (n_samples,)

        Returns:
            Score
        """
        predictions = self.predict(X)
        y = np.asarray(y).ravel()

        if self._svm_type.is_regression:
            y = y.astype(np.float64)
            ss_res = np.sum((y - predictions) ** 2)
            ss_tot = np.sum((y - y.mean()) ** 2)
            return float(1 - ss_res / ss_tot) if ss_tot > 0 else 0.0

        return float(np.mean(predictions == y))

    def save(self, path):
        """
        Save the trained model in the libsvm text format.

        Args:
            path: Destination file
        """
        self._check_fitted()
        save_model(path, self.model_)

    @classmethod
    def _get_param_names(cls):
        signature = inspect.signature(cls.__init__)
        return [name for name in signature.parameters if name != 'self']

    def get_params(self, deep: bool = True) -> dict:
        """
        Get parameters for this estimator.

        Args:
            deep: Unused, kept for interface compatibility

        Returns:
            Parameter names mapped to their values
        """
        return {name: getattr(self, name) for name in self._get_param_names()}

    def set_params(self, **params):
        """
        Set the parameters of this estimator.

        Args:
            **params: Estimator parameters

        Returns:
            self: Estimator instance
        """
        valid = self._get_param_names()
        for key, value in params.items():
            if key in valid:
                setattr(self, key, value)
            else:
                raise ValueError(f"Invalid parameter {key}")

        return self

    def __repr__(self) -> str:
        params = ', '.join(f"{k}={v!r}" for k, v in self.get_params().items())
        return f"{type(self).__name__}({params})"


class SVC(SVM):
    """C-Support Vector Classification."""

    def __init__(self, C: float = 1.0, kernel: str = 'rbf', degree: int = 3,
                 gamma: Union[str, float] = 'scale', coef0: float = 0.0, tol: float = 1e-3,
                 cache_size: float = 100.0, shrinking: bool = True, probability: bool = False,
                 class_weight: Optional[Union[str, Dict]] = None, verbose: bool = False,
                 random_state: Optional[int] = None):
        super().__init__(svm_type='c_svc', kernel=kernel, degree=degree, gamma=gamma,
                         coef0=coef0, C=C, tol=tol, cache_size=cache_size, shrinking=shrinking,
                         probability=probability, class_weight=class_weight, verbose=verbose,
                         random_state=random_state)


class NuSVC(SVM):
    """
    Nu-Support Vector Classification.

    nu upper-bounds the fraction of margin errors and lower-bounds the
    fraction of support vectors.
    """

    def __init__(self, nu: float = 0.5, kernel: str = 'rbf', degree: int = 3,
                 gamma: Union[str, float] = 'scale', coef0: float = 0.0, tol: float = 1e-3,
                 cache_size: float = 100.0, shrinking: bool = True, probability: bool = False,
                 class_weight: Optional[Union[str, Dict]] = None, verbose: bool = False,
                 random_state: Optional[int] = None):
        super().__init__(svm_type='nu_svc', kernel=kernel, degree=degree, gamma=gamma,
                         coef0=coef0, nu=nu, tol=tol, cache_size=cache_size, shrinking=shrinking,
                         probability=probability, class_weight=class_weight, verbose=verbose,
                         random_state=random_state)


class OneClassSVM(SVM):
    """Unsupervised novelty detection; predicts +1 for inliers and -1 for outliers."""

    def __init__(self, nu: float = 0.5, kernel: str = 'rbf', degree: int = 3,
                 gamma: Union[str, float] = 'scale', coef0: float = 0.0, tol: float = 1e-3,
                 cache_size: float = 100.0, shrinking: bool = True, verbose: bool = False,
                 random_state: Optional[int] = None):
        super().__init__(svm_type='one_class', kernel=kernel, degree=degree, gamma=gamma,
                         coef0=coef0, nu=nu, tol=tol, cache_size=cache_size, shrinking=shrinking,
                         verbose=verbose, random_state=random_state)


class SVR(SVM):
    """
    Epsilon-Support Vector Regression.

    Errors smaller than epsilon are not penalized.
    """

    def __init__(self, C: float = 1.0, epsilon: float = 0.1, kernel: str = 'rbf',
                 degree: int = 3, gamma: Union[str, float] = 'scale', coef0: float = 0.0,
                 tol: float = 1e-3, cache_size: float = 100.0, shrinking: bool = True,
                 probability: bool = False, verbose: bool = False,
                 random_state: Optional[int] = None):
        super().__init__(svm_type='epsilon_svr', kernel=kernel, degree=degree, gamma=gamma,
                         coef0=coef0, C=C, epsilon=epsilon, tol=tol, cache_size=cache_size,
                         shrinking=shrinking, probability=probability, verbose=verbose,
                         random_state=random_state)

    def get_noise_scale(self) -> float:
        """Scale sigma of the Laplace noise model fitted with probability=True."""
        self._check_fitted()
        return self.model_.get_svr_probability()


class NuSVR(SVM):
    """Nu-Support Vector Regression; nu replaces epsilon as the tube parameter."""

    def __init__(self, nu: float = 0.5, C: float = 1.0, kernel: str = 'rbf', degree: int = 3,
                 gamma: Union[str, float] = 'scale', coef0: float = 0.0, tol: float = 1e-3,
                 cache_size: float = 100.0, shrinking: bool = True, probability: bool = False,
                 verbose: bool = False, random_state: Optional[int] = None):
        super().__init__(svm_type='nu_svr', kernel=kernel, degree=degree, gamma=gamma,
                         coef0=coef0, C=C, nu=nu, tol=tol, cache_size=cache_size,
                         shrinking=shrinking, probability=probability, verbose=verbose,
                         random_state=random_state)

    def get_noise_scale(self) -> float:
        """Scale sigma of the Laplace noise model fitted with probability=True."""
        self._check_fitted()
        return self.model_.get_svr_probability()
