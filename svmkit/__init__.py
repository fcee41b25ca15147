"""
svmkit - Support Vector Machines trained with Sequential Minimal Optimization.

This package provides:
- Sparse feature vectors, training problems and parameters
- Linear, polynomial, RBF, sigmoid and precomputed kernels with an LRU row cache
- SMO solvers for C-SVC, nu-SVC, one-class SVM, epsilon-SVR and nu-SVR
- Platt-calibrated class probabilities and Laplace noise models for regression
- Cross-validation and persistence in the libsvm model format
- Estimators in the fit/predict style for numpy and scipy.sparse data
"""

__version__ = "0.1.0"
__author__ = "svmkit Team"

# Core data structures
from svmkit.core.structs import (FeatureVector, Problem, Parameter, SVMType, KernelType,
                                 check_parameter)

# Training and prediction
from svmkit.ml.training import train, cross_validation, cross_validation_score
from svmkit.ml.model import Model
from svmkit.ml.svm import SVM, SVC, NuSVC, OneClassSVM, SVR, NuSVR

# Utilities
from svmkit.utils.model_io import save_model, load_model
from svmkit.utils.data import to_problem, to_feature_vectors
from svmkit.exceptions import ConvergenceWarning, ModelFormatError

__all__ = [
    # Core
    'FeatureVector', 'Problem', 'Parameter', 'SVMType', 'KernelType', 'check_parameter',

    # Training
    'train', 'cross_validation', 'cross_validation_score', 'Model',

    # Estimators
    'SVM', 'SVC', 'NuSVC', 'OneClassSVM', 'SVR', 'NuSVR',

    # Utils
    'save_model', 'load_model', 'to_problem', 'to_feature_vectors',
    'ConvergenceWarning', 'ModelFormatError'
]
