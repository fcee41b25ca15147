"""SVM formulations, training, trained models and estimators."""

from .reductions import train_one
from .training import train, cross_validation, cross_validation_score, group_classes
from .model import Model
from .svm import SVM, SVC, NuSVC, OneClassSVM, SVR, NuSVR

__all__ = [
    'train_one', 'train', 'cross_validation', 'cross_validation_score', 'group_classes',
    'Model', 'SVM', 'SVC', 'NuSVC', 'OneClassSVM', 'SVR', 'NuSVR'
]
