"""
Warning and exception types used across svmkit.
"""


class ConvergenceWarning(UserWarning):
    """
    Issued when an iterative routine stops at its iteration cap or cannot
    improve further. The result it returns is still usable.
    """


class ModelFormatError(ValueError):
    """Raised when a model file cannot be parsed."""
