"""Utilities for model persistence and data conversion."""

from .model_io import save_model, load_model, read_model, write_model
from .data import to_problem, to_feature_vectors

__all__ = ['save_model', 'load_model', 'read_model', 'write_model',
           'to_problem', 'to_feature_vectors']
