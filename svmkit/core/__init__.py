"""Core SMO engine components: data structures, kernels, cache and solvers."""

from .structs import (FeatureVector, Problem, Parameter, SVMType, KernelType,
                      SolutionInfo, DecisionFunction, check_parameter)
from .kernel import Kernel, SVCQ, OneClassQ, SVRQ, k_function
from .cache import Cache
from .solver import Solver, NuSolver

__all__ = [
    'FeatureVector', 'Problem', 'Parameter', 'SVMType', 'KernelType',
    'SolutionInfo', 'DecisionFunction', 'check_parameter',
    'Kernel', 'SVCQ', 'OneClassQ', 'SVRQ', 'k_function',
    'Cache', 'Solver', 'NuSolver'
]
