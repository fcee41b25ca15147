"""
Per-SVM-type reductions to the SMO dual.

Each reduction builds the label signs, linear term, bounds and starting
point for one formulation, runs the matching solver and rescales the
result. `SOLVERS` maps every SVMType to its reduction.
"""

from typing import Callable, Dict, Tuple

import numpy as np

from ..core.kernel import OneClassQ, SVCQ, SVRQ
from ..core.solver import NuSolver, Solver
from ..core.structs import DecisionFunction, Parameter, Problem, SolutionInfo, SVMType


def _signs(problem: Problem) -> np.ndarray:
    return np.where(np.asarray(problem.y) > 0, 1, -1).astype(np.int8)


def solve_c_svc(problem: Problem, param: Parameter, Cp: float, Cn: float,
                verbose: bool = False) -> Tuple[np.ndarray, SolutionInfo]:
    """C-SVC: minimize 1/2 a^T Q a - e^T a with class-weighted box bounds."""
    l = problem.l
    y = _signs(problem)
    alpha = np.zeros(l)
    minus_ones = -np.ones(l)

    si = Solver(verbose).solve(l, SVCQ(problem, param, y), minus_ones, y, alpha,
                               Cp, Cn, param.eps, param.shrinking)

    if Cp == Cn and verbose:
        print(f"nu = {alpha.sum() / (Cp * l):f}")

    alpha *= y
    return alpha, si


def solve_nu_svc(problem: Problem, param: Parameter, Cp: float, Cn: float,
                 verbose: bool = False) -> Tuple[np.ndarray, SolutionInfo]:
    """nu-SVC: each class starts with nu*l/2 of alpha mass, bounds 1/1."""
    l = problem.l
    nu = param.nu
    y = _signs(problem)
    alpha = np.zeros(l)

    sum_pos = nu * l / 2
    sum_neg = nu * l / 2
    for i in range(l):
        if y[i] == +1:
            alpha[i] = min(1.0, sum_pos)
            sum_pos -= alpha[i]
        else:
            alpha[i] = min(1.0, sum_neg)
            sum_neg -= alpha[i]

    zeros = np.zeros(l)
    si = NuSolver(verbose).solve(l, SVCQ(problem, param, y), zeros, y, alpha,
                                 1.0, 1.0, param.eps, param.shrinking)
    r = si.r

    if verbose:
        print(f"C = {1 / r:f}")

    alpha *= y / r

    si.rho /= r
    si.obj /= (r * r)
    si.upper_bound_p = 1 / r
    si.upper_bound_n = 1 / r
    return alpha, si


def solve_one_class(problem: Problem, param: Parameter, Cp: float, Cn: float,
                    verbose: bool = False) -> Tuple[np.ndarray, SolutionInfo]:
    """One-class SVM: floor(nu*l) variables start at the upper bound 1."""
    l = problem.l
    alpha = np.zeros(l)

    n = int(param.nu * l)
    alpha[:n] = 1.0
    if n < l:
        alpha[n] = param.nu * l - n

    zeros = np.zeros(l)
    ones = np.ones(l, dtype=np.int8)
    si = Solver(verbose).solve(l, OneClassQ(problem, param), zeros, ones, alpha,
                               1.0, 1.0, param.eps, param.shrinking)
    return alpha, si


def solve_epsilon_svr(problem: Problem, param: Parameter, Cp: float, Cn: float,
                      verbose: bool = False) -> Tuple[np.ndarray, SolutionInfo]:
    """epsilon-SVR over 2l mirrored variables, alpha = alpha+ - alpha-."""
    l = problem.l
    targets = np.asarray(problem.y, dtype=np.float64)

    alpha2 = np.zeros(2 * l)
    linear_term = np.concatenate([param.p - targets, param.p + targets])
    y = np.concatenate([np.ones(l, dtype=np.int8), -np.ones(l, dtype=np.int8)])

    si = Solver(verbose).solve(2 * l, SVRQ(problem, param), linear_term, y, alpha2,
                               param.C, param.C, param.eps, param.shrinking)

    alpha = alpha2[:l] - alpha2[l:]
    if verbose:
        print(f"nu = {np.abs(alpha).sum() / (param.C * l):f}")
    return alpha, si


def solve_nu_svr(problem: Problem, param: Parameter, Cp: float, Cn: float,
                 verbose: bool = False) -> Tuple[np.ndarray, SolutionInfo]:
    """nu-SVR over 2l mirrored variables seeded with C*nu*l/2 per side."""
    l = problem.l
    C = param.C
    targets = np.asarray(problem.y, dtype=np.float64)

    alpha2 = np.zeros(2 * l)
    remaining = C * param.nu * l / 2
    for i in range(l):
        alpha2[i] = alpha2[i + l] = min(remaining, C)
        remaining -= alpha2[i]

    linear_term = np.concatenate([-targets, targets])
    y = np.concatenate([np.ones(l, dtype=np.int8), -np.ones(l, dtype=np.int8)])

    si = NuSolver(verbose).solve(2 * l, SVRQ(problem, param), linear_term, y, alpha2,
                                 C, C, param.eps, param.shrinking)

    if verbose:
        print(f"epsilon = {-si.r:f}")

    alpha = alpha2[:l] - alpha2[l:]
    return alpha, si


SOLVERS: Dict[SVMType, Callable[..., Tuple[np.ndarray, SolutionInfo]]] = {
    SVMType.C_SVC: solve_c_svc,
    SVMType.NU_SVC: solve_nu_svc,
    SVMType.ONE_CLASS: solve_one_class,
    SVMType.EPSILON_SVR: solve_epsilon_svr,
    SVMType.NU_SVR: solve_nu_svr,
}


def train_one(problem: Problem, param: Parameter, Cp: float, Cn: float,
              verbose: bool = False) -> DecisionFunction:
    """
    Train a single decision function.

    Args:
        problem: Sub-problem; labels are +1/-1 for classification
        param: Training parameters
        Cp: Upper bound for positive examples (C-SVC)
        Cn: Upper bound for negative examples (C-SVC)
        verbose: Print solver progress

    Returns:
        DecisionFunction with signed alpha and rho
    """
    alpha, si = SOLVERS[param.svm_type](problem, param, Cp, Cn, verbose=verbose)

    if verbose:
        print(f"obj = {si.obj:f}, rho = {si.rho:f}")

        # count support vectors
        labels = np.asarray(problem.y)
        bounds = np.where(labels > 0, si.upper_bound_p, si.upper_bound_n)
        support = np.abs(alpha) > 0
        n_sv = int(support.sum())
        n_bsv = int((support & (np.abs(alpha) >= bounds)).sum())
        print(f"nSV = {n_sv}, nBSV = {n_bsv}")

    return DecisionFunction(alpha=alpha, rho=si.rho)
