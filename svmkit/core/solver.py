"""
Sequential Minimal Optimization solvers for the svmkit engine.

Solves the dual problem

    min_alpha  1/2 alpha^T Q alpha + p^T alpha
    s.t.       y^T alpha = delta
               0 <= alpha_i <= Cp  if y_i = +1
               0 <= alpha_i <= Cn  if y_i = -1

with y_i in {+1, -1}, using second order working set selection (Fan, Chen
and Lin, 2005) and the shrinking heuristic. NuSolver handles the additional
constraint e^T alpha = constant of the nu formulations.
"""

import warnings
from typing import Callable, Optional, Tuple

import numpy as np

from ..exceptions import ConvergenceWarning
from .structs import SolutionInfo

INF = float('inf')
TAU = 1e-12

LOWER_BOUND = 0
UPPER_BOUND = 1
FREE = 2


def _last_argmax(values: np.ndarray) -> int:
    # ties resolve to the highest index
    return len(values) - 1 - int(np.argmax(values[::-1]))


def _last_argmin(values: np.ndarray) -> int:
    return len(values) - 1 - int(np.argmin(values[::-1]))


def _masked_max(values: np.ndarray, mask: np.ndarray) -> float:
    return float(values[mask].max()) if mask.any() else -INF


def _masked_argmax(values: np.ndarray, mask: np.ndarray) -> Tuple[float, int]:
    if not mask.any():
        return -INF, -1
    idx = _last_argmax(np.where(mask, values, -INF))
    return float(values[idx]), idx


class Solver:
    """
    SMO solver for the standard single-equality dual.

    All per-run state (gradient, alpha, bound status, active set) lives on
    the instance for the duration of one `solve` call.
    """

    def __init__(self, verbose: bool = False):
        """
        Initialize the solver.

        Args:
            verbose: Print optimization progress
        """
        self.verbose = verbose

    def _info(self, message: str, end: str = '\n'):
        if self.verbose:
            print(message, end=end, flush=True)

    def get_c(self, i: int) -> float:
        return self.Cp if self.y[i] > 0 else self.Cn

    def update_alpha_status(self, i: int):
        if self.alpha[i] >= self.get_c(i):
            self.alpha_status[i] = UPPER_BOUND
        elif self.alpha[i] <= 0:
            self.alpha_status[i] = LOWER_BOUND
        else:
            self.alpha_status[i] = FREE

    def is_upper_bound(self, i: int) -> bool:
        return self.alpha_status[i] == UPPER_BOUND

    def is_lower_bound(self, i: int) -> bool:
        return self.alpha_status[i] == LOWER_BOUND

    def is_free(self, i: int) -> bool:
        return self.alpha_status[i] == FREE

    def _get_q(self, i: int, length: int) -> np.ndarray:
        return np.asarray(self.Q.get_q(i, length), dtype=np.float64)

    def swap_index(self, i: int, j: int):
        self.Q.swap_index(i, j)
        for array in (self.y, self.G, self.alpha_status, self.alpha,
                      self.p, self.active_set, self.G_bar):
            array[[i, j]] = array[[j, i]]

    def reconstruct_gradient(self):
        """Recompute G for the inactive variables from G_bar and the free variables."""
        l, a = self.l, self.active_size
        if a == l:
            return

        self.G[a:l] = self.G_bar[a:l] + self.p[a:l]

        free = np.flatnonzero(self.alpha_status[:a] == FREE)
        nr_free = free.size

        if 2 * nr_free < a:
            self._info("\nWARNING: using -h 0 may be faster")

        if nr_free * l > 2 * a * (l - a):
            alpha_free = self.alpha[free]
            for i in range(a, l):
                Q_i = self._get_q(i, a)
                self.G[i] += np.dot(alpha_free, Q_i[free])
        else:
            for i in free:
                Q_i = self._get_q(i, l)
                self.G[a:l] += self.alpha[i] * Q_i[a:l]

    def solve(self, l: int, Q, p: np.ndarray, y: np.ndarray, alpha: np.ndarray,
              Cp: float, Cn: float, eps: float, shrinking: bool) -> SolutionInfo:
        """
        Run SMO to convergence.

        Args:
            l: Number of variables
            Q: Q-matrix adapter providing get_q, get_qd and swap_index
            p: Linear term
            y: Variable signs, +1 or -1
            alpha: Feasible starting point; overwritten with the solution
            Cp: Upper bound for variables with y = +1
            Cn: Upper bound for variables with y = -1
            eps: Stopping tolerance on the maximal KKT violation
            shrinking: Whether to use the shrinking heuristic

        Returns:
            SolutionInfo with objective value, rho and bounds
        """
        self.l = l
        self.Q = Q
        self.QD = Q.get_qd()
        self.p = np.array(p, dtype=np.float64)
        self.y = np.array(y, dtype=np.int8)
        self.alpha = np.array(alpha, dtype=np.float64)
        self.Cp = Cp
        self.Cn = Cn
        self.eps = eps
        self.unshrink = False

        # bound status of every variable
        upper = np.where(self.y > 0, Cp, Cn)
        self.alpha_status = np.where(self.alpha >= upper, UPPER_BOUND,
                                     np.where(self.alpha <= 0, LOWER_BOUND, FREE)).astype(np.int8)

        # every variable starts active
        self.active_set = np.arange(l)
        self.active_size = l

        # G = Q alpha + p, G_bar accumulates C_i Q_i over upper-bound variables
        self.G = self.p.copy()
        self.G_bar = np.zeros(l, dtype=np.float64)
        for i in range(l):
            if not self.is_lower_bound(i):
                Q_i = self._get_q(i, l)
                self.G += self.alpha[i] * Q_i
                if self.is_upper_bound(i):
                    self.G_bar += self.get_c(i) * Q_i

        # main SMO loop
        iteration = 0
        max_iter = max(10000000, 100 * l)
        counter = min(l, 1000) + 1

        while iteration < max_iter:
            counter -= 1
            if counter == 0:
                counter = min(l, 1000)
                if shrinking:
                    self.do_shrinking()
                self._info('.', end='')

            working_set = self.select_working_set()
            if working_set is None:
                # unshrink and re-check optimality on the full gradient
                self.reconstruct_gradient()
                self.active_size = l
                self._info('*', end='')
                working_set = self.select_working_set()
                if working_set is None:
                    break
                # shrink again on the next pass
                counter = 1

            iteration += 1
            self._update_pair(*working_set)

        si = SolutionInfo(iterations=iteration, converged=iteration < max_iter)

        if iteration >= max_iter:
            if self.active_size < l:
                self.reconstruct_gradient()
                self.active_size = l
                self._info('*', end='')
            warnings.warn("Reaching max number of iterations; returning the best solution found",
                          ConvergenceWarning)

        si.rho = self.calculate_rho(si)
        si.obj = float(np.dot(self.alpha, self.G + self.p) / 2)

        # undo the shrinking permutation
        alpha[self.active_set] = self.alpha

        si.upper_bound_p = Cp
        si.upper_bound_n = Cn

        self._info(f"\noptimization finished, #iter = {iteration}")
        return si

    def _update_pair(self, i: int, j: int):
        """Solve the two-variable sub-problem for (i, j) and refresh G, G_bar."""
        a = self.active_size
        Q_i = self._get_q(i, a)
        Q_j = self._get_q(j, a)

        C_i = self.get_c(i)
        C_j = self.get_c(j)
        QD = self.QD
        G = self.G

        old_alpha_i = float(self.alpha[i])
        old_alpha_j = float(self.alpha[j])
        alpha_i, alpha_j = old_alpha_i, old_alpha_j

        if self.y[i] != self.y[j]:
            quad_coef = QD[i] + QD[j] + 2 * Q_i[j]
            if quad_coef <= 0:
                quad_coef = TAU
            delta = (-G[i] - G[j]) / quad_coef
            diff = alpha_i - alpha_j
            alpha_i += delta
            alpha_j += delta

            if diff > 0:
                if alpha_j < 0:
                    alpha_j = 0.0
                    alpha_i = diff
            else:
                if alpha_i < 0:
                    alpha_i = 0.0
                    alpha_j = -diff
            if diff > C_i - C_j:
                if alpha_i > C_i:
                    alpha_i = C_i
                    alpha_j = C_i - diff
            else:
                if alpha_j > C_j:
                    alpha_j = C_j
                    alpha_i = C_j + diff
        else:
            quad_coef = QD[i] + QD[j] - 2 * Q_i[j]
            if quad_coef <= 0:
                quad_coef = TAU
            delta = (G[i] - G[j]) / quad_coef
            total = alpha_i + alpha_j
            alpha_i -= delta
            alpha_j += delta

            if total > C_i:
                if alpha_i > C_i:
                    alpha_i = C_i
                    alpha_j = total - C_i
            else:
                if alpha_j < 0:
                    alpha_j = 0.0
                    alpha_i = total
            if total > C_j:
                if alpha_j > C_j:
                    alpha_j = C_j
                    alpha_i = total - C_j
            else:
                if alpha_i < 0:
                    alpha_i = 0.0
                    alpha_j = total

        self.alpha[i] = alpha_i
        self.alpha[j] = alpha_j

        # gradient over the active set
        delta_alpha_i = alpha_i - old_alpha_i
        delta_alpha_j = alpha_j - old_alpha_j
        G[:a] += Q_i * delta_alpha_i + Q_j * delta_alpha_j

        # G_bar only changes when i or j moves on or off the upper bound
        was_upper_i = self.is_upper_bound(i)
        was_upper_j = self.is_upper_bound(j)
        self.update_alpha_status(i)
        self.update_alpha_status(j)

        if was_upper_i != self.is_upper_bound(i):
            Q_i = self._get_q(i, self.l)
            if was_upper_i:
                self.G_bar -= C_i * Q_i
            else:
                self.G_bar += C_i * Q_i

        if was_upper_j != self.is_upper_bound(j):
            Q_j = self._get_q(j, self.l)
            if was_upper_j:
                self.G_bar -= C_j * Q_j
            else:
                self.G_bar += C_j * Q_j

    def select_working_set(self) -> Optional[Tuple[int, int]]:
        """
        Pick the pair to optimize.

        i maximizes -y_i * grad(f)_i over I_up; j minimizes the second order
        estimate of the objective decrease over I_low among the indices that
        violate the KKT conditions together with i.

        Returns:
            (i, j), or None when the solution is already optimal
        """
        a = self.active_size
        y = self.y[:a]
        G = self.G[:a]
        status = self.alpha_status[:a]

        positive = y > 0
        not_upper = status != UPPER_BOUND
        not_lower = status != LOWER_BOUND
        in_up = np.where(positive, not_upper, not_lower)
        in_low = np.where(positive, not_lower, not_upper)

        yG = y * G
        Gmax, i = _masked_argmax(-yG, in_up)
        Gmax2 = _masked_max(yG, in_low)

        if i == -1 or Gmax + Gmax2 < self.eps:
            return None

        Q_i = self._get_q(i, a)
        grad_diff = Gmax + yG
        candidates = in_low & (grad_diff > 0)
        if not candidates.any():
            return None

        quad_coef = self.QD[i] + self.QD[:a] - 2.0 * y[i] * y * Q_i
        quad_coef = np.where(quad_coef > 0, quad_coef, TAU)
        obj_diff = np.where(candidates, -(grad_diff * grad_diff) / quad_coef, INF)

        return i, _last_argmin(obj_diff)

    def be_shrunk(self, i: int, Gmax1: float, Gmax2: float) -> bool:
        if self.is_upper_bound(i):
            if self.y[i] == +1:
                return -self.G[i] > Gmax1
            return -self.G[i] > Gmax2
        elif self.is_lower_bound(i):
            if self.y[i] == +1:
                return self.G[i] > Gmax2
            return self.G[i] > Gmax1
        return False

    def _unshrink_if_close(self, gap: float):
        # one-time full view before the final iterations
        if not self.unshrink and gap <= self.eps * 10:
            self.unshrink = True
            self.reconstruct_gradient()
            self.active_size = self.l
            self._info('*', end='')

    def _shrink(self, shrunk: Callable[[int], bool]):
        # move variables that can be shrunk behind the active prefix
        i = 0
        while i < self.active_size:
            if shrunk(i):
                self.active_size -= 1
                while self.active_size > i:
                    if not shrunk(self.active_size):
                        self.swap_index(i, self.active_size)
                        break
                    self.active_size -= 1
            i += 1

    def do_shrinking(self):
        a = self.active_size
        y = self.y[:a]
        status = self.alpha_status[:a]
        positive = y > 0
        not_upper = status != UPPER_BOUND
        not_lower = status != LOWER_BOUND

        yG = y * self.G[:a]
        # max { -y_i * grad(f)_i | i in I_up }, max { y_i * grad(f)_i | i in I_low }
        Gmax1 = _masked_max(-yG, np.where(positive, not_upper, not_lower))
        Gmax2 = _masked_max(yG, np.where(positive, not_lower, not_upper))

        self._unshrink_if_close(Gmax1 + Gmax2)
        self._shrink(lambda k: self.be_shrunk(k, Gmax1, Gmax2))

    def calculate_rho(self, si: SolutionInfo) -> float:
        a = self.active_size
        y = self.y[:a]
        yG = y * self.G[:a]
        status = self.alpha_status[:a]

        free = status == FREE
        if free.any():
            return float(yG[free].mean())

        upper = status == UPPER_BOUND
        lower = status == LOWER_BOUND
        ub_mask = (upper & (y < 0)) | (lower & (y > 0))
        lb_mask = (upper & (y > 0)) | (lower & (y < 0))
        ub = float(yG[ub_mask].min()) if ub_mask.any() else INF
        lb = float(yG[lb_mask].max()) if lb_mask.any() else -INF
        return (ub + lb) / 2


class NuSolver(Solver):
    """
    SMO solver for nu-SVC and nu-SVR.

    The extra constraint e^T alpha = constant means a working pair must share
    its sign, so the positive and negative classes are scanned separately.
    """

    def select_working_set(self) -> Optional[Tuple[int, int]]:
        a = self.active_size
        y = self.y[:a]
        G = self.G[:a]
        status = self.alpha_status[:a]

        positive = y > 0
        negative = ~positive
        not_upper = status != UPPER_BOUND
        not_lower = status != LOWER_BOUND

        Gmaxp, ip = _masked_argmax(-G, positive & not_upper)
        Gmaxn, in_ = _masked_argmax(G, negative & not_lower)
        Gmaxp2 = _masked_max(G, positive & not_lower)
        Gmaxn2 = _masked_max(-G, negative & not_upper)

        if max(Gmaxp + Gmaxp2, Gmaxn + Gmaxn2) < self.eps:
            return None

        obj_diff = np.full(a, INF)
        QD = self.QD[:a]

        if ip != -1:
            grad_diff = Gmaxp + G
            candidates = positive & not_lower & (grad_diff > 0)
            if candidates.any():
                quad_coef = self.QD[ip] + QD - 2.0 * self._get_q(ip, a)
                quad_coef = np.where(quad_coef > 0, quad_coef, TAU)
                obj_diff = np.where(candidates, -(grad_diff * grad_diff) / quad_coef, obj_diff)

        if in_ != -1:
            grad_diff = Gmaxn - G
            candidates = negative & not_upper & (grad_diff > 0)
            if candidates.any():
                quad_coef = self.QD[in_] + QD - 2.0 * self._get_q(in_, a)
                quad_coef = np.where(quad_coef > 0, quad_coef, TAU)
                obj_diff = np.where(candidates, -(grad_diff * grad_diff) / quad_coef, obj_diff)

        if not np.isfinite(obj_diff).any():
            return None

        j = _last_argmin(obj_diff)
        i = ip if y[j] > 0 else in_
        return i, j

    def be_shrunk(self, i: int, Gmax1: float, Gmax2: float,
                  Gmax3: float = -INF, Gmax4: float = -INF) -> bool:
        if self.is_upper_bound(i):
            if self.y[i] == +1:
                return -self.G[i] > Gmax1
            return -self.G[i] > Gmax4
        elif self.is_lower_bound(i):
            if self.y[i] == +1:
                return self.G[i] > Gmax2
            return self.G[i] > Gmax3
        return False

    def do_shrinking(self):
        a = self.active_size
        G = self.G[:a]
        status = self.alpha_status[:a]
        positive = self.y[:a] > 0
        negative = ~positive
        not_upper = status != UPPER_BOUND
        not_lower = status != LOWER_BOUND

        Gmax1 = _masked_max(-G, positive & not_upper)  # max { -y_i * grad(f)_i | y_i = +1, i in I_up }
        Gmax2 = _masked_max(G, positive & not_lower)   # max { y_i * grad(f)_i | y_i = +1, i in I_low }
        Gmax3 = _masked_max(G, negative & not_lower)   # max { -y_i * grad(f)_i | y_i = -1, i in I_up }
        Gmax4 = _masked_max(-G, negative & not_upper)  # max { y_i * grad(f)_i | y_i = -1, i in I_low }

        self._unshrink_if_close(max(Gmax1 + Gmax2, Gmax3 + Gmax4))
        self._shrink(lambda k: self.be_shrunk(k, Gmax1, Gmax2, Gmax3, Gmax4))

    def _class_bias(self, mask: np.ndarray) -> float:
        a = self.active_size
        G = self.G[:a]
        status = self.alpha_status[:a]

        free = mask & (status == FREE)
        if free.any():
            return float(G[free].mean())

        upper = mask & (status == UPPER_BOUND)
        lower = mask & (status == LOWER_BOUND)
        ub = float(G[lower].min()) if lower.any() else INF
        lb = float(G[upper].max()) if upper.any() else -INF
        return (ub + lb) / 2

    def calculate_rho(self, si: SolutionInfo) -> float:
        positive = self.y[:self.active_size] > 0
        r1 = self._class_bias(positive)
        r2 = self._class_bias(~positive)
        si.r = (r1 + r2) / 2
        return (r1 - r2) / 2
