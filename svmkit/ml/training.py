"""
Training orchestration for the svmkit framework.

One-vs-one training for classification, single-problem training for
regression and one-class, cross-validation, and probability calibration
(Platt scaling for classifiers, a Laplace noise model for regression).
"""

import math
import warnings
from typing import Dict, List, Optional, Tuple, Union

import numpy as np
from scipy.special import expit
from tqdm import tqdm

from ..core.structs import Parameter, Problem, check_parameter
from ..exceptions import ConvergenceWarning
from .model import Model
from .reductions import train_one

RandomState = Union[None, int, np.random.Generator]

PROBABILITY_FOLDS = 5


def group_classes(problem: Problem) -> Tuple[List[int], np.ndarray, np.ndarray, np.ndarray]:
    """
    Group the examples of a classification problem by label.

    Labels are ordered by first occurrence, except that a two-class problem
    with labels -1 and +1 where -1 comes first is swapped so that the +1
    class is first and becomes the positive side of the binary SVM.

    Args:
        problem: Training data

    Returns:
        (labels, start, count, perm): per-class label, offset and size in the
        grouped order, and the positions of the grouped examples in `problem`
    """
    labels: List[int] = []
    counts: List[int] = []
    position: Dict[int, int] = {}
    data_label = np.empty(problem.l, dtype=np.int64)

    for i, y in enumerate(problem.y):
        this_label = int(y)
        j = position.get(this_label)
        if j is None:
            j = len(labels)
            position[this_label] = j
            labels.append(this_label)
            counts.append(0)
        counts[j] += 1
        data_label[i] = j

    if len(labels) == 2 and labels[0] == -1 and labels[1] == +1:
        labels.reverse()
        counts.reverse()
        data_label = 1 - data_label

    count = np.array(counts, dtype=np.int64)
    start = np.concatenate([[0], np.cumsum(count)[:-1]]).astype(np.int64)
    perm = np.argsort(data_label, kind='stable')
    return labels, start, count, perm


def resolve_gamma(problem: Problem, param: Parameter) -> Parameter:
    """Replace gamma = 0 with 1 / max_index of the problem."""
    if param.gamma == 0 and problem.max_index > 0:
        return param.replace(gamma=1.0 / problem.max_index)
    return param


def sigmoid_train(dec_values: np.ndarray, labels: np.ndarray) -> Tuple[float, float]:
    """
    Fit Platt's sigmoid P(y=1|f) = 1 / (1 + exp(A*f + B)).

    Newton's method with backtracking line search on the regularized
    log-likelihood (Lin, Lin and Weng, 2007).

    Args:
        dec_values: Decision values
        labels: Labels; positive values mark the positive class

    Returns:
        (A, B)
    """
    dec_values = np.asarray(dec_values, dtype=np.float64)
    labels = np.asarray(labels)

    prior1 = int(np.sum(labels > 0))
    prior0 = len(labels) - prior1

    max_iter = 100
    min_step = 1e-10
    sigma = 1e-12  # for numerically strict PD of Hessian
    eps = 1e-5

    hi_target = (prior1 + 1.0) / (prior1 + 2.0)
    lo_target = 1 / (prior0 + 2.0)
    t = np.where(labels > 0, hi_target, lo_target)

    def objective(A: float, B: float) -> float:
        fApB = dec_values * A + B
        return float(np.sum(t * fApB + np.logaddexp(0.0, -fApB)))

    A = 0.0
    B = math.log((prior0 + 1.0) / (prior1 + 1.0))
    fval = objective(A, B)

    for _ in range(max_iter):
        # Hessian is regularized by sigma on the diagonal
        fApB = dec_values * A + B
        p = expit(-fApB)
        q = expit(fApB)
        d2 = p * q
        h11 = sigma + float(np.dot(dec_values * dec_values, d2))
        h22 = sigma + float(d2.sum())
        h21 = float(np.dot(dec_values, d2))
        d1 = t - p
        g1 = float(np.dot(dec_values, d1))
        g2 = float(d1.sum())

        if abs(g1) < eps and abs(g2) < eps:
            break

        # Newton direction
        det = h11 * h22 - h21 * h21
        dA = -(h22 * g1 - h21 * g2) / det
        dB = -(-h21 * g1 + h11 * g2) / det
        gd = g1 * dA + g2 * dB

        stepsize = 1.0
        while stepsize >= min_step:
            new_A = A + stepsize * dA
            new_B = B + stepsize * dB
            new_f = objective(new_A, new_B)
            # Armijo condition
            if new_f < fval + 0.0001 * stepsize * gd:
                A, B, fval = new_A, new_B, new_f
                break
            stepsize /= 2.0

        if stepsize < min_step:
            warnings.warn("Line search fails in two-class probability estimates",
                          ConvergenceWarning)
            break
    else:
        warnings.warn("Reaching maximal iterations in two-class probability estimates",
                      ConvergenceWarning)

    return A, B


def binary_svc_probability(problem: Problem, param: Parameter, Cp: float, Cn: float,
                           rng: np.random.Generator) -> Tuple[float, float]:
    """
    Platt parameters for one class pair from 5-fold decision values.

    Args:
        problem: Pair sub-problem with +1/-1 labels
        param: Training parameters
        Cp: Weighted C of the positive class
        Cn: Weighted C of the negative class
        rng: Random generator for the fold shuffle

    Returns:
        (A, B)
    """
    l = problem.l
    labels = np.asarray(problem.y)
    perm = rng.permutation(l)
    dec_values = np.zeros(l)

    for i in range(PROBABILITY_FOLDS):
        begin = i * l // PROBABILITY_FOLDS
        end = (i + 1) * l // PROBABILITY_FOLDS
        held_out = perm[begin:end]
        train_idx = np.concatenate([perm[:begin], perm[end:]])

        p_count = int(np.sum(labels[train_idx] > 0))
        n_count = len(train_idx) - p_count

        if p_count == 0 and n_count == 0:
            dec_values[held_out] = 0
        elif p_count > 0 and n_count == 0:
            dec_values[held_out] = 1
        elif p_count == 0 and n_count > 0:
            dec_values[held_out] = -1
        else:
            subparam = param.replace(probability=False, C=1.0, weights={+1: Cp, -1: Cn})
            submodel = _train(problem.subset(train_idx), subparam, rng)
            for k in held_out:
                dec_value = submodel.predict_values(problem.x[k])[1][0]
                # decision values must be signed towards the +1 class
                dec_values[k] = dec_value * submodel.label[0]

    return sigmoid_train(dec_values, labels)


def svr_probability(problem: Problem, param: Parameter, rng: np.random.Generator,
                    verbose: bool = False) -> float:
    """
    Scale of a Laplace noise model fitted to 5-fold residuals.

    Residuals larger than 5 standard deviations of the initial Laplace fit
    are left out of the final mean absolute error.
    """
    newparam = param.replace(probability=False)
    predictions = _cross_validation(problem, newparam, PROBABILITY_FOLDS, rng)
    residuals = np.abs(np.asarray(problem.y) - predictions)

    mae = float(residuals.mean())
    std = math.sqrt(2 * mae * mae)
    inliers = residuals <= 5 * std
    mae = float(residuals[inliers].mean())

    if verbose:
        print("Prob. model for test data: target value = predicted value + z,\n"
              f"z: Laplace distribution e^(-|z|/sigma)/(2sigma),sigma= {mae:g}")
    return mae


def train(problem: Problem, param: Parameter, verbose: bool = False,
          random_state: RandomState = None) -> Model:
    """
    Train an SVM model.

    Args:
        problem: Training data
        param: Training parameters
        verbose: Print solver progress and show a progress bar over class pairs
        random_state: Seed or generator for the probability-calibration folds

    Returns:
        Trained model

    Raises:
        ValueError: If the parameters are invalid for this problem
    """
    error = check_parameter(problem, param)
    if error is not None:
        raise ValueError(error)

    return _train(problem, resolve_gamma(problem, param), np.random.default_rng(random_state),
                  verbose=verbose)


def _train(problem: Problem, param: Parameter, rng: np.random.Generator,
           verbose: bool = False) -> Model:
    svm_type = param.svm_type

    if not svm_type.is_classification:
        # regression or one-class
        probA = None
        if param.probability and svm_type.is_regression:
            probA = [svr_probability(problem, param, rng, verbose)]

        f = train_one(problem, param, 0.0, 0.0, verbose)
        support = np.flatnonzero(np.abs(f.alpha) > 0)

        return Model(param=param, nr_class=2,
                     SV=[problem.x[i] for i in support],
                     sv_coef=f.alpha[support][np.newaxis, :],
                     rho=[f.rho], probA=probA,
                     sv_indices=support + 1)

    # classification
    l = problem.l
    labels, start, count, perm = group_classes(problem)
    nr_class = len(labels)

    if nr_class == 1:
        warnings.warn("Training data in only one class", UserWarning)

    x = [problem.x[i] for i in perm]

    # per-class C
    weighted_C = np.full(nr_class, float(param.C))
    for weight_label, weight in param.weights.items():
        if int(weight_label) in labels:
            weighted_C[labels.index(int(weight_label))] *= weight
        else:
            warnings.warn(f"Class label {weight_label} specified in weight is not found",
                          UserWarning)

    # one-vs-one
    pairs = [(i, j) for i in range(nr_class) for j in range(i + 1, nr_class)]
    nonzero = np.zeros(l, dtype=bool)
    decisions = []
    probA: Optional[List[float]] = [] if param.probability else None
    probB: Optional[List[float]] = [] if param.probability else None

    for i, j in tqdm(pairs, desc="Training pairs", disable=not verbose):
        si, sj = start[i], start[j]
        ci, cj = count[i], count[j]
        sub_problem = Problem([(+1, x[si + k]) for k in range(ci)]
                              + [(-1, x[sj + k]) for k in range(cj)])

        if param.probability:
            A, B = binary_svc_probability(sub_problem, param, weighted_C[i], weighted_C[j], rng)
            probA.append(A)
            probB.append(B)

        f = train_one(sub_problem, param, weighted_C[i], weighted_C[j], verbose)
        nonzero[si:si + ci] |= np.abs(f.alpha[:ci]) > 0
        nonzero[sj:sj + cj] |= np.abs(f.alpha[ci:]) > 0
        decisions.append(f)

    nSV = [int(nonzero[start[c]:start[c] + count[c]].sum()) for c in range(nr_class)]
    total_sv = sum(nSV)
    if verbose:
        print(f"Total nSV = {total_sv}")

    support = np.flatnonzero(nonzero)
    nz_start = np.concatenate([[0], np.cumsum(nSV)[:-1]]).astype(np.int64)

    # pair (i, j) stores class i coefficients in row j-1 and class j coefficients in row i
    sv_coef = np.zeros((max(nr_class - 1, 1), total_sv))
    for (i, j), f in zip(pairs, decisions):
        si, sj = start[i], start[j]
        ci, cj = count[i], count[j]
        sv_coef[j - 1, nz_start[i]:nz_start[i] + nSV[i]] = f.alpha[:ci][nonzero[si:si + ci]]
        sv_coef[i, nz_start[j]:nz_start[j] + nSV[j]] = f.alpha[ci:][nonzero[sj:sj + cj]]

    return Model(param=param, nr_class=nr_class,
                 SV=[x[k] for k in support],
                 sv_coef=sv_coef,
                 rho=[f.rho for f in decisions],
                 label=labels, nSV=nSV, probA=probA, probB=probB,
                 sv_indices=perm[support] + 1)


def cross_validation(problem: Problem, param: Parameter, nr_fold: int,
                     verbose: bool = False, random_state: RandomState = None) -> np.ndarray:
    """
    Out-of-fold predictions for every example.

    Folds are stratified by class for C-SVC and nu-SVC.

    Args:
        problem: Training data
        param: Training parameters
        nr_fold: Number of folds (at least 2)
        verbose: Show a progress bar over folds
        random_state: Seed or generator for the fold assignment

    Returns:
        Array of predictions (labels or targets) in problem order
    """
    if nr_fold < 2:
        raise ValueError("n-fold cross validation: n must >= 2")

    error = check_parameter(problem, param)
    if error is not None:
        raise ValueError(error)

    return _cross_validation(problem, resolve_gamma(problem, param), nr_fold,
                             np.random.default_rng(random_state), verbose=verbose)


def _cross_validation(problem: Problem, param: Parameter, nr_fold: int,
                      rng: np.random.Generator, verbose: bool = False) -> np.ndarray:
    l = problem.l

    if nr_fold > l:
        warnings.warn(f"# folds ({nr_fold}) > # data ({l}). Will use # folds = # data instead "
                      "(i.e., leave-one-out cross validation)", UserWarning)
        nr_fold = l

    # leave-one-out is never stratified
    if param.svm_type.is_classification and nr_fold < l:
        _, start, count, index = group_classes(problem)
        index = index.copy()
        for c in range(len(count)):
            rng.shuffle(index[start[c]:start[c] + count[c]])

        fold_count = np.array([sum((i + 1) * n // nr_fold - i * n // nr_fold for n in count)
                               for i in range(nr_fold)], dtype=np.int64)
        fold_start = np.concatenate([[0], np.cumsum(fold_count)]).astype(np.int64)

        perm = np.empty(l, dtype=np.int64)
        position = fold_start[:-1].copy()
        for c in range(len(count)):
            for i in range(nr_fold):
                begin = start[c] + i * count[c] // nr_fold
                end = start[c] + (i + 1) * count[c] // nr_fold
                perm[position[i]:position[i] + end - begin] = index[begin:end]
                position[i] += end - begin
    else:
        perm = rng.permutation(l)
        fold_start = np.array([i * l // nr_fold for i in range(nr_fold + 1)], dtype=np.int64)

    target = np.zeros(l)
    with_probability = param.probability and param.svm_type.is_classification

    for i in tqdm(range(nr_fold), desc="Cross validation", disable=not verbose):
        begin, end = fold_start[i], fold_start[i + 1]
        train_idx = np.concatenate([perm[:begin], perm[end:]])
        submodel = _train(problem.subset(train_idx), param, rng)

        for k in perm[begin:end]:
            if with_probability:
                target[k] = submodel.predict_probability(problem.x[k])[0]
            else:
                target[k] = submodel.predict(problem.x[k])

    return target


def cross_validation_score(problem: Problem, param: Parameter, nr_fold: int = 5,
                           verbose: bool = False,
                           random_state: RandomState = None) -> Dict[str, float]:
    """
    Summarize cross-validation.

    Returns:
        {'accuracy': ...} for classification and one-class, or
        {'mean_squared_error': ..., 'squared_correlation_coefficient': ...}
        for regression
    """
    target = cross_validation(problem, param, nr_fold, verbose=verbose,
                              random_state=random_state)
    y = np.asarray(problem.y, dtype=np.float64)
    l = problem.l

    if param.svm_type.is_regression:
        total_error = float(np.sum((target - y) ** 2))
        sumv, sumy = float(target.sum()), float(y.sum())
        sumvv, sumyy = float(target @ target), float(y @ y)
        sumvy = float(target @ y)
        numerator = (l * sumvy - sumv * sumy) ** 2
        denominator = (l * sumvv - sumv * sumv) * (l * sumyy - sumy * sumy)
        return {
            'mean_squared_error': total_error / l,
            'squared_correlation_coefficient': numerator / denominator if denominator else float('nan'),
        }

    return {'accuracy': float(np.mean(target == y))}
