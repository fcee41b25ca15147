import math

import numpy as np
import pytest

from svmkit.core.kernel import OneClassQ, SVCQ, SVRQ, dot, k_function, squared_distance
from svmkit.core.structs import FeatureVector, Parameter, Problem


def _random_vector(rng, n_features, density):
    dense = rng.normal(size=n_features)
    dense[rng.random(n_features) >= density] = 0.0
    return dense, FeatureVector.from_dense(dense)


@pytest.mark.parametrize("density", [0.0, 0.1, 0.5, 0.9, 1.0])
def test_sparse_distance_matches_dense(density):
    rng = np.random.default_rng(42)
    for _ in range(20):
        a, x = _random_vector(rng, 30, density)
        b, y = _random_vector(rng, 30, density)
        assert squared_distance(x, y) == pytest.approx(float(np.sum((a - b) ** 2)), abs=1e-10)
        assert dot(x, y) == pytest.approx(float(a @ b), abs=1e-10)


def test_distance_with_disjoint_indices():
    x = FeatureVector([1, 3], [1.0, 2.0])
    y = FeatureVector([2, 4], [3.0, 4.0])
    assert squared_distance(x, y) == pytest.approx(1 + 4 + 9 + 16)
    assert dot(x, y) == 0.0


class TestKFunction:
    x = FeatureVector([1, 2], [1.0, 2.0])
    y = FeatureVector([2, 3], [0.5, -1.0])

    def test_linear(self):
        assert k_function(self.x, self.y, Parameter(kernel_type='linear')) == pytest.approx(1.0)

    def test_polynomial(self):
        param = Parameter(kernel_type='polynomial', gamma=0.5, coef0=1.0, degree=3)
        assert k_function(self.x, self.y, param) == pytest.approx((0.5 * 1.0 + 1.0) ** 3)

    def test_rbf(self):
        param = Parameter(kernel_type='rbf', gamma=0.25)
        expected = math.exp(-0.25 * (1.0 + 1.5 ** 2 + 1.0))
        assert k_function(self.x, self.y, param) == pytest.approx(expected)

    def test_sigmoid(self):
        param = Parameter(kernel_type='sigmoid', gamma=0.5, coef0=-0.2)
        assert k_function(self.x, self.y, param) == pytest.approx(math.tanh(0.5 - 0.2))

    def test_precomputed_reads_serial_column(self):
        row = FeatureVector([0, 1, 2, 3], [1, 10.0, 20.0, 30.0])
        sv = FeatureVector([0], [3])
        assert k_function(row, sv, Parameter(kernel_type='precomputed')) == 30.0


@pytest.fixture
def small_problem():
    rng = np.random.default_rng(7)
    X = rng.normal(size=(6, 3))
    y = [1, -1, 1, 1, -1, -1]
    return X, y, Problem((label, FeatureVector.from_dense(row)) for label, row in zip(y, X))


def _rbf_matrix(X, gamma):
    sq = np.sum((X[:, None, :] - X[None, :, :]) ** 2, axis=-1)
    return np.exp(-gamma * sq)


def test_svc_q_rows_and_diagonal(small_problem):
    X, y, problem = small_problem
    param = Parameter(kernel_type='rbf', gamma=0.3)
    signs = np.array(y)
    Q = SVCQ(problem, param, signs)
    expected = np.outer(signs, signs) * _rbf_matrix(X, 0.3)

    for i in range(len(y)):
        np.testing.assert_allclose(Q.get_q(i, len(y)), expected[i], rtol=1e-6, atol=1e-6)
    np.testing.assert_allclose(Q.get_qd(), np.ones(len(y)))


def test_one_class_q_is_plain_kernel(small_problem):
    X, _, problem = small_problem
    Q = OneClassQ(problem, Parameter(kernel_type='linear'))
    np.testing.assert_allclose(Q.get_q(2, 6), (X @ X.T)[2], rtol=1e-5, atol=1e-5)
    np.testing.assert_allclose(Q.get_qd(), np.sum(X * X, axis=1), rtol=1e-12)


def test_svr_q_mirrors_problem(small_problem):
    X, _, problem = small_problem
    l = problem.l
    Q = SVRQ(problem, Parameter(kernel_type='linear'))
    K = X @ X.T
    signs = np.concatenate([np.ones(l), -np.ones(l)])
    expected = np.outer(signs, signs) * np.block([[K, K], [K, K]])

    np.testing.assert_allclose(Q.get_q(0, 2 * l), expected[0], rtol=1e-5, atol=1e-5)
    np.testing.assert_allclose(Q.get_q(l + 1, 2 * l), expected[l + 1], rtol=1e-5, atol=1e-5)
    assert Q.get_qd().shape == (2 * l,)


def test_svr_q_swap_permutes_variables(small_problem):
    X, _, problem = small_problem
    l = problem.l
    Q = SVRQ(problem, Parameter(kernel_type='linear'))
    K = X @ X.T

    Q.swap_index(0, l + 2)
    row = Q.get_q(0, 2 * l)
    # variable 0 now stands for example 2 with sign -1
    assert row[0] == pytest.approx(K[2, 2], rel=1e-5)
    assert row[1] == pytest.approx(-K[2, 1], rel=1e-5, abs=1e-5)
    assert row[l + 2] == pytest.approx(-K[2, 0], rel=1e-5, abs=1e-5)


def test_svc_q_swap_keeps_rows_consistent(small_problem):
    X, y, problem = small_problem
    param = Parameter(kernel_type='rbf', gamma=0.3)
    signs = np.array(y)
    Q = SVCQ(problem, param, signs)
    expected = np.outer(signs, signs) * _rbf_matrix(X, 0.3)

    for i in range(6):
        Q.get_q(i, 6)
    Q.swap_index(1, 4)

    order = [0, 4, 2, 3, 1, 5]
    permuted = expected[np.ix_(order, order)]
    for i in range(6):
        np.testing.assert_allclose(Q.get_q(i, 6), permuted[i], rtol=1e-6, atol=1e-6)


@pytest.mark.parametrize("param", [
    Parameter(kernel_type='linear'),
    Parameter(kernel_type='polynomial', gamma=0.5, coef0=1.0, degree=3),
    Parameter(kernel_type='rbf', gamma=0.3),
    Parameter(kernel_type='sigmoid', gamma=0.2, coef0=-0.1),
])
def test_batch_rows_match_pairwise_kernel(param):
    rng = np.random.default_rng(11)
    vectors = [_random_vector(rng, 12, 0.4)[1] for _ in range(9)] + [FeatureVector()]
    Q = OneClassQ(Problem((1, v) for v in vectors), param)
    Q.swap_index(0, 7)
    Q.swap_index(3, 9)

    l = len(vectors)
    for i in range(l):
        expected = [Q.kernel_function(i, j) for j in range(l)]
        np.testing.assert_allclose(Q.kernel_row(i, 0, l), expected, rtol=1e-10, atol=1e-12)
        np.testing.assert_allclose(Q.kernel_row(i, 4, l), expected[4:], rtol=1e-10, atol=1e-12)


def test_batch_rows_read_precomputed_columns():
    K = np.arange(16, dtype=float).reshape(4, 4)
    vectors = [FeatureVector(np.arange(5), np.concatenate([[i + 1], row]))
               for i, row in enumerate(K)]
    Q = OneClassQ(Problem((1, v) for v in vectors), Parameter(kernel_type='precomputed'))
    Q.swap_index(1, 2)

    order = [0, 2, 1, 3]
    for i in range(4):
        np.testing.assert_array_equal(Q.kernel_row(i, 0, 4), K[order[i]][order])
