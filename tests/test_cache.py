import numpy as np
import pytest

from svmkit.core.cache import ROW_OVERHEAD, Cache
from svmkit.core.kernel import OneClassQ
from svmkit.core.structs import FeatureVector, Parameter, Problem


def _fill(cache, index, length):
    row, start = cache.get_data(index, length)
    row[start:length] = index * 100 + np.arange(start, length)
    return row


def test_budget_is_counted_in_four_byte_units():
    cache = Cache(10, 1000)
    assert cache.size == 1000 // 4 - 10 * ROW_OVERHEAD
    assert cache.size == (1000 - 10 * 16) // 4


def test_budget_holds_at_least_two_rows():
    cache = Cache(10, 0)
    assert cache.size == 20


def test_get_data_reports_missing_suffix():
    cache = Cache(5, 1 << 20)
    row, start = cache.get_data(1, 3)
    assert start == 0
    assert row.dtype == np.float32
    row[:3] = [1, 2, 3]

    row, start = cache.get_data(1, 5)
    assert start == 3
    np.testing.assert_array_equal(row[:3], [1, 2, 3])

    _, start = cache.get_data(1, 4)
    assert start == 4
    assert cache.cached_length(1) == 5


def test_lru_eviction_under_budget():
    cache = Cache(10, 0)
    _fill(cache, 0, 10)
    _fill(cache, 1, 10)
    cache.get_data(0, 10)  # touch row 0
    _fill(cache, 2, 10)

    assert cache.lru_order() == [0, 2]
    assert cache.cached_length(1) == 0
    assert cache.size == 0


def test_used_space_never_exceeds_budget():
    rng = np.random.default_rng(3)
    cache = Cache(20, 0)
    budget = cache.size
    for _ in range(200):
        _fill(cache, int(rng.integers(20)), int(rng.integers(1, 21)))
        used = sum(cache.cached_length(i) for i in range(20))
        assert used + cache.size == budget
        assert used <= budget


def test_swap_is_self_inverse():
    cache = Cache(4, 1 << 20)
    rows = {i: _fill(cache, i, 4).copy() for i in range(4)}

    cache.swap_index(1, 3)
    cache.swap_index(1, 3)

    for i in range(4):
        row, start = cache.get_data(i, 4)
        assert start == 4
        np.testing.assert_array_equal(row, rows[i])


def test_swap_exchanges_owners_and_entries():
    cache = Cache(4, 1 << 20)
    rows = {i: _fill(cache, i, 4).copy() for i in range(4)}

    cache.swap_index(0, 2)

    row, _ = cache.get_data(0, 4)
    np.testing.assert_array_equal(row, rows[2][[2, 1, 0, 3]])
    row, _ = cache.get_data(3, 4)
    np.testing.assert_array_equal(row, rows[3][[2, 1, 0, 3]])


def test_swap_drops_rows_covering_only_one_index():
    cache = Cache(6, 1 << 20)
    _fill(cache, 0, 3)
    _fill(cache, 1, 6)

    cache.swap_index(2, 4)

    assert cache.cached_length(0) == 0
    assert cache.cached_length(1) == 6


def test_cached_rows_are_not_recomputed():
    rng = np.random.default_rng(5)
    problem = Problem((1, FeatureVector.from_dense(row)) for row in rng.normal(size=(8, 3)))
    Q = OneClassQ(problem, Parameter(kernel_type='rbf', gamma=0.5))

    calls = []
    original = Q.kernel_row

    def counting(i, start, stop):
        calls.append((i, start, stop))
        return original(i, start, stop)

    Q.kernel_row = counting

    first = Q.get_q(3, 8).copy()
    assert calls == [(3, 0, 8)]

    second = Q.get_q(3, 8)
    assert calls == [(3, 0, 8)]
    np.testing.assert_array_equal(first, second)


def test_partial_rows_compute_only_the_suffix():
    rng = np.random.default_rng(6)
    problem = Problem((1, FeatureVector.from_dense(row)) for row in rng.normal(size=(8, 3)))
    Q = OneClassQ(problem, Parameter(kernel_type='linear'))

    calls = []
    original = Q.kernel_row
    Q.kernel_row = lambda i, start, stop: calls.append((start, stop)) or original(i, start, stop)

    Q.get_q(0, 3)
    Q.get_q(0, 8)
    assert calls == [(0, 3), (3, 8)]
