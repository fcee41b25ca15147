"""
Kernel row cache for the svmkit SMO engine.

Rows of the kernel matrix are kept in a bounded least-recently-used store.
Rows live in an arena indexed by example number; a circular doubly-linked
list threaded through `_prev`/`_next` (with the sentinel at index `l`)
keeps them in LRU order.
"""

from typing import List, Optional, Tuple

import numpy as np

# Each cached row carries a 16-byte header, charged as 4 units of 4 bytes.
ROW_OVERHEAD = 4


class Cache:
    """
    Bounded LRU store of kernel matrix rows.

    The budget is counted in 4-byte scalars. A row may be cached only partially;
    `get_data` reports how much of it is already valid so that the caller
    computes only the missing suffix.
    """

    def __init__(self, l: int, size_bytes: int):
        """
        Initialize the cache.

        Args:
            l: Number of rows (training examples)
            size_bytes: Memory budget in bytes
        """
        self.l = l
        size = int(size_bytes) // 4
        size -= l * ROW_OVERHEAD
        # must be large enough for two full rows
        self.size = max(size, 2 * l)

        self._data: List[Optional[np.ndarray]] = [None] * l
        self._len = [0] * l

        # index l is the list head
        self._prev = [l] * (l + 1)
        self._next = [l] * (l + 1)

    def _lru_delete(self, h: int):
        self._next[self._prev[h]] = self._next[h]
        self._prev[self._next[h]] = self._prev[h]

    def _lru_insert(self, h: int):
        # insert at the most recently used end
        head = self.l
        self._next[h] = head
        self._prev[h] = self._prev[head]
        self._next[self._prev[h]] = h
        self._prev[head] = h

    def _evict(self, h: int):
        self._lru_delete(h)
        self.size += self._len[h]
        self._data[h] = None
        self._len[h] = 0

    def get_data(self, index: int, length: int) -> Tuple[np.ndarray, int]:
        """
        Fetch a row, growing it to `length` entries if needed.

        Args:
            index: Row index
            length: Number of leading entries the caller needs

        Returns:
            (row, start) where row[start:length] still has to be filled in
        """
        if self._len[index] > 0:
            self._lru_delete(index)

        start = self._len[index]
        more = length - start

        if more > 0:
            # free least recently used rows until the new entries fit
            while self.size < more:
                self._evict(self._next[self.l])

            row = np.empty(length, dtype=np.float32)
            old = self._data[index]
            if old is not None:
                row[:start] = old[:start]
            self._data[index] = row
            self.size -= more
            self._len[index] = length
        else:
            start = length

        self._lru_insert(index)
        return self._data[index], start

    def swap_index(self, i: int, j: int):
        """
        Exchange the roles of examples i and j.

        Row ownership is swapped, and every other cached row has its i-th and
        j-th entries exchanged. Rows that cover i but not j are dropped.
        """
        if i == j:
            return

        if self._len[i] > 0:
            self._lru_delete(i)
        if self._len[j] > 0:
            self._lru_delete(j)

        self._data[i], self._data[j] = self._data[j], self._data[i]
        self._len[i], self._len[j] = self._len[j], self._len[i]

        if self._len[i] > 0:
            self._lru_insert(i)
        if self._len[j] > 0:
            self._lru_insert(j)

        if i > j:
            i, j = j, i

        h = self._next[self.l]
        while h != self.l:
            nxt = self._next[h]
            if self._len[h] > i:
                if self._len[h] > j:
                    row = self._data[h]
                    row[i], row[j] = row[j], row[i]
                else:
                    # give up on this row
                    self._evict(h)
            h = nxt

    def cached_length(self, index: int) -> int:
        """Number of valid leading entries of a row."""
        return self._len[index]

    def lru_order(self) -> List[int]:
        """Cached rows from least to most recently used."""
        order = []
        h = self._next[self.l]
        while h != self.l:
            order.append(h)
            h = self._next[h]
        return order
