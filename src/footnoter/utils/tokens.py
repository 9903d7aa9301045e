"""Unified token estimation.

Single source of truth for the word/punctuation/character blend used to
budget chunks. Estimates are memoised per (model, text) in a small
fixed-capacity LRU cache.
"""

from __future__ import annotations

import unicodedata
from collections.abc import Hashable
from typing import Generic, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")

MIN_CACHE_SIZE = 32


def _is_punctuation_or_symbol(char: str) -> bool:
    return unicodedata.category(char)[0] in ("P", "S")


def approximate_tokens(text: str) -> int:
    """Estimate token count. Returns 0 for blank text, otherwise >= 1."""
    if not text:
        return 0
    trimmed = text.strip()
    if not trimmed:
        return 0
    words = len(trimmed.split())
    punctuation = sum(1 for char in text if _is_punctuation_or_symbol(char))
    char_estimate = round(len(text) / 4)
    return max(1, round((words + punctuation * 0.2 + char_estimate) / 2))


class _Node(Generic[K, V]):
    __slots__ = ("key", "value", "prev", "next")

    def __init__(self, key: K, value: V):
        self.key = key
        self.value = value
        self.prev: _Node[K, V] | None = None
        self.next: _Node[K, V] | None = None


class LRUCache(Generic[K, V]):
    """Fixed-capacity map with least-recently-used eviction.

    A dict gives O(1) lookup; an intrusive doubly linked list between two
    sentinels tracks recency (head side = oldest, tail side = newest).
    """

    def __init__(self, capacity: int):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._capacity = capacity
        self._index: dict[K, _Node[K, V]] = {}
        self._head: _Node = _Node(None, None)
        self._tail: _Node = _Node(None, None)
        self._head.next = self._tail
        self._tail.prev = self._head

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        return len(self._index)

    def __contains__(self, key: object) -> bool:
        return key in self._index

    def get(self, key: K) -> V | None:
        node = self._index.get(key)
        if node is None:
            return None
        self._unlink(node)
        self._append(node)
        return node.value

    def put(self, key: K, value: V) -> None:
        node = self._index.get(key)
        if node is not None:
            node.value = value
            self._unlink(node)
            self._append(node)
            return
        node = _Node(key, value)
        self._index[key] = node
        self._append(node)
        if len(self._index) > self._capacity:
            oldest = self._head.next
            self._unlink(oldest)
            del self._index[oldest.key]

    def keys(self) -> list[K]:
        """Keys from least to most recently used."""
        result: list[K] = []
        node = self._head.next
        while node is not self._tail:
            result.append(node.key)
            node = node.next
        return result

    def _append(self, node: _Node) -> None:
        last = self._tail.prev
        last.next = node
        node.prev = last
        node.next = self._tail
        self._tail.prev = node

    @staticmethod
    def _unlink(node: _Node) -> None:
        node.prev.next = node.next
        node.next.prev = node.prev
        node.prev = node.next = None


class TokenEstimator:
    """Approximate token costs for one model, with an LRU memo."""

    def __init__(self, model: str = "", cache_size: int = 512):
        self._model = model
        self._cache: LRUCache[tuple[str, str], int] = LRUCache(
            max(MIN_CACHE_SIZE, cache_size),
        )

    @property
    def cache(self) -> LRUCache[tuple[str, str], int]:
        return self._cache

    def estimate(self, text: str) -> int:
        key = (self._model, text)
        cached = self._cache.get(key)
        if cached is not None:
            return cached
        tokens = approximate_tokens(text)
        self._cache.put(key, tokens)
        return tokens
