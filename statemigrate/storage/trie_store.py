"""
Content-addressed trie stores.

- TrieStore: the four-operation capability (save / retrieve /
  retrieve_value / flush) every trie node is loaded through
- TrieStoreImpl: backed directly by a KeyValueDataSource; nodes and long
  values are both keyed by their keccak256 hash
- CachingTrieStore: memoizing decorator over another TrieStore, used for the
  single-run migration where every node is read many times and never changes
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from statemigrate.common.trie import Trie
from statemigrate.storage.datasource import KeyValueDataSource


class TrieStore(ABC):

    @abstractmethod
    def save(self, trie: Trie) -> None:
        """Persist every unsaved node reachable from ``trie``."""
        ...

    @abstractmethod
    def retrieve(self, node_hash: bytes) -> Optional[Trie]:
        """Get the node stored under ``node_hash``, or None."""
        ...

    @abstractmethod
    def retrieve_value(self, value_hash: bytes) -> Optional[bytes]:
        """Get a long value stored under ``value_hash``, or None."""
        ...

    @abstractmethod
    def flush(self) -> None:
        ...


class TrieStoreImpl(TrieStore):
    """TrieStore over a key/value datasource."""

    def __init__(self, datasource: KeyValueDataSource) -> None:
        self._datasource = datasource

    def save(self, trie: Trie) -> None:
        # Saved subtrees are skipped, so saving is idempotent by content
        stack = [trie]
        while stack:
            node = stack.pop()
            if node.saved:
                continue
            self._datasource.put(node.hash, node.encode())
            if node.has_long_value():
                self._datasource.put(node.get_value_hash(), node.get_value())
            for ref in node.children:
                if ref is not None and ref.is_loaded():
                    stack.append(ref.get_node())
            node.saved = True

    def retrieve(self, node_hash: bytes) -> Optional[Trie]:
        data = self._datasource.get(node_hash)
        if data is None:
            return None
        return Trie.from_encoded(data, self)

    def retrieve_value(self, value_hash: bytes) -> Optional[bytes]:
        return self._datasource.get(value_hash)

    def flush(self) -> None:
        self._datasource.flush()


class CachingTrieStore(TrieStore):
    """Memoizes retrieve/retrieve_value per hash; save writes through.

    Results are kept for the lifetime of the instance, misses included, so
    memory grows with the number of distinct hashes touched.
    """

    def __init__(self, parent: TrieStore) -> None:
        self._parent = parent
        self._tries: dict[bytes, Optional[Trie]] = {}
        self._values: dict[bytes, Optional[bytes]] = {}

    def save(self, trie: Trie) -> None:
        self._tries[trie.hash] = trie
        self._parent.save(trie)

    def retrieve(self, node_hash: bytes) -> Optional[Trie]:
        node_hash = bytes(node_hash)
        if node_hash not in self._tries:
            self._tries[node_hash] = self._parent.retrieve(node_hash)
        return self._tries[node_hash]

    def retrieve_value(self, value_hash: bytes) -> Optional[bytes]:
        value_hash = bytes(value_hash)
        if value_hash not in self._values:
            self._values[value_hash] = self._parent.retrieve_value(value_hash)
        return self._values[value_hash]

    def flush(self) -> None:
        """Suppressed: the cache never flushes its parent."""

    def cache_size(self) -> tuple[int, int]:
        return len(self._tries), len(self._values)
