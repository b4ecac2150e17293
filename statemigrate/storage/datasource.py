"""
Key/value datasource interface.

The trie stores, the contract details and the code-by-hash lookups all sit
on top of this byte-oriented map. Implementations: MemoryDataSource
(dict-based, for ephemeral stores and tests) and LMDBDataSource (on disk).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Iterator, Optional


class KeyValueDataSource(ABC):

    @abstractmethod
    def get(self, key: bytes) -> Optional[bytes]:
        """Get value by key, or None if not found."""
        ...

    @abstractmethod
    def put(self, key: bytes, value: bytes) -> None:
        ...

    @abstractmethod
    def delete(self, key: bytes) -> None:
        ...

    @abstractmethod
    def keys(self) -> Iterator[bytes]:
        """Iterate over every key, including pending writes."""
        ...

    def flush(self) -> None:
        """Make pending writes durable. No-op for volatile datasources."""

    def close(self) -> None:
        """Release the underlying resources."""

