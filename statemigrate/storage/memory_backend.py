"""
In-memory datasource.

Dict-based implementation of KeyValueDataSource, used for the ephemeral
stores rebuilt from trie snapshots and for tests.
"""

from __future__ import annotations

from typing import Iterator, Optional

from statemigrate.storage.datasource import KeyValueDataSource


class MemoryDataSource(KeyValueDataSource):
    """In-memory datasource using a Python dict."""

    def __init__(self) -> None:
        self._data: dict[bytes, bytes] = {}

    def get(self, key: bytes) -> Optional[bytes]:
        return self._data.get(bytes(key))

    def put(self, key: bytes, value: bytes) -> None:
        self._data[bytes(key)] = bytes(value)

    def delete(self, key: bytes) -> None:
        self._data.pop(bytes(key), None)

    def keys(self) -> Iterator[bytes]:
        return iter(list(self._data))

    def __len__(self) -> int:
        return len(self._data)
