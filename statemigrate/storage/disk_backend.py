"""
Disk-based datasource using LMDB.

Reads go to the in-memory write buffer first, then to LMDB. Writes stay in
the buffer until flush(), which commits them in a single LMDB write
transaction.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Iterator, Optional

import lmdb

from statemigrate.common.config import DEFAULT_MAP_SIZE
from statemigrate.common.errors import MigrationError
from statemigrate.storage.datasource import KeyValueDataSource


# Sentinel for deleted entries in the write buffer
class _Sentinel(Enum):
    DELETED = "DELETED"


_DELETED = _Sentinel.DELETED


class LMDBDataSource(KeyValueDataSource):
    """LMDB-backed persistent map with an in-memory write buffer."""

    def __init__(
        self,
        path: Path,
        map_size: int = DEFAULT_MAP_SIZE,
        readonly: bool = False,
    ) -> None:
        self._path = Path(path)
        if readonly:
            # Legacy stores are only read: nothing is created, not even a lock file
            self._env = lmdb.open(
                str(self._path), map_size=map_size, readonly=True, create=False, lock=False,
            )
        else:
            self._path.mkdir(parents=True, exist_ok=True)
            self._env = lmdb.open(str(self._path), map_size=map_size)
        self._pending: dict[bytes, bytes | _Sentinel] = {}

    @property
    def path(self) -> Path:
        return self._path

    def close(self) -> None:
        """Close the LMDB environment. Unflushed writes are discarded."""
        self._env.close()

    def get(self, key: bytes) -> Optional[bytes]:
        key = bytes(key)
        val = self._pending.get(key)
        if val is _DELETED:
            return None
        if val is not None:
            return val

        with self._env.begin() as txn:
            data = txn.get(key)
            return bytes(data) if data is not None else None

    def put(self, key: bytes, value: bytes) -> None:
        self._pending[bytes(key)] = bytes(value)

    def delete(self, key: bytes) -> None:
        self._pending[bytes(key)] = _DELETED

    def keys(self) -> Iterator[bytes]:
        """Iterate pending keys first, then the on-disk remainder."""
        seen = set()
        for key, val in list(self._pending.items()):
            seen.add(key)
            if val is not _DELETED:
                yield key

        with self._env.begin() as txn:
            cursor = txn.cursor()
            for key in cursor.iternext(keys=True, values=False):
                key = bytes(key)
                if key not in seen:
                    yield key

    def flush(self) -> None:
        """Atomically write all buffered changes to LMDB."""
        if not self._pending:
            return
        with self._env.begin(write=True) as txn:
            for key, val in self._pending.items():
                if val is _DELETED:
                    txn.delete(key)
                else:
                    txn.put(key, val)
        self._pending.clear()


def datasource_exists(name: str, data_dir: Path) -> bool:
    return (Path(data_dir) / name).is_dir()


def open_datasource(
    name: str,
    data_dir: Path,
    map_size: int = DEFAULT_MAP_SIZE,
    readonly: bool = False,
) -> LMDBDataSource:
    """Open the named datasource under ``data_dir``.

    Writable datasources are created if needed. Read-only ones must already
    exist, otherwise MigrationError is raised.
    """
    if readonly and not datasource_exists(name, data_dir):
        raise MigrationError(f"Datasource {name} not found under {data_dir}")
    return LMDBDataSource(Path(data_dir) / name, map_size=map_size, readonly=readonly)
