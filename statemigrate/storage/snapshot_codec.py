"""
Portable trie snapshot codec.

A snapshot is a self-contained blob holding every node (and long value) of
a trie sub-graph, used by contracts whose storage was kept inline in their
detail record instead of in the shared contracts store.

Wire format, big-endian fixed widths:

    [2B version, ignored][32B root hash][4B key count N]
    repeat N: [4B key length L][L bytes key][4B value length M][M bytes value]

Decoding is total and non-streaming: every pair is parsed and validated
before anything is written to the ephemeral store.
"""

from __future__ import annotations

import struct
from typing import Iterable

from statemigrate.common.errors import MalformedInputError
from statemigrate.common.trie import Trie
from statemigrate.storage.memory_backend import MemoryDataSource
from statemigrate.storage.trie_store import TrieStoreImpl

SNAPSHOT_VERSION = 0
HASH_SIZE = 32

_HEADER = struct.Struct(">H32si")
_LENGTH = struct.Struct(">i")


def _read_length(data: bytes, offset: int, what: str) -> int:
    if len(data) - offset < _LENGTH.size:
        raise MalformedInputError(
            f"Left bytes are too short for {what} length "
            f"expected:{_LENGTH.size} actual:{len(data) - offset} total:{len(data)}",
            offset=offset,
            expected=_LENGTH.size,
            available=len(data) - offset,
        )
    (length,) = _LENGTH.unpack_from(data, offset)
    if length < 0:
        raise MalformedInputError(
            f"Invalid {what} length {length} at position {offset}",
            offset=offset,
            expected=length,
            available=len(data) - offset - _LENGTH.size,
        )
    return length


def _read_bytes(data: bytes, offset: int, what: str) -> tuple[bytes, int]:
    length = _read_length(data, offset, what)
    offset += _LENGTH.size
    available = len(data) - offset
    if length > available:
        raise MalformedInputError(
            f"Left bytes are too short for {what} "
            f"expected:{length} actual:{available} total:{len(data)}",
            offset=offset,
            expected=length,
            available=available,
        )
    return bytes(data[offset:offset + length]), offset + length


def decode_pairs(data: bytes) -> tuple[bytes, list[tuple[bytes, bytes]]]:
    """Parse a snapshot blob into (root hash, [(key, value), ...])."""
    if len(data) < _HEADER.size:
        raise MalformedInputError(
            f"Expected size is: {_HEADER.size} actual size is {len(data)}",
            offset=0,
            expected=_HEADER.size,
            available=len(data),
        )
    _version, root, count = _HEADER.unpack_from(data, 0)
    if count < 0:
        raise MalformedInputError(
            f"Invalid key count {count}", offset=_HEADER.size - _LENGTH.size, expected=count,
        )

    pairs: list[tuple[bytes, bytes]] = []
    offset = _HEADER.size
    for _ in range(count):
        key, offset = _read_bytes(data, offset, "key")
        value, offset = _read_bytes(data, offset, "value")
        pairs.append((key, value))
    return root, pairs


def deserialize_trie(data: bytes) -> Trie:
    """Rebuild the trie stored in a snapshot blob.

    The nodes are replayed into a fresh in-memory store, so every historical
    root contained in the blob can later be reached via get_snapshot_to().
    """
    root, pairs = decode_pairs(data)

    datasource = MemoryDataSource()
    for key, value in pairs:
        datasource.put(key, value)
    store = TrieStoreImpl(datasource)

    trie = store.retrieve(root)
    if trie is None:
        raise MalformedInputError(
            f"Deserialized storage doesn't contain expected trie: {root.hex()}"
        )
    return trie


def _collect_entries(trie: Trie, entries: dict[bytes, bytes]) -> None:
    for element in trie.iter_pre_order():
        node = element.node
        if node.hash in entries:
            continue
        entries[node.hash] = node.encode()
        if node.has_long_value():
            entries[node.get_value_hash()] = node.get_value()


def serialize_trie(trie: Trie, history: Iterable[Trie] = ()) -> bytes:
    """Encode ``trie`` (plus the nodes of any ``history`` tries) as a snapshot."""
    entries: dict[bytes, bytes] = {}
    _collect_entries(trie, entries)
    for older in history:
        _collect_entries(older, entries)

    parts = [_HEADER.pack(SNAPSHOT_VERSION, trie.hash, len(entries))]
    for key, value in entries.items():
        parts.append(_LENGTH.pack(len(key)))
        parts.append(key)
        parts.append(_LENGTH.pack(len(value)))
        parts.append(value)
    return b"".join(parts)
