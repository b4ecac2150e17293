"""
Hashing utilities.

- keccak256 (NOT SHA3-256), the hash every trie node and key is addressed by
- a per-run memoizing wrapper for hashing raw storage keys
"""

from __future__ import annotations

from Crypto.Hash import keccak as _keccak_mod


def keccak256(data: bytes) -> bytes:
    """Compute Keccak-256 hash (NOT SHA3-256)."""
    h = _keccak_mod.new(digest_bits=256)
    h.update(data)
    return h.digest()


class Keccak256Cache:
    """Compute-if-absent keccak256 cache keyed by the raw input bytes.

    Owned by a single migration run and discarded with it.
    """

    def __init__(self) -> None:
        self._cache: dict[bytes, bytes] = {}

    def __call__(self, data: bytes) -> bytes:
        digest = self._cache.get(data)
        if digest is None:
            digest = keccak256(data)
            self._cache[data] = digest
        return digest

    def __len__(self) -> int:
        return len(self._cache)
