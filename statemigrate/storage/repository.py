"""
Destination repository: account and contract state in one unified trie.

Key layout, relative to the account key keccak256(address):
- account key                         -> rlp([nonce, balance])
- account key + 0x80                  -> contract code
- account key + 0x00                  -> 0x01, marks an initialized storage namespace
- account key + 0x00 + raw storage key -> storage value
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Optional

from statemigrate.common.crypto import keccak256
from statemigrate.common.trie import Trie
from statemigrate.common.types import (
    AccountState,
    CODE_PREFIX,
    STORAGE_KEY_SIZE,
    STORAGE_PREFIX,
    STORAGE_ROOT_MARKER,
)
from statemigrate.storage.trie_store import TrieStore


def account_key(address: bytes) -> bytes:
    return keccak256(address)


def storage_key(address: bytes, raw_key: bytes) -> bytes:
    """Raw storage keys are left-padded to a 32-byte word."""
    return account_key(address) + STORAGE_PREFIX + raw_key.rjust(STORAGE_KEY_SIZE, b"\x00")


class Repository(ABC):
    """Mutation API the migration writes the unified state through."""

    @abstractmethod
    def create_account(self, address: bytes) -> None:
        ...

    @abstractmethod
    def update_account_state(self, address: bytes, state: AccountState) -> None:
        ...

    @abstractmethod
    def setup_contract(self, address: bytes) -> None:
        """Initialize the storage namespace of a contract. Idempotent."""
        ...

    @abstractmethod
    def add_storage_bytes(self, address: bytes, raw_key: bytes, value: bytes) -> None:
        ...

    @abstractmethod
    def save_code(self, address: bytes, code: bytes) -> None:
        ...

    @abstractmethod
    def get_root(self) -> bytes:
        ...

    @abstractmethod
    def get_trie(self) -> Trie:
        """Current unified trie."""
        ...

    @abstractmethod
    def flush(self) -> None:
        ...

    # -----------------------------------------------------------------
    # Reads (delegate to get_trie)
    # -----------------------------------------------------------------

    def get_account_state(self, address: bytes) -> Optional[AccountState]:
        data = self.get_trie().get(account_key(address))
        if data is None:
            return None
        return AccountState.decode_rlp(data)

    def is_contract(self, address: bytes) -> bool:
        return self.get_trie().get(account_key(address) + STORAGE_PREFIX) is not None

    def get_code(self, address: bytes) -> Optional[bytes]:
        return self.get_trie().get(account_key(address) + CODE_PREFIX)

    def get_storage_bytes(self, address: bytes, raw_key: bytes) -> Optional[bytes]:
        return self.get_trie().get(storage_key(address, raw_key))


class TrieRepository(Repository):
    """Repository over a persistent trie saved to a TrieStore on flush()."""

    def __init__(self, trie_store: TrieStore, root: Optional[Trie] = None) -> None:
        self._store = trie_store
        self._trie = root if root is not None else Trie(trie_store)

    def create_account(self, address: bytes) -> None:
        self._trie = self._trie.put(account_key(address), AccountState().encode_rlp())

    def update_account_state(self, address: bytes, state: AccountState) -> None:
        self._trie = self._trie.put(account_key(address), state.encode_rlp())

    def setup_contract(self, address: bytes) -> None:
        key = account_key(address) + STORAGE_PREFIX
        if self._trie.get(key) is None:
            self._trie = self._trie.put(key, STORAGE_ROOT_MARKER)

    def add_storage_bytes(self, address: bytes, raw_key: bytes, value: bytes) -> None:
        self._trie = self._trie.put(storage_key(address, raw_key), value)

    def save_code(self, address: bytes, code: bytes) -> None:
        self._trie = self._trie.put(account_key(address) + CODE_PREFIX, code)

    def get_root(self) -> bytes:
        return self._trie.hash

    def get_trie(self) -> Trie:
        return self._trie

    def flush(self) -> None:
        self._store.save(self._trie)
        self._store.flush()
