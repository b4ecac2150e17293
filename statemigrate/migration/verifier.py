"""
Consistency checks for the migration.

These are the only correctness oracle of a run:
- every value-bearing node of a trie must be accounted for by a migrated
  entity (all_values_processed)
- the unified trie, projected back to the legacy account trie, must hash to
  the original legacy state root (TrieConverter + verify_state_root)
"""

from __future__ import annotations

import logging
from typing import Optional

from statemigrate.common.crypto import Keccak256Cache, keccak256
from statemigrate.common.errors import ConsistencyError
from statemigrate.common.trie import (
    EMPTY_TRIE_ROOT,
    Trie,
    bytes_from_nibbles,
    count_values,
)
from statemigrate.common.types import (
    CODE_PREFIX,
    EMPTY_CODE_HASH,
    STORAGE_KEY_SIZE,
    STORAGE_PREFIX,
    AccountState,
    LegacyAccountState,
)

logger = logging.getLogger(__name__)

_STORAGE_KEY_NIBBLES = STORAGE_KEY_SIZE * 2


def all_values_processed(trie: Trie, expected_count: int) -> None:
    """Check that ``trie`` holds exactly ``expected_count`` values."""
    value_count = count_values(trie)
    if value_count != expected_count:
        raise ConsistencyError(
            f"Trie {trie.hash.hex()} has {value_count} values "
            f"and we expected {expected_count}",
            expected=expected_count,
            actual=value_count,
        )


def verify_state_root(expected: bytes, actual: bytes, unified_root: Optional[bytes] = None) -> None:
    """Compare the original legacy root with the one recomputed after migration."""
    if expected != actual:
        logger.error("Legacy state root:        %s", expected.hex())
        logger.error("Converted unified root:   %s", actual.hex())
        if unified_root is not None:
            logger.error("Unified state root:       %s", unified_root.hex())
        raise ConsistencyError(
            f"Not matching state root: expected {expected.hex()}, got {actual.hex()}",
            expected=expected,
            actual=actual,
        )
    logger.info("Matched state root %s", expected.hex())


class TrieConverter:
    """Projects a unified trie back to the legacy account trie."""

    def __init__(self, key_hasher: Optional[Keccak256Cache] = None) -> None:
        self._hash_key = key_hasher if key_hasher is not None else Keccak256Cache()

    def get_legacy_account_trie_root(self, unified: Trie) -> bytes:
        return self.build_legacy_account_trie(unified).get_legacy_hash()

    def build_legacy_account_trie(self, unified: Trie) -> Trie:
        legacy = Trie()
        for element in unified.iter_pre_order():
            if not element.is_account_boundary() or not element.node.has_value():
                continue
            account_node = element.node
            state = AccountState.decode_rlp(account_node.get_value())
            legacy_state = LegacyAccountState(
                nonce=state.nonce,
                balance=state.balance,
                storage_root=self.get_legacy_storage_root(account_node),
                code_hash=self._code_hash(account_node),
            )
            legacy = legacy.put(element.encode_key(), legacy_state.encode_rlp())
        return legacy

    def get_legacy_storage_root(self, account_node: Trie) -> bytes:
        """Legacy storage root: raw keys re-hashed, the namespace marker dropped."""
        storage_node = account_node.find_below(STORAGE_PREFIX)
        if storage_node is None:
            return EMPTY_TRIE_ROOT

        storage = Trie()
        offset = len(storage_node.path)
        for element in storage_node.iter_pre_order():
            relative_key = element.node_key[offset:]
            if len(relative_key) != _STORAGE_KEY_NIBBLES or not element.node.has_value():
                continue
            raw_key = bytes_from_nibbles(relative_key)
            storage = storage.put(self._hash_key(raw_key), element.node.get_value())
        return storage.get_legacy_hash()

    @staticmethod
    def _code_hash(account_node: Trie) -> bytes:
        code_node = account_node.find_below(CODE_PREFIX)
        if code_node is None or not code_node.has_value():
            return EMPTY_CODE_HASH
        return keccak256(code_node.get_value())
