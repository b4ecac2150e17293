"""Test fixtures for state migration tests."""

from .addresses import (
    ALICE_ADDRESS,
    BOB_ADDRESS,
    CONTRACT_ADDRESS,
    OTHER_CONTRACT_ADDRESS,
    TEST_ADDRESSES,
)
from .legacy_state import LegacyStateBuilder, build_storage_trie

__all__ = [
    # Addresses
    "ALICE_ADDRESS",
    "BOB_ADDRESS",
    "CONTRACT_ADDRESS",
    "OTHER_CONTRACT_ADDRESS",
    "TEST_ADDRESSES",
    # Legacy state
    "LegacyStateBuilder",
    "build_storage_trie",
]
