"""
Record types read from the legacy state and written to the unified trie.

- LegacyAccountState: value stored in the legacy account trie
- AccountState: value stored at an account key of the unified trie
- ContractDetails: legacy contract detail record (fixed external layout)
- BlockInfo: the block whose state is migrated
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

import rlp
from rlp.exceptions import DecodingError

from statemigrate.common.crypto import keccak256
from statemigrate.common.errors import MalformedInputError
from statemigrate.common.trie import EMPTY_TRIE_ROOT


# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMPTY_CODE_HASH = keccak256(b"")
ADDRESS_SIZE = 20
STORAGE_KEY_SIZE = 32

# Unified trie layout, relative to an account key
STORAGE_PREFIX = b"\x00"
CODE_PREFIX = b"\x80"
STORAGE_ROOT_MARKER = b"\x01"

# Contract details use this single byte in place of the system contract address
SYSTEM_ADDRESS_SENTINEL = b"\x00"


def _decode_uint(data: bytes) -> int:
    # Tolerates non-canonical leading zeros written by older nodes
    return int.from_bytes(data, "big")


def _decode_list(data: bytes, what: str) -> list:
    try:
        items = rlp.decode(data)
    except DecodingError as exc:
        raise MalformedInputError(f"Invalid {what} encoding: {exc}") from exc
    if not isinstance(items, list):
        raise MalformedInputError(f"Expected RLP list for {what}")
    return items


def _require_bytes(fields: list, what: str) -> None:
    if not all(isinstance(f, bytes) for f in fields):
        raise MalformedInputError(f"{what} fields must be byte strings")


# ---------------------------------------------------------------------------
# Accounts
# ---------------------------------------------------------------------------

@dataclass
class LegacyAccountState:
    nonce: int = 0
    balance: int = 0
    storage_root: bytes = field(default_factory=lambda: EMPTY_TRIE_ROOT)
    code_hash: bytes = field(default_factory=lambda: EMPTY_CODE_HASH)

    def to_rlp_list(self) -> list:
        return [self.nonce, self.balance, self.storage_root, self.code_hash]

    def encode_rlp(self) -> bytes:
        return rlp.encode(self.to_rlp_list())

    @classmethod
    def decode_rlp(cls, data: bytes) -> LegacyAccountState:
        items = _decode_list(data, "legacy account state")
        if len(items) != 4:
            raise MalformedInputError(
                f"Legacy account state has {len(items)} fields, expected 4"
            )
        _require_bytes(items, "Legacy account state")
        return cls(
            nonce=_decode_uint(items[0]),
            balance=_decode_uint(items[1]),
            storage_root=items[2],
            code_hash=items[3],
        )

    def has_storage(self) -> bool:
        return self.storage_root != EMPTY_TRIE_ROOT


@dataclass
class AccountState:
    nonce: int = 0
    balance: int = 0

    def encode_rlp(self) -> bytes:
        return rlp.encode([self.nonce, self.balance])

    @classmethod
    def decode_rlp(cls, data: bytes) -> AccountState:
        items = _decode_list(data, "account state")
        if len(items) != 2:
            raise MalformedInputError(f"Account state has {len(items)} fields, expected 2")
        _require_bytes(items, "Account state")
        return cls(nonce=_decode_uint(items[0]), balance=_decode_uint(items[1]))


# ---------------------------------------------------------------------------
# Contract details
# ---------------------------------------------------------------------------

@dataclass
class ContractDetails:
    """Legacy contract detail record.

    ``storage`` holds the storage trie root hash when ``external_storage`` is
    set, otherwise a portable trie snapshot (see storage.snapshot_codec).
    """

    address: bytes
    external_storage: bool
    storage: bytes
    code: Optional[bytes]
    keys: list[bytes] = field(default_factory=list)

    def is_system_contract(self) -> bool:
        return self.address == SYSTEM_ADDRESS_SENTINEL

    def encode_rlp(self) -> bytes:
        return rlp.encode([
            self.address,
            b"\x01" if self.external_storage else b"",
            self.storage,
            self.code or b"",
            list(self.keys),
        ])

    @classmethod
    def decode_rlp(cls, data: bytes) -> ContractDetails:
        items = _decode_list(data, "contract details")
        if len(items) < 5:
            raise MalformedInputError(
                f"Contract details have {len(items)} fields, expected 5"
            )
        address, external, storage, code, keys = items[:5]
        _require_bytes([address, external, storage, code], "Contract details")
        if not isinstance(keys, list):
            raise MalformedInputError("Contract details keys must be a list")
        _require_bytes(keys, "Contract details key")
        return cls(
            address=address,
            external_storage=len(external) > 0 and external[0] == 1,
            storage=storage,
            code=code or None,
            keys=keys,
        )


# ---------------------------------------------------------------------------
# Block
# ---------------------------------------------------------------------------

@dataclass
class BlockInfo:
    number: int
    state_root: bytes
    hash: Optional[bytes] = None
