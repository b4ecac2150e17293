"""
Address hash index.

The legacy account trie is keyed by keccak256(address), so the raw address
of each account has to be recovered from a precomputed reverse mapping.
"""

from __future__ import annotations

import logging
from types import MappingProxyType
from typing import Iterable, Mapping, Optional

from statemigrate.common.config import SYSTEM_ADDRESSES
from statemigrate.common.crypto import keccak256
from statemigrate.common.errors import MissingDataError
from statemigrate.common.types import ADDRESS_SIZE
from statemigrate.storage.datasource import KeyValueDataSource

logger = logging.getLogger(__name__)


class AddressHashIndex:
    """Immutable mapping keccak256(address) -> address."""

    def __init__(self, mapping: Mapping[bytes, bytes]) -> None:
        self._index = MappingProxyType(dict(mapping))

    @classmethod
    def build(
        cls,
        details: KeyValueDataSource,
        extra_addresses: Iterable[bytes] = SYSTEM_ADDRESSES,
    ) -> AddressHashIndex:
        """Index every address in the contract details store plus ``extra_addresses``."""
        mapping: dict[bytes, bytes] = {}
        for key in details.keys():
            if len(key) == ADDRESS_SIZE:
                mapping[keccak256(key)] = key
        for address in extra_addresses:
            mapping[keccak256(address)] = address
        logger.info("Indexed %d address hashes", len(mapping))
        return cls(mapping)

    def get(self, hashed_address: bytes) -> Optional[bytes]:
        return self._index.get(bytes(hashed_address))

    def resolve(self, hashed_address: bytes) -> bytes:
        address = self.get(hashed_address)
        if address is None:
            raise MissingDataError("address for hash", hashed_address)
        return address

    def __contains__(self, hashed_address: object) -> bool:
        return hashed_address in self._index

    def __len__(self) -> int:
        return len(self._index)
