"""
Migration configuration and well-known addresses.
"""

from __future__ import annotations

from dataclasses import dataclass


# ---------------------------------------------------------------------------
# Well-known system addresses
# ---------------------------------------------------------------------------

# Fee-distribution system contract; contract details record it as a single 0x00 byte
REMASC_ADDRESS = bytes.fromhex("0000000000000000000000000000000001000008")
# Sender of the fee-distribution system transaction
REMASC_SENDER_ADDRESS = b"\x00" * 20
ECRECOVER_ADDRESS = bytes.fromhex("0000000000000000000000000000000000000001")

SYSTEM_ADDRESSES = (REMASC_ADDRESS, REMASC_SENDER_ADDRESS)


# ---------------------------------------------------------------------------
# Datasource names under the database directory
# ---------------------------------------------------------------------------

STATE_DB = "state"
DETAILS_DB = "details"
CONTRACTS_STORAGE_DB = "contracts-storage"
DETAILS_STORAGE_DB = "details-storage"
UNITRIE_DB = "unitrie"
STATE_ROOTS_DB = "stateRoots"

# 1 GB default map size; LMDB grows sparse files
DEFAULT_MAP_SIZE = 1 * 1024 * 1024 * 1024


@dataclass
class MigrationConfig:
    accounts_to_log: int = 500
    keys_to_log: int = 2000
    map_size: int = DEFAULT_MAP_SIZE
    # Registered after a successful migration, like the node does at startup
    setup_precompiles: bool = True

    def __post_init__(self) -> None:
        if self.accounts_to_log < 1:
            raise ValueError(f"accounts_to_log must be positive, got {self.accounts_to_log}")
        if self.keys_to_log < 1:
            raise ValueError(f"keys_to_log must be positive, got {self.keys_to_log}")

    def per_contract_db(self, address: bytes) -> str:
        return f"{DETAILS_STORAGE_DB}/{address.hex()}"
