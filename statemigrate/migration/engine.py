"""
Legacy-to-unified state migration.

Walks the legacy account trie of one block in pre-order. Every node whose
key path is exactly ACCOUNT_KEY_SIZE bytes long is an account: its address
is recovered through the address hash index, its nonce/balance are copied,
and if the account has a contract detail record its storage and code are
migrated too. The run is checked by the value counts and the recomputed
legacy state root (see verifier.py) and aborts on the first inconsistency.

This is a one-time tool: the stores it opens are owned by the run and every
node it touches stays cached until the tool is discarded.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Optional

from statemigrate.common.config import (
    CONTRACTS_STORAGE_DB,
    DETAILS_DB,
    ECRECOVER_ADDRESS,
    REMASC_ADDRESS,
    STATE_DB,
    MigrationConfig,
)
from statemigrate.common.crypto import Keccak256Cache, keccak256
from statemigrate.common.errors import (
    ConsistencyError,
    MalformedInputError,
    MigrationError,
    MissingDataError,
    with_address,
)
from statemigrate.common.trie import EMPTY_TRIE_ROOT, Trie
from statemigrate.common.types import (
    AccountState,
    BlockInfo,
    ContractDetails,
    STORAGE_KEY_SIZE,
    LegacyAccountState,
)
from statemigrate.migration.address_index import AddressHashIndex
from statemigrate.migration.verifier import (
    TrieConverter,
    all_values_processed,
    verify_state_root,
)
from statemigrate.storage.datasource import KeyValueDataSource
from statemigrate.storage.disk_backend import datasource_exists, open_datasource
from statemigrate.storage.repository import Repository
from statemigrate.storage.snapshot_codec import deserialize_trie
from statemigrate.storage.state_roots import StateRootRegistry
from statemigrate.storage.trie_store import CachingTrieStore, TrieStore, TrieStoreImpl

logger = logging.getLogger(__name__)


class UnitrieMigrationTool:
    """Migrates the legacy state of ``block`` into ``repository``."""

    def __init__(
        self,
        block: BlockInfo,
        repository: Repository,
        state_root_registry: StateRootRegistry,
        state: KeyValueDataSource,
        details: KeyValueDataSource,
        contracts_storage: KeyValueDataSource,
        contract_datasource_factory: Callable[[bytes], Optional[KeyValueDataSource]],
        trie_converter: Optional[TrieConverter] = None,
        config: Optional[MigrationConfig] = None,
    ) -> None:
        self.block = block
        self.repository = repository
        self.state_root_registry = state_root_registry
        self.config = config or MigrationConfig()

        self._details = details
        # Shared code-by-hash store and shared per-contract storage tries
        self._contracts_storage = contracts_storage
        self._contracts_trie_store = CachingTrieStore(TrieStoreImpl(contracts_storage))
        self._accounts_trie_store = CachingTrieStore(TrieStoreImpl(state))
        self._contract_datasource_factory = contract_datasource_factory
        self._contract_store_cache: dict[bytes, Optional[TrieStore]] = {}
        self._datasources = [state, details, contracts_storage]

        self._keccak = Keccak256Cache()
        self.trie_converter = trie_converter or TrieConverter(self._keccak)
        self.address_index = AddressHashIndex.build(details)

    @classmethod
    def from_data_dir(
        cls,
        block: BlockInfo,
        data_dir: Path,
        repository: Repository,
        state_root_registry: StateRootRegistry,
        config: Optional[MigrationConfig] = None,
    ) -> UnitrieMigrationTool:
        """Open the legacy LMDB datasources found under ``data_dir`` read-only."""
        config = config or MigrationConfig()

        def open_contract_datasource(address: bytes) -> Optional[KeyValueDataSource]:
            name = config.per_contract_db(address)
            if not datasource_exists(name, data_dir):
                return None
            return open_datasource(name, data_dir, config.map_size, readonly=True)

        opened: list[KeyValueDataSource] = []
        try:
            for name in (STATE_DB, DETAILS_DB, CONTRACTS_STORAGE_DB):
                opened.append(open_datasource(name, data_dir, config.map_size, readonly=True))
            state, details, contracts_storage = opened
            return cls(
                block=block,
                repository=repository,
                state_root_registry=state_root_registry,
                state=state,
                details=details,
                contracts_storage=contracts_storage,
                contract_datasource_factory=open_contract_datasource,
                config=config,
            )
        except Exception:
            for datasource in opened:
                datasource.close()
            raise

    def close(self) -> None:
        """Close every legacy datasource the tool reads from."""
        for datasource in self._datasources:
            datasource.close()

    # -----------------------------------------------------------------
    # Entry points
    # -----------------------------------------------------------------

    def migrate(self) -> Trie:
        """Migrate, verify, persist and register the unified state."""
        self.migrate_state(self.block)
        if self.config.setup_precompiles:
            self.repository.setup_contract(ECRECOVER_ADDRESS)
        self.repository.flush()

        # The registered root is the flushed one, precompile included
        migrated_trie = self.repository.get_trie()
        self.state_root_registry.register(self.block, migrated_trie)
        return migrated_trie

    def migrate_state(self, block: BlockInfo) -> Trie:
        legacy_state_root = block.state_root
        block_label = block.hash.hex() if block.hash is not None else "unknown hash"
        logger.info("====== %07d (%s) =======", block.number, block_label)
        logger.info("Legacy state root 0x%s", legacy_state_root.hex())

        accounts_trie = self._retrieve_accounts_trie(legacy_state_root)
        if accounts_trie.get_legacy_hash() != legacy_state_root:
            raise ConsistencyError(
                f"Stored account state is not consistent with the expected root "
                f"({legacy_state_root.hex()}) for block {block.number}",
                expected=legacy_state_root,
                actual=accounts_trie.get_legacy_hash(),
            )

        self.build_partial_unitrie(accounts_trie)

        unified_root = self.repository.get_root()
        migrated_legacy_root = self.trie_converter.get_legacy_account_trie_root(
            self.repository.get_trie()
        )
        verify_state_root(legacy_state_root, migrated_legacy_root, unified_root)
        return self.repository.get_trie()

    def _retrieve_accounts_trie(self, root: bytes) -> Trie:
        if root == EMPTY_TRIE_ROOT:
            return Trie(self._accounts_trie_store)
        trie = self._accounts_trie_store.retrieve(root)
        if trie is None:
            raise MissingDataError("account trie root", root)
        return trie

    # -----------------------------------------------------------------
    # Accounts
    # -----------------------------------------------------------------

    def build_partial_unitrie(self, accounts_trie: Trie) -> int:
        """Migrate every account of ``accounts_trie``. Returns the account count."""
        accounts_to_log = self.config.accounts_to_log
        accounts_counter = 0
        for element in accounts_trie.iter_pre_order():
            if not element.is_account_boundary():
                continue
            accounts_counter += 1
            address = self.address_index.resolve(element.encode_key())
            try:
                self.migrate_account(address, element.node)
            except MigrationError as exc:
                raise with_address(exc, address, "Unable to migrate account") from exc
            if accounts_counter % accounts_to_log == 0:
                logger.info("Migrated %d accounts", accounts_counter)

        logger.info("Migrated %d accounts in total", accounts_counter)
        all_values_processed(accounts_trie, accounts_counter)
        return accounts_counter

    def migrate_account(self, address: bytes, account_node: Trie) -> None:
        value = account_node.get_value()
        if value is None:
            raise MalformedInputError("Account node without a value")
        legacy_state = LegacyAccountState.decode_rlp(value)

        self.repository.create_account(address)
        self.repository.update_account_state(
            address, AccountState(nonce=legacy_state.nonce, balance=legacy_state.balance)
        )

        contract_data = self._details.get(address)
        if contract_data is not None:
            details = ContractDetails.decode_rlp(contract_data)
            self.migrate_contract(address, details, legacy_state)

    # -----------------------------------------------------------------
    # Contracts
    # -----------------------------------------------------------------

    def migrate_contract(
        self,
        account_address: bytes,
        details: ContractDetails,
        account: LegacyAccountState,
    ) -> None:
        if details.is_system_contract():
            contract_address = REMASC_ADDRESS
        else:
            contract_address = details.address

        initialized = False
        if account.has_storage():
            storage_trie = self._resolve_storage_trie(contract_address, details)
            snapshot = storage_trie.get_snapshot_to(account.storage_root)

            keys_count = len(details.keys)
            keys_to_log = self.config.keys_to_log
            log_progress = keys_count > keys_to_log * 2
            if log_progress:
                logger.info("Migrating %s with %d keys", contract_address.hex(), keys_count)

            migrated_keys = 0
            for raw_key in dict.fromkeys(details.keys):
                value = snapshot.get(self._keccak(raw_key.rjust(STORAGE_KEY_SIZE, b"\x00")))
                if value is None:
                    continue
                migrated_keys += 1
                if not initialized:
                    self.repository.setup_contract(account_address)
                    initialized = True
                if log_progress and migrated_keys % keys_to_log == 0:
                    logger.info("  %d keys of %s migrated", migrated_keys, contract_address.hex())
                self.repository.add_storage_bytes(contract_address, raw_key, value)

            try:
                all_values_processed(snapshot, migrated_keys)
            except ConsistencyError as exc:
                raise with_address(
                    exc, contract_address, "Error processing storage for contract"
                ) from exc

        if details.code is not None:
            code = details.code
            if not initialized:
                self.repository.setup_contract(account_address)
            if keccak256(code) != account.code_hash:
                # Detail records may hold stale code; the code store is keyed by hash
                code = self._contracts_storage.get(account.code_hash)
                if code is None:
                    raise MissingDataError("code", account.code_hash, contract_address)
            self.repository.save_code(account_address, code)

    def _resolve_storage_trie(self, contract_address: bytes, details: ContractDetails) -> Trie:
        if not details.external_storage:
            return deserialize_trie(details.storage)

        root = details.storage
        trie = self._contracts_trie_store.retrieve(root)
        if trie is not None:
            return trie

        # Older nodes kept each contract's storage in its own datasource
        store = self._contract_trie_store(contract_address)
        trie = store.retrieve(root) if store is not None else None
        if trie is None:
            raise MissingDataError("storage root", root, contract_address)
        if trie.get_legacy_hash() != root:
            raise ConsistencyError(
                f"Stored contract state is not consistent with the expected root ({root.hex()})",
                expected=root,
                actual=trie.get_legacy_hash(),
                address=contract_address,
            )
        return trie

    def _contract_trie_store(self, contract_address: bytes) -> Optional[TrieStore]:
        if contract_address in self._contract_store_cache:
            return self._contract_store_cache[contract_address]
        store = None
        datasource = self._contract_datasource_factory(contract_address)
        if datasource is not None:
            self._datasources.append(datasource)
            store = CachingTrieStore(TrieStoreImpl(datasource))
        self._contract_store_cache[contract_address] = store
        return store
