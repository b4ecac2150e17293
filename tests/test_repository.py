"""Tests for the unified-trie repository."""

from statemigrate.common.crypto import keccak256
from statemigrate.common.types import AccountState
from statemigrate.storage.memory_backend import MemoryDataSource
from statemigrate.storage.repository import TrieRepository, account_key, storage_key
from statemigrate.storage.trie_store import TrieStoreImpl

from tests.fixtures.addresses import ALICE_ADDRESS, CONTRACT_ADDRESS


class TestKeyLayout:
    def test_account_key(self):
        assert account_key(ALICE_ADDRESS) == keccak256(ALICE_ADDRESS)

    def test_storage_key_pads_raw_key(self):
        key = storage_key(CONTRACT_ADDRESS, b"\x01")
        assert key == keccak256(CONTRACT_ADDRESS) + b"\x00" + b"\x00" * 31 + b"\x01"
        assert storage_key(CONTRACT_ADDRESS, b"\x00" * 31 + b"\x01") == key


class TestAccounts:
    def test_create_account(self, repository):
        repository.create_account(ALICE_ADDRESS)
        assert repository.get_account_state(ALICE_ADDRESS) == AccountState(0, 0)

    def test_update_account_state(self, repository):
        repository.create_account(ALICE_ADDRESS)
        repository.update_account_state(ALICE_ADDRESS, AccountState(nonce=4, balance=99))
        assert repository.get_account_state(ALICE_ADDRESS) == AccountState(4, 99)

    def test_unknown_account(self, repository):
        assert repository.get_account_state(ALICE_ADDRESS) is None
        assert not repository.is_contract(ALICE_ADDRESS)


class TestContracts:
    def test_setup_contract_writes_marker(self, repository):
        repository.setup_contract(CONTRACT_ADDRESS)
        assert repository.is_contract(CONTRACT_ADDRESS)
        assert repository.get_trie().get(keccak256(CONTRACT_ADDRESS) + b"\x00") == b"\x01"

    def test_setup_contract_idempotent(self, repository):
        repository.setup_contract(CONTRACT_ADDRESS)
        root = repository.get_root()
        repository.setup_contract(CONTRACT_ADDRESS)
        assert repository.get_root() == root

    def test_storage(self, repository):
        repository.setup_contract(CONTRACT_ADDRESS)
        repository.add_storage_bytes(CONTRACT_ADDRESS, b"\x05", b"\x2a")
        assert repository.get_storage_bytes(CONTRACT_ADDRESS, b"\x05") == b"\x2a"
        assert repository.get_storage_bytes(CONTRACT_ADDRESS, b"\x00" * 31 + b"\x05") == b"\x2a"
        assert repository.get_storage_bytes(CONTRACT_ADDRESS, b"\x06") is None

    def test_code(self, repository):
        code = bytes(range(100))
        repository.save_code(CONTRACT_ADDRESS, code)
        assert repository.get_code(CONTRACT_ADDRESS) == code
        assert repository.get_trie().get(keccak256(CONTRACT_ADDRESS) + b"\x80") == code


class TestFlush:
    def test_flush_persists_trie(self):
        datasource = MemoryDataSource()
        store = TrieStoreImpl(datasource)
        repository = TrieRepository(store)
        repository.create_account(ALICE_ADDRESS)
        repository.update_account_state(ALICE_ADDRESS, AccountState(1, 2))
        repository.save_code(CONTRACT_ADDRESS, b"\x60" * 64)
        repository.flush()

        reopened = TrieRepository(store, root=TrieStoreImpl(datasource).retrieve(repository.get_root()))
        assert reopened.get_account_state(ALICE_ADDRESS) == AccountState(1, 2)
        assert reopened.get_code(CONTRACT_ADDRESS) == b"\x60" * 64
