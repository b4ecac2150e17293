"""Pytest configuration and shared fixtures for all tests."""

import pytest

from statemigrate.storage.disk_backend import LMDBDataSource
from statemigrate.storage.memory_backend import MemoryDataSource
from statemigrate.storage.repository import TrieRepository
from statemigrate.storage.trie_store import TrieStoreImpl

from tests.fixtures.legacy_state import LegacyStateBuilder


# =============================================================================
# Datasources and stores
# =============================================================================

@pytest.fixture
def memory_datasource():
    return MemoryDataSource()


@pytest.fixture
def trie_store(memory_datasource):
    """TrieStoreImpl over a fresh in-memory datasource."""
    return TrieStoreImpl(memory_datasource)


@pytest.fixture
def lmdb_datasource(tmp_path):
    datasource = LMDBDataSource(tmp_path / "db", map_size=16 * 1024 * 1024)
    yield datasource
    datasource.close()


# =============================================================================
# Migration
# =============================================================================

@pytest.fixture
def legacy_state():
    """Empty legacy state to populate with accounts and contracts."""
    return LegacyStateBuilder()


@pytest.fixture
def repository():
    return TrieRepository(TrieStoreImpl(MemoryDataSource()))
