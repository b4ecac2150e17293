"""Tests for TrieStoreImpl and the CachingTrieStore decorator."""

import pytest

from statemigrate.common.crypto import keccak256
from statemigrate.common.trie import Trie
from statemigrate.storage.memory_backend import MemoryDataSource
from statemigrate.storage.trie_store import CachingTrieStore, TrieStoreImpl


class CountingDataSource(MemoryDataSource):
    """MemoryDataSource that records reads and flushes."""

    def __init__(self):
        super().__init__()
        self.reads = 0
        self.flushes = 0

    def get(self, key):
        self.reads += 1
        return super().get(key)

    def flush(self):
        self.flushes += 1


@pytest.fixture
def counting_datasource():
    return CountingDataSource()


def _sample_trie(store):
    trie = Trie(store)
    for i in range(8):
        trie = trie.put(bytes([i, i]), b"value%d" % i)
    return trie


class TestTrieStoreImpl:
    def test_save_and_retrieve(self, trie_store):
        trie = _sample_trie(trie_store)
        trie_store.save(trie)

        loaded = trie_store.retrieve(trie.hash)
        assert loaded is not None
        assert loaded.hash == trie.hash
        assert loaded.get(b"\x03\x03") == b"value3"

    def test_retrieve_unknown(self, trie_store):
        assert trie_store.retrieve(b"\x00" * 32) is None

    def test_nodes_keyed_by_hash(self, memory_datasource, trie_store):
        trie = _sample_trie(trie_store)
        trie_store.save(trie)
        for key in memory_datasource.keys():
            assert keccak256(memory_datasource.get(key)) == key

    def test_save_is_idempotent(self, memory_datasource, trie_store):
        trie = _sample_trie(trie_store)
        trie_store.save(trie)
        size = len(memory_datasource)
        trie_store.save(trie)
        trie_store.save(trie_store.retrieve(trie.hash))
        assert len(memory_datasource) == size

    def test_long_values_saved(self, trie_store):
        long_value = b"\x5a" * 100
        trie = Trie(trie_store).put(b"\x01", long_value)
        trie_store.save(trie)
        assert trie_store.retrieve_value(keccak256(long_value)) == long_value

    def test_retrieved_nodes_bound_to_store(self, trie_store):
        trie = _sample_trie(trie_store)
        trie_store.save(trie)
        assert trie_store.retrieve(trie.hash).store is trie_store

    def test_flush_reaches_datasource(self, counting_datasource):
        store = TrieStoreImpl(counting_datasource)
        store.flush()
        assert counting_datasource.flushes == 1


class TestCachingTrieStore:
    def test_retrieve_returns_same_instance(self, counting_datasource):
        parent = TrieStoreImpl(counting_datasource)
        trie = _sample_trie(parent)
        parent.save(trie)
        cache = CachingTrieStore(parent)

        first = cache.retrieve(trie.hash)
        reads = counting_datasource.reads
        second = cache.retrieve(trie.hash)
        assert first is second
        assert counting_datasource.reads == reads

    def test_miss_is_memoized(self, counting_datasource):
        parent = TrieStoreImpl(counting_datasource)
        cache = CachingTrieStore(parent)
        trie = Trie().put(b"\x01", b"a")

        assert cache.retrieve(trie.hash) is None
        parent.save(trie)
        assert cache.retrieve(trie.hash) is None

    def test_values_memoized(self, counting_datasource):
        long_value = b"\x77" * 64
        parent = TrieStoreImpl(counting_datasource)
        parent.save(Trie(parent).put(b"\x01", long_value))
        cache = CachingTrieStore(parent)

        assert cache.retrieve_value(keccak256(long_value)) == long_value
        reads = counting_datasource.reads
        assert cache.retrieve_value(keccak256(long_value)) == long_value
        assert counting_datasource.reads == reads
        assert cache.cache_size() == (0, 1)

    def test_save_writes_through(self, counting_datasource):
        parent = TrieStoreImpl(counting_datasource)
        cache = CachingTrieStore(parent)
        trie = _sample_trie(cache)
        cache.save(trie)

        assert cache.retrieve(trie.hash) is trie
        assert parent.retrieve(trie.hash).hash == trie.hash

    def test_flush_is_suppressed(self, counting_datasource):
        cache = CachingTrieStore(TrieStoreImpl(counting_datasource))
        cache.flush()
        assert counting_datasource.flushes == 0

    def test_cache_stability_across_walks(self, counting_datasource):
        parent = TrieStoreImpl(counting_datasource)
        trie = _sample_trie(parent)
        parent.save(trie)
        cache = CachingTrieStore(parent)

        root = cache.retrieve(trie.hash)
        first = [(e.node_key, e.node.hash) for e in root.iter_pre_order()]
        again = [(e.node_key, e.node.hash) for e in cache.retrieve(trie.hash).iter_pre_order()]
        assert first == again
