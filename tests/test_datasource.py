"""Tests for key/value datasources: in-memory and LMDB-backed."""

import pytest

from statemigrate.common.errors import MigrationError
from statemigrate.storage.disk_backend import LMDBDataSource, datasource_exists, open_datasource
from statemigrate.storage.memory_backend import MemoryDataSource


SMALL_MAP = 16 * 1024 * 1024


@pytest.fixture(params=["memory", "lmdb"])
def datasource(request, tmp_path):
    if request.param == "memory":
        yield MemoryDataSource()
    else:
        ds = LMDBDataSource(tmp_path / "ds", map_size=SMALL_MAP)
        yield ds
        ds.close()


# ---------------------------------------------------------------------------
# Shared behaviour
# ---------------------------------------------------------------------------

class TestKeyValueDataSource:
    def test_get_missing(self, datasource):
        assert datasource.get(b"missing") is None

    def test_put_get(self, datasource):
        datasource.put(b"k", b"v")
        assert datasource.get(b"k") == b"v"

    def test_overwrite(self, datasource):
        datasource.put(b"k", b"v1")
        datasource.put(b"k", b"v2")
        assert datasource.get(b"k") == b"v2"

    def test_delete(self, datasource):
        datasource.put(b"k", b"v")
        datasource.delete(b"k")
        assert datasource.get(b"k") is None

    def test_keys(self, datasource):
        datasource.put(b"a", b"1")
        datasource.put(b"b", b"2")
        datasource.put(b"c", b"3")
        datasource.delete(b"b")
        assert sorted(datasource.keys()) == [b"a", b"c"]

    def test_flush_keeps_data(self, datasource):
        datasource.put(b"k", b"v")
        datasource.flush()
        assert datasource.get(b"k") == b"v"


# ---------------------------------------------------------------------------
# LMDB persistence: write -> flush -> close -> reopen -> verify
# ---------------------------------------------------------------------------

class TestLMDBPersistence:
    def test_flushed_data_persists(self, tmp_path):
        ds = LMDBDataSource(tmp_path / "db", map_size=SMALL_MAP)
        ds.put(b"key", b"value")
        ds.flush()
        ds.close()

        reopened = LMDBDataSource(tmp_path / "db", map_size=SMALL_MAP)
        assert reopened.get(b"key") == b"value"
        reopened.close()

    def test_unflushed_data_discarded(self, tmp_path):
        ds = LMDBDataSource(tmp_path / "db", map_size=SMALL_MAP)
        ds.put(b"key", b"value")
        ds.close()

        reopened = LMDBDataSource(tmp_path / "db", map_size=SMALL_MAP)
        assert reopened.get(b"key") is None
        reopened.close()

    def test_delete_persists(self, tmp_path):
        ds = LMDBDataSource(tmp_path / "db", map_size=SMALL_MAP)
        ds.put(b"key", b"value")
        ds.flush()
        ds.delete(b"key")
        assert ds.get(b"key") is None
        ds.flush()
        ds.close()

        reopened = LMDBDataSource(tmp_path / "db", map_size=SMALL_MAP)
        assert reopened.get(b"key") is None
        reopened.close()

    def test_keys_merge_pending_and_disk(self, lmdb_datasource):
        lmdb_datasource.put(b"disk", b"1")
        lmdb_datasource.put(b"gone", b"2")
        lmdb_datasource.flush()
        lmdb_datasource.put(b"pending", b"3")
        lmdb_datasource.delete(b"gone")
        assert sorted(lmdb_datasource.keys()) == [b"disk", b"pending"]

    def test_open_datasource_creates_nested_directory(self, tmp_path):
        ds = open_datasource("details-storage/abcd", tmp_path, map_size=SMALL_MAP)
        ds.put(b"k", b"v")
        ds.flush()
        assert ds.path == tmp_path / "details-storage" / "abcd"
        assert ds.path.is_dir()
        ds.close()


class TestLMDBReadOnly:
    def test_reads_flushed_data(self, tmp_path):
        writer = open_datasource("state", tmp_path, map_size=SMALL_MAP)
        writer.put(b"key", b"value")
        writer.flush()
        writer.close()

        reader = open_datasource("state", tmp_path, map_size=SMALL_MAP, readonly=True)
        assert reader.get(b"key") == b"value"
        assert list(reader.keys()) == [b"key"]
        reader.close()

    def test_missing_datasource_not_created(self, tmp_path):
        with pytest.raises(MigrationError):
            open_datasource("details-storage/abcd", tmp_path, map_size=SMALL_MAP, readonly=True)
        assert not (tmp_path / "details-storage").exists()
        assert not datasource_exists("details-storage/abcd", tmp_path)
