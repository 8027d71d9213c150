"""Tests for the store module."""

import sqlite3
from pathlib import Path

import pytest

from hubcache.models import Request, Response
from hubcache.store import (
    CacheStore,
    MemoryCacheStorage,
    SqliteCacheStorage,
    StoreError,
    init_db,
)

ORIGIN = "https://hub.example.com/"


def make_response(path: str, body: bytes = b"content", status: int = 200) -> Response:
    return Response(
        status=status,
        url=ORIGIN.rstrip("/") + path,
        body=body,
        status_text="OK",
        headers=[("Content-Type", "text/html"), ("ETag", '"abc"')],
    )


def make_request(path: str) -> Request:
    return Request(url=ORIGIN.rstrip("/") + path)


@pytest.fixture
def db_path(tmp_path: Path) -> str:
    """Create a temporary database path."""
    return str(tmp_path / "cache.db")


@pytest.fixture(params=["sqlite", "memory"])
def storage(request, db_path: str):
    """Each storage backend, freshly created."""
    if request.param == "sqlite":
        backend = SqliteCacheStorage.from_path(db_path)
    else:
        backend = MemoryCacheStorage()
    yield backend
    backend.close()


class TestInitDb:
    """Tests for init_db function."""

    def test_creates_database_file(self, db_path: str) -> None:
        """Database file is created at specified path."""
        conn = init_db(db_path)
        conn.close()
        assert Path(db_path).exists()

    def test_creates_parent_directories(self, tmp_path: Path) -> None:
        """Parent directories are created if they don't exist."""
        nested_path = str(tmp_path / "nested" / "dir" / "cache.db")
        conn = init_db(nested_path)
        conn.close()
        assert Path(nested_path).exists()

    def test_creates_tables(self, db_path: str) -> None:
        """Stores and entries tables are created."""
        conn = init_db(db_path)
        tables = {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
        conn.close()
        assert {"stores", "entries"} <= tables

    def test_enables_wal_mode(self, db_path: str) -> None:
        """WAL mode is enabled for concurrent reads."""
        conn = init_db(db_path)
        mode = conn.execute("PRAGMA journal_mode").fetchone()[0]
        conn.close()
        assert mode.lower() == "wal"

    def test_idempotent_initialization(self, db_path: str) -> None:
        """Multiple init calls don't cause errors."""
        init_db(db_path).close()
        init_db(db_path).close()

    def test_unwritable_path_raises(self, tmp_path: Path) -> None:
        """A path below a regular file cannot be created."""
        blocker = tmp_path / "file"
        blocker.write_text("x")
        with pytest.raises(StoreError):
            init_db(str(blocker / "cache.db"))


class TestStorage:
    """Tests shared by both storage backends."""

    def test_open_creates_store(self, storage) -> None:
        """open() creates the named store."""
        assert storage.has("v1") is False
        store = storage.open("v1")
        assert isinstance(store, CacheStore)
        assert storage.has("v1") is True

    def test_open_is_idempotent(self, storage) -> None:
        """Opening an existing store keeps its entries."""
        storage.open("v1").put(make_request("/a"), make_response("/a"))
        store = storage.open("v1")
        assert store.match(make_request("/a")) is not None
        assert storage.keys() == ["v1"]

    def test_keys_in_creation_order(self, storage) -> None:
        """Store names are listed oldest first."""
        storage.open("v1")
        storage.open("v2")
        storage.open("v3")
        assert storage.keys() == ["v1", "v2", "v3"]

    def test_delete_removes_store_and_entries(self, storage) -> None:
        """Deleting a store drops it and its entries."""
        storage.open("v1").put(make_request("/a"), make_response("/a"))

        assert storage.delete("v1") is True
        assert storage.has("v1") is False
        assert storage.open("v1").match(make_request("/a")) is None

    def test_delete_missing_store(self, storage) -> None:
        """Deleting an unknown store reports False."""
        assert storage.delete("nope") is False

    def test_match_returns_stored_response(self, storage) -> None:
        """A stored response is returned with status, headers and body intact."""
        store = storage.open("v1")
        store.put(make_request("/index.html"), make_response("/index.html", b"<html>"))

        cached = store.match(make_request("/index.html"))

        assert cached is not None
        assert cached.status == 200
        assert cached.status_text == "OK"
        assert cached.headers == [("Content-Type", "text/html"), ("ETag", '"abc"')]
        assert cached.from_cache is True
        assert cached.read() == b"<html>"

    def test_match_returns_fresh_copy_each_time(self, storage) -> None:
        """Every match yields an unread response."""
        store = storage.open("v1")
        store.put(make_request("/a"), make_response("/a", b"body"))

        assert store.match(make_request("/a")).read() == b"body"
        assert store.match(make_request("/a")).read() == b"body"

    def test_match_missing_returns_none(self, storage) -> None:
        """Unknown requests are not found."""
        assert storage.open("v1").match(make_request("/missing.json")) is None

    def test_stores_are_isolated(self, storage) -> None:
        """Entries in one store are not visible in another."""
        storage.open("v1").put(make_request("/a"), make_response("/a"))
        assert storage.open("v2").match(make_request("/a")) is None

    def test_put_overwrites_existing_entry(self, storage) -> None:
        """Last write wins for the same request identity."""
        store = storage.open("v1")
        store.put(make_request("/a"), make_response("/a", b"old"))
        store.put(make_request("/a"), make_response("/a", b"new"))

        assert store.match(make_request("/a")).read() == b"new"
        assert len(store.keys()) == 1

    def test_put_consumes_response(self, storage) -> None:
        """Storing a response reads its body."""
        response = make_response("/a")
        storage.open("v1").put(make_request("/a"), response)
        assert response.body_used is True

    def test_put_all_stores_every_entry(self, storage) -> None:
        """Batch write stores all entries."""
        store = storage.open("v1")
        store.put_all([(make_request(p), make_response(p)) for p in ("/a", "/b", "/c")])

        assert [r.url for r in store.keys()] == [
            "https://hub.example.com/a",
            "https://hub.example.com/b",
            "https://hub.example.com/c",
        ]
        assert storage.count("v1") == 3

    def test_delete_entry(self, storage) -> None:
        """Single entries can be removed."""
        store = storage.open("v1")
        store.put(make_request("/a"), make_response("/a"))

        assert store.delete(make_request("/a")) is True
        assert store.delete(make_request("/a")) is False
        assert store.match(make_request("/a")) is None

    def test_binary_body_roundtrip(self, storage) -> None:
        """Non-UTF-8 bodies are preserved byte for byte."""
        body = bytes(range(256))
        store = storage.open("v1")
        store.put(make_request("/icon.png"), make_response("/icon.png", body))
        assert store.match(make_request("/icon.png")).read() == body


class TestSqlitePersistence:
    """Tests specific to the SQLite backend."""

    def test_entries_survive_reopen(self, db_path: str) -> None:
        """Stored entries persist across connections."""
        storage = SqliteCacheStorage.from_path(db_path)
        storage.open("v1").put(make_request("/a"), make_response("/a", b"kept"))
        storage.close()

        reopened = SqliteCacheStorage.from_path(db_path)
        try:
            assert reopened.keys() == ["v1"]
            assert reopened.open("v1").match(make_request("/a")).read() == b"kept"
        finally:
            reopened.close()

    def test_put_all_rolls_back_on_failure(self, db_path: str) -> None:
        """A failing batch leaves no partial entries behind."""
        storage = SqliteCacheStorage.from_path(db_path)
        store = storage.open("v1")
        storage._conn.execute("""
            CREATE TRIGGER reject_b BEFORE INSERT ON entries
            WHEN NEW.url LIKE '%/b'
            BEGIN SELECT RAISE(ABORT, 'rejected'); END
        """)
        storage._conn.commit()

        with pytest.raises(StoreError):
            store.put_all([(make_request(p), make_response(p)) for p in ("/a", "/b")])

        assert store.match(make_request("/a")) is None
        storage.close()

    def test_closed_connection_raises_store_error(self, db_path: str) -> None:
        """Operations on a closed connection raise StoreError."""
        conn = init_db(db_path)
        storage = SqliteCacheStorage(conn)
        conn.close()

        with pytest.raises(StoreError):
            storage.keys()

    def test_from_path_uses_row_factory(self, db_path: str) -> None:
        """Connections are opened with sqlite3.Row rows."""
        storage = SqliteCacheStorage.from_path(db_path)
        assert storage._conn.row_factory is sqlite3.Row
        storage.close()
