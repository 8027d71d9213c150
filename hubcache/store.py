"""Named cache stores mapping request identities to stored responses.

Two storage backends share the same interface:

- SqliteCacheStorage: persistent, backed by a SQLite file (WAL mode).
- MemoryCacheStorage: process-local, used for tests and ephemeral runs.

A storage holds any number of named stores. The interceptor only ever
reads and writes the store named by the current version tag; older stores
are removed at activation.
"""

import json
import sqlite3
import threading
from collections.abc import Iterable
from datetime import UTC, datetime
from pathlib import Path

from .models import Request, Response


class StoreError(Exception):
    """Raised when a cache storage operation fails."""

    pass


# Global lock for thread-safe database access.
# SQLite allows concurrent reads but only one writer at a time.
# Proxy handler threads share a single connection.
_db_lock = threading.Lock()


class CacheStore:
    """Handle to a single named store inside a storage backend.

    Obtained via storage.open(name). Writes overwrite any earlier entry
    stored under the same request identity.
    """

    def __init__(self, storage: "SqliteCacheStorage | MemoryCacheStorage", name: str) -> None:
        self._storage = storage
        self.name = name

    def match(self, request: Request) -> Response | None:
        """Return a fresh unread copy of the stored response, or None."""
        return self._storage._match(self.name, request)

    def put(self, request: Request, response: Response) -> None:
        """Store a response under the request identity.

        Consumes the response body.
        """
        self._storage._put_all(self.name, [(request, response)])

    def put_all(self, entries: Iterable[tuple[Request, Response]]) -> None:
        """Store several responses in a single all-or-nothing write.

        Consumes every response body.
        """
        self._storage._put_all(self.name, list(entries))

    def delete(self, request: Request) -> bool:
        """Remove the entry for request. Returns True if one existed."""
        return self._storage._delete_entry(self.name, request)

    def keys(self) -> list[Request]:
        """Return the request identities stored, oldest first."""
        return self._storage._entry_keys(self.name)

    def __repr__(self) -> str:
        return f"CacheStore({self.name!r})"


def _headers_to_json(headers: list[tuple[str, str]]) -> str:
    return json.dumps([[name, value] for name, value in headers])


def _headers_from_json(raw: str) -> list[tuple[str, str]]:
    return [(str(name), str(value)) for name, value in json.loads(raw)]


def init_db(db_path: str) -> sqlite3.Connection:
    """Initialize the cache database and create tables if they don't exist.

    Args:
        db_path: Path to the SQLite database file.

    Returns:
        Database connection with WAL mode enabled.

    Raises:
        StoreError: If database initialization fails.
    """
    try:
        parent_dir = Path(db_path).expanduser().parent
        if not parent_dir.exists():
            parent_dir.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(str(Path(db_path).expanduser()), check_same_thread=False)
        conn.row_factory = sqlite3.Row

        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")

        conn.execute("""
            CREATE TABLE IF NOT EXISTS stores (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL UNIQUE,
                created_at TEXT NOT NULL
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS entries (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                store_name TEXT NOT NULL,
                method TEXT NOT NULL,
                url TEXT NOT NULL,
                status INTEGER NOT NULL,
                status_text TEXT NOT NULL,
                headers TEXT NOT NULL,
                body BLOB NOT NULL,
                response_type TEXT NOT NULL,
                stored_at TEXT NOT NULL,
                UNIQUE (store_name, method, url)
            )
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_entries_store_name
            ON entries(store_name)
        """)

        conn.commit()
        return conn

    except sqlite3.Error as e:
        raise StoreError(f"Failed to initialize cache database: {e}")
    except OSError as e:
        raise StoreError(f"Failed to create cache database directory: {e}")


class SqliteCacheStorage:
    """Persistent cache storage backed by a SQLite connection.

    Thread-safe: every operation acquires the global database lock.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    @classmethod
    def from_path(cls, db_path: str) -> "SqliteCacheStorage":
        """Open (creating if needed) the database at db_path."""
        return cls(init_db(db_path))

    def close(self) -> None:
        with _db_lock:
            self._conn.close()

    def open(self, name: str) -> CacheStore:
        """Return the store called name, creating it if absent.

        Raises:
            StoreError: If the store cannot be created.
        """
        try:
            with _db_lock:
                self._conn.execute(
                    "INSERT OR IGNORE INTO stores (name, created_at) VALUES (?, ?)",
                    (name, datetime.now(UTC).isoformat()),
                )
                self._conn.commit()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to open store '{name}': {e}")
        return CacheStore(self, name)

    def has(self, name: str) -> bool:
        try:
            with _db_lock:
                row = self._conn.execute("SELECT 1 FROM stores WHERE name = ?", (name,)).fetchone()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to look up store '{name}': {e}")
        return row is not None

    def delete(self, name: str) -> bool:
        """Delete the store called name and all of its entries.

        Returns:
            True if the store existed.
        """
        try:
            with _db_lock:
                self._conn.execute("DELETE FROM entries WHERE store_name = ?", (name,))
                cursor = self._conn.execute("DELETE FROM stores WHERE name = ?", (name,))
                self._conn.commit()
                return cursor.rowcount > 0
        except sqlite3.Error as e:
            raise StoreError(f"Failed to delete store '{name}': {e}")

    def keys(self) -> list[str]:
        """Return store names in creation order."""
        try:
            with _db_lock:
                rows = self._conn.execute("SELECT name FROM stores ORDER BY id").fetchall()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to list stores: {e}")
        return [row["name"] for row in rows]

    def count(self, name: str) -> int:
        """Return the number of entries in the store called name."""
        try:
            with _db_lock:
                row = self._conn.execute(
                    "SELECT COUNT(*) AS total FROM entries WHERE store_name = ?", (name,)
                ).fetchone()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to count entries in '{name}': {e}")
        return int(row["total"])

    def _match(self, name: str, request: Request) -> Response | None:
        method, url = request.key
        try:
            with _db_lock:
                row = self._conn.execute(
                    """
                    SELECT url, status, status_text, headers, body, response_type
                    FROM entries
                    WHERE store_name = ? AND method = ? AND url = ?
                    """,
                    (name, method, url),
                ).fetchone()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to match {url} in '{name}': {e}")

        if row is None:
            return None

        return Response(
            status=row["status"],
            url=row["url"],
            body=bytes(row["body"]),
            status_text=row["status_text"],
            headers=_headers_from_json(row["headers"]),
            type=row["response_type"],
            from_cache=True,
        )

    def _put_all(self, name: str, entries: list[tuple[Request, Response]]) -> None:
        stored_at = datetime.now(UTC).isoformat()
        rows = []
        for request, response in entries:
            method, url = request.key
            rows.append((
                name,
                method,
                url,
                response.status,
                response.status_text,
                _headers_to_json(response.headers),
                sqlite3.Binary(response.read()),
                response.type,
                stored_at,
            ))

        try:
            with _db_lock:
                try:
                    self._conn.execute(
                        "INSERT OR IGNORE INTO stores (name, created_at) VALUES (?, ?)",
                        (name, stored_at),
                    )
                    self._conn.executemany(
                        """
                        INSERT OR REPLACE INTO entries
                        (store_name, method, url, status, status_text, headers, body, response_type, stored_at)
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                        """,
                        rows,
                    )
                    self._conn.commit()
                except sqlite3.Error:
                    self._conn.rollback()
                    raise
        except sqlite3.Error as e:
            raise StoreError(f"Failed to write {len(rows)} entries to '{name}': {e}")

    def _delete_entry(self, name: str, request: Request) -> bool:
        method, url = request.key
        try:
            with _db_lock:
                cursor = self._conn.execute(
                    "DELETE FROM entries WHERE store_name = ? AND method = ? AND url = ?",
                    (name, method, url),
                )
                self._conn.commit()
                return cursor.rowcount > 0
        except sqlite3.Error as e:
            raise StoreError(f"Failed to delete {url} from '{name}': {e}")

    def _entry_keys(self, name: str) -> list[Request]:
        try:
            with _db_lock:
                rows = self._conn.execute(
                    "SELECT method, url FROM entries WHERE store_name = ? ORDER BY id",
                    (name,),
                ).fetchall()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to list entries of '{name}': {e}")
        return [Request(url=row["url"], method=row["method"]) for row in rows]


class MemoryCacheStorage:
    """In-process cache storage with the same interface as SqliteCacheStorage."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        # store name -> {(method, url) -> stored response fields}
        self._stores: dict[str, dict[tuple[str, str], dict]] = {}

    def close(self) -> None:
        pass

    def open(self, name: str) -> CacheStore:
        with self._lock:
            self._stores.setdefault(name, {})
        return CacheStore(self, name)

    def has(self, name: str) -> bool:
        with self._lock:
            return name in self._stores

    def delete(self, name: str) -> bool:
        with self._lock:
            return self._stores.pop(name, None) is not None

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._stores)

    def count(self, name: str) -> int:
        with self._lock:
            return len(self._stores.get(name, {}))

    def _match(self, name: str, request: Request) -> Response | None:
        with self._lock:
            stored = self._stores.get(name, {}).get(request.key)
        if stored is None:
            return None
        return Response(
            status=stored["status"],
            url=stored["url"],
            body=stored["body"],
            status_text=stored["status_text"],
            headers=list(stored["headers"]),
            type=stored["type"],
            from_cache=True,
        )

    def _put_all(self, name: str, entries: list[tuple[Request, Response]]) -> None:
        staged = {
            request.key: {
                "url": response.url,
                "status": response.status,
                "status_text": response.status_text,
                "headers": list(response.headers),
                "body": response.read(),
                "type": response.type,
            }
            for request, response in entries
        }
        with self._lock:
            self._stores.setdefault(name, {}).update(staged)

    def _delete_entry(self, name: str, request: Request) -> bool:
        with self._lock:
            return self._stores.get(name, {}).pop(request.key, None) is not None

    def _entry_keys(self, name: str) -> list[Request]:
        with self._lock:
            keys = list(self._stores.get(name, {}))
        return [Request(url=url, method=method) for method, url in keys]
