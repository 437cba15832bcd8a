import copy
import json
import sqlite3
import threading
from typing import Any, Protocol

from care_notebook.errors import sqlite_errors

Document = dict[str, Any] | list[Any]


def _revision_of(value: Document | None) -> int:
    if isinstance(value, dict):
        return int(value.get("revision", 0))
    return 0


class Store(Protocol):
    """
    Key/value contract the notebook adapter persists through.

    Values are JSON documents. put_if_revision is the only conditional
    write: it stores `value` only if the document currently under `key`
    carries `expected_revision` (a missing document counts as revision 0).
    """

    def get(self, key: str) -> Document | None: ...

    def put(self, key: str, value: Document) -> None: ...

    def delete(self, key: str) -> None: ...

    def keys(self, prefix: str = "") -> list[str]: ...

    def put_if_revision(
        self, key: str, value: Document, expected_revision: int
    ) -> bool: ...

    def interrupt(self) -> None: ...

    def close(self) -> None: ...


class InMemoryKeyValueDatabase:
    """
    Simple in-memory key/value database.

    Documents are copied in and out so callers never share state with the
    store.
    """

    def __init__(self) -> None:
        self._store: dict[str, Document] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Document | None:
        value = self._store.get(key)
        return copy.deepcopy(value) if value is not None else None

    def put(self, key: str, value: Document) -> None:
        self._store[key] = copy.deepcopy(value)

    def delete(self, key: str) -> None:
        self._store.pop(key, None)

    def keys(self, prefix: str = "") -> list[str]:
        return sorted(k for k in self._store if k.startswith(prefix))

    def put_if_revision(
        self, key: str, value: Document, expected_revision: int
    ) -> bool:
        with self._lock:
            if _revision_of(self._store.get(key)) != expected_revision:
                return False
            self._store[key] = copy.deepcopy(value)
            return True

    def interrupt(self) -> None:
        # dict operations never block
        pass

    def close(self) -> None:
        pass


class SqliteDocumentStore:
    """
    Document store backed by a single SQLite table of JSON bodies.

    The revision column mirrors the document's "revision" field so the
    compare-and-set runs as one UPDATE. Requests call in from worker
    threads; one lock serialises statements on the shared connection.
    """

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        self._lock = threading.Lock()
        with sqlite_errors():
            self._conn = sqlite3.connect(db_path, check_same_thread=False)
            with self._conn:
                self._conn.execute(
                    """
                    CREATE TABLE IF NOT EXISTS documents (
                        key TEXT PRIMARY KEY,
                        body TEXT NOT NULL,
                        revision INTEGER NOT NULL DEFAULT 0
                    )
                    """
                )

    def get(self, key: str) -> Document | None:
        with self._lock, sqlite_errors():
            row = self._conn.execute(
                "SELECT body FROM documents WHERE key = ?", (key,)
            ).fetchone()
        return json.loads(row[0]) if row else None

    def put(self, key: str, value: Document) -> None:
        with self._lock, sqlite_errors(), self._conn:
            self._conn.execute(
                """
                INSERT INTO documents (key, body, revision) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    body = excluded.body, revision = excluded.revision
                """,
                (key, json.dumps(value), _revision_of(value)),
            )

    def delete(self, key: str) -> None:
        with self._lock, sqlite_errors(), self._conn:
            self._conn.execute("DELETE FROM documents WHERE key = ?", (key,))

    def keys(self, prefix: str = "") -> list[str]:
        with self._lock, sqlite_errors():
            rows = self._conn.execute(
                "SELECT key FROM documents WHERE substr(key, 1, ?) = ? "
                "ORDER BY key",
                (len(prefix), prefix),
            ).fetchall()
        return [r[0] for r in rows]

    def put_if_revision(
        self, key: str, value: Document, expected_revision: int
    ) -> bool:
        body = json.dumps(value)
        revision = _revision_of(value)
        with self._lock, sqlite_errors(), self._conn:
            cur = self._conn.execute(
                "UPDATE documents SET body = ?, revision = ? "
                "WHERE key = ? AND revision = ?",
                (body, revision, key, expected_revision),
            )
            if cur.rowcount == 0 and expected_revision == 0:
                cur = self._conn.execute(
                    "INSERT OR IGNORE INTO documents (key, body, revision) "
                    "VALUES (?, ?, ?)",
                    (key, body, revision),
                )
            return cur.rowcount == 1

    def interrupt(self) -> None:
        """
        Abort whatever statement is running on the connection. Safe to call
        from another thread; the interrupted call raises Cancelled.
        """
        self._conn.interrupt()

    def close(self) -> None:
        with self._lock:
            self._conn.close()
