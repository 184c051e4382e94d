from __future__ import annotations

import copy
import json
import sqlite3
from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, List, Optional

from loguru import logger


def split_path(path: str) -> List[str]:
    return [part for part in (path or "").split("/") if part]


def join_path(*parts: str) -> str:
    return "/".join(p for part in parts for p in split_path(part))


class MessageStore(ABC):
    """Path-addressed record storage.

    Records live at slash separated paths such as ``oracle-session/<id>``.
    Reading a path that has children returns a dict keyed by child name.
    ``update`` merges shallowly and treats ``None`` values as deletions.
    """

    @abstractmethod
    def get(self, path: str) -> Optional[Any]:
        ...

    @abstractmethod
    def exists(self, path: str) -> bool:
        ...

    @abstractmethod
    def set(self, path: str, value: Any) -> None:
        ...

    @abstractmethod
    def update(self, path: str, fields: Dict[str, Any]) -> None:
        ...

    @abstractmethod
    def remove(self, path: str) -> None:
        ...

    @abstractmethod
    def query_last_n(self, collection: str, order_by: str, n: int) -> List[Dict[str, Any]]:
        """Return the last ``n`` children of ``collection`` sorted ascending by ``order_by``."""


def _merge(record: Any, fields: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(record) if isinstance(record, dict) else {}
    for key, value in fields.items():
        if value is None:
            merged.pop(key, None)
        else:
            merged[key] = value
    return merged


def _sort_key(order_by: str):
    def key(record: Dict[str, Any]):
        value = record.get(order_by)
        return (value is not None, value if value is not None else 0)

    return key


class MemoryStore(MessageStore):
    def __init__(self) -> None:
        self._root: Dict[str, Any] = {}

    def _walk(self, parts: List[str]) -> tuple[bool, Any]:
        node: Any = self._root
        for part in parts:
            if not isinstance(node, dict) or part not in node:
                return False, None
            node = node[part]
        return True, node

    def get(self, path: str) -> Optional[Any]:
        found, node = self._walk(split_path(path))
        return copy.deepcopy(node) if found else None

    def exists(self, path: str) -> bool:
        found, _ = self._walk(split_path(path))
        return found

    def set(self, path: str, value: Any) -> None:
        parts = split_path(path)
        if not parts:
            raise ValueError("Cannot set the store root")
        if value is None:
            self.remove(path)
            return
        node = self._root
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                child = {}
                node[part] = child
            node = child
        node[parts[-1]] = copy.deepcopy(value)

    def update(self, path: str, fields: Dict[str, Any]) -> None:
        self.set(path, _merge(self.get(path), copy.deepcopy(fields)))

    def remove(self, path: str) -> None:
        parts = split_path(path)
        if not parts:
            self._root.clear()
            return
        found, parent = self._walk(parts[:-1])
        if found and isinstance(parent, dict):
            parent.pop(parts[-1], None)

    def query_last_n(self, collection: str, order_by: str, n: int) -> List[Dict[str, Any]]:
        found, children = self._walk(split_path(collection))
        if not found or not isinstance(children, dict) or n <= 0:
            return []
        records = sorted(
            (v for v in children.values() if isinstance(v, dict)),
            key=_sort_key(order_by),
        )
        return [copy.deepcopy(r) for r in records[-n:]]


class SQLiteStore(MessageStore):
    """One row per record path with a JSON encoded value."""

    def __init__(self, *, path: str) -> None:
        if path == ":memory:":
            raise ValueError("SQLiteStore needs a file path; use MemoryStore for in-memory state")
        self.path = str(Path(path).expanduser())

    @contextmanager
    def connect(self) -> Iterator[sqlite3.Connection]:
        Path(self.path).parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.path, timeout=2.0)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL;")
        conn.execute("PRAGMA busy_timeout=2000;")
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS records (
              path TEXT PRIMARY KEY,
              value TEXT NOT NULL
            )
            """
        )
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    @staticmethod
    def _subtree_clause() -> str:
        return "(path = ? OR substr(path, 1, ?) = ?)"

    @staticmethod
    def _subtree_args(key: str) -> tuple[str, int, str]:
        prefix = key + "/"
        return key, len(prefix), prefix

    def get(self, path: str) -> Optional[Any]:
        key = join_path(path)
        with self.connect() as conn:
            if not key:
                rows = conn.execute("SELECT path, value FROM records").fetchall()
            else:
                rows = conn.execute(
                    f"SELECT path, value FROM records WHERE {self._subtree_clause()}",
                    self._subtree_args(key),
                ).fetchall()
        if not rows:
            return None
        tree: Dict[str, Any] = {}
        depth = len(split_path(key))
        for row in rows:
            value = json.loads(row["value"])
            rel = split_path(row["path"])[depth:]
            if not rel:
                return value
            node = tree
            for part in rel[:-1]:
                node = node.setdefault(part, {})
            node[rel[-1]] = value
        return tree

    def exists(self, path: str) -> bool:
        key = join_path(path)
        with self.connect() as conn:
            row = conn.execute(
                f"SELECT 1 FROM records WHERE {self._subtree_clause()} LIMIT 1",
                self._subtree_args(key),
            ).fetchone()
        return row is not None

    def set(self, path: str, value: Any) -> None:
        key = join_path(path)
        if not key:
            raise ValueError("Cannot set the store root")
        with self.connect() as conn:
            conn.execute(
                f"DELETE FROM records WHERE {self._subtree_clause()}",
                self._subtree_args(key),
            )
            if value is not None:
                conn.execute(
                    "INSERT INTO records(path, value) VALUES (?, ?)",
                    (key, json.dumps(value, ensure_ascii=False)),
                )

    def update(self, path: str, fields: Dict[str, Any]) -> None:
        key = join_path(path)
        if not key:
            raise ValueError("Cannot update the store root")
        with self.connect() as conn:
            row = conn.execute("SELECT value FROM records WHERE path = ?", (key,)).fetchone()
            merged = _merge(json.loads(row["value"]) if row else None, fields)
            conn.execute(
                "INSERT INTO records(path, value) VALUES (?, ?) "
                "ON CONFLICT(path) DO UPDATE SET value = excluded.value",
                (key, json.dumps(merged, ensure_ascii=False)),
            )

    def remove(self, path: str) -> None:
        key = join_path(path)
        with self.connect() as conn:
            if not key:
                conn.execute("DELETE FROM records")
                return
            conn.execute(
                f"DELETE FROM records WHERE {self._subtree_clause()}",
                self._subtree_args(key),
            )

    def query_last_n(self, collection: str, order_by: str, n: int) -> List[Dict[str, Any]]:
        key = join_path(collection)
        if not key or n <= 0:
            return []
        prefix = key + "/"
        with self.connect() as conn:
            rows = conn.execute(
                """
                SELECT value FROM records
                WHERE substr(path, 1, ?) = ?
                  AND instr(substr(path, ?), '/') = 0
                ORDER BY json_extract(value, ?) DESC
                LIMIT ?
                """,
                (len(prefix), prefix, len(prefix) + 1, f"$.{order_by}", n),
            ).fetchall()
        records = [json.loads(r["value"]) for r in rows]
        records.reverse()
        return [r for r in records if isinstance(r, dict)]


def open_store(db_path: Optional[str]) -> MessageStore:
    if not db_path or db_path == ":memory:":
        logger.info("store_open | backend=memory")
        return MemoryStore()
    logger.info(f"store_open | backend=sqlite path={db_path}")
    return SQLiteStore(path=db_path)
