"""Storage abstractions for article history and subscribers."""

from __future__ import annotations

import json
import sqlite3
from pathlib import Path
from threading import Lock, RLock
from typing import Dict, Iterable

from ..domain import Article, ComparisonDoc, Subscriber


class SQLiteManager:
    """Manage SQLite connections with basic schema guarantees."""

    def __init__(self) -> None:
        self._connections: Dict[Path, sqlite3.Connection] = {}
        self._write_locks: Dict[Path, RLock] = {}
        self._lock = Lock()

    def connect(self, path: Path) -> sqlite3.Connection:
        path.parent.mkdir(parents=True, exist_ok=True)
        with self._lock:
            if path not in self._connections:
                conn = sqlite3.connect(path, check_same_thread=False)
                conn.row_factory = sqlite3.Row
                self._connections[path] = conn
                self._ensure_schema(conn)
            return self._connections[path]

    def lock(self, path: Path) -> RLock:
        """Lock guarding every transaction on the shared connection for ``path``."""

        with self._lock:
            return self._write_locks.setdefault(path, RLock())

    def _ensure_schema(self, conn: sqlite3.Connection) -> None:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS article_history (
                link TEXT NOT NULL,
                article_id TEXT NOT NULL,
                properties TEXT NOT NULL DEFAULT '{}',
                first_seen TEXT,
                PRIMARY KEY (link, article_id)
            );
            CREATE TABLE IF NOT EXISTS subscribers (
                id TEXT PRIMARY KEY,
                feed_id TEXT NOT NULL,
                type TEXT NOT NULL,
                target_id TEXT NOT NULL,
                filters TEXT NOT NULL DEFAULT '{}'
            );
            """
        )
        conn.commit()

    def reset(self, path: Path) -> None:
        with self._lock:
            if path in self._connections:
                self._connections[path].close()
                del self._connections[path]
        if path.exists():
            path.unlink()

    def close_all(self) -> None:
        with self._lock:
            for conn in self._connections.values():
                conn.close()
            self._connections.clear()


class HistoryRepository:
    """Durable per-link record of seen article ids and comparison values."""

    def __init__(self, manager: SQLiteManager, db_path: Path) -> None:
        self.manager = manager
        self.db_path = db_path
        self._conn = manager.connect(db_path)
        self._lock = manager.lock(db_path)

    def load(self, link: str) -> list[ComparisonDoc]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT article_id, properties FROM article_history WHERE link = ?", (link,)
            ).fetchall()
        return [ComparisonDoc(row["article_id"], json.loads(row["properties"])) for row in rows]

    def store(self, link: str, articles: Iterable[Article], properties: Iterable[str]) -> int:
        """Record articles and their string comparison values. Returns inserted count.

        Known ids take the current value of every configured property, so a
        changed value that passed a positive comparison is not accepted again.
        """

        names = sorted(set(properties))
        inserted = 0
        with self._lock:
            for article in articles:
                if not article.id:
                    continue
                values: dict[str, str] = {}
                for name in names:
                    value = article.get(name)
                    if isinstance(value, str) and value:
                        values[name] = value
                row = self._conn.execute(
                    "SELECT properties FROM article_history WHERE link = ? AND article_id = ?",
                    (link, article.id),
                ).fetchone()
                if row is None:
                    self._conn.execute(
                        "INSERT INTO article_history(link, article_id, properties, first_seen) "
                        "VALUES (?, ?, ?, datetime('now'))",
                        (link, article.id, json.dumps(values, ensure_ascii=False)),
                    )
                    inserted += 1
                    continue
                stored = json.loads(row["properties"])
                changed = {name: value for name, value in values.items() if stored.get(name) != value}
                if changed:
                    stored.update(changed)
                    self._conn.execute(
                        "UPDATE article_history SET properties = ? WHERE link = ? AND article_id = ?",
                        (json.dumps(stored, ensure_ascii=False), link, article.id),
                    )
            self._conn.commit()
        return inserted

    def recent(self, link: str, limit: int = 20) -> list[tuple[str, str]]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT article_id, first_seen FROM article_history WHERE link = ? "
                "ORDER BY first_seen DESC, rowid DESC LIMIT ?",
                (link, limit),
            ).fetchall()
        return [(row["article_id"], row["first_seen"]) for row in rows]

    def reset(self, link: str) -> int:
        with self._lock:
            cur = self._conn.execute("DELETE FROM article_history WHERE link = ?", (link,))
            self._conn.commit()
        return cur.rowcount


class SubscriberRepository:
    """Subscriber records keyed by id."""

    def __init__(self, manager: SQLiteManager, db_path: Path) -> None:
        self.manager = manager
        self.db_path = db_path
        self._conn = manager.connect(db_path)
        self._lock = manager.lock(db_path)

    def get_all(self) -> list[Subscriber]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT id, feed_id, type, target_id, filters FROM subscribers ORDER BY id"
            ).fetchall()
        return [
            Subscriber(
                id=row["id"],
                feed_id=row["feed_id"],
                type=row["type"],
                target_id=row["target_id"],
                filters=json.loads(row["filters"]),
            )
            for row in rows
        ]

    def for_feed(self, feed_id: str) -> list[Subscriber]:
        return [subscriber for subscriber in self.get_all() if subscriber.feed_id == feed_id]

    def add(self, subscriber: Subscriber) -> None:
        with self._lock:
            self._conn.execute(
                "INSERT OR REPLACE INTO subscribers(id, feed_id, type, target_id, filters) "
                "VALUES (?, ?, ?, ?, ?)",
                (
                    subscriber.id,
                    subscriber.feed_id,
                    subscriber.type,
                    subscriber.target_id,
                    json.dumps(subscriber.filters, ensure_ascii=False),
                ),
            )
            self._conn.commit()

    def delete(self, subscriber: Subscriber) -> None:
        with self._lock:
            self._conn.execute("DELETE FROM subscribers WHERE id = ?", (subscriber.id,))
            self._conn.commit()


__all__ = ["HistoryRepository", "SQLiteManager", "SubscriberRepository"]
