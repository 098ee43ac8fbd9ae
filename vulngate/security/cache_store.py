from __future__ import annotations

import json
import logging
import os
import re
import sqlite3
import threading
from collections.abc import Iterable
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

from vulngate.constants import (
    CACHE_DIR_MODE,
    CACHE_FILE_MODE,
    MAX_PAGINATION_LIMIT,
    SQLITE_BUSY_TIMEOUT_MS,
)
from vulngate.exceptions import (
    CacheUnavailableError,
    DataMissingError,
    NotFoundError,
    ValidationError,
)
from vulngate.security.types import EPOCH, Bulletin, CollectionMeta

logger = logging.getLogger(__name__)

_COLLECTION_RE = re.compile(r"^[a-z0-9][a-z0-9_.-]*$")

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS bulletins (
    id         TEXT PRIMARY KEY,
    collection TEXT NOT NULL,
    data       TEXT NOT NULL,
    title      TEXT NOT NULL DEFAULT '',
    synced_at  TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_bulletins_collection ON bulletins(collection);
CREATE INDEX IF NOT EXISTS idx_bulletins_title ON bulletins(title);

CREATE TABLE IF NOT EXISTS collection_meta (
    collection TEXT PRIMARY KEY,
    count      INTEGER NOT NULL DEFAULT 0,
    synced_at  TEXT NOT NULL
);
"""


def validate_collection(name: str) -> str:
    """Return the normalized collection name or raise ValidationError.

    Collections are open-ended on the remote side, so any well-formed name is accepted.
    """
    normalized = (name or "").strip().lower()
    if not _COLLECTION_RE.match(normalized):
        raise ValidationError(f"invalid collection name: {name!r}")
    return normalized


def escape_like(query: str) -> str:
    """Escape LIKE meta-characters so user input is matched literally."""
    return query.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def clamp_limit(limit: int) -> int:
    return max(1, min(limit, MAX_PAGINATION_LIMIT))


def clamp_offset(offset: int) -> int:
    return max(0, offset)


def _format_ts(ts: datetime) -> str:
    return ts.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _parse_ts(raw: str, collection: str) -> datetime:
    try:
        parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    except (TypeError, ValueError):
        logger.warning(f"Corrupt synced_at timestamp for {collection}: {raw!r}")
        return EPOCH
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class CacheStore(Protocol):
    def get_bulletin(self, bulletin_id: str) -> Bulletin: ...

    def put_bulletins(self, collection: str, bulletins: Iterable[Bulletin]) -> int: ...

    def search_bulletins(
        self, query: str, limit: int, offset: int = 0
    ) -> tuple[list[Bulletin], int]: ...

    def get_collection_meta(self) -> list[CollectionMeta]: ...

    def get_last_sync_time(self, collection: str) -> datetime: ...

    def purge(self) -> None: ...

    def close(self) -> None: ...


class SQLiteCacheStore:
    """Persistent bulletin cache backed by a single SQLite connection.

    The one connection is guarded by a lock, so there is exactly one writer at a
    time and the per-collection count is always recomputed inside the write
    transaction.
    """

    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(mode=CACHE_DIR_MODE, parents=True, exist_ok=True)

        self._lock = threading.Lock()
        self._conn = sqlite3.connect(
            str(self.db_path),
            timeout=SQLITE_BUSY_TIMEOUT_MS / 1000,
            isolation_level=None,
            check_same_thread=False,
        )
        try:
            self._conn.execute("PRAGMA journal_mode = WAL")
            self._conn.execute(f"PRAGMA busy_timeout = {SQLITE_BUSY_TIMEOUT_MS}")
            self._conn.executescript(SCHEMA_SQL)
        except sqlite3.Error:
            self._conn.close()
            raise

        try:
            os.chmod(self.db_path, CACHE_FILE_MODE)
        except OSError as e:
            logger.warning(f"Could not set cache file permissions on {self.db_path}: {e}")

    def __enter__(self) -> SQLiteCacheStore:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def get_bulletin(self, bulletin_id: str) -> Bulletin:
        with self._lock:
            row = self._conn.execute(
                "SELECT data FROM bulletins WHERE id = ?", (bulletin_id,)
            ).fetchone()
        if row is None:
            raise NotFoundError(bulletin_id)
        return Bulletin.from_dict(json.loads(row[0]))

    def put_bulletins(self, collection: str, bulletins: Iterable[Bulletin]) -> int:
        """Upsert bulletins and refresh the collection's count and sync time.

        Returns the number of rows written in this call. Bulletins without an id or
        with a payload that cannot be serialized are skipped. A bulletin already
        stored under another collection moves to this one, and the previous
        collection's count is recomputed in the same transaction.
        """
        collection = validate_collection(collection)
        now = _format_ts(datetime.now(timezone.utc))
        written = 0
        previous_owners: set[str] = set()

        with self._lock:
            cur = self._conn.cursor()
            cur.execute("BEGIN IMMEDIATE")
            try:
                for b in bulletins:
                    if not b.id:
                        logger.warning(f"Skipping bulletin without id in collection {collection}")
                        continue
                    try:
                        data = json.dumps(b.to_dict())
                    except (TypeError, ValueError) as e:
                        logger.warning(f"Skipping bulletin {b.id}, serialization error: {e}")
                        continue
                    row = cur.execute(
                        "SELECT collection FROM bulletins WHERE id = ?", (b.id,)
                    ).fetchone()
                    if row is not None and row[0] != collection:
                        previous_owners.add(row[0])
                    cur.execute(
                        "INSERT OR REPLACE INTO bulletins (id, collection, data, title, synced_at) "
                        "VALUES (?, ?, ?, ?, ?)",
                        (b.id, collection, data, b.title, now),
                    )
                    written += 1

                (actual_count,) = cur.execute(
                    "SELECT COUNT(*) FROM bulletins WHERE collection = ?", (collection,)
                ).fetchone()
                cur.execute(
                    """
                    INSERT INTO collection_meta (collection, count, synced_at) VALUES (?, ?, ?)
                    ON CONFLICT(collection) DO UPDATE SET
                        count = excluded.count,
                        synced_at = excluded.synced_at
                    """,
                    (collection, actual_count, now),
                )
                # Their sync time is unchanged; only the row count moved
                for owner in sorted(previous_owners):
                    (owner_count,) = cur.execute(
                        "SELECT COUNT(*) FROM bulletins WHERE collection = ?", (owner,)
                    ).fetchone()
                    cur.execute(
                        "UPDATE collection_meta SET count = ? WHERE collection = ?",
                        (owner_count, owner),
                    )
                cur.execute("COMMIT")
            except BaseException:
                cur.execute("ROLLBACK")
                raise
            finally:
                cur.close()

        logger.debug(f"Stored {written} bulletins in collection {collection}")
        return written

    def search_bulletins(
        self, query: str, limit: int, offset: int = 0
    ) -> tuple[list[Bulletin], int]:
        """Substring search over id and title; returns (page, total matches)."""
        pattern = f"%{escape_like(query)}%"
        where = "id LIKE ? ESCAPE '\\' OR title LIKE ? ESCAPE '\\'"

        with self._lock:
            (total,) = self._conn.execute(
                f"SELECT COUNT(*) FROM bulletins WHERE {where}", (pattern, pattern)
            ).fetchone()
            rows = self._conn.execute(
                f"SELECT data FROM bulletins WHERE {where} ORDER BY id LIMIT ? OFFSET ?",
                (pattern, pattern, clamp_limit(limit), clamp_offset(offset)),
            ).fetchall()

        results: list[Bulletin] = []
        for (data,) in rows:
            try:
                payload: Any = json.loads(data)
            except ValueError as e:
                logger.warning(f"Skipping corrupted bulletin: {e}")
                continue
            results.append(Bulletin.from_dict(payload))
        return results, int(total)

    def get_collection_meta(self) -> list[CollectionMeta]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT collection, count, synced_at FROM collection_meta ORDER BY collection"
            ).fetchall()
        return [
            CollectionMeta(collection=name, count=int(count), synced_at=_parse_ts(ts, name))
            for name, count, ts in rows
        ]

    def get_last_sync_time(self, collection: str) -> datetime:
        """Last sync time, or EPOCH when the collection was never synced."""
        collection = validate_collection(collection)
        with self._lock:
            row = self._conn.execute(
                "SELECT synced_at FROM collection_meta WHERE collection = ?", (collection,)
            ).fetchone()
        if row is None:
            return EPOCH
        return _parse_ts(row[0], collection)

    def purge(self) -> None:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute("BEGIN IMMEDIATE")
            try:
                cur.execute("DELETE FROM bulletins")
                cur.execute("DELETE FROM collection_meta")
                cur.execute("COMMIT")
            except BaseException:
                cur.execute("ROLLBACK")
                raise
            finally:
                cur.close()
        logger.info(f"🧹 Purged offline cache at {self.db_path}")

    def close(self) -> None:
        with self._lock:
            self._conn.close()


class NullCacheStore:
    """Stand-in used when the cache database cannot be opened.

    Reads raise DataMissingError and writes raise CacheUnavailableError.
    """

    def __enter__(self) -> NullCacheStore:
        return self

    def __exit__(self, *exc: object) -> None:
        self.close()

    def get_bulletin(self, bulletin_id: str) -> Bulletin:
        raise DataMissingError("offline data not synced; cache is unavailable")

    def put_bulletins(self, collection: str, bulletins: Iterable[Bulletin]) -> int:
        raise CacheUnavailableError("cache unavailable")

    def search_bulletins(
        self, query: str, limit: int, offset: int = 0
    ) -> tuple[list[Bulletin], int]:
        raise DataMissingError("offline data not synced; cache is unavailable")

    def get_collection_meta(self) -> list[CollectionMeta]:
        raise DataMissingError("offline data not synced; cache is unavailable")

    def get_last_sync_time(self, collection: str) -> datetime:
        raise DataMissingError("offline data not synced; cache is unavailable")

    def purge(self) -> None:
        raise CacheUnavailableError("cache unavailable")

    def close(self) -> None:
        return None


def open_cache_store(db_path: str | Path) -> CacheStore:
    """Open the SQLite cache, degrading to a NullCacheStore if that is impossible."""
    try:
        return SQLiteCacheStore(db_path)
    except (sqlite3.Error, OSError) as e:
        logger.warning(f"⚠️  Offline cache unavailable at {db_path}: {e}")
        return NullCacheStore()
