"""
Record Store
============
Persistence behind a narrow interface. The store is the single authority
for "already processed": the Listing Walker asks it once per page which
candidate URLs exist, and every record is inserted at most once per URL.

``SQLiteRecordStore`` is the shipped adapter (``:memory:`` works for tests).
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Iterable, List, Optional, Set, Union

from .models import DetailRecord, MatchResult

logger = logging.getLogger(__name__)

# Stay well under SQLite's bound-variable limit
_EXISTS_CHUNK = 500


class RecordStore(ABC):
    """What the pipeline needs from persistence, nothing more."""

    @abstractmethod
    def exists_batch(self, urls: Iterable[str]) -> Set[str]:
        """Subset of ``urls`` already stored. Read-only and idempotent."""

    @abstractmethod
    def insert(self, record: DetailRecord) -> Optional[int]:
        """Persist a new record; returns its id, or None if the URL exists."""

    @abstractmethod
    def mark_checked(self, ids: Iterable[int]) -> int:
        """Flip ``checked`` on the given ids; returns the number updated."""

    @abstractmethod
    def apply_matches(self, results: Iterable[MatchResult]) -> int:
        """Write match fields (and ``checked``) from scorer results."""

    @abstractmethod
    def count_unmatched(self) -> int:
        ...

    @abstractmethod
    def get_unmatched(self, limit: int) -> List[DetailRecord]:
        """Oldest unchecked records first (ascending id)."""

    @abstractmethod
    def get_recent(self, limit: int) -> List[DetailRecord]:
        """Newest records first."""

    @abstractmethod
    def get_recommended(self, limit: int) -> List[DetailRecord]:
        """Recommended records, highest score first."""

    def close(self) -> None:
        pass


class SQLiteRecordStore(RecordStore):
    """SQLite adapter; ``url`` is UNIQUE and inserts are ``INSERT OR IGNORE``."""

    def __init__(self, db_path: Union[str, Path] = ":memory:"):
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._init_db()

    def _init_db(self):
        with self._lock, self._conn:
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS detail_records (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    url TEXT NOT NULL UNIQUE,
                    title TEXT NOT NULL DEFAULT '',
                    fields TEXT NOT NULL DEFAULT '{}',
                    raw_text TEXT NOT NULL DEFAULT '',
                    body_text TEXT NOT NULL DEFAULT '',
                    provenance TEXT NOT NULL DEFAULT 'text',
                    scraped_at TEXT NOT NULL,
                    checked INTEGER NOT NULL DEFAULT 0,
                    match_score REAL,
                    match_reason TEXT NOT NULL DEFAULT '',
                    strength TEXT NOT NULL DEFAULT '',
                    weakness TEXT NOT NULL DEFAULT '',
                    recommended INTEGER NOT NULL DEFAULT 0
                )
            """)
            self._conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_detail_checked ON detail_records(checked, id)"
            )
            self._conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_detail_scraped ON detail_records(scraped_at)"
            )

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> DetailRecord:
        return DetailRecord(
            id=row["id"],
            url=row["url"],
            title=row["title"],
            fields=json.loads(row["fields"] or "{}"),
            raw_text=row["raw_text"],
            body_text=row["body_text"],
            provenance=row["provenance"],
            scraped_at=row["scraped_at"],
            checked=bool(row["checked"]),
            match_score=row["match_score"],
            match_reason=row["match_reason"],
            strength=row["strength"],
            weakness=row["weakness"],
            recommended=bool(row["recommended"]),
        )

    def exists_batch(self, urls: Iterable[str]) -> Set[str]:
        pending = list(dict.fromkeys(u for u in urls if u))
        found: Set[str] = set()
        with self._lock:
            for start in range(0, len(pending), _EXISTS_CHUNK):
                chunk = pending[start:start + _EXISTS_CHUNK]
                placeholders = ",".join("?" * len(chunk))
                rows = self._conn.execute(
                    f"SELECT url FROM detail_records WHERE url IN ({placeholders})", chunk
                ).fetchall()
                found.update(row["url"] for row in rows)
        return found

    def insert(self, record: DetailRecord) -> Optional[int]:
        with self._lock, self._conn:
            cursor = self._conn.execute(
                """
                INSERT OR IGNORE INTO detail_records
                    (url, title, fields, raw_text, body_text, provenance, scraped_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.url,
                    record.title,
                    json.dumps(record.fields, ensure_ascii=False),
                    record.raw_text,
                    record.body_text,
                    record.provenance,
                    record.scraped_at,
                ),
            )
            if cursor.rowcount == 0:
                logger.debug(f"[STORE] Already stored: {record.url}")
                return None
            record.id = cursor.lastrowid
            return record.id

    def mark_checked(self, ids: Iterable[int]) -> int:
        params = [(i,) for i in ids]
        if not params:
            return 0
        with self._lock, self._conn:
            cursor = self._conn.executemany(
                "UPDATE detail_records SET checked = 1 WHERE id = ?", params
            )
            return cursor.rowcount

    def apply_matches(self, results: Iterable[MatchResult]) -> int:
        params = [
            (r.score, r.reason, r.strength, r.weakness, int(r.recommend), r.id)
            for r in results
        ]
        if not params:
            return 0
        with self._lock, self._conn:
            cursor = self._conn.executemany(
                """
                UPDATE detail_records
                SET match_score = ?, match_reason = ?, strength = ?, weakness = ?,
                    recommended = ?, checked = 1
                WHERE id = ?
                """,
                params,
            )
            return cursor.rowcount

    def count_unmatched(self) -> int:
        with self._lock:
            row = self._conn.execute(
                "SELECT COUNT(*) AS n FROM detail_records WHERE checked = 0"
            ).fetchone()
        return row["n"]

    def get_unmatched(self, limit: int) -> List[DetailRecord]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM detail_records WHERE checked = 0 ORDER BY id ASC LIMIT ?",
                (limit,),
            ).fetchall()
        return [self._row_to_record(row) for row in rows]

    def get_recent(self, limit: int) -> List[DetailRecord]:
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM detail_records ORDER BY scraped_at DESC, id DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [self._row_to_record(row) for row in rows]

    def get_recommended(self, limit: int) -> List[DetailRecord]:
        with self._lock:
            rows = self._conn.execute(
                """
                SELECT * FROM detail_records
                WHERE recommended = 1
                ORDER BY match_score DESC, id ASC
                LIMIT ?
                """,
                (limit,),
            ).fetchall()
        return [self._row_to_record(row) for row in rows]

    def get(self, record_id: int) -> Optional[DetailRecord]:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM detail_records WHERE id = ?", (record_id,)
            ).fetchone()
        return self._row_to_record(row) if row else None

    def close(self) -> None:
        with self._lock:
            self._conn.close()
