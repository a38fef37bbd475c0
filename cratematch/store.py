from __future__ import annotations

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from threading import Lock
from typing import Dict, Iterator, List, Optional

from .errors import PersistenceError
from .models import CachedMatch, MatchSource, UnmatchStatus

UnmatchedRow = Dict[str, object]


class TrackStore:
    """SQLite persistence for cached matches and the unmatched-track queue.

    One connection is shared by every worker thread; all access goes through
    ``_lock`` so each statement (or multi-statement transaction) is applied
    atomically.
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path) if str(path) != ":memory:" else None
        if self.path is not None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = Lock()
        self._conn = sqlite3.connect(
            str(self.path) if self.path is not None else ":memory:",
            check_same_thread=False,
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS track_matches (
                owner_id TEXT NOT NULL,
                track_key TEXT NOT NULL,
                external_id TEXT NOT NULL,
                confidence REAL NOT NULL,
                matched_title TEXT,
                source TEXT NOT NULL DEFAULT 'automatic',
                resolved_at TEXT NOT NULL,
                PRIMARY KEY(owner_id, track_key)
            )
            """
        )
        self._conn.execute(
            """
            CREATE TABLE IF NOT EXISTS unmatched_tracks (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                owner_id TEXT NOT NULL,
                track_title TEXT NOT NULL,
                artist TEXT,
                duration_ms INTEGER,
                release_title TEXT,
                strategies_tried_count INTEGER NOT NULL DEFAULT 0,
                top_candidates TEXT,
                status TEXT NOT NULL DEFAULT 'pending',
                resolved_external_id TEXT,
                created_at TEXT NOT NULL,
                resolved_at TEXT
            )
            """
        )
        self._conn.execute(
            """
            CREATE UNIQUE INDEX IF NOT EXISTS idx_unmatched_pending
            ON unmatched_tracks(owner_id, track_title) WHERE status = 'pending'
            """
        )
        self._conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_unmatched_status ON unmatched_tracks(status)"
        )
        self._conn.commit()

    def close(self) -> None:
        with self._lock:
            self._conn.close()

    @contextmanager
    def _guard(self, action: str) -> Iterator[None]:
        try:
            yield
        except sqlite3.Error as exc:
            try:
                self._conn.rollback()
            except sqlite3.Error:
                pass
            raise PersistenceError(f"{action} failed: {exc}") from exc

    # -- track matches -----------------------------------------------------

    def get_match(self, owner_id: str, track_key: str) -> Optional[CachedMatch]:
        with self._lock, self._guard("reading cached match"):
            row = self._conn.execute(
                """
                SELECT owner_id, track_key, external_id, confidence, matched_title, source, resolved_at
                FROM track_matches WHERE owner_id = ? AND track_key = ?
                """,
                (owner_id, track_key),
            ).fetchone()
        if not row:
            return None
        return _match_from_row(row)

    def set_match(
        self,
        owner_id: str,
        track_key: str,
        external_id: str,
        confidence: float,
        matched_title: Optional[str],
        source: MatchSource,
    ) -> bool:
        """Create or update a cached match.

        Manual entries replace anything; automatic entries never replace a
        manual one. Returns False when the write was refused for that reason.
        """
        with self._lock, self._guard("writing cached match"):
            written = self._upsert_match(
                owner_id, track_key, external_id, confidence, matched_title, source
            )
            self._conn.commit()
        return written

    def _upsert_match(
        self,
        owner_id: str,
        track_key: str,
        external_id: str,
        confidence: float,
        matched_title: Optional[str],
        source: MatchSource,
    ) -> bool:
        guard = "" if source is MatchSource.MANUAL else "WHERE track_matches.source != 'manual'"
        cursor = self._conn.execute(
            f"""
            INSERT INTO track_matches(owner_id, track_key, external_id, confidence, matched_title, source, resolved_at)
            VALUES(?, ?, ?, ?, ?, ?, CURRENT_TIMESTAMP)
            ON CONFLICT(owner_id, track_key) DO UPDATE SET
                external_id=excluded.external_id,
                confidence=excluded.confidence,
                matched_title=excluded.matched_title,
                source=excluded.source,
                resolved_at=excluded.resolved_at
            {guard}
            """,
            (owner_id, track_key, external_id, float(confidence), matched_title, source.value),
        )
        return cursor.rowcount > 0

    def delete_matches(self, source: Optional[MatchSource] = None) -> int:
        with self._lock, self._guard("clearing cached matches"):
            if source is None:
                cursor = self._conn.execute("DELETE FROM track_matches")
            else:
                cursor = self._conn.execute(
                    "DELETE FROM track_matches WHERE source = ?", (source.value,)
                )
            self._conn.commit()
        return cursor.rowcount

    def match_stats(self) -> Dict[str, float]:
        with self._lock, self._guard("reading cache statistics"):
            row = self._conn.execute(
                """
                SELECT COUNT(*) AS total,
                       AVG(confidence) AS average,
                       SUM(CASE WHEN source = 'manual' THEN 1 ELSE 0 END) AS manual
                FROM track_matches
                """
            ).fetchone()
        return {
            "total": int(row["total"] or 0),
            "average_confidence": float(row["average"] or 0.0),
            "manual": int(row["manual"] or 0),
        }

    # -- unmatched queue ---------------------------------------------------

    def find_pending(self, owner_id: str, track_title: str) -> Optional[UnmatchedRow]:
        with self._lock, self._guard("reading unmatched track"):
            row = self._conn.execute(
                "SELECT * FROM unmatched_tracks WHERE owner_id = ? AND track_title = ? AND status = 'pending'",
                (owner_id, track_title),
            ).fetchone()
        return dict(row) if row else None

    def insert_unmatched(
        self,
        owner_id: str,
        track_title: str,
        artist: Optional[str],
        duration_ms: Optional[int],
        release_title: Optional[str],
        strategies_tried_count: int,
        top_candidates: str,
    ) -> int:
        with self._lock, self._guard("queueing unmatched track"):
            cursor = self._conn.execute(
                """
                INSERT INTO unmatched_tracks(
                    owner_id, track_title, artist, duration_ms, release_title,
                    strategies_tried_count, top_candidates, status, created_at
                )
                VALUES(?, ?, ?, ?, ?, ?, ?, 'pending', CURRENT_TIMESTAMP)
                """,
                (
                    owner_id,
                    track_title,
                    artist,
                    duration_ms,
                    release_title,
                    int(strategies_tried_count),
                    top_candidates,
                ),
            )
            self._conn.commit()
        return int(cursor.lastrowid)

    def update_unmatched(
        self,
        record_id: int,
        *,
        artist: Optional[str],
        duration_ms: Optional[int],
        release_title: Optional[str],
        strategies_tried_count: int,
        top_candidates: str,
    ) -> bool:
        with self._lock, self._guard("updating unmatched track"):
            cursor = self._conn.execute(
                """
                UPDATE unmatched_tracks
                SET artist = ?, duration_ms = ?, release_title = ?,
                    strategies_tried_count = ?, top_candidates = ?
                WHERE id = ? AND status = 'pending'
                """,
                (
                    artist,
                    duration_ms,
                    release_title,
                    int(strategies_tried_count),
                    top_candidates,
                    int(record_id),
                ),
            )
            self._conn.commit()
        return cursor.rowcount > 0

    def get_unmatched(self, record_id: int) -> Optional[UnmatchedRow]:
        with self._lock, self._guard("reading unmatched track"):
            row = self._conn.execute(
                "SELECT * FROM unmatched_tracks WHERE id = ?", (int(record_id),)
            ).fetchone()
        return dict(row) if row else None

    def list_unmatched(self, status: UnmatchStatus, owner_id: Optional[str] = None) -> List[UnmatchedRow]:
        query = "SELECT * FROM unmatched_tracks WHERE status = ?"
        params: list[object] = [status.value]
        if owner_id is not None:
            query += " AND owner_id = ?"
            params.append(owner_id)
        query += " ORDER BY created_at, id"
        with self._lock, self._guard("listing unmatched tracks"):
            rows = self._conn.execute(query, params).fetchall()
        return [dict(row) for row in rows]

    def count_unmatched(self, owner_id: Optional[str] = None) -> Dict[str, int]:
        query = "SELECT status, COUNT(*) AS total FROM unmatched_tracks"
        params: list[object] = []
        if owner_id is not None:
            query += " WHERE owner_id = ?"
            params.append(owner_id)
        query += " GROUP BY status"
        with self._lock, self._guard("counting unmatched tracks"):
            rows = self._conn.execute(query, params).fetchall()
        counts = {status.value: 0 for status in UnmatchStatus}
        for row in rows:
            counts[row["status"]] = int(row["total"])
        return counts

    def resolve_unmatched(
        self,
        record_id: int,
        external_id: str,
        *,
        owner_id: str,
        track_key: str,
        matched_title: Optional[str],
    ) -> bool:
        """Mark a pending record resolved and store the manual match in one transaction."""
        with self._lock, self._guard("resolving unmatched track"):
            cursor = self._conn.execute(
                """
                UPDATE unmatched_tracks
                SET status = 'resolved', resolved_external_id = ?, resolved_at = CURRENT_TIMESTAMP
                WHERE id = ? AND status = 'pending'
                """,
                (external_id, int(record_id)),
            )
            if cursor.rowcount == 0:
                self._conn.rollback()
                return False
            self._upsert_match(
                owner_id, track_key, external_id, 1.0, matched_title, MatchSource.MANUAL
            )
            self._conn.commit()
        return True

    def skip_unmatched(self, record_id: int) -> bool:
        with self._lock, self._guard("skipping unmatched track"):
            cursor = self._conn.execute(
                """
                UPDATE unmatched_tracks
                SET status = 'skipped', resolved_at = CURRENT_TIMESTAMP
                WHERE id = ? AND status = 'pending'
                """,
                (int(record_id),),
            )
            self._conn.commit()
        return cursor.rowcount > 0


def _match_from_row(row: sqlite3.Row) -> CachedMatch:
    try:
        source = MatchSource(row["source"])
    except ValueError:
        source = MatchSource.AUTOMATIC
    return CachedMatch(
        owner_id=row["owner_id"],
        track_key=row["track_key"],
        external_id=row["external_id"],
        confidence=float(row["confidence"]),
        matched_title=row["matched_title"],
        resolved_at=row["resolved_at"],
        source=source,
    )
