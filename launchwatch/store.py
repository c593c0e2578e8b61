"""Watchlist store: one row per mint plus an append-only transition history.

DB file: state/watchlist.db

Key behaviors:
  - save: upsert the entry row and append its transitions in ONE transaction
  - insert_if_absent: discovery path, never overwrites an existing mint
  - due_entries: selection query for the polling cycle
  - WAL mode for concurrent read/write safety
"""

from __future__ import annotations

import json
import sqlite3
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable

from launchwatch.config import WORKSPACE
from launchwatch.models import (
    ACTIVE_STATUSES,
    RejectionKind,
    TransitionRecord,
    WatchlistEntry,
    WatchlistStatus,
)

DEFAULT_DB_PATH = WORKSPACE / "state" / "watchlist.db"


def to_db_time(dt: datetime | None) -> str | None:
    """Fixed-width UTC text so SQL string comparison orders correctly."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


# ── SQL Schema ───────────────────────────────────────────────────────

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS watchlist (
    mint              TEXT PRIMARY KEY,
    symbol            TEXT NOT NULL DEFAULT '',
    status            TEXT NOT NULL,
    rejection_kind    TEXT,
    first_seen_at     TEXT NOT NULL,
    last_checked_at   TEXT,
    rejected_at       TEXT,
    score_total       REAL NOT NULL DEFAULT 0,
    priority_score    REAL NOT NULL DEFAULT 0,
    entry_json        TEXT NOT NULL,
    updated_at        TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_watchlist_status ON watchlist(status);
CREATE INDEX IF NOT EXISTS idx_watchlist_checked ON watchlist(last_checked_at);
CREATE INDEX IF NOT EXISTS idx_watchlist_priority ON watchlist(priority_score);

CREATE TABLE IF NOT EXISTS transitions (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    mint        TEXT NOT NULL,
    from_label  TEXT NOT NULL,
    to_label    TEXT NOT NULL,
    reason      TEXT NOT NULL,
    at          TEXT NOT NULL,
    source      TEXT NOT NULL DEFAULT 'cycle'
);
CREATE INDEX IF NOT EXISTS idx_transitions_mint ON transitions(mint);
"""


class WatchlistStore:
    """SQLite-backed watchlist keyed by mint."""

    def __init__(self, db_path: str | Path | None = None):
        self.db_path = Path(db_path) if db_path else DEFAULT_DB_PATH
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._init_db()

    def _init_db(self) -> None:
        with self._lock:
            conn = self._conn()
            conn.executescript(_SCHEMA_SQL)
            conn.close()

    def _conn(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path), timeout=10)
        conn.execute("PRAGMA journal_mode=WAL")
        return conn

    @staticmethod
    def _row_values(entry: WatchlistEntry) -> tuple:
        return (
            entry.mint,
            entry.symbol,
            entry.status.value,
            entry.rejection_kind.value if entry.rejection_kind else None,
            to_db_time(entry.first_seen_at),
            to_db_time(entry.last_checked_at),
            to_db_time(entry.rejected_at),
            entry.score.total,
            entry.priority_score,
            entry.model_dump_json(),
            to_db_time(datetime.now(timezone.utc)),
        )

    # ── Write ────────────────────────────────────────────────────────

    def insert_if_absent(self, entry: WatchlistEntry) -> bool:
        """Insert a newly discovered entry. False if the mint already exists."""
        with self._lock:
            conn = self._conn()
            try:
                cur = conn.execute(
                    """INSERT OR IGNORE INTO watchlist
                    (mint, symbol, status, rejection_kind, first_seen_at, last_checked_at,
                     rejected_at, score_total, priority_score, entry_json, updated_at)
                    VALUES (?,?,?,?,?,?,?,?,?,?,?)""",
                    self._row_values(entry),
                )
                conn.commit()
                return cur.rowcount == 1
            finally:
                conn.close()

    def save(self, entry: WatchlistEntry, transitions: Iterable[TransitionRecord] = ()) -> None:
        """Upsert ``entry`` and append ``transitions`` atomically."""
        with self._lock:
            conn = self._conn()
            try:
                with conn:
                    conn.execute(
                        """INSERT INTO watchlist
                        (mint, symbol, status, rejection_kind, first_seen_at, last_checked_at,
                         rejected_at, score_total, priority_score, entry_json, updated_at)
                        VALUES (?,?,?,?,?,?,?,?,?,?,?)
                        ON CONFLICT(mint) DO UPDATE SET
                            symbol=excluded.symbol,
                            status=excluded.status,
                            rejection_kind=excluded.rejection_kind,
                            last_checked_at=excluded.last_checked_at,
                            rejected_at=excluded.rejected_at,
                            score_total=excluded.score_total,
                            priority_score=excluded.priority_score,
                            entry_json=excluded.entry_json,
                            updated_at=excluded.updated_at""",
                        self._row_values(entry),
                    )
                    for t in transitions:
                        conn.execute(
                            """INSERT INTO transitions (mint, from_label, to_label, reason, at, source)
                            VALUES (?,?,?,?,?,?)""",
                            (t.mint, t.from_label, t.to_label, t.reason, to_db_time(t.at), t.source),
                        )
            finally:
                conn.close()

    # ── Read ─────────────────────────────────────────────────────────

    def get(self, mint: str) -> WatchlistEntry | None:
        conn = self._conn()
        row = conn.execute("SELECT entry_json FROM watchlist WHERE mint = ?", (mint,)).fetchone()
        conn.close()
        if row is None:
            return None
        return WatchlistEntry.model_validate_json(row[0])

    def _select(self, where: str, params: tuple, order: str, limit: int | None) -> list[WatchlistEntry]:
        sql = f"SELECT entry_json FROM watchlist WHERE {where} ORDER BY {order}"
        if limit is not None:
            sql += f" LIMIT {int(limit)}"
        conn = self._conn()
        rows = conn.execute(sql, params).fetchall()
        conn.close()
        return [WatchlistEntry.model_validate_json(r[0]) for r in rows]

    def due_entries(self, recheck_cutoff: datetime, cooldown_cutoff: datetime, limit: int) -> list[WatchlistEntry]:
        """Entries needing a check, newest first.

        - watching / qualified / pending_triage not checked since ``recheck_cutoff``
        - soft-rejected whose last check is older than ``cooldown_cutoff``
        """
        return self._select(
            """(status IN (?,?,?) AND (last_checked_at IS NULL OR last_checked_at <= ?))
               OR (status = ? AND rejection_kind = ?
                   AND COALESCE(last_checked_at, rejected_at) <= ?)""",
            (
                WatchlistStatus.WATCHING.value,
                WatchlistStatus.QUALIFIED.value,
                WatchlistStatus.PENDING_TRIAGE.value,
                to_db_time(recheck_cutoff),
                WatchlistStatus.REJECTED.value,
                RejectionKind.SOFT.value,
                to_db_time(cooldown_cutoff),
            ),
            "first_seen_at DESC",
            limit,
        )

    def list_entries(self, status: WatchlistStatus | None = None, limit: int | None = 100) -> list[WatchlistEntry]:
        if status is None:
            return self._select("1=1", (), "first_seen_at DESC", limit)
        return self._select("status = ?", (status.value,), "first_seen_at DESC", limit)

    def active_entries(self) -> list[WatchlistEntry]:
        """Active entries in pruning order: watching before qualified, lowest priority first."""
        return self._select(
            "status IN (?,?)",
            tuple(s.value for s in ACTIVE_STATUSES),
            f"CASE status WHEN '{WatchlistStatus.WATCHING.value}' THEN 0 ELSE 1 END, priority_score ASC, first_seen_at ASC",
            None,
        )

    def count_active(self) -> int:
        conn = self._conn()
        row = conn.execute(
            "SELECT COUNT(*) FROM watchlist WHERE status IN (?,?)",
            tuple(s.value for s in ACTIVE_STATUSES),
        ).fetchone()
        conn.close()
        return row[0] if row else 0

    def count_by_status(self) -> dict[str, int]:
        conn = self._conn()
        rows = conn.execute(
            "SELECT status, rejection_kind, COUNT(*) FROM watchlist GROUP BY status, rejection_kind"
        ).fetchall()
        conn.close()
        counts: dict[str, int] = {}
        for status, kind, n in rows:
            label = f"{status}({kind})" if kind else status
            counts[label] = n
        return counts

    def known_mints(self, mints: Iterable[str]) -> set[str]:
        mints = list(mints)
        if not mints:
            return set()
        placeholders = ",".join("?" for _ in mints)
        conn = self._conn()
        rows = conn.execute(f"SELECT mint FROM watchlist WHERE mint IN ({placeholders})", mints).fetchall()
        conn.close()
        return {r[0] for r in rows}

    def transitions(self, mint: str) -> list[TransitionRecord]:
        conn = self._conn()
        rows = conn.execute(
            "SELECT mint, from_label, to_label, reason, at, source FROM transitions WHERE mint = ? ORDER BY id",
            (mint,),
        ).fetchall()
        conn.close()
        return [
            TransitionRecord(
                mint=r[0],
                from_label=r[1],
                to_label=r[2],
                reason=r[3],
                at=datetime.strptime(r[4], "%Y-%m-%dT%H:%M:%S.%fZ").replace(tzinfo=timezone.utc),
                source=r[5],
            )
            for r in rows
        ]

    def transition_count(self) -> int:
        conn = self._conn()
        row = conn.execute("SELECT COUNT(*) FROM transitions").fetchone()
        conn.close()
        return row[0] if row else 0
