from __future__ import annotations

import logging
from pathlib import Path
import sqlite3
import time

from .results import SessionResult

SCHEMA_VERSION = 1

logger = logging.getLogger("cosmos_mind.persistence")


def open_db(path: Path) -> sqlite3.Connection:
    conn = sqlite3.connect(path)
    conn.execute("PRAGMA foreign_keys=ON;")
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    _migrate(conn)
    return conn


def _utc_now_iso() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(time.time()))


def _migrate(conn: sqlite3.Connection) -> None:
    row = conn.execute("PRAGMA user_version;").fetchone()
    ver = int(row[0]) if row else 0
    if ver >= SCHEMA_VERSION:
        return

    with conn:
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS mind_snapshot (
                id INTEGER PRIMARY KEY,
                saved_at_s REAL NOT NULL,
                saved_at_utc TEXT NOT NULL,
                payload TEXT NOT NULL
            );
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS play_session (
                id INTEGER PRIMARY KEY,
                app_version TEXT NOT NULL,
                rng_seed INTEGER NOT NULL,
                started_at_s REAL NOT NULL,
                duration_s REAL NOT NULL,
                final_difficulty REAL NOT NULL,
                cognitive_stage TEXT NOT NULL,
                dominant_archetype TEXT NOT NULL,
                completed_at_utc TEXT NOT NULL
            );
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS metric (
                session_id INTEGER NOT NULL REFERENCES play_session(id) ON DELETE CASCADE,
                key TEXT NOT NULL,
                value TEXT NOT NULL,
                PRIMARY KEY (session_id, key)
            );
            """
        )
        conn.execute(
            """
            CREATE TABLE IF NOT EXISTS round_event (
                id INTEGER PRIMARY KEY,
                session_id INTEGER NOT NULL REFERENCES play_session(id) ON DELETE CASCADE,
                round INTEGER NOT NULL,
                rule_kind TEXT NOT NULL,
                element_id TEXT,
                feedback TEXT NOT NULL,
                is_correct INTEGER NOT NULL,
                rt_ms INTEGER NOT NULL,
                difficulty REAL NOT NULL,
                temporal INTEGER NOT NULL,
                inverted INTEGER NOT NULL
            );
            """
        )
        conn.execute("CREATE INDEX IF NOT EXISTS idx_round_event_session ON round_event(session_id, round);")
        conn.execute(f"PRAGMA user_version={SCHEMA_VERSION};")


def save_mind_snapshot(*, db_path: Path, payload: str, saved_at_s: float) -> int:
    """Store an exported mind model verbatim; the newest row wins on load."""

    conn = open_db(db_path)
    try:
        with conn:
            cur = conn.execute(
                "INSERT INTO mind_snapshot(saved_at_s, saved_at_utc, payload) VALUES (?, ?, ?)",
                (float(saved_at_s), _utc_now_iso(), str(payload)),
            )
            return int(cur.lastrowid)
    finally:
        conn.close()


def load_latest_mind_snapshot(*, db_path: Path) -> str | None:
    if not Path(db_path).exists():
        return None
    conn = open_db(db_path)
    try:
        row = conn.execute("SELECT payload FROM mind_snapshot ORDER BY id DESC LIMIT 1").fetchone()
    finally:
        conn.close()
    return None if row is None else str(row[0])


def record_session_result(*, db_path: Path, result: SessionResult, app_version: str) -> int:
    """
    One finished session:
      play_session -> metric + round_event
    """
    conn = open_db(db_path)
    try:
        return _insert_session(conn=conn, result=result, app_version=app_version)
    finally:
        conn.close()


def _insert_session(*, conn: sqlite3.Connection, result: SessionResult, app_version: str) -> int:
    with conn:
        cur = conn.execute(
            """
            INSERT INTO play_session(
                app_version, rng_seed, started_at_s, duration_s,
                final_difficulty, cognitive_stage, dominant_archetype,
                completed_at_utc
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                app_version,
                int(result.seed),
                float(result.started_at_s),
                float(result.duration_s),
                float(result.final_difficulty),
                str(result.cognitive_stage),
                str(result.dominant_archetype),
                _utc_now_iso(),
            ),
        )
        session_id = int(cur.lastrowid)

        mean_rt = "" if result.mean_rt_ms is None else f"{result.mean_rt_ms:.3f}"
        median_rt = "" if result.median_rt_ms is None else f"{result.median_rt_ms:.3f}"
        metrics = {
            "rounds": str(result.rounds),
            "correct": str(result.correct),
            "accuracy": f"{result.accuracy:.6f}",
            "mean_rt_ms": mean_rt,
            "median_rt_ms": median_rt,
        }
        for k, v in metrics.items():
            conn.execute("INSERT INTO metric(session_id, key, value) VALUES (?, ?, ?)", (session_id, k, v))

        for e in result.events:
            conn.execute(
                """
                INSERT INTO round_event(
                    session_id, round, rule_kind, element_id, feedback,
                    is_correct, rt_ms, difficulty, temporal, inverted
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    session_id,
                    int(e.round),
                    str(e.rule_kind),
                    e.element_id,
                    str(e.feedback),
                    1 if e.is_correct else 0,
                    int(round(e.response_time_ms)),
                    float(e.difficulty),
                    1 if e.temporal else 0,
                    1 if e.inverted else 0,
                ),
            )

    logger.debug("stored session %d (%d rounds)", session_id, result.rounds)
    return session_id
