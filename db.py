import json
import logging
import sqlite3
import time
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional

from config import DB_PATH
from models import MonitoringReport, ViolationRecord

logger = logging.getLogger(__name__)


def now_iso():
    return datetime.now(timezone.utc).isoformat()


SCHEMA = """
CREATE TABLE IF NOT EXISTS sessions (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    session_id TEXT UNIQUE NOT NULL,
    detector_mode TEXT NOT NULL,
    duration REAL NOT NULL,
    overall_score REAL NOT NULL,
    presence_rate REAL NOT NULL,
    report_json TEXT NOT NULL,
    ts TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS violations (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    session_id TEXT NOT NULL,
    violation_type TEXT NOT NULL,
    severity TEXT NOT NULL,
    message TEXT,
    detail TEXT,
    session_time REAL NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_sessions_ts ON sessions(ts);
CREATE INDEX IF NOT EXISTS idx_violations_session_id ON violations(session_id);
CREATE INDEX IF NOT EXISTS idx_violations_type ON violations(violation_type);
"""


def _connect(db_path: Optional[str] = None):
    return sqlite3.connect(db_path or DB_PATH)


def _execute_with_retry(func, max_attempts=3, retry_delay=0.1, db_path=None):
    """Run func(con) in a transaction, retrying only while the database is locked."""
    for attempt in range(max_attempts):
        con = _connect(db_path)
        try:
            with con:
                return func(con)
        except sqlite3.OperationalError as e:
            if "database is locked" in str(e).lower() and attempt < max_attempts - 1:
                logger.warning("[DB] Database locked, retrying... (attempt %d/%d)", attempt + 1, max_attempts)
                time.sleep(retry_delay)
            else:
                raise
        finally:
            con.close()


def init_db(db_path: Optional[str] = None):
    """Create the tables if they do not exist yet."""
    def _init(con):
        con.executescript(SCHEMA)

    try:
        _execute_with_retry(_init, db_path=db_path)
    except sqlite3.Error as e:
        logger.error("[DB] Failed to initialize database: %s", e)
        raise


def save_session(report: MonitoringReport, violations: List[ViolationRecord],
                 session_id: Optional[str] = None, db_path: Optional[str] = None) -> str:
    """
    Store a finished report and its raw violation log. Returns the session id.
    """
    session_id = session_id or uuid.uuid4().hex

    def _save(con):
        con.execute(
            "INSERT INTO sessions (session_id, detector_mode, duration, overall_score, presence_rate, report_json, ts) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (session_id, report.detector_mode, report.session_duration, report.overall_score,
             report.presence_rate, json.dumps(report.to_dict()), now_iso())
        )
        con.executemany(
            "INSERT INTO violations (session_id, violation_type, severity, message, detail, session_time) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            [(session_id, v.type, v.severity, v.message, v.detail, v.time) for v in violations]
        )

    _execute_with_retry(_save, db_path=db_path)
    logger.info("[DB] Saved session %s (%d violations)", session_id, len(violations))
    return session_id


def list_sessions(limit: int = 50, db_path: Optional[str] = None) -> List[Dict]:
    """Most recent sessions first, summary columns only."""
    def _get(con):
        return con.execute(
            "SELECT session_id, detector_mode, duration, overall_score, presence_rate, ts "
            "FROM sessions ORDER BY id DESC LIMIT ?",
            (limit,)
        ).fetchall()

    rows = _execute_with_retry(_get, db_path=db_path)
    return [
        {'session_id': r[0], 'detector_mode': r[1], 'duration': r[2],
         'overall_score': r[3], 'presence_rate': r[4], 'ts': r[5]}
        for r in rows
    ]


def get_session(session_id: str, db_path: Optional[str] = None) -> Optional[Dict]:
    """Stored report dictionary, or None for an unknown id."""
    def _get(con):
        return con.execute(
            "SELECT report_json, ts FROM sessions WHERE session_id=?", (session_id,)
        ).fetchone()

    row = _execute_with_retry(_get, db_path=db_path)
    if row is None:
        return None
    report = json.loads(row[0])
    report['session_id'] = session_id
    report['ts'] = row[1]
    return report


def get_violations(session_id: str, db_path: Optional[str] = None) -> List[Dict]:
    """Violation log of one session in emission order."""
    def _get(con):
        return con.execute(
            "SELECT violation_type, severity, message, detail, session_time "
            "FROM violations WHERE session_id=? ORDER BY id ASC",
            (session_id,)
        ).fetchall()

    rows = _execute_with_retry(_get, db_path=db_path)
    return [
        {'type': r[0], 'severity': r[1], 'message': r[2], 'detail': r[3], 'time': r[4]}
        for r in rows
    ]
