"""
SQLite storage for the portal.

One connection per request lives on ``flask.g``; command-line tools open their
own with ``connect()``. Timestamps are stored as UTC text
(``YYYY-MM-DD HH:MM:SS``) so they compare correctly as strings.
"""
import logging
import os
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone

logger = logging.getLogger(__name__)

TIMESTAMP_FORMAT = '%Y-%m-%d %H:%M:%S'

SCHEMA = """
CREATE TABLE IF NOT EXISTS teams (
    tnmt_id TEXT PRIMARY KEY,
    team_name TEXT,
    slug TEXT
);

CREATE TABLE IF NOT EXISTS people (
    pid TEXT PRIMARY KEY,
    first_name TEXT,
    last_name TEXT,
    nickname TEXT,
    email TEXT,
    phone TEXT,
    birth_month INTEGER,
    birth_day INTEGER,
    city TEXT,
    region TEXT,
    country TEXT,
    tnmt_id TEXT,
    did TEXT,
    team_captain INTEGER NOT NULL DEFAULT 0,
    team_order INTEGER,
    division TEXT,
    scratch_masters INTEGER NOT NULL DEFAULT 0,
    optional_events INTEGER NOT NULL DEFAULT 0,
    optional_best_3_of_9 INTEGER NOT NULL DEFAULT 0,
    optional_scratch INTEGER NOT NULL DEFAULT 0,
    optional_all_events_hdcp INTEGER NOT NULL DEFAULT 0,
    updated_at TEXT
);

CREATE TABLE IF NOT EXISTS doubles_pairs (
    did TEXT PRIMARY KEY,
    pid TEXT,
    partner_pid TEXT,
    partner_first_name TEXT,
    partner_last_name TEXT
);

CREATE TABLE IF NOT EXISTS scores (
    id TEXT PRIMARY KEY,
    pid TEXT NOT NULL,
    event_type TEXT NOT NULL,
    lane INTEGER,
    game1 INTEGER,
    game2 INTEGER,
    game3 INTEGER,
    entering_avg INTEGER,
    handicap INTEGER,
    updated_at TEXT,
    UNIQUE (pid, event_type)
);

CREATE TABLE IF NOT EXISTS audit_logs (
    id TEXT PRIMARY KEY,
    admin_email TEXT,
    pid TEXT,
    field TEXT,
    old_value TEXT,
    new_value TEXT,
    changed_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS admin_actions (
    id TEXT PRIMARY KEY,
    admin_email TEXT,
    action TEXT,
    details TEXT,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS admins (
    id TEXT PRIMARY KEY,
    email TEXT UNIQUE,
    name TEXT,
    pid TEXT,
    first_name TEXT,
    last_name TEXT,
    phone TEXT UNIQUE,
    password_hash TEXT,
    role TEXT NOT NULL DEFAULT 'super-admin',
    must_change_password INTEGER NOT NULL DEFAULT 0,
    sessions_revoked_at TEXT,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS admin_password_resets (
    id TEXT PRIMARY KEY,
    admin_id TEXT NOT NULL,
    token TEXT NOT NULL UNIQUE,
    expires_at TEXT NOT NULL,
    used_at TEXT,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS participant_login_tokens (
    token TEXT PRIMARY KEY,
    pid TEXT NOT NULL,
    expires_at TEXT NOT NULL,
    used_at TEXT,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE TABLE IF NOT EXISTS portal_settings (
    setting_key TEXT PRIMARY KEY,
    setting_value TEXT,
    updated_at TEXT
);

CREATE TABLE IF NOT EXISTS email_templates (
    id TEXT PRIMARY KEY,
    slug TEXT NOT NULL UNIQUE,
    name TEXT,
    subject TEXT,
    greeting TEXT,
    body TEXT,
    button_text TEXT,
    footer TEXT,
    html_override TEXT,
    use_html_override INTEGER NOT NULL DEFAULT 0,
    available_variables TEXT,
    created_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    updated_at TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP
);

CREATE INDEX IF NOT EXISTS idx_people_tnmt_id ON people (tnmt_id);
CREATE INDEX IF NOT EXISTS idx_people_did ON people (did);
CREATE INDEX IF NOT EXISTS idx_audit_logs_pid ON audit_logs (pid, changed_at);
"""


def utcnow() -> str:
    """Current UTC time in storage format."""
    return datetime.now(timezone.utc).strftime(TIMESTAMP_FORMAT)


def utc_in(seconds: int) -> str:
    """UTC time ``seconds`` from now in storage format."""
    return (datetime.now(timezone.utc) + timedelta(seconds=seconds)).strftime(TIMESTAMP_FORMAT)


def new_id() -> str:
    return str(uuid.uuid4())


def connect(path: str) -> sqlite3.Connection:
    """Open a connection with the schema in place.

    The connection runs in autocommit mode; use ``transaction()`` to group
    statements.
    """
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    conn = sqlite3.connect(path, isolation_level=None)
    conn.row_factory = sqlite3.Row
    conn.execute('PRAGMA foreign_keys = ON')
    conn.execute('PRAGMA journal_mode = WAL')
    init_schema(conn)
    return conn


def init_schema(conn: sqlite3.Connection):
    conn.executescript(SCHEMA)


@contextmanager
def transaction(conn: sqlite3.Connection):
    """Run the enclosed statements atomically.

    Commits when the block exits normally, rolls back and re-raises otherwise.
    """
    conn.execute('BEGIN')
    try:
        yield conn
    except Exception:
        conn.execute('ROLLBACK')
        logger.warning('Transaction rolled back')
        raise
    conn.execute('COMMIT')


def fetch_one(conn: sqlite3.Connection, sql: str, params=()):
    """Return the first row as a dict, or None."""
    row = conn.execute(sql, params).fetchone()
    return dict(row) if row is not None else None


def fetch_all(conn: sqlite3.Connection, sql: str, params=()) -> list:
    """Return all rows as dicts."""
    return [dict(row) for row in conn.execute(sql, params).fetchall()]
