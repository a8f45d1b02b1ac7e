"""
SQLite storage for the study exchange: schema, connections and transactions.

Plain sqlite3 in WAL mode with foreign keys enforced. The base schema is
idempotent DDL; later changes are numbered MIGRATIONS recorded in
schema_version. Counter and reputation updates rely on transaction() taking
the write lock up front.
"""

from __future__ import annotations

import fcntl
import logging
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

from flask import current_app, g

logger = logging.getLogger(__name__)


SCHEMA = """
-- Migration tracking
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER NOT NULL,
    applied_at TEXT NOT NULL
);

-- Institutions
CREATE TABLE IF NOT EXISTS schools (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    domain TEXT NOT NULL UNIQUE,
    created_at TEXT NOT NULL DEFAULT ''
);

CREATE TABLE IF NOT EXISTS departments (
    id TEXT PRIMARY KEY,
    school_id TEXT NOT NULL REFERENCES schools(id) ON DELETE CASCADE,
    name TEXT NOT NULL,
    UNIQUE (school_id, name)
);

CREATE TABLE IF NOT EXISTS courses (
    id TEXT PRIMARY KEY,
    school_id TEXT NOT NULL REFERENCES schools(id) ON DELETE CASCADE,
    department_id TEXT REFERENCES departments(id) ON DELETE SET NULL,
    course_code TEXT NOT NULL,
    title TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL DEFAULT '',
    UNIQUE (school_id, course_code)
);

-- Users
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    school_id TEXT NOT NULL REFERENCES schools(id),
    name TEXT NOT NULL,
    email TEXT NOT NULL UNIQUE,
    password_hash TEXT NOT NULL,
    email_verified INTEGER NOT NULL DEFAULT 0,
    email_verification_token TEXT NOT NULL DEFAULT '',
    reputation_score INTEGER NOT NULL DEFAULT 0,
    login_attempts INTEGER NOT NULL DEFAULT 0,
    locked_until TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL
);

-- Shared study resources (flashcard sets and notes)
CREATE TABLE IF NOT EXISTS study_resources (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    course_id TEXT NOT NULL REFERENCES courses(id) ON DELETE CASCADE,
    type TEXT NOT NULL CHECK (type IN ('FLASHCARDS', 'NOTES')),
    title TEXT NOT NULL,
    exam_tag TEXT,
    upvotes INTEGER NOT NULL DEFAULT 0 CHECK (upvotes >= 0),
    used_count INTEGER NOT NULL DEFAULT 0 CHECK (used_count >= 0),
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS flashcards (
    id TEXT PRIMARY KEY,
    resource_id TEXT NOT NULL REFERENCES study_resources(id) ON DELETE CASCADE,
    front TEXT NOT NULL,
    back TEXT NOT NULL,
    sort_order INTEGER NOT NULL,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS resource_files (
    id TEXT PRIMARY KEY,
    resource_id TEXT NOT NULL REFERENCES study_resources(id) ON DELETE CASCADE,
    filename TEXT NOT NULL,
    stored_name TEXT NOT NULL,
    mime_type TEXT NOT NULL DEFAULT '',
    size_bytes INTEGER NOT NULL DEFAULT 0,
    extracted_text TEXT NOT NULL DEFAULT '',
    uploaded_at TEXT NOT NULL
);

-- Course reviews
CREATE TABLE IF NOT EXISTS course_reviews (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    course_id TEXT NOT NULL REFERENCES courses(id) ON DELETE CASCADE,
    workload_rating INTEGER NOT NULL CHECK (workload_rating BETWEEN 1 AND 5),
    difficulty_rating INTEGER NOT NULL CHECK (difficulty_rating BETWEEN 1 AND 5),
    overall_rating INTEGER NOT NULL CHECK (overall_rating BETWEEN 1 AND 5),
    exam_style TEXT,
    attendance_required INTEGER NOT NULL DEFAULT 0,
    review_text TEXT NOT NULL,
    helpful_votes INTEGER NOT NULL DEFAULT 0 CHECK (helpful_votes >= 0),
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    UNIQUE (user_id, course_id)
);

-- Join rows: one per (user, target)
CREATE TABLE IF NOT EXISTS resource_upvotes (
    user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    resource_id TEXT NOT NULL REFERENCES study_resources(id) ON DELETE CASCADE,
    created_at TEXT NOT NULL,
    PRIMARY KEY (user_id, resource_id)
);

CREATE TABLE IF NOT EXISTS helpful_votes (
    user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    review_id TEXT NOT NULL REFERENCES course_reviews(id) ON DELETE CASCADE,
    created_at TEXT NOT NULL,
    PRIMARY KEY (user_id, review_id)
);

CREATE TABLE IF NOT EXISTS saved_courses (
    user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    course_id TEXT NOT NULL REFERENCES courses(id) ON DELETE CASCADE,
    created_at TEXT NOT NULL,
    PRIMARY KEY (user_id, course_id)
);

CREATE TABLE IF NOT EXISTS saved_resources (
    user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    resource_id TEXT NOT NULL REFERENCES study_resources(id) ON DELETE CASCADE,
    created_at TEXT NOT NULL,
    PRIMARY KEY (user_id, resource_id)
);

-- Security audit trail
CREATE TABLE IF NOT EXISTS audit_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id TEXT,
    action TEXT NOT NULL,
    detail TEXT NOT NULL DEFAULT '',
    ip_address TEXT NOT NULL DEFAULT '',
    user_agent TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL
);
"""


# Versioned migrations: (version, sql). Applied once each, in order.
MIGRATIONS: list[tuple[int, str]] = [
    (2, """
        CREATE INDEX IF NOT EXISTS idx_resources_course_type ON study_resources(course_id, type);
        CREATE INDEX IF NOT EXISTS idx_resources_user ON study_resources(user_id, created_at);
        CREATE INDEX IF NOT EXISTS idx_flashcards_resource ON flashcards(resource_id, sort_order);
        CREATE INDEX IF NOT EXISTS idx_files_resource ON resource_files(resource_id);
    """),
    (3, """
        CREATE INDEX IF NOT EXISTS idx_reviews_course ON course_reviews(course_id, helpful_votes);
        CREATE INDEX IF NOT EXISTS idx_users_school_rep ON users(school_id, reputation_score);
    """),
    (4, """
        CREATE INDEX IF NOT EXISTS idx_audit_user ON audit_log(user_id, created_at);
        CREATE INDEX IF NOT EXISTS idx_courses_department ON courses(department_id);
    """),
]


def utcnow() -> str:
    """Current UTC time as an ISO-8601 string (the storage format for timestamps)."""
    return datetime.now(timezone.utc).isoformat()


def new_id() -> str:
    return uuid.uuid4().hex


def connect(db_path: str, timeout: float = 10.0) -> sqlite3.Connection:
    """Open a configured connection: Row results, WAL, enforced foreign keys."""
    db = sqlite3.connect(db_path, timeout=timeout)
    db.row_factory = sqlite3.Row
    db.execute("PRAGMA journal_mode=WAL")
    db.execute("PRAGMA foreign_keys=ON")
    return db


def _db_path() -> str:
    return current_app.config.get("DATABASE", str(Path(__file__).parent / "study_exchange.db"))


def get_db() -> sqlite3.Connection:
    """The connection bound to the current app context, opened on first use."""
    if "db" not in g:
        g.db = connect(_db_path(), timeout=current_app.config.get("DB_BUSY_TIMEOUT", 10.0))
    return g.db


def close_db(e=None) -> None:
    db = g.pop("db", None)
    if db is not None:
        db.close()


@contextmanager
def transaction(db: sqlite3.Connection | None = None) -> Iterator[sqlite3.Connection]:
    """Run a block as one atomic unit of work.

    The outermost block takes the write lock up front (BEGIN IMMEDIATE) so
    concurrent writers queue on the busy timeout instead of interleaving.
    Nested blocks become savepoints. Any exception rolls the block back.
    """
    db = db if db is not None else get_db()

    if db.in_transaction:
        name = f"sp_{uuid.uuid4().hex[:12]}"
        db.execute(f"SAVEPOINT {name}")
        try:
            yield db
        except BaseException:
            db.execute(f"ROLLBACK TO SAVEPOINT {name}")
            db.execute(f"RELEASE SAVEPOINT {name}")
            raise
        db.execute(f"RELEASE SAVEPOINT {name}")
        return

    db.execute("BEGIN IMMEDIATE")
    try:
        yield db
    except BaseException:
        db.rollback()
        raise
    db.commit()


def init_db() -> None:
    """Create any missing tables. Safe to run on every start."""
    db = get_db()
    db.executescript(SCHEMA)
    db.commit()


@contextmanager
def _migration_lock(db_path: str) -> Iterator[None]:
    """Exclusive file lock beside the database; workers booting together take turns."""
    if db_path == ":memory:":
        yield
        return
    try:
        handle = open(Path(db_path).with_suffix(".migration.lock"), "w")
    except OSError:
        handle = None
    if handle is None:
        logger.warning("Migration lock unavailable for %s, continuing unlocked", db_path)
        yield
        return
    with handle:
        fcntl.flock(handle, fcntl.LOCK_EX)
        try:
            yield
        finally:
            fcntl.flock(handle, fcntl.LOCK_UN)


def _apply_migration(db: sqlite3.Connection, version: int, sql: str) -> None:
    try:
        db.executescript(sql)
    except sqlite3.OperationalError as e:
        # A half-applied earlier run may have created some objects already
        if "already exists" not in str(e).lower() and "duplicate column" not in str(e).lower():
            raise
    db.execute("INSERT INTO schema_version (version, applied_at) VALUES (?, ?)", (version, utcnow()))
    db.commit()
    logger.info("Applied migration %s", version)


def run_migrations() -> None:
    """Apply every entry of MIGRATIONS not yet recorded in schema_version, in order."""
    with _migration_lock(_db_path()):
        db = get_db()
        done = {row["version"] for row in db.execute("SELECT version FROM schema_version")}
        for version, sql in MIGRATIONS:
            if version not in done:
                _apply_migration(db, version, sql)


def init_app(app) -> None:
    """Register teardown, CLI commands and auto-init on first request."""
    app.teardown_appcontext(close_db)

    @app.before_request
    def _ensure_db():
        if not getattr(app, "_db_initialized", False):
            init_db()
            run_migrations()
            app._db_initialized = True

    @app.cli.command("init-db")
    def init_db_command():
        """Create tables and apply migrations."""
        init_db()
        run_migrations()
        print("Initialized the database.")

    @app.cli.command("seed-demo")
    def seed_demo_command():
        """Load demo schools, courses and users."""
        from seed_demo_data import seed

        init_db()
        run_migrations()
        summary = seed(get_db())
        print(f"Seeded: {summary}")
