"""
Database utilities for the genstudio backend.
Provides connection management and common query helpers.

All functions raise meaningful exceptions on failure - no silent failures.

Usage:
    from genstudio.db import transaction, fetch_one, query_all, Tables

    # Transaction with automatic commit/rollback
    with transaction() as cur:
        cur.execute(
            f"UPDATE {Tables.GENERATIONS} SET status = %s WHERE id = %s RETURNING *",
            ("completed", job_id),
        )
        job = fetch_one(cur)

    # One-shot helper (opens its own transaction)
    rows = query_all(f"SELECT * FROM {Tables.GENERATIONS} LIMIT %s", (20,))
"""

import os
from contextlib import contextmanager
from typing import Optional, Any, Dict, List
from datetime import datetime, timezone

import psycopg
from psycopg.rows import dict_row

# NOTE: Do NOT import config at module level - services import db early.
# Module-level constants read the environment directly.
_DATABASE_URL = os.getenv("DATABASE_URL", "").strip()
if _DATABASE_URL.startswith("postgres://"):
    _DATABASE_URL = _DATABASE_URL.replace("postgres://", "postgresql://", 1)
_DB_CONNECT_TIMEOUT = int(os.getenv("DB_CONNECT_TIMEOUT", "10"))
_APP_SCHEMA = os.getenv("APP_SCHEMA", "genstudio_app")


# ─────────────────────────────────────────────────────────────
# Custom Exceptions
# ─────────────────────────────────────────────────────────────
class DatabaseError(Exception):
    """Base exception for database errors."""
    pass


class DatabaseNotConfiguredError(DatabaseError):
    """Raised when database is not configured but an operation requires it."""
    def __init__(self, message: str = "Database is not configured"):
        super().__init__(message)


class DatabaseConnectionError(DatabaseError):
    """Raised when unable to connect to the database."""
    def __init__(self, message: str, original_error: Exception = None):
        super().__init__(message)
        self.original_error = original_error


class DatabaseQueryError(DatabaseError):
    """Raised when a query fails."""
    def __init__(self, message: str, query: str = None, original_error: Exception = None):
        super().__init__(message)
        self.query = query
        self.original_error = original_error


class DatabaseIntegrityError(DatabaseError):
    """Raised on constraint violations (unique, check, etc.)."""
    def __init__(self, message: str, constraint: str = None, original_error: Exception = None):
        super().__init__(message)
        self.constraint = constraint
        self.original_error = original_error


# ─────────────────────────────────────────────────────────────
# Connection State
# ─────────────────────────────────────────────────────────────
USE_DB = bool(_DATABASE_URL)

print(f"[DB] DATABASE_URL configured: {USE_DB}")


def now_utc() -> datetime:
    """Get current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


# ─────────────────────────────────────────────────────────────
# Connection Management
# ─────────────────────────────────────────────────────────────
def _create_connection():
    """
    Create a new database connection.
    Internal function - raises exceptions on failure.
    """
    if not _DATABASE_URL:
        raise DatabaseNotConfiguredError("DATABASE_URL is not set")

    try:
        conn = psycopg.connect(
            _DATABASE_URL,
            connect_timeout=_DB_CONNECT_TIMEOUT,
            row_factory=dict_row,
        )
        with conn.cursor() as cur:
            cur.execute(f"SET search_path TO {_APP_SCHEMA}, public;")
        return conn
    except psycopg.OperationalError as e:
        raise DatabaseConnectionError(f"Failed to connect to database: {e}", original_error=e)


@contextmanager
def transaction():
    """
    Context manager for database transactions.
    Automatically commits on success, rolls back on exception.
    Yields a cursor with dict_row factory.

    Raises:
        DatabaseNotConfiguredError: If database is not configured
        DatabaseConnectionError: If connection fails
        DatabaseQueryError: If a query fails
        DatabaseIntegrityError: On constraint violations
    """
    conn = _create_connection()
    try:
        with conn.cursor() as cur:
            yield cur
        conn.commit()
    except psycopg.errors.UniqueViolation as e:
        conn.rollback()
        constraint = getattr(e.diag, "constraint_name", None)
        raise DatabaseIntegrityError(
            f"Unique constraint violation: {e}",
            constraint=constraint,
            original_error=e,
        )
    except psycopg.errors.CheckViolation as e:
        conn.rollback()
        constraint = getattr(e.diag, "constraint_name", None)
        raise DatabaseIntegrityError(
            f"Check constraint violation: {e}",
            constraint=constraint,
            original_error=e,
        )
    except psycopg.Error as e:
        conn.rollback()
        raise DatabaseQueryError(f"Database error: {e}", original_error=e)
    except Exception:
        conn.rollback()
        raise
    finally:
        try:
            conn.close()
        except psycopg.Error:
            pass


# ─────────────────────────────────────────────────────────────
# Cursor Helpers (for use inside transaction() blocks)
# ─────────────────────────────────────────────────────────────
def fetch_one(cur) -> Optional[Dict[str, Any]]:
    """Fetch one row from cursor as dict, or None."""
    row = cur.fetchone()
    if row is None:
        return None
    if isinstance(row, dict):
        return row
    if cur.description:
        columns = [desc[0] for desc in cur.description]
        return dict(zip(columns, row))
    return None


def fetch_all(cur) -> List[Dict[str, Any]]:
    """Fetch all rows from cursor as list of dicts."""
    rows = cur.fetchall()
    if not rows:
        return []
    if isinstance(rows[0], dict):
        return list(rows)
    if cur.description:
        columns = [desc[0] for desc in cur.description]
        return [dict(zip(columns, row)) for row in rows]
    return []


# ─────────────────────────────────────────────────────────────
# Standalone Query Helpers (open their own transaction)
# ─────────────────────────────────────────────────────────────
def query_one(sql: str, params: tuple = None) -> Optional[Dict[str, Any]]:
    """
    Execute a query and return one row as dict.

    Usage:
        job = query_one(f"SELECT * FROM {Tables.GENERATIONS} WHERE id = %s", (job_id,))
    """
    with transaction() as cur:
        cur.execute(sql, params or ())
        return fetch_one(cur)


def query_all(sql: str, params: tuple = None) -> List[Dict[str, Any]]:
    """Execute a query and return all rows as list of dicts."""
    with transaction() as cur:
        cur.execute(sql, params or ())
        return fetch_all(cur)


def execute(sql: str, params: tuple = None) -> int:
    """Execute a statement and return affected row count."""
    with transaction() as cur:
        cur.execute(sql, params or ())
        return cur.rowcount


def execute_returning(sql: str, params: tuple = None) -> Optional[Dict[str, Any]]:
    """
    Execute an INSERT/UPDATE with RETURNING clause.

    A conditional UPDATE that matched nothing returns None, which is how
    callers detect that another writer got there first.
    """
    with transaction() as cur:
        cur.execute(sql, params or ())
        return fetch_one(cur)


# ─────────────────────────────────────────────────────────────
# Schema-aware Table References
# ─────────────────────────────────────────────────────────────
class Tables:
    """Table name constants with schema prefixes."""
    GENERATIONS = f"{_APP_SCHEMA}.generations"


# ─────────────────────────────────────────────────────────────
# Utility Functions
# ─────────────────────────────────────────────────────────────
def verify_connection() -> bool:
    """
    Test database connectivity.
    Returns True if connected, False otherwise.
    Does not raise exceptions.
    """
    if not USE_DB:
        return False
    try:
        result = query_one("SELECT 1 AS ok")
        return result is not None and result.get("ok") == 1
    except DatabaseError:
        return False


def init_db() -> bool:
    """
    Initialize database connection and verify connectivity.
    Called at app startup.
    Returns True if database is ready.

    Raises:
        DatabaseConnectionError: If database is configured but connection fails
    """
    if not USE_DB:
        print("[DB] DATABASE_URL not set - running with in-memory job store")
        return False

    try:
        if verify_connection():
            print("[DB] Database connection verified successfully")
            ensure_schema()
            return True
        raise DatabaseConnectionError("Connection test query failed")
    except DatabaseError as e:
        print(f"[DB] ERROR: {e}")
        raise


def ensure_schema() -> None:
    """
    Ensure the generations table and its indexes exist.
    Called at app startup after connection is verified.
    """
    try:
        with transaction() as cur:
            cur.execute(f"CREATE SCHEMA IF NOT EXISTS {_APP_SCHEMA}")
            cur.execute(f"""
                CREATE TABLE IF NOT EXISTS {Tables.GENERATIONS} (
                    id                  TEXT PRIMARY KEY,
                    generation_type     TEXT NOT NULL,
                    feature             TEXT,
                    provider            TEXT NOT NULL,
                    model_name          TEXT NOT NULL,
                    prompt              TEXT,
                    duration            TEXT,
                    aspect_ratio        TEXT,
                    resolution          TEXT,
                    audio_enabled       BOOLEAN NOT NULL DEFAULT TRUE,
                    strength            DOUBLE PRECISION,
                    input_image_url     TEXT,
                    input_video_url     TEXT,
                    character_image_url TEXT,
                    end_frame_url       TEXT,
                    provider_job_id     TEXT,
                    status              TEXT NOT NULL DEFAULT 'in_progress'
                        CHECK (status IN ('in_progress', 'completed', 'failed')),
                    video_url           TEXT,
                    image_url           TEXT,
                    thumbnail_url       TEXT,
                    artifact_state      TEXT,
                    error_code          TEXT,
                    error_message       TEXT,
                    pipeline_run_id     TEXT,
                    stage_order         DOUBLE PRECISION,
                    auto_post           BOOLEAN NOT NULL DEFAULT FALSE,
                    auto_post_id        TEXT,
                    auto_post_status    TEXT,
                    meta                JSONB NOT NULL DEFAULT '{{}}'::jsonb,
                    created_at          TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                    updated_at          TIMESTAMPTZ NOT NULL DEFAULT NOW()
                )
            """)
            cur.execute(f"""
                CREATE INDEX IF NOT EXISTS idx_generations_created_at
                ON {Tables.GENERATIONS} (created_at)
            """)
            cur.execute(f"""
                CREATE INDEX IF NOT EXISTS idx_generations_status
                ON {Tables.GENERATIONS} (status)
            """)
            # Sweep and webhook lookups
            cur.execute(f"""
                CREATE INDEX IF NOT EXISTS idx_generations_provider_job_id
                ON {Tables.GENERATIONS} (provider_job_id)
                WHERE provider_job_id IS NOT NULL
            """)
            cur.execute(f"""
                CREATE INDEX IF NOT EXISTS idx_generations_pipeline_run
                ON {Tables.GENERATIONS} (pipeline_run_id)
                WHERE pipeline_run_id IS NOT NULL
            """)

        print("[DB] Schema ensured")
    except DatabaseError as e:
        # Log but don't fail startup - DB user may lack DDL permissions
        print(f"[DB] Warning: Could not ensure schema: {e}")


def sql_in_clause(values: List[Any]) -> tuple:
    """
    Build a SQL IN clause with proper placeholders.
    Returns (placeholder_string, values_tuple).
    """
    if not values:
        return "NULL", ()
    placeholders = ", ".join(["%s"] * len(values))
    return placeholders, tuple(values)


__all__ = [
    "USE_DB",
    "DatabaseError",
    "DatabaseNotConfiguredError",
    "DatabaseConnectionError",
    "DatabaseQueryError",
    "DatabaseIntegrityError",
    "transaction",
    "now_utc",
    "fetch_one",
    "fetch_all",
    "query_one",
    "query_all",
    "execute",
    "execute_returning",
    "Tables",
    "verify_connection",
    "init_db",
    "ensure_schema",
    "sql_in_clause",
]
