"""
Database schema definitions.
"""
import sqlite3
import logging

from ..exceptions import SchemaVersionError

CURRENT_SCHEMA_VERSION = 1

FILES_COLUMNS = {'path', 'name', 'extension', 'size', 'modified_at', 'added_at', 'content_hash'}


def init_schema(conn: sqlite3.Connection):
    """
    Applies the core schema to the database.
    Idempotent: safe to run on every startup.

    Raises:
        SchemaVersionError: if the file was written by a different schema version
            or already holds an unrelated ``files`` table.
    """
    with conn:
        # 1. Version Tracking
        versioned = conn.execute(
            "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = 'schema_version'"
        ).fetchone() is not None
        if not versioned:
            # Checked before anything is created so a rejected file is left untouched
            _check_foreign_files_table(conn)

        conn.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY
            );
        """)

        cur = conn.cursor()
        cur.execute("SELECT version FROM schema_version")
        row = cur.fetchone()
        if row is None:
            if versioned:
                _check_foreign_files_table(conn)
            conn.execute("INSERT INTO schema_version (version) VALUES (?)", (CURRENT_SCHEMA_VERSION,))
        elif row[0] != CURRENT_SCHEMA_VERSION:
            raise SchemaVersionError(
                f"Index schema version {row[0]} is not supported (expected {CURRENT_SCHEMA_VERSION})"
            )

        # 2. Core File Table, one row per indexed path
        conn.execute("""
        CREATE TABLE IF NOT EXISTS files (
            path            TEXT PRIMARY KEY,
            name            TEXT NOT NULL,
            extension       TEXT,                 -- lowercase, no dot; NULL if none
            size            INTEGER NOT NULL,
            modified_at     REAL NOT NULL,        -- UTC epoch seconds
            added_at        REAL NOT NULL,        -- UTC epoch seconds, set once
            content_hash    TEXT                  -- NULL = never hashed
        );
        """)

        # 3. Indices for Performance
        conn.execute("CREATE INDEX IF NOT EXISTS idx_files_name ON files(name);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_files_extension ON files(extension);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_files_size ON files(size);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_files_modified_at ON files(modified_at);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_files_added_at ON files(added_at);")
        conn.execute("CREATE INDEX IF NOT EXISTS idx_files_hash_size ON files(content_hash, size);")

    logging.debug("Database schema initialized.")


def _check_foreign_files_table(conn: sqlite3.Connection):
    """An unversioned DB may still carry someone else's ``files`` table."""
    cols = {row[1] for row in conn.execute("PRAGMA table_info(files)")}
    if cols and cols != FILES_COLUMNS:
        raise SchemaVersionError(
            f"Database contains an incompatible 'files' table (columns: {', '.join(sorted(cols))})"
        )
