"""
Database connection management.
"""
import sqlite3
import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Union

from ..exceptions import DatabaseError
from .schema import init_schema

MEMORY_DB = ":memory:"


def _casefold(value: Optional[str]) -> Optional[str]:
    return value.casefold() if value is not None else None


def configure_connection(conn: sqlite3.Connection):
    """Registers the SQL helpers every index connection relies on."""
    conn.create_function("casefold", 1, _casefold, deterministic=True)


class DBManager:
    """
    Owns the index database location.

    One writer connection (``connect``) guarded by ``write_lock``; readers get
    their own short-lived connections (``reader``) so they see the last
    committed state without waiting for an active scan.
    """

    def __init__(self, db_path: Union[Path, str]):
        self.db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None
        # SQLite WAL mode allows multiple readers, but writes need serialization
        self._write_lock = threading.Lock()

    @property
    def is_memory(self) -> bool:
        return str(self.db_path) == MEMORY_DB

    def connect(self) -> sqlite3.Connection:
        """
        Connects to the SQLite database, creating it if absent, and
        configures performance pragmas.

        Raises:
            DatabaseError: if the file cannot be opened.
            SchemaVersionError: if the schema is incompatible.
        """
        if self._conn:
            return self._conn

        logging.info(f"Connecting to database: {self.db_path}")
        try:
            conn = sqlite3.connect(self.db_path, check_same_thread=False)
        except sqlite3.Error as e:
            raise DatabaseError(f"Cannot open index database {self.db_path}: {e}") from e

        try:
            # Performance Tuning (Safe for single-writer, multi-reader)
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA synchronous=NORMAL;")
            conn.execute("PRAGMA temp_store=MEMORY;")
            configure_connection(conn)

            # Ensure schema exists
            init_schema(conn)
        except sqlite3.Error as e:
            conn.close()
            raise DatabaseError(f"Cannot open index database {self.db_path}: {e}") from e
        except DatabaseError:
            conn.close()
            raise

        self._conn = conn
        return self._conn

    @contextmanager
    def reader(self) -> Iterator[sqlite3.Connection]:
        """Yields a read connection that does not share the writer's transaction."""
        writer = self.connect()
        if self.is_memory:
            # A second connection would open a different, empty database
            yield writer
            return

        try:
            conn = sqlite3.connect(self.db_path, check_same_thread=False)
            configure_connection(conn)
        except sqlite3.Error as e:
            raise DatabaseError(f"Cannot open index database {self.db_path}: {e}") from e
        try:
            yield conn
        finally:
            conn.close()

    def close(self):
        if self._conn:
            self._conn.close()
            self._conn = None

    def __enter__(self):
        return self.connect()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    @property
    def write_lock(self) -> threading.Lock:
        """Returns the write lock for thread-safe database operations."""
        return self._write_lock
