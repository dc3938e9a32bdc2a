import os
import sqlite3
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Sequence, Tuple

from ..models import FileRecord, from_epoch
from .db import configure_connection

SELECT_COLUMNS = "path, name, extension, size, modified_at, added_at, content_hash"
PATH_CHUNK_SIZE = 500


def row_to_record(row: Sequence) -> FileRecord:
    path, name, extension, size, modified_at, added_at, content_hash = row
    return FileRecord(
        path=path,
        name=name,
        extension=extension,
        size=size,
        modified_at=from_epoch(modified_at),
        added_at=from_epoch(added_at),
        content_hash=content_hash,
    )


def _dir_prefix(path) -> str:
    return str(path).rstrip(os.sep) + os.sep


class DBOperations:
    """
    Statement-level access to the ``files`` table.

    Write methods do not commit; callers group them into transactions
    (``with conn:``) so a failed batch rolls back as a whole.
    """

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        configure_connection(conn)

    def upsert_file_record(self, rec: FileRecord, scan_time: float):
        """
        Inserts a new path with ``added_at = scan_time``, or refreshes every
        other column of an existing one. ``added_at`` is never overwritten.
        """
        self.conn.execute("""
            INSERT INTO files (path, name, extension, size, modified_at, added_at, content_hash)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(path) DO UPDATE SET
                name = excluded.name,
                extension = excluded.extension,
                size = excluded.size,
                modified_at = excluded.modified_at,
                content_hash = excluded.content_hash
        """, (
            rec.path, rec.name, rec.extension, rec.size,
            rec.modified_at.timestamp(), scan_time, rec.content_hash,
        ))

    def delete_path(self, path: str) -> int:
        cur = self.conn.execute("DELETE FROM files WHERE path = ?", (path,))
        return cur.rowcount

    def delete_missing(self,
                       root: Path,
                       seen_paths: Iterable[str],
                       skip_dirs: Iterable[str] = ()) -> int:
        """
        Removes every indexed path under ``root`` that is not in ``seen_paths``.
        Paths under any of ``skip_dirs`` are left alone.
        Runs as one transaction; concurrent readers see either all or none of it.
        """
        prefix = _dir_prefix(root)
        conditions = ["substr(path, 1, ?) = ?", "path NOT IN (SELECT path FROM seen_paths)"]
        params: List = [len(prefix), prefix]
        for d in skip_dirs:
            skip = _dir_prefix(d)
            conditions.append("substr(path, 1, ?) != ?")
            params.extend([len(skip), skip])

        with self.conn:
            self.conn.execute("CREATE TEMP TABLE IF NOT EXISTS seen_paths (path TEXT PRIMARY KEY)")
            self.conn.execute("DELETE FROM seen_paths")
            self.conn.executemany("INSERT OR IGNORE INTO seen_paths (path) VALUES (?)",
                                  ((p,) for p in seen_paths))
            cur = self.conn.execute("DELETE FROM files WHERE " + " AND ".join(conditions), params)
            removed = cur.rowcount
            self.conn.execute("DELETE FROM seen_paths")
        return removed

    def query_files(self,
                    conditions: List[str],
                    params: List,
                    order_by: str,
                    limit: Optional[int] = None,
                    offset: int = 0) -> List[FileRecord]:
        """Runs a SELECT over ``files``; ``conditions`` are ANDed together."""
        sql = f"SELECT {SELECT_COLUMNS} FROM files"
        if conditions:
            sql += " WHERE " + " AND ".join(conditions)
        sql += f" ORDER BY {order_by}"
        # SQLite needs a LIMIT to accept OFFSET; -1 means unbounded
        sql += " LIMIT ? OFFSET ?"

        cur = self.conn.execute(sql, [*params, -1 if limit is None else limit, offset])
        return [row_to_record(r) for r in cur.fetchall()]

    def get_file(self, path: str) -> Optional[FileRecord]:
        cur = self.conn.execute(f"SELECT {SELECT_COLUMNS} FROM files WHERE path = ?", (path,))
        row = cur.fetchone()
        return row_to_record(row) if row else None

    def fetch_by_paths(self, paths: Sequence[str]) -> List[FileRecord]:
        """Returns the records still present for ``paths``, ordered by path."""
        records: List[FileRecord] = []
        paths = list(paths)
        # Stay under SQLite's bound-parameter limit
        for i in range(0, len(paths), PATH_CHUNK_SIZE):
            chunk = paths[i:i + PATH_CHUNK_SIZE]
            placeholders = ",".join("?" * len(chunk))
            cur = self.conn.execute(
                f"SELECT {SELECT_COLUMNS} FROM files WHERE path IN ({placeholders})",
                chunk,
            )
            records.extend(row_to_record(r) for r in cur.fetchall())
        records.sort(key=lambda r: r.path)
        return records

    def all_with_hash(self) -> Iterator[Tuple[str, int, str]]:
        """Yields (content_hash, size, path) for every hashed record."""
        cur = self.conn.execute("""
            SELECT content_hash, size, path
            FROM files
            WHERE content_hash IS NOT NULL
            ORDER BY content_hash, size, path
        """)
        yield from cur

    def count_files(self) -> int:
        return self.conn.execute("SELECT COUNT(*) FROM files").fetchone()[0]
