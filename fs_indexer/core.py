import time
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Set, Union

from tqdm import tqdm

from . import config
from .database.db import DBManager
from .database.ops import DBOperations
from .duplicates import DuplicateFinder
from .exceptions import ConfigurationError, DatabaseError
from .models import (DuplicateGroup, EntryFailure, FailureKind, FileRecord, FilterClause, Page,
                     ScanSummary, Sort)
from .query import QueryEngine
from .scanning.filesystem import DiskScanner


class FileIndex:
    """
    Handle on one index database. Passed to (or owned by) whatever front-end
    drives scans and queries; there is no module-level store.

    Scans write through a single connection under the manager's write lock.
    Queries open their own read connections and may run while a scan is in
    progress, seeing whatever the scan has committed so far.
    """

    def __init__(self, db_path: Union[Path, str] = config.DEFAULT_DB_NAME):
        self.db_manager = DBManager(db_path)
        # Fail fast on unreachable file or incompatible schema
        self.db_manager.connect()

    def index(self,
              root: Union[Path, str],
              compute_hash: bool = False,
              prune_missing: bool = False,
              follow_symlinks: bool = config.FOLLOW_SYMLINKS,
              max_workers: int = config.DEFAULT_MAX_WORKERS,
              cancel: Optional[threading.Event] = None,
              progress: bool = False) -> ScanSummary:
        """
        Walks ``root`` and upserts every regular file into the index.

        Args:
            compute_hash: Hash every file's content (fresh digest each scan).
                Files re-scanned without hashing lose any previous digest.
            prune_missing: After a complete walk, delete indexed paths under
                ``root`` that were not seen. Skipped if the scan is cancelled.
                Entries that failed to read, and anything under a directory
                that could not be opened, are kept.
            cancel: Set from another thread to abort; the uncommitted batch
                is rolled back and OperationCancelled is raised.
            progress: Show a tqdm progress bar.

        Raises:
            ConfigurationError: if ``root`` is missing or not a directory.
            DatabaseError: if a write fails; earlier batches stay committed.
            OperationCancelled: if ``cancel`` is set.
        """
        root_path = Path(root)
        if not root_path.exists():
            raise ConfigurationError(f"Root path {root} does not exist.")
        if not root_path.is_dir():
            raise ConfigurationError(f"Root path {root} is not a directory.")
        root_path = root_path.resolve()

        scanner = DiskScanner(follow_symlinks=follow_symlinks, max_workers=max_workers)
        conn = self.db_manager.connect()
        db_ops = DBOperations(conn)
        summary = ScanSummary(root=str(root_path))
        seen = set()
        unreadable_dirs: List[str] = []
        scan_time = time.time()

        logging.info(f"Indexing {root_path} (hash={compute_hash}, prune={prune_missing})...")

        with self.db_manager.write_lock:
            batch: List[FileRecord] = []
            outcomes = scanner.scan(root_path, compute_hash=compute_hash, cancel=cancel)
            try:
                for outcome in tqdm(outcomes, desc="Indexing", unit="file", disable=not progress):
                    summary.add(outcome)
                    if outcome.record is None:
                        self._note_failure(outcome.failure, seen, unreadable_dirs)
                        continue
                    batch.append(outcome.record)
                    seen.add(outcome.record.path)
                    if len(batch) >= config.COMMIT_BATCH_SIZE:
                        self._commit_batch(db_ops, batch, scan_time)
                        batch = []
                self._commit_batch(db_ops, batch, scan_time)
            except BaseException:
                logging.warning(f"Scan of {root_path} aborted after {summary.indexed} files; "
                                f"{len(batch)} uncommitted records discarded.")
                raise
            finally:
                outcomes.close()

            if prune_missing:
                try:
                    summary.removed = db_ops.delete_missing(root_path, seen, skip_dirs=unreadable_dirs)
                except sqlite3.Error as e:
                    raise DatabaseError(f"Failed to prune stale entries under {root_path}: {e}") from e
                logging.info(f"Removed {summary.removed} stale entries under {root_path}")
                if unreadable_dirs:
                    logging.info(f"Kept entries under {len(unreadable_dirs)} unreadable directories")

        logging.info(f"Scan complete. Indexed {summary.indexed}, skipped {summary.skipped}, "
                     f"errors {summary.error_count}.")
        return summary

    @staticmethod
    def _note_failure(failure: EntryFailure, seen: Set[str], unreadable_dirs: List[str]):
        """
        Entries that exist but could not be read this time keep their rows when
        pruning, and so does everything under a directory that could not be
        opened. Links and special files that are deliberately not indexed do not.
        """
        if failure.kind == FailureKind.DIRECTORY_UNREADABLE:
            unreadable_dirs.append(failure.path)
        elif failure.kind in (FailureKind.UNREADABLE, FailureKind.PERMISSION_DENIED):
            seen.add(failure.path)

    def _commit_batch(self, db_ops: DBOperations, batch: List[FileRecord], scan_time: float):
        if not batch:
            return
        try:
            with db_ops.conn:
                for rec in batch:
                    db_ops.upsert_file_record(rec, scan_time)
        except sqlite3.Error as e:
            raise DatabaseError(f"Failed to write {len(batch)} records: {e}") from e
        logging.debug(f"Committed {len(batch)} records")

    def search(self,
               filters: Optional[Iterable[FilterClause]] = None,
               sort: Optional[Sort] = None,
               page: Optional[Page] = None,
               cancel: Optional[threading.Event] = None) -> List[FileRecord]:
        with self.db_manager.reader() as conn:
            return QueryEngine(DBOperations(conn)).search(filters, sort, page, cancel=cancel)

    def recent(self, limit: int = config.DEFAULT_RECENT_LIMIT) -> List[FileRecord]:
        with self.db_manager.reader() as conn:
            return QueryEngine(DBOperations(conn)).recent(limit)

    def find_duplicates(self, limit: Optional[int] = config.DEFAULT_DUPLICATE_LIMIT) -> Iterator[DuplicateGroup]:
        """
        Lazily yields duplicate groups. The read connection stays open until
        the iterator is exhausted or closed.
        """
        if limit is not None and limit < 0:
            raise ConfigurationError(f"limit must be non-negative, got {limit}")
        return self._iter_duplicates(limit)

    def _iter_duplicates(self, limit: Optional[int]) -> Iterator[DuplicateGroup]:
        with self.db_manager.reader() as conn:
            try:
                yield from DuplicateFinder(DBOperations(conn)).find(limit)
            except sqlite3.Error as e:
                raise DatabaseError(f"Duplicate search failed: {e}") from e

    def delete(self, path: Union[Path, str]) -> bool:
        """Drops a single path from the index. Returns True if it was present."""
        conn = self.db_manager.connect()
        with self.db_manager.write_lock:
            try:
                with conn:
                    return DBOperations(conn).delete_path(str(path)) > 0
            except sqlite3.Error as e:
                raise DatabaseError(f"Failed to delete {path}: {e}") from e

    def close(self):
        self.db_manager.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
