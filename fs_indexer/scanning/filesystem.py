import os
import stat
import logging
import threading
from pathlib import Path
from typing import Iterator, List, Optional, Set, Tuple, Union
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait

from .. import config
from ..exceptions import ConfigurationError, FileHashError, OperationCancelled
from ..models import EntryFailure, EntryOutcome, FailureKind
from ..metadata.extract import MetadataExtractor
from .hasher import FileHasher


class DiskScanner:
    def __init__(self,
                 follow_symlinks: bool = config.FOLLOW_SYMLINKS,
                 max_workers: int = config.DEFAULT_MAX_WORKERS):
        if max_workers < 1:
            raise ConfigurationError(f"max_workers must be at least 1, got {max_workers}")
        self.follow_symlinks = follow_symlinks
        self.max_workers = max_workers
        self.hasher = FileHasher()
        self.metadata = MetadataExtractor(follow_symlinks=follow_symlinks)

    def scan(self,
             root: Path,
             compute_hash: bool = False,
             cancel: Optional[threading.Event] = None) -> Iterator[EntryOutcome]:
        """
        Generator that yields one EntryOutcome per entry found under root.

        Failures (unreadable entries, unreadable directories, hash errors) are
        yielded as values; the walk always continues past them.

        Raises:
            OperationCancelled: when ``cancel`` is set. Outcomes already
                yielded stay valid.
        """
        if self.max_workers <= 1:
            yield from self._scan_sequential(root, compute_hash, cancel)
        else:
            yield from self._scan_parallel(root, compute_hash, cancel)

    def _scan_sequential(self,
                         root: Path,
                         compute_hash: bool,
                         cancel: Optional[threading.Event]) -> Iterator[EntryOutcome]:
        for item in self._iter_entries(root):
            self._check_cancel(cancel)
            if isinstance(item, EntryFailure):
                yield EntryOutcome(failure=item)
            else:
                yield self._process_single_file(item, compute_hash)
        self._check_cancel(cancel)

    def _scan_parallel(self,
                       root: Path,
                       compute_hash: bool,
                       cancel: Optional[threading.Event]) -> Iterator[EntryOutcome]:
        """
        Walks in the calling thread and fans extraction/hashing out to a
        bounded pool. Results are yielded as they complete, so a slow hash on
        one worker does not hold back its siblings.
        """
        max_pending = self.max_workers * config.MAX_PENDING_PER_WORKER
        logging.debug(f"Parallel scan: {self.max_workers} workers, {max_pending} in flight")

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            pending = set()
            try:
                for item in self._iter_entries(root):
                    self._check_cancel(cancel)
                    if isinstance(item, EntryFailure):
                        yield EntryOutcome(failure=item)
                        continue

                    pending.add(executor.submit(self._process_single_file, item, compute_hash))
                    if len(pending) >= max_pending:
                        done, pending = wait(pending, return_when=FIRST_COMPLETED)
                        for future in done:
                            yield future.result()

                while pending:
                    self._check_cancel(cancel)
                    done, pending = wait(pending, return_when=FIRST_COMPLETED)
                    for future in done:
                        yield future.result()
                self._check_cancel(cancel)
            finally:
                # Cancelled or closed early: drop queued work, let running workers finish
                for future in pending:
                    future.cancel()

    def _process_single_file(self, path: Path, compute_hash: bool) -> EntryOutcome:
        """Extracts metadata and (optionally) hashes a single file."""
        outcome = self.metadata.extract(path)
        if outcome.failure is not None:
            logging.warning(f"Skipping {path}: {outcome.failure.kind.value} ({outcome.failure.message})")
            return outcome

        if compute_hash:
            try:
                outcome.record.content_hash = self.hasher.compute_hash(path)
            except FileHashError as e:
                # Still indexed, just without a digest for this scan
                logging.warning(str(e))
                outcome.failure = EntryFailure(str(path), FailureKind.HASH_FAILED, str(e))

        return outcome

    def _iter_entries(self, root: Path) -> Iterator[Union[Path, EntryFailure]]:
        """
        Depth-first walker using os.scandir for speed.

        Yields every non-directory entry as a Path, and an EntryFailure for
        each directory that could not be opened.

        When following symlinks, directories and regular files are tracked by
        (device, inode) so each is visited once. Links to files are held back
        until the walk ends, so a file reachable both directly and through a
        link is recorded under its real path; the link is reported as
        ALREADY_VISITED.
        """
        visited_dirs: Set[Tuple[int, int]] = set()
        visited_files: Set[Tuple[int, int]] = set()
        file_links: List[Path] = []
        if self.follow_symlinks:
            st = root.stat()
            visited_dirs.add((st.st_dev, st.st_ino))

        stack = [root]
        while stack:
            current = stack.pop()

            try:
                with os.scandir(current) as it:
                    entries = list(it)
            except OSError as e:
                logging.warning(f"Cannot open directory {current}: {e}")
                yield EntryFailure(str(current), FailureKind.DIRECTORY_UNREADABLE, str(e))
                continue

            # Sort for stable traversal order
            entries.sort(key=lambda e: e.name.lower())

            dirs = []
            for e in entries:
                try:
                    is_dir = e.is_dir(follow_symlinks=self.follow_symlinks)
                except OSError:
                    is_dir = False

                if not is_dir:
                    if not self.follow_symlinks:
                        yield Path(e.path)
                    elif e.is_symlink():
                        file_links.append(Path(e.path))
                    else:
                        yield from self._visit_file(Path(e.path), visited_files)
                    continue

                if self.follow_symlinks:
                    try:
                        st = e.stat(follow_symlinks=True)
                    except OSError as err:
                        yield EntryFailure(e.path, FailureKind.DIRECTORY_UNREADABLE, str(err))
                        continue
                    key = (st.st_dev, st.st_ino)
                    if key in visited_dirs:
                        logging.debug(f"Already visited {e.path}, not descending")
                        continue
                    visited_dirs.add(key)
                dirs.append(Path(e.path))

            # Push dirs to stack (reversed so we process A before Z)
            for d in reversed(dirs):
                stack.append(d)

        for link in file_links:
            yield from self._visit_file(link, visited_files)

    @staticmethod
    def _visit_file(path: Path, visited: Set[Tuple[int, int]]) -> Iterator[Union[Path, EntryFailure]]:
        """Yields path unless its target file was already yielded."""
        try:
            st = path.stat()
        except OSError:
            # Left to the extractor to classify
            yield path
            return

        if stat.S_ISREG(st.st_mode):
            key = (st.st_dev, st.st_ino)
            if key in visited:
                logging.debug(f"Already visited target of {path}, skipping")
                yield EntryFailure(str(path), FailureKind.ALREADY_VISITED, "target already indexed")
                return
            visited.add(key)
        yield path

    @staticmethod
    def _check_cancel(cancel: Optional[threading.Event]):
        if cancel is not None and cancel.is_set():
            raise OperationCancelled("Scan cancelled")
