import argparse
import json
import logging
import sys
from datetime import date, datetime
from pathlib import Path
from typing import Iterable, List, Optional

from . import config
from .core import FileIndex
from .exceptions import ConfigurationError, FsIndexError
from .models import (
    DateRange, DuplicateGroup, Extension, FileRecord, NameContains, Page, SizeRange, Sort, SortKey,
)

SORT_CHOICES = {
    'name': SortKey.NAME,
    'size': SortKey.SIZE,
    'modified': SortKey.MODIFIED_AT,
}


def setup_logging(verbose: bool, log_file: Optional[Path] = None):
    """Logs to stderr (stdout is reserved for results) and optionally a file."""
    log_level = logging.DEBUG if verbose else logging.INFO

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding='utf-8'))

    logging.basicConfig(
        level=log_level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=handlers,
        force=True,
    )


def parse_date(value: str) -> date:
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid date {value!r}, expected YYYY-MM-DD")


def human_bytes(num: int) -> str:
    units = ["B", "KB", "MB", "GB", "TB"]
    value = float(num)
    unit = 0
    while value >= 1024 and unit < len(units) - 1:
        value /= 1024
        unit += 1
    if unit == 0:
        return f"{num} {units[0]}"
    return f"{value:.2f} {units[unit]}"


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    p = argparse.ArgumentParser(prog="fs-indexer", description="File system indexing and search utility")
    p.add_argument("--db", type=Path, default=Path(config.DEFAULT_DB_NAME), help="Path to the SQLite database")
    p.add_argument("--json", action="store_true", help="Print results as JSON")
    p.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    p.add_argument("--log-file", type=Path, default=None, help="Also write the log to this file")

    sub = p.add_subparsers(dest="command", required=True)

    idx = sub.add_parser("index", help="Index a directory recursively")
    idx.add_argument("path", type=Path, help="Root directory to index")
    idx.add_argument("--hash", action="store_true", help="Compute and store file hashes")
    idx.add_argument("--prune", action="store_true", help="Remove indexed files under PATH that no longer exist")
    idx.add_argument("--follow-symlinks", action="store_true", help="Index symlink targets instead of skipping links")
    idx.add_argument("--workers", type=int, default=config.DEFAULT_MAX_WORKERS, help="Parallel workers")
    idx.add_argument("--no-progress", action="store_true", help="Hide the progress bar")

    srch = sub.add_parser("search", help="Search files using optional filters")
    srch.add_argument("--name", help="Filter by name fragment")
    srch.add_argument("--ext", help="Filter by file extension")
    srch.add_argument("--min-size", type=int, help="Minimum file size in bytes")
    srch.add_argument("--max-size", type=int, help="Maximum file size in bytes")
    srch.add_argument("--from", dest="date_from", type=parse_date, help="Earliest modified date (YYYY-MM-DD)")
    srch.add_argument("--to", dest="date_to", type=parse_date, help="Latest modified date (YYYY-MM-DD)")
    srch.add_argument("--sort", choices=sorted(SORT_CHOICES), default="name", help="Sort column")
    srch.add_argument("--desc", action="store_true", help="Sort descending instead of ascending")
    srch.add_argument("--limit", type=int, default=config.DEFAULT_SEARCH_LIMIT, help="Limit number of rows")
    srch.add_argument("--offset", type=int, default=0, help="Offset for pagination")

    rec = sub.add_parser("recent", help="Show most recently indexed files")
    rec.add_argument("--limit", type=int, default=config.DEFAULT_RECENT_LIMIT, help="Number of rows to fetch")

    dup = sub.add_parser("duplicates", help="Display duplicate files grouped by hash")
    dup.add_argument("--limit", type=int, default=config.DEFAULT_DUPLICATE_LIMIT,
                     help="Maximum number of duplicate groups")

    return p.parse_args(argv)


def build_filters(args: argparse.Namespace) -> list:
    filters = []
    if args.name:
        filters.append(NameContains(args.name))
    if args.ext:
        filters.append(Extension(args.ext))
    if args.min_size is not None or args.max_size is not None:
        filters.append(SizeRange(args.min_size, args.max_size))
    if args.date_from or args.date_to:
        filters.append(DateRange(args.date_from, args.date_to))
    return filters


def render_records(rows: Iterable[FileRecord], as_json: bool):
    rows = list(rows)
    if as_json:
        print(json.dumps([r.to_dict() for r in rows], indent=2))
        return

    print(f"{'Name':30} | {'Ext':6} | {'Size':>11} | {'Modified':19} | Path")
    print(f"{'-' * 30}-+-{'-' * 6}-+-{'-' * 11}-+-{'-' * 19}-+-----")
    for r in rows:
        modified = r.modified_at.strftime("%Y-%m-%d %H:%M:%S")
        print(f"{r.name[:30]:30} | {(r.extension or '')[:6]:6} | {human_bytes(r.size):>11} | {modified} | {r.path}")


def render_duplicates(groups: Iterable[DuplicateGroup], as_json: bool):
    if as_json:
        print(json.dumps([g.to_dict() for g in groups], indent=2))
        return

    for g in groups:
        print(f"hash={g.content_hash} size={human_bytes(g.size)} count={g.count} "
              f"wasted={human_bytes(g.wasted_bytes)}")
        for m in g.members:
            print(f"  {m.path}")


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging(args.verbose, args.log_file)

    try:
        with FileIndex(args.db) as index:
            if args.command == "index":
                summary = index.index(
                    args.path,
                    compute_hash=args.hash,
                    prune_missing=args.prune,
                    follow_symlinks=args.follow_symlinks,
                    max_workers=args.workers,
                    progress=not args.no_progress,
                )
                if args.json:
                    print(json.dumps(summary.to_dict(), indent=2))
                else:
                    print(f"Indexed {summary.indexed} files, skipped {summary.skipped}, "
                          f"removed {summary.removed}")
                    for kind, n in sorted(summary.errors.items()):
                        print(f"  {kind.value}: {n}")

            elif args.command == "search":
                rows = index.search(
                    build_filters(args),
                    Sort(SORT_CHOICES[args.sort], descending=args.desc),
                    Page(limit=args.limit, offset=args.offset),
                )
                render_records(rows, args.json)

            elif args.command == "recent":
                render_records(index.recent(args.limit), args.json)

            elif args.command == "duplicates":
                render_duplicates(index.find_duplicates(args.limit), args.json)

    except ConfigurationError as e:
        logging.error(str(e))
        return 2
    except KeyboardInterrupt:
        logging.warning("Operation cancelled by user.")
        return 1
    except FsIndexError:
        logging.exception("Fatal error.")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
