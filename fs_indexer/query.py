"""
Query engine: turns filter clauses, a sort and a page into SQL over the index.
"""
import sqlite3
import threading
from datetime import date, datetime, time, timezone
from typing import Iterable, List, Optional, Tuple, Union

from . import config
from .database.ops import DBOperations
from .exceptions import ConfigurationError, DatabaseError, OperationCancelled
from .metadata.extract import MetadataExtractor
from .models import (
    DateRange, Extension, FileRecord, FilterClause, NameContains, Page, SizeRange, Sort, SortKey,
)

# Whitelisted ORDER BY columns; never interpolate user input into SQL
SORT_COLUMNS = {
    SortKey.NAME: "name",
    SortKey.SIZE: "size",
    SortKey.MODIFIED_AT: "modified_at",
    SortKey.ADDED_AT: "added_at",
}


def to_timestamp(value: Union[date, datetime], end_of_day: bool = False) -> float:
    """
    Dates cover the whole day in UTC; naive datetimes are read as UTC.
    """
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.timestamp()
    t = time.max if end_of_day else time.min
    return datetime.combine(value, t, tzinfo=timezone.utc).timestamp()


class QueryEngine:
    def __init__(self, db_ops: DBOperations):
        self.db = db_ops

    def search(self,
               filters: Optional[Iterable[FilterClause]] = None,
               sort: Optional[Sort] = None,
               page: Optional[Page] = None,
               cancel: Optional[threading.Event] = None) -> List[FileRecord]:
        """
        Returns the matching records, ordered by the sort key then by path.

        All clauses are ANDed. An offset past the end yields an empty list.

        Raises:
            ConfigurationError: for invalid clauses or pagination, before querying.
            OperationCancelled: if ``cancel`` is set while the query runs.
            DatabaseError: if the store fails.
        """
        sort = sort or Sort()
        page = page or Page()
        conditions, params = self.build_conditions(filters or [])
        self._validate_page(page)

        if not isinstance(sort.key, SortKey):
            raise ConfigurationError(f"Unknown sort key: {sort.key!r}")
        direction = "DESC" if sort.descending else "ASC"
        order_by = f"{SORT_COLUMNS[sort.key]} {direction}, path ASC"

        conn = self.db.conn
        if cancel is not None:
            if cancel.is_set():
                raise OperationCancelled("Query cancelled")
            conn.set_progress_handler(lambda: 1 if cancel.is_set() else 0,
                                      config.QUERY_CANCEL_CHECK_INTERVAL)
        try:
            return self.db.query_files(conditions, params, order_by, page.limit, page.offset)
        except sqlite3.OperationalError as e:
            if cancel is not None and cancel.is_set():
                raise OperationCancelled("Query cancelled") from e
            raise DatabaseError(f"Query failed: {e}") from e
        except sqlite3.Error as e:
            raise DatabaseError(f"Query failed: {e}") from e
        finally:
            if cancel is not None:
                conn.set_progress_handler(None, 0)

    def recent(self, limit: int = config.DEFAULT_RECENT_LIMIT) -> List[FileRecord]:
        """Most recently added paths first."""
        return self.search(sort=Sort(SortKey.ADDED_AT, descending=True), page=Page(limit=limit))

    def build_conditions(self, filters: Iterable[FilterClause]) -> Tuple[List[str], List]:
        conditions: List[str] = []
        params: List = []

        for clause in filters:
            if isinstance(clause, NameContains):
                if not clause.text:
                    raise ConfigurationError("Name filter must not be empty")
                conditions.append("instr(casefold(name), ?) > 0")
                params.append(clause.text.casefold())

            elif isinstance(clause, Extension):
                ext = MetadataExtractor.normalize_extension(clause.value)
                if ext is None:
                    raise ConfigurationError("Extension filter must not be empty")
                conditions.append("extension = ?")
                params.append(ext)

            elif isinstance(clause, SizeRange):
                lo, hi = clause.min_size, clause.max_size
                if (lo is not None and lo < 0) or (hi is not None and hi < 0):
                    raise ConfigurationError(f"Size bounds must be non-negative: {lo}..{hi}")
                if lo is not None and hi is not None and lo > hi:
                    raise ConfigurationError(f"min_size ({lo}) is greater than max_size ({hi})")
                if lo is not None:
                    conditions.append("size >= ?")
                    params.append(lo)
                if hi is not None:
                    conditions.append("size <= ?")
                    params.append(hi)

            elif isinstance(clause, DateRange):
                start = to_timestamp(clause.start) if clause.start is not None else None
                end = to_timestamp(clause.end, end_of_day=True) if clause.end is not None else None
                if start is not None and end is not None and start > end:
                    raise ConfigurationError(f"Date range start {clause.start} is after end {clause.end}")
                if start is not None:
                    conditions.append("modified_at >= ?")
                    params.append(start)
                if end is not None:
                    conditions.append("modified_at <= ?")
                    params.append(end)

            else:
                raise ConfigurationError(f"Unsupported filter clause: {clause!r}")

        return conditions, params

    @staticmethod
    def _validate_page(page: Page):
        if page.limit is not None and page.limit < 0:
            raise ConfigurationError(f"limit must be non-negative, got {page.limit}")
        if page.offset < 0:
            raise ConfigurationError(f"offset must be non-negative, got {page.offset}")
