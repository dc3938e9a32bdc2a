from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union


def from_epoch(ts: float) -> datetime:
    return datetime.fromtimestamp(ts, timezone.utc)


@dataclass
class FileRecord:
    """
    Represents one indexed file.
    """
    path: str                  # absolute, primary key
    name: str
    extension: Optional[str]   # lowercase, no leading dot; None if the name has no suffix
    size: int
    modified_at: datetime      # UTC, as reported by the filesystem at scan time
    added_at: Optional[datetime] = None  # assigned by the store on first insert
    content_hash: Optional[str] = None   # None means "never hashed", not "unique"

    def to_dict(self) -> Dict[str, Any]:
        return {
            'path': self.path,
            'name': self.name,
            'extension': self.extension,
            'size': self.size,
            'modified_at': self.modified_at.isoformat(),
            'added_at': self.added_at.isoformat() if self.added_at else None,
            'content_hash': self.content_hash,
        }


class FailureKind(str, Enum):
    UNREADABLE = "unreadable"
    PERMISSION_DENIED = "permission_denied"
    NOT_A_FILE = "not_a_file"
    HASH_FAILED = "hash_failed"
    DIRECTORY_UNREADABLE = "directory_unreadable"
    ALREADY_VISITED = "already_visited"      # link to a file already indexed this scan


# Failures that keep the entry out of the index
SKIP_KINDS = {FailureKind.UNREADABLE, FailureKind.PERMISSION_DENIED, FailureKind.NOT_A_FILE,
              FailureKind.ALREADY_VISITED}


@dataclass
class EntryFailure:
    path: str
    kind: FailureKind
    message: str = ""


@dataclass
class EntryOutcome:
    """
    Result of processing one filesystem entry.

    Exactly one of ``record`` / ``failure`` is set, except when a file was
    indexed but hashing failed: then both are set and the record has no hash.
    """
    record: Optional[FileRecord] = None
    failure: Optional[EntryFailure] = None

    @property
    def ok(self) -> bool:
        return self.record is not None


@dataclass
class ScanSummary:
    root: str
    indexed: int = 0
    skipped: int = 0
    removed: int = 0
    errors: Counter = field(default_factory=Counter)

    def add(self, outcome: EntryOutcome):
        if outcome.record is not None:
            self.indexed += 1
        if outcome.failure is not None:
            self.errors[outcome.failure.kind] += 1
            if outcome.failure.kind in SKIP_KINDS:
                self.skipped += 1

    @property
    def error_count(self) -> int:
        return sum(self.errors.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            'root': self.root,
            'indexed': self.indexed,
            'skipped': self.skipped,
            'removed': self.removed,
            'errors': {kind.value: n for kind, n in sorted(self.errors.items())},
        }


@dataclass
class DuplicateGroup:
    content_hash: str
    size: int
    members: List[FileRecord]  # ordered by path

    @property
    def count(self) -> int:
        return len(self.members)

    @property
    def wasted_bytes(self) -> int:
        """Bytes reclaimable by keeping a single copy."""
        return (self.count - 1) * self.size

    def to_dict(self) -> Dict[str, Any]:
        return {
            'content_hash': self.content_hash,
            'size': self.size,
            'count': self.count,
            'wasted_bytes': self.wasted_bytes,
            'paths': [m.path for m in self.members],
        }


# --- Query criteria ---

@dataclass(frozen=True)
class NameContains:
    text: str


@dataclass(frozen=True)
class Extension:
    value: str


@dataclass(frozen=True)
class SizeRange:
    min_size: Optional[int] = None
    max_size: Optional[int] = None


@dataclass(frozen=True)
class DateRange:
    start: Optional[Union[date, datetime]] = None
    end: Optional[Union[date, datetime]] = None


FilterClause = Union[NameContains, Extension, SizeRange, DateRange]


class SortKey(str, Enum):
    NAME = "name"
    SIZE = "size"
    MODIFIED_AT = "modified_at"
    ADDED_AT = "added_at"


@dataclass(frozen=True)
class Sort:
    key: SortKey = SortKey.NAME
    descending: bool = False


@dataclass(frozen=True)
class Page:
    limit: Optional[int] = None
    offset: int = 0
