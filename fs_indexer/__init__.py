"""
Persistent index of filesystem metadata: scan a tree once, then search,
sort, page and find duplicate files without touching the disk again.
"""
from .core import FileIndex
from .exceptions import (
    ConfigurationError, DatabaseError, FsIndexError, OperationCancelled, SchemaVersionError,
)
from .models import (
    DateRange, DuplicateGroup, Extension, FileRecord, NameContains, Page, ScanSummary,
    SizeRange, Sort, SortKey,
)

__version__ = "0.1.0"
