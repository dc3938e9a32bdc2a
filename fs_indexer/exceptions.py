"""
Custom exception hierarchy for the file indexer.

Per-entry problems found while walking a tree are not exceptions; they are
reported as ``EntryFailure`` values (see ``models``). The types below are for
conditions that stop the operation in progress.
"""


class FsIndexError(Exception):
    """Base exception for all file indexer errors."""
    pass


class ConfigurationError(FsIndexError):
    """Raised when a request is invalid before any work begins."""
    pass


class DatabaseError(FsIndexError):
    """Raised when database operations fail."""
    pass


class SchemaVersionError(DatabaseError):
    """Raised when the database file holds a schema this version cannot use."""
    pass


class FileHashError(FsIndexError):
    """Raised when file hashing fails."""
    pass


class OperationCancelled(FsIndexError):
    """Raised when the caller aborts a scan or query."""
    pass
