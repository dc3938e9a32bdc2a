"""
Configuration constants for the file indexer.
"""

# --- Hashing ---
# Algorithm must never change for an existing index; mixed digests break duplicate grouping.
HASH_ALGORITHM = "sha256"
HASH_CHUNK_SIZE = 64 * 1024  # 64 KB chunks for reading

# --- Scanning ---
FOLLOW_SYMLINKS = False
DEFAULT_MAX_WORKERS = 4
# Upper bound on in-flight files per worker (keeps open descriptors bounded)
MAX_PENDING_PER_WORKER = 8

# --- Database ---
DEFAULT_DB_NAME = "index.db"
COMMIT_BATCH_SIZE = 500
# SQLite VM instructions between cancellation checks during a query
QUERY_CANCEL_CHECK_INTERVAL = 1000

# --- CLI defaults ---
DEFAULT_SEARCH_LIMIT = 50
DEFAULT_RECENT_LIMIT = 50
DEFAULT_DUPLICATE_LIMIT = 25
