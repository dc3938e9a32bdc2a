import pytest
from pathlib import Path

from fs_indexer.core import FileIndex
from fs_indexer.database.db import DBManager
from fs_indexer.database.ops import DBOperations


@pytest.fixture
def conn(tmp_path):
    """Returns a connection to a fresh on-disk index with the schema initialized."""
    manager = DBManager(tmp_path / "index.db")
    try:
        yield manager.connect()
    finally:
        manager.close()


@pytest.fixture
def db_ops(conn):
    """Returns a DBOperations instance attached to the test DB."""
    return DBOperations(conn)


@pytest.fixture
def index(tmp_path):
    """Returns a FileIndex backed by a DB file outside the scanned tree."""
    idx = FileIndex(tmp_path / "index.db")
    try:
        yield idx
    finally:
        idx.close()


@pytest.fixture
def tree(tmp_path):
    """
    A small tree:
        root/a.txt (100 bytes), root/b.TXT (500), root/sub/c.bin (2000)
    """
    root = tmp_path / "root"
    sub = root / "sub"
    sub.mkdir(parents=True)
    (root / "a.txt").write_bytes(b"a" * 100)
    (root / "b.TXT").write_bytes(b"b" * 500)
    (sub / "c.bin").write_bytes(b"c" * 2000)
    return root.resolve()
