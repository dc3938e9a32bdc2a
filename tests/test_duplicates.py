from datetime import datetime, timezone

from fs_indexer.duplicates import DuplicateFinder
from fs_indexer.models import FileRecord


def add(db_ops, path, size, content_hash):
    db_ops.upsert_file_record(
        FileRecord(
            path=path, name=path.rsplit("/", 1)[-1], extension=None, size=size,
            modified_at=datetime(2022, 1, 1, tzinfo=timezone.utc), content_hash=content_hash,
        ),
        scan_time=1.0,
    )


def test_groups_need_matching_hash_and_size(db_ops):
    add(db_ops, "/d/b", 10, "h1")
    add(db_ops, "/d/a", 10, "h1")
    add(db_ops, "/d/same-size-other-content", 10, "h2")
    # Same digest with a different size is never grouped
    add(db_ops, "/d/truncated", 4, "h1")
    db_ops.conn.commit()

    groups = list(DuplicateFinder(db_ops).find())

    assert len(groups) == 1
    g = groups[0]
    assert (g.content_hash, g.size, g.count) == ("h1", 10, 2)
    assert [m.path for m in g.members] == ["/d/a", "/d/b"]
    assert g.wasted_bytes == 10


def test_unhashed_records_are_excluded(db_ops):
    add(db_ops, "/d/x", 10, None)
    add(db_ops, "/d/y", 10, None)
    add(db_ops, "/d/z", 10, "h")
    db_ops.conn.commit()

    assert list(DuplicateFinder(db_ops).find()) == []


def test_groups_ordered_by_wasted_bytes(db_ops):
    # 3 x 10 bytes -> 20 wasted
    for p in ("/s/1", "/s/2", "/s/3"):
        add(db_ops, p, 10, "small")
    # 2 x 100 bytes -> 100 wasted
    for p in ("/b/1", "/b/2"):
        add(db_ops, p, 100, "big")
    # 2 x 5 bytes -> 5 wasted each, tie broken by hash
    for p in ("/t/1", "/t/2"):
        add(db_ops, p, 5, "tb")
    for p in ("/u/1", "/u/2"):
        add(db_ops, p, 5, "ta")
    db_ops.conn.commit()

    groups = list(DuplicateFinder(db_ops).find())
    assert [g.content_hash for g in groups] == ["big", "small", "ta", "tb"]

    limited = list(DuplicateFinder(db_ops).find(limit=2))
    assert [g.content_hash for g in limited] == ["big", "small"]


def test_find_is_lazy(db_ops, monkeypatch):
    for p in ("/a/1", "/a/2", "/b/1", "/b/2"):
        add(db_ops, p, 1, p[1])
    db_ops.conn.commit()

    calls = []
    original = db_ops.fetch_by_paths
    monkeypatch.setattr(db_ops, "fetch_by_paths", lambda paths: calls.append(paths) or original(paths))

    it = DuplicateFinder(db_ops).find()
    next(it)
    assert len(calls) == 1
