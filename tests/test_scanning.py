import os
import hashlib
import threading
import pytest
from datetime import datetime, timezone

from fs_indexer.exceptions import ConfigurationError, FileHashError, OperationCancelled
from fs_indexer.metadata.extract import MetadataExtractor
from fs_indexer.models import FailureKind
from fs_indexer.scanning.filesystem import DiskScanner
from fs_indexer.scanning.hasher import FileHasher


def test_compute_file_hash_streams_in_chunks(tmp_path):
    p = tmp_path / "sample.bin"
    data = b"hello world" * 1000
    p.write_bytes(data)

    hasher = FileHasher(chunk_size=7)
    assert hasher.compute_hash(p) == hashlib.sha256(data).hexdigest()


def test_hash_missing_file_raises_typed_error(tmp_path):
    with pytest.raises(FileHashError):
        FileHasher().compute_hash(tmp_path / "nope.bin")


def test_extract_regular_file(tmp_path):
    p = tmp_path / "Report.Final.PDF"
    p.write_bytes(b"x" * 42)

    outcome = MetadataExtractor().extract(p)

    assert outcome.ok and outcome.failure is None
    rec = outcome.record
    assert rec.path == str(p)
    assert rec.name == "Report.Final.PDF"
    assert rec.extension == "pdf"
    assert rec.size == 42
    assert rec.modified_at == datetime.fromtimestamp(p.stat().st_mtime, timezone.utc)
    assert rec.content_hash is None


def test_extract_without_extension(tmp_path):
    for name in ["Makefile", ".bashrc"]:
        p = tmp_path / name
        p.write_text("x")
        assert MetadataExtractor().extract(p).record.extension is None


def test_extract_failures_are_values(tmp_path):
    extractor = MetadataExtractor()

    missing = extractor.extract(tmp_path / "missing.txt")
    assert not missing.ok
    assert missing.failure.kind == FailureKind.UNREADABLE

    directory = extractor.extract(tmp_path)
    assert directory.failure.kind == FailureKind.NOT_A_FILE


def test_extract_permission_denied(monkeypatch, tmp_path):
    p = tmp_path / "secret.txt"
    p.write_text("x")

    def deny(*args, **kwargs):
        raise PermissionError(13, "Permission denied")

    import fs_indexer.metadata.extract as extract_module
    monkeypatch.setattr(extract_module.os, "stat", deny)

    outcome = MetadataExtractor().extract(p)
    assert outcome.failure.kind == FailureKind.PERMISSION_DENIED
    assert outcome.failure.message == "Permission denied"


def test_symlink_is_skipped_by_default(tmp_path):
    target = tmp_path / "target.txt"
    target.write_text("data")
    link = tmp_path / "link.txt"
    link.symlink_to(target)

    assert MetadataExtractor().extract(link).failure.kind == FailureKind.NOT_A_FILE

    followed = MetadataExtractor(follow_symlinks=True).extract(link)
    assert followed.record.path == str(link)
    assert followed.record.size == 4


def test_broken_symlink_is_unreadable_when_following(tmp_path):
    link = tmp_path / "dangling"
    link.symlink_to(tmp_path / "nowhere")

    outcome = MetadataExtractor(follow_symlinks=True).extract(link)
    assert outcome.failure.kind == FailureKind.UNREADABLE


def test_scanner_iterates_all_files(tree):
    scanner = DiskScanner()
    items = list(scanner._iter_entries(tree))

    assert set(items) == {tree / "a.txt", tree / "b.TXT", tree / "sub" / "c.bin"}


@pytest.mark.parametrize("workers", [1, 4])
def test_scanner_produces_records(tree, workers):
    scanner = DiskScanner(max_workers=workers)
    outcomes = list(scanner.scan(tree, compute_hash=True))

    assert len(outcomes) == 3
    assert all(o.ok and o.failure is None for o in outcomes)
    by_name = {o.record.name: o.record for o in outcomes}
    assert by_name["c.bin"].size == 2000
    assert by_name["b.TXT"].extension == "txt"
    assert by_name["a.txt"].content_hash == hashlib.sha256(b"a" * 100).hexdigest()


def test_scanner_without_hash_leaves_digest_empty(tree):
    outcomes = list(DiskScanner().scan(tree))
    assert all(o.record.content_hash is None for o in outcomes)


def test_symlink_cycle_is_visited_once(tmp_path):
    root = tmp_path / "root"
    sub = root / "sub"
    sub.mkdir(parents=True)
    (sub / "f.txt").write_text("x")
    (sub / "loop").symlink_to(root, target_is_directory=True)

    scanner = DiskScanner(follow_symlinks=True, max_workers=1)
    outcomes = list(scanner.scan(root))

    assert [o.record.path for o in outcomes if o.ok] == [str(sub / "f.txt")]


def test_file_link_inside_tree_is_visited_once(tmp_path):
    root = tmp_path / "root"
    root.mkdir()
    (root / "real.txt").write_text("x")
    # Sorts ahead of its target
    (root / "0link.txt").symlink_to(root / "real.txt")

    outcomes = list(DiskScanner(follow_symlinks=True, max_workers=1).scan(root))

    assert [o.record.path for o in outcomes if o.ok] == [str(root / "real.txt")]
    failures = [o.failure for o in outcomes if o.failure]
    assert [(f.path, f.kind) for f in failures] == [(str(root / "0link.txt"), FailureKind.ALREADY_VISITED)]


def test_file_link_to_outside_tree_is_indexed(tmp_path):
    root = tmp_path / "root"
    root.mkdir()
    outside = tmp_path / "outside.bin"
    outside.write_bytes(b"y" * 42)
    (root / "link.bin").symlink_to(outside)
    (root / "again.bin").symlink_to(outside)

    outcomes = list(DiskScanner(follow_symlinks=True, max_workers=1).scan(root))

    records = [o.record for o in outcomes if o.ok]
    assert [(r.name, r.size) for r in records] == [("again.bin", 42)]
    assert [o.failure.kind for o in outcomes if o.failure] == [FailureKind.ALREADY_VISITED]


def test_symlinked_dir_not_followed_by_default(tmp_path):
    root = tmp_path / "root"
    root.mkdir()
    other = tmp_path / "other"
    other.mkdir()
    (other / "x.txt").write_text("x")
    (root / "link").symlink_to(other, target_is_directory=True)

    outcomes = list(DiskScanner(max_workers=1).scan(root))

    assert len(outcomes) == 1
    assert outcomes[0].failure.kind == FailureKind.NOT_A_FILE


def test_unreadable_directory_is_reported_and_skipped(monkeypatch, tree):
    real_scandir = os.scandir
    bad = str(tree / "sub")

    def flaky_scandir(path):
        if str(path) == bad:
            raise PermissionError(13, "Permission denied", bad)
        return real_scandir(path)

    import fs_indexer.scanning.filesystem as fs_module
    monkeypatch.setattr(fs_module.os, "scandir", flaky_scandir)

    outcomes = list(DiskScanner(max_workers=1).scan(tree))

    failures = [o.failure for o in outcomes if o.failure]
    assert [f.kind for f in failures] == [FailureKind.DIRECTORY_UNREADABLE]
    assert {o.record.name for o in outcomes if o.ok} == {"a.txt", "b.TXT"}


def test_hash_failure_still_indexes_file(monkeypatch, tree):
    def broken(self, path):
        if path.name == "a.txt":
            raise FileHashError("read failed")
        return "digest"

    monkeypatch.setattr(FileHasher, "compute_hash", broken)

    outcomes = list(DiskScanner(max_workers=2).scan(tree, compute_hash=True))

    a = next(o for o in outcomes if o.record.name == "a.txt")
    assert a.record.content_hash is None
    assert a.failure.kind == FailureKind.HASH_FAILED
    others = [o for o in outcomes if o.record.name != "a.txt"]
    assert all(o.record.content_hash == "digest" and o.failure is None for o in others)


@pytest.mark.parametrize("workers", [1, 3])
def test_scan_can_be_cancelled(tree, workers):
    cancel = threading.Event()
    cancel.set()

    with pytest.raises(OperationCancelled):
        list(DiskScanner(max_workers=workers).scan(tree, cancel=cancel))


def test_invalid_worker_count():
    with pytest.raises(ConfigurationError):
        DiskScanner(max_workers=0)
