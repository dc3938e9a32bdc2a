import os
import stat
from pathlib import Path

from .. import config
from ..models import EntryFailure, EntryOutcome, FailureKind, FileRecord, from_epoch


class MetadataExtractor:
    """
    Turns a filesystem entry into a ``FileRecord`` or a typed failure.

    Only regular files are recorded. With ``follow_symlinks`` off, a link is
    reported as NOT_A_FILE; with it on, the link path is kept and the
    target's metadata is used.

    Never raises for filesystem problems: every failure comes back as an
    ``EntryOutcome`` carrying an ``EntryFailure``.
    """

    def __init__(self, follow_symlinks: bool = config.FOLLOW_SYMLINKS):
        self.follow_symlinks = follow_symlinks

    def extract(self, path: Path) -> EntryOutcome:
        path_str = str(path)
        try:
            st = os.stat(path, follow_symlinks=self.follow_symlinks)
        except PermissionError as e:
            return self._fail(path_str, FailureKind.PERMISSION_DENIED, e)
        except OSError as e:
            # Vanished mid-scan, broken symlink, I/O error
            return self._fail(path_str, FailureKind.UNREADABLE, e)

        if not stat.S_ISREG(st.st_mode):
            return EntryOutcome(failure=EntryFailure(path_str, FailureKind.NOT_A_FILE, "not a regular file"))

        return EntryOutcome(record=FileRecord(
            path=path_str,
            name=path.name,
            extension=self.normalize_extension(path.suffix),
            size=st.st_size,
            modified_at=from_epoch(st.st_mtime),
        ))

    @staticmethod
    def normalize_extension(suffix: str):
        """'.JPG' -> 'jpg'; '' -> None."""
        ext = suffix.lstrip('.').lower()
        return ext or None

    def _fail(self, path: str, kind: FailureKind, err: OSError) -> EntryOutcome:
        return EntryOutcome(failure=EntryFailure(path, kind, err.strerror or str(err)))
