import hashlib
from pathlib import Path

from .. import config
from ..exceptions import FileHashError


class FileHasher:
    def __init__(self, chunk_size: int = config.HASH_CHUNK_SIZE):
        self.chunk_size = chunk_size

    def compute_hash(self, path: Path) -> str:
        """
        Streams the whole file through SHA-256 in fixed-size chunks.

        Every call reads the file again; callers that asked for hashing get a
        fresh digest even if the index already holds one.

        Raises:
            FileHashError: if the file cannot be opened or a read fails mid-stream.
        """
        h = hashlib.new(config.HASH_ALGORITHM)
        try:
            with open(path, 'rb') as f:
                while chunk := f.read(self.chunk_size):
                    h.update(chunk)
        except OSError as e:
            raise FileHashError(f"Failed to hash {path}: {e}") from e
        return h.hexdigest()
