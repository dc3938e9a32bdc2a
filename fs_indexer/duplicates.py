import logging
from collections import defaultdict
from typing import Dict, Iterator, List, Optional, Tuple

from .database.ops import DBOperations
from .models import DuplicateGroup


class DuplicateFinder:
    """
    Groups hashed records by (content_hash, size).

    Records never hashed are left out entirely. Groups are ordered by wasted
    bytes descending, then member count descending, then hash, so the output
    is deterministic for a given index state.
    """

    def __init__(self, db_ops: DBOperations):
        self.db = db_ops

    def find(self, limit: Optional[int] = None) -> Iterator[DuplicateGroup]:
        """
        Lazily yields duplicate groups; member records are loaded one group
        at a time. A group that shrank below two members since grouping
        (concurrent re-scan) is dropped.
        """
        candidates = self._candidate_groups()
        logging.debug(f"Found {len(candidates)} duplicate candidate groups")

        emitted = 0
        for (content_hash, size), paths in candidates:
            if limit is not None and emitted >= limit:
                return
            members = [
                r for r in self.db.fetch_by_paths(paths)
                if r.content_hash == content_hash and r.size == size
            ]
            if len(members) < 2:
                continue
            emitted += 1
            yield DuplicateGroup(content_hash=content_hash, size=size, members=members)

    def _candidate_groups(self) -> List[Tuple[Tuple[str, int], List[str]]]:
        groups: Dict[Tuple[str, int], List[str]] = defaultdict(list)
        for content_hash, size, path in self.db.all_with_hash():
            groups[(content_hash, size)].append(path)

        dupes = [(key, paths) for key, paths in groups.items() if len(paths) > 1]
        dupes.sort(key=lambda item: (-(len(item[1]) - 1) * item[0][1], -len(item[1]), item[0][0]))
        return dupes
