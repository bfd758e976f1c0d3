"""
Deduplication Engine - Content-hash duplicate detection and removal

Responsibilities:
- Group stored files by content hash (filename never participates)
- Pick one survivor per group under a keep policy (newest / oldest)
- Delete every other member through the table store

Deletion goes through InMemoryTableStore.delete_many under the store lock, so
the groups cannot go stale before they are removed, and a file under an
active read lease rejects the whole run with FILE_IN_USE instead of being
torn down mid-query.
"""

import logging
from dataclasses import dataclass
from typing import Literal

from sheetchat.core.table_store import FileRecord, InMemoryTableStore

logger = logging.getLogger(__name__)

KeepPolicy = Literal["newest", "oldest"]


@dataclass(frozen=True)
class DuplicateGroup:
    """Files sharing one content hash, oldest first."""

    content_hash: str
    file_ids: tuple[str, ...]
    keep_id: str

    @property
    def remove_ids(self) -> list[str]:
        return [fid for fid in self.file_ids if fid != self.keep_id]


def _upload_order(record: FileRecord) -> tuple:
    return (record.uploaded_at, record.sequence)


class DeduplicationEngine:
    def __init__(self, store: InMemoryTableStore):
        self._store = store

    def find_duplicates(self, policy: KeepPolicy = "newest") -> list[DuplicateGroup]:
        """
        Groups with two or more members, ordered by each group's first upload.

        The keep id is the newest (or oldest) member by upload timestamp, ties
        resolved by upload sequence.
        """
        by_hash: dict[str, list[FileRecord]] = {}
        for record in sorted(self._store.list(), key=_upload_order):
            by_hash.setdefault(record.content_hash, []).append(record)

        groups = []
        for digest, members in by_hash.items():
            if len(members) < 2:
                continue
            keep = members[-1] if policy == "newest" else members[0]
            groups.append(
                DuplicateGroup(
                    content_hash=digest,
                    file_ids=tuple(m.id for m in members),
                    keep_id=keep.id,
                )
            )
        return groups

    def deduplicate(self, policy: KeepPolicy = "newest") -> list[str]:
        """
        Delete all but one file per duplicate group.

        Returns:
            Deleted file ids, in group order. Empty when nothing is duplicated.

        Raises:
            FileInUseException: If any file to delete is being read (nothing is deleted)
        """
        if policy not in ("newest", "oldest"):
            raise ValueError(f"Unknown keep policy: {policy}")

        # grouping and deletion see one store state; concurrent deletes wait
        with self._store.exclusive():
            groups = self.find_duplicates(policy)
            to_delete = [fid for group in groups for fid in group.remove_ids]
            if not to_delete:
                logger.info("[dedup] No duplicates found")
                return []
            self._store.delete_many(to_delete)

        logger.info(f"[dedup] Removed {len(to_delete)} duplicate(s) across {len(groups)} group(s), keep={policy}")
        return to_delete


__all__ = ["DeduplicationEngine", "DuplicateGroup", "KeepPolicy"]
