"""
SheetChat Files - Service

Upload, listing, deletion and deduplication of spreadsheet files.
"""

import asyncio
import logging

from sheetchat.context import AppContext
from sheetchat.core.dedup import KeepPolicy
from sheetchat.core.ingest import build_file_record
from sheetchat.modules.files.schemas import (
    DeduplicateResponse,
    DuplicateGroupResponse,
    DuplicatesResponse,
    FileListResponse,
    FileResponse,
)

logger = logging.getLogger(__name__)


class FilesService:
    """Thin layer over the table store and dedup engine of one AppContext."""

    def __init__(self, context: AppContext):
        self._store = context.store
        self._dedup = context.dedup

    async def upload(self, content: bytes, filename: str) -> FileResponse:
        """
        Parse and store an upload.

        The record is committed only once every sheet is built, so readers
        never observe a partially populated file.
        """
        sequence = self._store.next_sequence()
        record = await asyncio.to_thread(build_file_record, content, filename, sequence)
        self._store.put(record)
        logger.info(f"[files] Uploaded {filename} as {record.id}")
        return FileResponse.from_record(record)

    async def list_files(self) -> FileListResponse:
        items = [FileResponse.from_record(r) for r in self._store.list()]
        return FileListResponse(items=items, total=len(items))

    async def get_file(self, file_id: str) -> FileResponse:
        return FileResponse.from_record(self._store.get_or_raise(file_id))

    async def delete_file(self, file_id: str) -> None:
        self._store.delete(file_id)

    async def find_duplicates(self, policy: KeepPolicy = "newest") -> DuplicatesResponse:
        groups = self._dedup.find_duplicates(policy)
        return DuplicatesResponse(
            groups=[DuplicateGroupResponse.from_group(g) for g in groups],
            policy=policy,
            removable=sum(len(g.remove_ids) for g in groups),
        )

    async def deduplicate(self, policy: KeepPolicy = "newest") -> DeduplicateResponse:
        deleted = self._dedup.deduplicate(policy)
        return DeduplicateResponse(policy=policy, deleted_ids=deleted, deleted=len(deleted))
