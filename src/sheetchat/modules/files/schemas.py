"""
SheetChat Files - Schemas

Pydantic models for upload, listing and deduplication.
"""

from datetime import datetime
from typing import List, Literal

from pydantic import BaseModel, Field

from sheetchat.core.dedup import DuplicateGroup
from sheetchat.core.table_store import FileRecord


class ColumnSchema(BaseModel):
    name: str
    type: Literal["string", "number", "boolean", "date"]


class SheetSummary(BaseModel):
    """One sheet of an uploaded file."""
    name: str
    columns: List[ColumnSchema]
    row_count: int


class FileResponse(BaseModel):
    """Uploaded file metadata."""
    id: str
    filename: str
    content_hash: str = Field(..., description="SHA-256 of the raw bytes")
    uploaded_at: datetime
    size_bytes: int
    sheets: List[SheetSummary]

    @classmethod
    def from_record(cls, record: FileRecord) -> "FileResponse":
        return cls(
            id=record.id,
            filename=record.filename,
            content_hash=record.content_hash,
            uploaded_at=record.uploaded_at,
            size_bytes=record.size_bytes,
            sheets=[
                SheetSummary(
                    name=sheet.name,
                    columns=[ColumnSchema(name=c.name, type=c.type) for c in sheet.columns],
                    row_count=sheet.row_count,
                )
                for sheet in record.sheets
            ],
        )


class FileListResponse(BaseModel):
    """List of files, in upload order."""
    items: List[FileResponse]
    total: int


class DuplicateGroupResponse(BaseModel):
    content_hash: str
    file_ids: List[str] = Field(..., description="Members, oldest upload first")
    keep_id: str = Field(..., description="Survivor under the requested policy")

    @classmethod
    def from_group(cls, group: DuplicateGroup) -> "DuplicateGroupResponse":
        return cls(content_hash=group.content_hash, file_ids=list(group.file_ids), keep_id=group.keep_id)


class DuplicatesResponse(BaseModel):
    groups: List[DuplicateGroupResponse]
    policy: Literal["newest", "oldest"]
    removable: int = Field(..., description="Files a deduplicate run would delete")


class DeduplicateResponse(BaseModel):
    policy: Literal["newest", "oldest"]
    deleted_ids: List[str]
    deleted: int
