"""SheetChat Files - Router.

REST API endpoints for spreadsheet files.
"""

from typing import Literal

from fastapi import APIRouter, Depends, File, Query, UploadFile, status

from sheetchat.context import AppContext
from sheetchat.deps import get_context
from sheetchat.exceptions import ValidationException
from sheetchat.modules.files.schemas import (
    DeduplicateResponse,
    DuplicatesResponse,
    FileListResponse,
    FileResponse,
)
from sheetchat.modules.files.service import FilesService

router = APIRouter(prefix="/api/files", tags=["Files"])


def get_service(context: AppContext = Depends(get_context)) -> FilesService:
    return FilesService(context)


@router.post("", response_model=FileResponse, status_code=status.HTTP_201_CREATED)
async def upload_file(
    file: UploadFile = File(...),
    service: FilesService = Depends(get_service),
) -> FileResponse:
    """Upload a CSV/TSV/Excel file."""
    if not file.filename:
        raise ValidationException("Uploaded file has no filename", code="UNSUPPORTED_FILE")
    content = await file.read()
    return await service.upload(content, file.filename)


@router.get("", response_model=FileListResponse)
async def list_files(service: FilesService = Depends(get_service)) -> FileListResponse:
    """List uploaded files in upload order."""
    return await service.list_files()


@router.get("/duplicates", response_model=DuplicatesResponse)
async def find_duplicates(
    keep: Literal["newest", "oldest"] = Query(default="newest"),
    service: FilesService = Depends(get_service),
) -> DuplicatesResponse:
    """Groups of files with byte-identical content."""
    return await service.find_duplicates(keep)


@router.post("/deduplicate", response_model=DeduplicateResponse)
async def deduplicate(
    keep: Literal["newest", "oldest"] = Query(default="newest"),
    service: FilesService = Depends(get_service),
) -> DeduplicateResponse:
    """Delete all but one file per duplicate group."""
    return await service.deduplicate(keep)


@router.get("/{file_id}", response_model=FileResponse)
async def get_file(file_id: str, service: FilesService = Depends(get_service)) -> FileResponse:
    return await service.get_file(file_id)


@router.delete("/{file_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_file(file_id: str, service: FilesService = Depends(get_service)):
    """Delete a file. Rejected with 409 while a query is reading it."""
    await service.delete_file(file_id)
    return None
