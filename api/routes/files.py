"""Logical file endpoints: create over a blob, delete, download, usage"""

from __future__ import annotations

import logging
import time

from fastapi import APIRouter, Depends, File, Form, Header, HTTPException, Response, UploadFile
from fastapi.responses import FileResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_object_store
from core.models import FileCreateResponse, UsageResponse
from core.object_store import ObjectStore
from core.validation import validate_media_type
from db.models import FileRow
from db.session import get_session_dep
from db.usage import SqlUsageProvider

logger = logging.getLogger(__name__)

router = APIRouter(tags=["files"])


async def _get_owned_file(session: AsyncSession, file_id: str, owner_id: str) -> FileRow:
    result = await session.execute(
        select(FileRow).where(FileRow.id == file_id, FileRow.owner_id == owner_id)
    )
    row = result.scalar_one_or_none()
    if row is None:
        raise HTTPException(status_code=404, detail="File not found")
    return row


@router.post("/files", status_code=201, response_model=FileCreateResponse)
async def create_file(
    file: UploadFile = File(...),
    mime: str | None = Form(None),
    owner_id: str = Header(..., alias="X-Owner-Id"),
    session: AsyncSession = Depends(get_session_dep),
    store: ObjectStore = Depends(get_object_store),
) -> FileCreateResponse:
    declared = validate_media_type(mime or file.content_type)
    result = await store.put(session, file, declared)

    now_ms = int(time.time() * 1000)
    row = FileRow(
        owner_id=owner_id,
        blob_digest=result.digest,
        filename=file.filename or result.digest,
        size_bytes=result.size_bytes,
        declared_media_type=declared,
        created_at_ms=now_ms,
    )
    session.add(row)
    await session.flush()

    # Same transaction as the file row
    await store.increment_reference(session, result.digest)

    logger.info(
        "Owner %s stored %s as %s (dedup=%s)",
        owner_id, row.filename, result.digest, result.already_existed,
    )
    return FileCreateResponse(
        file_id=row.id,
        owner_id=owner_id,
        filename=row.filename,
        digest=result.digest,
        size_bytes=result.size_bytes,
        already_existed=result.already_existed,
        created_at_ms=now_ms,
    )


@router.delete("/files/{file_id}", status_code=204)
async def delete_file(
    file_id: str,
    owner_id: str = Header(..., alias="X-Owner-Id"),
    session: AsyncSession = Depends(get_session_dep),
    store: ObjectStore = Depends(get_object_store),
) -> Response:
    row = await _get_owned_file(session, file_id, owner_id)
    digest = row.blob_digest
    await session.delete(row)
    await session.flush()

    # Content stays on disk; the sweep reclaims it once unreferenced long enough
    await store.decrement_reference(session, digest)
    return Response(status_code=204)


@router.get("/files/{file_id}/content")
async def download_file(
    file_id: str,
    owner_id: str = Header(..., alias="X-Owner-Id"),
    session: AsyncSession = Depends(get_session_dep),
    store: ObjectStore = Depends(get_object_store),
) -> FileResponse:
    row = await _get_owned_file(session, file_id, owner_id)
    path = await store.resolve(session, row.blob_digest)
    return FileResponse(
        path,
        media_type=row.declared_media_type or "application/octet-stream",
        filename=row.filename,
    )


@router.get("/usage", response_model=UsageResponse)
async def get_usage(
    owner_id: str = Header(..., alias="X-Owner-Id"),
    session: AsyncSession = Depends(get_session_dep),
    store: ObjectStore = Depends(get_object_store),
) -> UsageResponse:
    total = await store.current_usage(session, owner_id)
    deduplicated = await SqlUsageProvider().deduplicated_usage(session, owner_id)
    return UsageResponse(owner_id=owner_id, total_bytes=total, deduplicated_bytes=deduplicated)
