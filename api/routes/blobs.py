"""Blob endpoints: upload, metadata, content, reference adjustments"""

from __future__ import annotations

from fastapi import APIRouter, Depends, File, Form, UploadFile
from fastapi.responses import FileResponse
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_object_store
from core.lifecycle import blob_state
from core.models import BlobInfo, PutResult, ReferenceCountResponse
from core.object_store import ObjectStore
from core.validation import normalize_digest
from db.session import get_session_dep

router = APIRouter(prefix="/blobs", tags=["blobs"])


@router.post("", status_code=201, response_model=PutResult)
async def upload_blob(
    file: UploadFile = File(...),
    mime: str | None = Form(None),
    session: AsyncSession = Depends(get_session_dep),
    store: ObjectStore = Depends(get_object_store),
) -> PutResult:
    # Content only; the blob stays unreferenced until a reference is added
    return await store.put(session, file, mime or file.content_type)


@router.get("/{digest}", response_model=BlobInfo)
async def get_blob(
    digest: str,
    session: AsyncSession = Depends(get_session_dep),
    store: ObjectStore = Depends(get_object_store),
) -> BlobInfo:
    return await store.describe(session, digest)


@router.get("/{digest}/content")
async def get_blob_content(
    digest: str,
    session: AsyncSession = Depends(get_session_dep),
    store: ObjectStore = Depends(get_object_store),
) -> FileResponse:
    info = await store.describe(session, digest)
    path = await store.resolve(session, digest)
    return FileResponse(
        path,
        media_type=info.declared_media_type or "application/octet-stream",
    )


@router.post("/{digest}/references", response_model=ReferenceCountResponse)
async def add_reference(
    digest: str,
    session: AsyncSession = Depends(get_session_dep),
    store: ObjectStore = Depends(get_object_store),
) -> ReferenceCountResponse:
    count = await store.increment_reference(session, digest)
    return ReferenceCountResponse(
        digest=normalize_digest(digest),
        reference_count=count,
        state=blob_state(count),
    )


@router.delete("/{digest}/references", response_model=ReferenceCountResponse)
async def drop_reference(
    digest: str,
    session: AsyncSession = Depends(get_session_dep),
    store: ObjectStore = Depends(get_object_store),
) -> ReferenceCountResponse:
    count = await store.decrement_reference(session, digest)
    return ReferenceCountResponse(
        digest=normalize_digest(digest),
        reference_count=count,
        state=blob_state(count),
    )
