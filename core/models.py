"""Pydantic models for the object store API"""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------

class BlobState(str, Enum):
    referenced = "referenced"
    unreferenced = "unreferenced"


# ---------------------------------------------------------------------------
# Blob models
# ---------------------------------------------------------------------------

class BlobInfo(BaseModel):
    digest: str
    size_bytes: int = Field(..., ge=0)
    declared_media_type: str | None = None
    reference_count: int = Field(..., ge=0)
    state: BlobState
    created_at_ms: int
    unreferenced_since_ms: int | None = None


class PutResult(BaseModel):
    digest: str
    size_bytes: int = Field(..., ge=0)
    already_existed: bool


class ReferenceCountResponse(BaseModel):
    digest: str
    reference_count: int = Field(..., ge=0)
    state: BlobState


# ---------------------------------------------------------------------------
# Logical files
# ---------------------------------------------------------------------------

class FileCreateResponse(BaseModel):
    file_id: str
    owner_id: str
    filename: str
    digest: str
    size_bytes: int
    already_existed: bool
    created_at_ms: int


class UsageResponse(BaseModel):
    owner_id: str
    total_bytes: int
    deduplicated_bytes: int


# ---------------------------------------------------------------------------
# Sweep
# ---------------------------------------------------------------------------

class SweepReport(BaseModel):
    scanned: int = 0
    reclaimed: int = 0
    reclaimed_bytes: int = 0
    skipped: int = 0
    failed: int = 0
    staging_purged: int = 0


class SweepEnqueuedResponse(BaseModel):
    task_id: str
