"""Object store facade: Put / IncrementReference / DecrementReference / Resolve / CurrentUsage."""

from __future__ import annotations

import inspect
import io
import logging
from pathlib import Path
from typing import BinaryIO, Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from core.blob_store import LocalFsBlobStore
from core.errors import BlobNotFound
from core.hashing import AsyncReadable, StagedBlob
from core.lifecycle import ReferenceLifecycleManager, blob_state
from core.models import BlobInfo, PutResult
from core.validation import normalize_digest, validate_media_type
from db.ledger import BlobLedger
from db.usage import SqlUsageProvider

logger = logging.getLogger(__name__)


class UsageProvider(Protocol):
    """Accounting owned by the metadata layer."""

    async def current_usage(self, session: AsyncSession, owner_id: str) -> int:
        ...


class ObjectStore:
    """Composes the filesystem blob store with the ledger.

    Every method takes the caller's session; nothing here commits, so ledger
    changes land in the same transaction as the caller's own metadata changes.
    """

    def __init__(self, blob_store: LocalFsBlobStore, usage: UsageProvider | None = None) -> None:
        self._blobs = blob_store
        self._usage = usage if usage is not None else SqlUsageProvider()

    @property
    def blob_store(self) -> LocalFsBlobStore:
        return self._blobs

    async def _stage(self, stream: bytes | BinaryIO | AsyncReadable) -> StagedBlob:
        if isinstance(stream, (bytes, bytearray, memoryview)):
            return self._blobs.stage(io.BytesIO(bytes(stream)))
        if inspect.iscoroutinefunction(getattr(stream, "read", None)):
            return await self._blobs.astage(stream)
        return self._blobs.stage(stream)

    async def put(
        self,
        session: AsyncSession,
        stream: bytes | BinaryIO | AsyncReadable,
        declared_media_type: str | None = None,
    ) -> PutResult:
        """Hash, stage, publish and record content. Does not add a reference.

        An IOFailure (or cancellation) before publication leaves neither a
        staging artifact nor a ledger change behind.
        """
        media_type = validate_media_type(declared_media_type)
        staged = await self._stage(stream)
        try:
            already_existed = self._blobs.commit(staged)
            path = self._blobs.blob_path(staged.digest)
            await BlobLedger(session).record_new(
                staged.digest, staged.size_bytes, media_type, str(path)
            )
            # A sweep may have reclaimed the file between commit and record_new
            if not path.exists():
                logger.warning("Blob %s vanished during put; republishing", staged.digest)
                already_existed = self._blobs.commit(staged)
        finally:
            staged.discard()

        return PutResult(
            digest=staged.digest,
            size_bytes=staged.size_bytes,
            already_existed=already_existed,
        )

    async def increment_reference(self, session: AsyncSession, digest: str) -> int:
        digest = normalize_digest(digest)
        return await ReferenceLifecycleManager(BlobLedger(session)).file_created(digest)

    async def decrement_reference(self, session: AsyncSession, digest: str) -> int:
        digest = normalize_digest(digest)
        return await ReferenceLifecycleManager(BlobLedger(session)).file_deleted(digest)

    async def resolve(self, session: AsyncSession, digest: str) -> Path:
        """Return the physical path for a recorded blob. Raises BlobNotFound."""
        digest = normalize_digest(digest)
        await BlobLedger(session).lookup(digest)
        path = self._blobs.blob_path(digest)
        if not path.exists():
            logger.error("Ledger has %s but its file is missing at %s", digest, path)
            raise BlobNotFound(digest)
        return path

    async def describe(self, session: AsyncSession, digest: str) -> BlobInfo:
        digest = normalize_digest(digest)
        row = await BlobLedger(session).lookup(digest)
        return BlobInfo(
            digest=row.digest,
            size_bytes=row.size_bytes,
            declared_media_type=row.declared_media_type,
            reference_count=row.reference_count,
            state=blob_state(row.reference_count),
            created_at_ms=row.created_at_ms,
            unreferenced_since_ms=row.unreferenced_since_ms,
        )

    async def current_usage(self, session: AsyncSession, owner_id: str) -> int:
        return await self._usage.current_usage(session, owner_id)
