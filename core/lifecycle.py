"""Reference lifecycle: the only caller of BlobLedger.adjust_reference_count."""

from __future__ import annotations

import logging

from core.models import BlobState
from db.ledger import BlobLedger

logger = logging.getLogger(__name__)


def blob_state(reference_count: int) -> BlobState:
    return BlobState.referenced if reference_count > 0 else BlobState.unreferenced


class ReferenceLifecycleManager:
    """Keeps reference counts in step with logical file creation and deletion.

    Both hooks run inside the metadata layer's own transaction, so the file
    row change and the count change commit or roll back together. Reaching
    zero references never deletes anything here.
    """

    def __init__(self, ledger: BlobLedger) -> None:
        self._ledger = ledger

    async def file_created(
        self,
        digest: str,
        *,
        size_bytes: int | None = None,
        declared_media_type: str | None = None,
        physical_path: str | None = None,
    ) -> int:
        """Count a new logical file over digest and return the new count.

        When the blob's metadata is supplied it is recorded first, so the
        reference is never counted against a missing ledger row.
        """
        if size_bytes is not None and physical_path is not None:
            await self._ledger.record_new(digest, size_bytes, declared_media_type, physical_path)
        count = await self._ledger.adjust_reference_count(digest, +1)
        if count == 1:
            logger.info("Blob %s is now referenced", digest)
        return count

    async def file_deleted(self, digest: str) -> int:
        count = await self._ledger.adjust_reference_count(digest, -1)
        if count == 0:
            logger.info("Blob %s is now unreferenced; eligible for sweep after grace period", digest)
        return count
