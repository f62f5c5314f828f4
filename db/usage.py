"""Owner storage accounting over the logical files table."""

from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import BlobRow, FileRow


class SqlUsageProvider:
    async def current_usage(self, session: AsyncSession, owner_id: str) -> int:
        # Logical bytes: every file counts in full, duplicates included
        result = await session.execute(
            select(func.coalesce(func.sum(FileRow.size_bytes), 0)).where(
                FileRow.owner_id == owner_id
            )
        )
        return int(result.scalar_one())

    async def deduplicated_usage(self, session: AsyncSession, owner_id: str) -> int:
        # Physical bytes: each distinct blob the owner references counts once
        owned = (
            select(FileRow.blob_digest)
            .where(FileRow.owner_id == owner_id)
            .distinct()
        )
        result = await session.execute(
            select(func.coalesce(func.sum(BlobRow.size_bytes), 0)).where(
                BlobRow.digest.in_(owned)
            )
        )
        return int(result.scalar_one())
