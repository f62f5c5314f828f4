"""Blob ledger: durable digest -> blob metadata + reference counts.

Every mutation is a single SQL statement so concurrent writers of the same
digest serialize on the row (PostgreSQL) or the database write lock (SQLite)
instead of racing a read-then-write in Python.
"""

from __future__ import annotations

import logging
import time

from sqlalchemy import case, delete, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import Session

from core.errors import BlobNotFound, InvariantViolation
from db.models import BlobRow

logger = logging.getLogger(__name__)


def now_ms() -> int:
    return int(time.time() * 1000)


# ---------------------------------------------------------------------------
# Statements
# ---------------------------------------------------------------------------

def _record_new_stmt(
    dialect_name: str,
    digest: str,
    size_bytes: int,
    declared_media_type: str | None,
    physical_path: str,
    ts_ms: int,
):
    if dialect_name == "postgresql":
        insert_fn = pg_insert
    elif dialect_name == "sqlite":
        insert_fn = sqlite_insert
    else:
        raise NotImplementedError(f"Ledger upsert not supported on dialect {dialect_name!r}")

    stmt = insert_fn(BlobRow).values(
        digest=digest,
        size_bytes=size_bytes,
        declared_media_type=declared_media_type,
        physical_path=physical_path,
        reference_count=0,
        created_at_ms=ts_ms,
        unreferenced_since_ms=ts_ms,
    )
    # Existing rows keep their metadata; an unreferenced one restarts its grace window
    return stmt.on_conflict_do_update(
        index_elements=["digest"],
        set_={
            "unreferenced_since_ms": case(
                (BlobRow.reference_count == 0, ts_ms),
                else_=BlobRow.unreferenced_since_ms,
            ),
        },
    )


def _adjust_stmt(digest: str, delta: int, ts_ms: int):
    new_count = BlobRow.reference_count + delta
    return (
        update(BlobRow)
        .where(BlobRow.digest == digest, new_count >= 0)
        .values(
            reference_count=new_count,
            unreferenced_since_ms=case(
                (new_count == 0, ts_ms),
                else_=None,
            ),
        )
        .returning(BlobRow.reference_count)
        .execution_options(synchronize_session=False)
    )


def _reclaimable_clause(cutoff_ms: int):
    return (
        (BlobRow.reference_count == 0)
        & BlobRow.unreferenced_since_ms.is_not(None)
        & (BlobRow.unreferenced_since_ms <= cutoff_ms)
    )


# ---------------------------------------------------------------------------
# Async ledger (API path)
# ---------------------------------------------------------------------------

class BlobLedger:
    """Ledger operations bound to the caller's session and transaction."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    def _dialect_name(self) -> str:
        return self._session.get_bind().dialect.name

    async def find(self, digest: str) -> BlobRow | None:
        result = await self._session.execute(
            select(BlobRow)
            .where(BlobRow.digest == digest)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def lookup(self, digest: str) -> BlobRow:
        row = await self.find(digest)
        if row is None:
            raise BlobNotFound(digest)
        return row

    async def record_new(
        self,
        digest: str,
        size_bytes: int,
        declared_media_type: str | None,
        physical_path: str,
    ) -> None:
        """Insert the blob with reference_count = 0 unless it is already recorded."""
        await self._session.execute(
            _record_new_stmt(
                self._dialect_name(),
                digest,
                size_bytes,
                declared_media_type,
                physical_path,
                now_ms(),
            )
        )

    async def adjust_reference_count(self, digest: str, delta: int) -> int:
        """Atomically apply delta and return the new count.

        Raises BlobNotFound for an unknown digest and InvariantViolation if the
        count would go negative; the count is never clamped.
        """
        if delta == 0:
            raise ValueError("delta must be non-zero")

        result = await self._session.execute(_adjust_stmt(digest, delta, now_ms()))
        new_count = result.scalar_one_or_none()
        if new_count is not None:
            return new_count

        row = await self.find(digest)
        if row is None:
            raise BlobNotFound(digest)
        logger.error(
            "Reference count underflow for %s: count=%d delta=%+d",
            digest, row.reference_count, delta,
        )
        raise InvariantViolation(digest, row.reference_count, delta)


# ---------------------------------------------------------------------------
# Sync helpers (sweep worker)
# ---------------------------------------------------------------------------

def select_reclaimable(session: Session, cutoff_ms: int, limit: int) -> list[str]:
    # Oldest unreferenced first
    result = session.execute(
        select(BlobRow.digest)
        .where(_reclaimable_clause(cutoff_ms))
        .order_by(BlobRow.unreferenced_since_ms)
        .limit(limit)
    )
    return list(result.scalars().all())


def delete_if_reclaimable(session: Session, digest: str, cutoff_ms: int) -> int | None:
    """Delete the ledger row if it is still reclaimable; return its size_bytes.

    The reference count and grace window are re-checked by the DELETE itself,
    so a blob re-referenced or re-uploaded since selection is left alone. The
    deleted row stays locked until the caller's transaction ends.
    """
    result = session.execute(
        delete(BlobRow)
        .where(BlobRow.digest == digest, _reclaimable_clause(cutoff_ms))
        .returning(BlobRow.size_bytes)
        .execution_options(synchronize_session=False)
    )
    return result.scalar_one_or_none()
