"""Reclaim unreferenced blobs for Celery task storage.sweep_unreferenced"""

from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError

from core.blob_store import LocalFsBlobStore
from core.config import settings
from core.errors import IOFailure
from core.models import SweepReport
from db.ledger import delete_if_reclaimable, now_ms, select_reclaimable
from db.session import get_sync_session
from worker.celery_app import celery_app

logger = logging.getLogger(__name__)
blob_store = LocalFsBlobStore()


@celery_app.task(name="storage.sweep_unreferenced", bind=True, max_retries=0)
def sweep_unreferenced(self, grace_seconds: int | None = None, batch_size: int | None = None) -> dict:
    return _sweep_impl(grace_seconds, batch_size).model_dump()


def _sweep_impl(
    grace_seconds: int | None = None,
    batch_size: int | None = None,
    store: LocalFsBlobStore | None = None,
) -> SweepReport:
    store = store or blob_store
    grace = settings.SWEEP_GRACE_SECONDS if grace_seconds is None else grace_seconds
    limit = settings.SWEEP_BATCH_SIZE if batch_size is None else batch_size
    cutoff_ms = now_ms() - grace * 1000
    report = SweepReport()

    with get_sync_session() as session:
        candidates = select_reclaimable(session, cutoff_ms, limit)
    report.scanned = len(candidates)

    for digest in candidates:
        try:
            size_bytes = _reclaim_one(digest, cutoff_ms, store)
        except (IOFailure, SQLAlchemyError):
            logger.exception("Failed to reclaim blob %s; ledger row kept", digest)
            report.failed += 1
            continue
        if size_bytes is None:
            report.skipped += 1
            continue
        report.reclaimed += 1
        report.reclaimed_bytes += size_bytes

    report.staging_purged = store.purge_stale_staging(settings.STAGING_MAX_AGE_SECONDS)

    logger.info(
        "Sweep done: scanned=%d reclaimed=%d (%d bytes) skipped=%d failed=%d staging_purged=%d",
        report.scanned, report.reclaimed, report.reclaimed_bytes,
        report.skipped, report.failed, report.staging_purged,
    )
    return report


def _reclaim_one(digest: str, cutoff_ms: int, store: LocalFsBlobStore) -> int | None:
    # Row delete and file removal share one transaction; the row lock holds
    # off a concurrent put of the same digest until the file is gone.
    with get_sync_session() as session:
        size_bytes = delete_if_reclaimable(session, digest, cutoff_ms)
        if size_bytes is None:
            logger.debug("Blob %s no longer reclaimable, skipping", digest)
            return None
        if not store.remove(digest):
            logger.warning("Blob %s had no file on disk", digest)
    logger.info("Reclaimed blob %s (%d bytes)", digest, size_bytes)
    return size_bytes
