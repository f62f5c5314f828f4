"""Tests for the reclamation sweep worker task (storage.sweep_unreferenced)"""

from __future__ import annotations

import os
import time
from contextlib import contextmanager
from unittest.mock import patch

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.orm import Session, sessionmaker

from core.blob_store import LocalFsBlobStore
from core.errors import IOFailure
from core.hashing import HashingWriter
from db.models import Base, BlobRow, FileRow


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def sync_engine():
    engine = create_engine("sqlite://", echo=False)
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def sync_session_factory(sync_engine):
    return sessionmaker(sync_engine, expire_on_commit=False)


@pytest.fixture
def sync_session(sync_session_factory):
    session = sync_session_factory()
    yield session
    session.close()


@pytest.fixture
def blob_store(tmp_path):
    return LocalFsBlobStore(root=tmp_path / "blobs")


def _patch_sync_session(sync_session_factory):
    # Return a context manager patch for get_sync_session that uses our test factory
    @contextmanager
    def _test_sync_session():
        session = sync_session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    return patch("worker.tasks.sweep.get_sync_session", _test_sync_session)


def _now_ms() -> int:
    return int(time.time() * 1000)


def _store_blob(
    session: Session,
    blob_store: LocalFsBlobStore,
    content: bytes,
    reference_count: int = 0,
    unreferenced_age_s: float | None = 7200,
) -> str:
    # Put content on disk and record it the way ObjectStore.put + lifecycle would
    result = blob_store.put_bytes(content)
    session.add(BlobRow(
        digest=result.digest,
        size_bytes=result.size_bytes,
        physical_path=str(result.path),
        reference_count=reference_count,
        created_at_ms=_now_ms(),
        unreferenced_since_ms=(
            None if reference_count > 0 or unreferenced_age_s is None
            else _now_ms() - int(unreferenced_age_s * 1000)
        ),
    ))
    session.commit()
    return result.digest


def _run_sweep(sync_session_factory, blob_store, **kwargs):
    from worker.tasks.sweep import _sweep_impl

    with _patch_sync_session(sync_session_factory):
        return _sweep_impl(store=blob_store, **kwargs)


# ---------------------------------------------------------------------------
# Tests: sweep_unreferenced
# ---------------------------------------------------------------------------

def test_sweep_reclaims_stale_unreferenced_blob(sync_session_factory, sync_session, blob_store):
    digest = _store_blob(sync_session, blob_store, b"orphaned content")

    report = _run_sweep(sync_session_factory, blob_store, grace_seconds=3600)

    assert report.scanned == 1
    assert report.reclaimed == 1
    assert report.reclaimed_bytes == len(b"orphaned content")
    assert not blob_store.exists(digest)
    sync_session.expire_all()
    assert sync_session.get(BlobRow, digest) is None


def test_sweep_keeps_referenced_blob(sync_session_factory, sync_session, blob_store):
    digest = _store_blob(sync_session, blob_store, b"still in use", reference_count=2)

    report = _run_sweep(sync_session_factory, blob_store, grace_seconds=0)

    assert report.scanned == 0
    assert report.reclaimed == 0
    assert blob_store.exists(digest)
    assert sync_session.get(BlobRow, digest).reference_count == 2


def test_sweep_respects_grace_window(sync_session_factory, sync_session, blob_store):
    digest = _store_blob(sync_session, blob_store, b"recently dropped", unreferenced_age_s=10)

    report = _run_sweep(sync_session_factory, blob_store, grace_seconds=3600)

    assert report.reclaimed == 0
    assert blob_store.exists(digest)


def test_sweep_rechecks_count_before_deleting(sync_session_factory, sync_session, blob_store):
    # Selected as a candidate, then re-referenced before the delete ran
    digest = _store_blob(sync_session, blob_store, b"re-referenced")
    row = sync_session.get(BlobRow, digest)
    row.reference_count = 1
    row.unreferenced_since_ms = None
    sync_session.commit()

    with patch("worker.tasks.sweep.select_reclaimable", return_value=[digest]):
        report = _run_sweep(sync_session_factory, blob_store, grace_seconds=0)

    assert report.scanned == 1
    assert report.skipped == 1
    assert report.reclaimed == 0
    assert blob_store.exists(digest)
    sync_session.expire_all()
    assert sync_session.get(BlobRow, digest) is not None


def test_sweep_is_idempotent_when_file_already_gone(sync_session_factory, sync_session, blob_store):
    digest = _store_blob(sync_session, blob_store, b"half reclaimed")
    blob_store.remove(digest)

    report = _run_sweep(sync_session_factory, blob_store, grace_seconds=0)
    assert report.reclaimed == 1

    report = _run_sweep(sync_session_factory, blob_store, grace_seconds=0)
    assert report.scanned == 0


def test_sweep_failed_removal_keeps_ledger_row(sync_session_factory, sync_session, blob_store):
    failing = _store_blob(sync_session, blob_store, b"stuck on disk")
    healthy = _store_blob(sync_session, blob_store, b"fine to remove")
    original_remove = blob_store.remove

    def _remove(digest):
        if digest == failing:
            raise IOFailure("Permission denied")
        return original_remove(digest)

    with patch.object(blob_store, "remove", side_effect=_remove):
        report = _run_sweep(sync_session_factory, blob_store, grace_seconds=0)

    assert report.failed == 1
    assert report.reclaimed == 1
    sync_session.expire_all()
    assert sync_session.get(BlobRow, failing) is not None
    assert sync_session.get(BlobRow, healthy) is None
    assert blob_store.exists(failing)


def test_sweep_batch_size_limits_work(sync_session_factory, sync_session, blob_store):
    for i in range(5):
        _store_blob(sync_session, blob_store, f"orphan-{i}".encode(), unreferenced_age_s=7200 + i)

    report = _run_sweep(sync_session_factory, blob_store, grace_seconds=0, batch_size=2)
    assert report.scanned == 2
    assert report.reclaimed == 2

    report = _run_sweep(sync_session_factory, blob_store, grace_seconds=0, batch_size=10)
    assert report.reclaimed == 3


def test_sweep_purges_stale_staging(sync_session_factory, blob_store):
    blob_store.staging_dir.mkdir(parents=True)
    leftover = blob_store.staging_dir / "upload-crashed"
    leftover.write_bytes(b"partial")
    old = time.time() - 7200
    os.utime(leftover, (old, old))

    with patch("worker.tasks.sweep.settings.STAGING_MAX_AGE_SECONDS", 3600):
        report = _run_sweep(sync_session_factory, blob_store, grace_seconds=3600)

    assert report.staging_purged == 1
    assert not leftover.exists()


def test_sweep_with_zero_grace_keeps_in_flight_staging(sync_session_factory, blob_store):
    writer = HashingWriter(blob_store.staging_dir)
    writer.write(b"upload still streaming")

    report = _run_sweep(sync_session_factory, blob_store, grace_seconds=0)
    assert report.staging_purged == 0
    assert writer.path.exists()

    staged = writer.finish()
    try:
        assert blob_store.commit(staged) is False
    finally:
        staged.discard()
    assert blob_store.get_bytes(staged.digest) == b"upload still streaming"


def test_sweep_continues_past_database_error(sync_session_factory, sync_session, blob_store):
    # In-memory SQLite shares one connection per thread, so the pragma covers the sweep too
    sync_session.execute(text("PRAGMA foreign_keys=ON"))
    # A file row still points at the oldest candidate, so its DELETE hits the foreign key
    pinned = _store_blob(sync_session, blob_store, b"still owned by a file", unreferenced_age_s=9000)
    loose = _store_blob(sync_session, blob_store, b"really orphaned", unreferenced_age_s=7200)
    sync_session.add(FileRow(
        owner_id="alice",
        blob_digest=pinned,
        filename="kept.txt",
        size_bytes=21,
        created_at_ms=_now_ms(),
    ))
    sync_session.commit()

    report = _run_sweep(sync_session_factory, blob_store, grace_seconds=0)

    assert report.scanned == 2
    assert report.failed == 1
    assert report.reclaimed == 1
    assert blob_store.exists(pinned)
    assert not blob_store.exists(loose)
    sync_session.expire_all()
    assert sync_session.get(BlobRow, pinned) is not None
    assert sync_session.get(BlobRow, loose) is None


def test_sweep_task_returns_report_dict(sync_session_factory, sync_session, blob_store):
    _store_blob(sync_session, blob_store, b"via celery")

    from worker.tasks.sweep import sweep_unreferenced

    with (
        _patch_sync_session(sync_session_factory),
        patch("worker.tasks.sweep.blob_store", blob_store),
    ):
        result = sweep_unreferenced.apply(kwargs={"grace_seconds": 0}).get()

    assert result["reclaimed"] == 1
    assert result["failed"] == 0
