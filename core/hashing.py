"""Hashing writer: digest a byte stream while staging it to disk."""

from __future__ import annotations

import hashlib
import logging
import os
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Protocol

from core.errors import IOFailure

logger = logging.getLogger(__name__)

HASH_ALGORITHM = "sha256"
STAGING_PREFIX = "upload-"


class AsyncReadable(Protocol):
    """Anything with ``async read(size)``, e.g. FastAPI's UploadFile."""

    async def read(self, size: int = -1) -> bytes:
        ...


@dataclass
class StagedBlob:
    # Fully written staging artifact, not yet visible under its digest
    digest: str
    size_bytes: int
    path: Path

    def discard(self) -> None:
        try:
            self.path.unlink(missing_ok=True)
        except OSError:
            logger.warning("Could not remove staging artifact %s", self.path, exc_info=True)


class HashingWriter:
    """Incrementally hash and persist chunks to a private staging file.

    Use :meth:`finish` to obtain a :class:`StagedBlob`, or :meth:`abort` to
    remove the partial artifact. Every ``OSError`` raised by the staging file
    is converted to :class:`IOFailure` after the artifact has been removed.
    """

    def __init__(self, staging_dir: Path) -> None:
        try:
            staging_dir.mkdir(parents=True, exist_ok=True)
            fd, name = tempfile.mkstemp(prefix=STAGING_PREFIX, dir=staging_dir)
        except OSError as exc:
            raise IOFailure(f"Cannot create staging file in {staging_dir}: {exc}") from exc
        self.path = Path(name)
        self._file: BinaryIO | None = os.fdopen(fd, "wb")
        self._hasher = hashlib.new(HASH_ALGORITHM)
        self.size_bytes = 0

    def write(self, chunk: bytes) -> None:
        if self._file is None:
            raise RuntimeError("HashingWriter is closed")
        try:
            self._file.write(chunk)
        except OSError as exc:
            self.abort()
            raise IOFailure(f"Staging write failed: {exc}") from exc
        self._hasher.update(chunk)
        self.size_bytes += len(chunk)

    def finish(self) -> StagedBlob:
        if self._file is None:
            raise RuntimeError("HashingWriter is closed")
        try:
            self._file.flush()
            os.fsync(self._file.fileno())
            self._file.close()
        except OSError as exc:
            self.abort()
            raise IOFailure(f"Staging flush failed: {exc}") from exc
        self._file = None
        return StagedBlob(
            digest=self._hasher.hexdigest(),
            size_bytes=self.size_bytes,
            path=self.path,
        )

    def abort(self) -> None:
        if self._file is not None:
            try:
                self._file.close()
            except OSError:
                logger.debug("Ignoring close error on aborted staging file %s", self.path, exc_info=True)
            self._file = None
        try:
            self.path.unlink(missing_ok=True)
        except OSError:
            logger.warning("Could not remove aborted staging file %s", self.path, exc_info=True)


def stage_stream(stream: BinaryIO, staging_dir: Path, chunk_size: int) -> StagedBlob:
    """Stage a blocking binary stream. Nothing is left behind on failure."""
    writer = HashingWriter(staging_dir)
    try:
        while True:
            chunk = stream.read(chunk_size)
            if not chunk:
                break
            writer.write(chunk)
        return writer.finish()
    except BaseException:
        writer.abort()
        raise


async def stage_async_stream(stream: AsyncReadable, staging_dir: Path, chunk_size: int) -> StagedBlob:
    """Stage an async stream.

    Cancellation of the awaiting task (``asyncio.CancelledError``) lands in the
    same cleanup path as any other failure: the staging artifact is removed and
    the exception propagates.
    """
    writer = HashingWriter(staging_dir)
    try:
        while True:
            chunk = await stream.read(chunk_size)
            if not chunk:
                break
            writer.write(chunk)
        return writer.finish()
    except BaseException:
        writer.abort()
        raise
