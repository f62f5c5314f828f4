"""Content-addressed local filesystem blob store.

Layout: {root}/{digest[0:2]}/{digest[2:4]}/{digest}, staging under {root}/.staging
"""

from __future__ import annotations

import errno
import io
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO

from core.config import settings
from core.errors import BlobNotFound, IOFailure
from core.hashing import STAGING_PREFIX, AsyncReadable, StagedBlob, stage_async_stream, stage_stream
from core.validation import normalize_digest

logger = logging.getLogger(__name__)

# errno values for filesystems that refuse hard links
_LINK_UNSUPPORTED = {errno.EPERM, errno.ENOTSUP, errno.EOPNOTSUPP, errno.ENOSYS}


@dataclass
class CommitResult:
    digest: str
    size_bytes: int
    path: Path
    already_existed: bool


def shard_path(root: Path, digest: str) -> Path:
    """Map a digest to its deterministic two-level sharded path under root."""
    digest = normalize_digest(digest)
    return root / digest[:2] / digest[2:4] / digest


class LocalFsBlobStore:
    """Content-addressed local filesystem blob store.

    Only :meth:`commit` publishes new content under the root, and only at
    digest-derived paths. Publication is a hard link from the staging file,
    which fails atomically when the target already exists, so concurrent
    commits of the same digest produce exactly one winner and the target is
    never visible partially written.

    The store root must be on a filesystem that supports hard links. Mounts
    without them (FAT, some SMB and FUSE backends) fail every first commit
    with IOFailure.
    """

    def __init__(self, root: str | Path | None = None) -> None:
        self._root = Path(root) if root else Path(settings.BLOB_STORE_PATH)

    @property
    def root(self) -> Path:
        return self._root

    @property
    def staging_dir(self) -> Path:
        return self._root / settings.STAGING_DIR_NAME

    def blob_path(self, digest: str) -> Path:
        return shard_path(self._root, digest)

    # -----------------------------------------------------------------------
    # Hashing writer
    # -----------------------------------------------------------------------

    def stage(self, stream: BinaryIO) -> StagedBlob:
        return stage_stream(stream, self.staging_dir, settings.HASH_CHUNK_SIZE)

    async def astage(self, stream: AsyncReadable) -> StagedBlob:
        return await stage_async_stream(stream, self.staging_dir, settings.HASH_CHUNK_SIZE)

    # -----------------------------------------------------------------------
    # Atomic committer
    # -----------------------------------------------------------------------

    def commit(self, staged: StagedBlob) -> bool:
        """Publish staged content under its digest. Returns True if it already existed.

        The staging artifact is left in place; callers discard it once the
        ledger has been updated.
        """
        target = self.blob_path(staged.digest)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise IOFailure(f"Cannot create shard directory {target.parent}: {exc}") from exc

        try:
            os.link(staged.path, target)
        except FileExistsError:
            logger.debug("Blob %s already present, dedup", staged.digest)
            return True
        except OSError as exc:
            if exc.errno in _LINK_UNSUPPORTED:
                raise IOFailure(
                    f"Cannot publish {staged.digest}: filesystem at {self._root} "
                    f"does not support hard links: {exc}"
                ) from exc
            raise IOFailure(f"Cannot publish {staged.digest}: {exc}") from exc

        logger.info("Committed blob %s (%d bytes)", staged.digest, staged.size_bytes)
        return False

    def put_stream(self, stream: BinaryIO) -> CommitResult:
        staged = self.stage(stream)
        try:
            already_existed = self.commit(staged)
        finally:
            staged.discard()
        return CommitResult(
            digest=staged.digest,
            size_bytes=staged.size_bytes,
            path=self.blob_path(staged.digest),
            already_existed=already_existed,
        )

    def put_bytes(self, data: bytes) -> CommitResult:
        return self.put_stream(io.BytesIO(data))

    # -----------------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------------

    def get_bytes(self, digest: str) -> bytes:
        path = self.blob_path(digest)
        if not path.exists():
            raise BlobNotFound(digest)
        return path.read_bytes()

    def get_uri(self, digest: str) -> str:
        return f"file://{self.blob_path(digest)}"

    def exists(self, digest: str) -> bool:
        return self.blob_path(digest).exists()

    # -----------------------------------------------------------------------
    # Reclamation
    # -----------------------------------------------------------------------

    def remove(self, digest: str) -> bool:
        """Delete a blob's physical file. Returns False if it was already gone."""
        path = self.blob_path(digest)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            raise IOFailure(f"Cannot remove {path}: {exc}") from exc
        return True

    def purge_stale_staging(self, older_than_seconds: float) -> int:
        """Remove staging artifacts abandoned by crashed writers."""
        if not self.staging_dir.is_dir():
            return 0
        cutoff = time.time() - older_than_seconds
        purged = 0
        for entry in self.staging_dir.glob(f"{STAGING_PREFIX}*"):
            try:
                if entry.stat().st_mtime <= cutoff:
                    entry.unlink()
                    purged += 1
            except FileNotFoundError:
                continue
            except OSError as exc:
                raise IOFailure(f"Cannot purge staging artifact {entry}: {exc}") from exc
        return purged
