"""Error taxonomy for the object store"""

from __future__ import annotations


class StoreError(Exception):
    """Base class for object store failures."""


class IOFailure(StoreError):
    """Staging write, directory creation, link or removal failed.

    The originating OSError is chained as ``__cause__``. An upload that raised
    this has not touched the ledger.
    """


class InvariantViolation(StoreError):
    """A reference count adjustment would have made the count negative."""

    def __init__(self, digest: str, current: int, delta: int):
        self.digest = digest
        self.current = current
        self.delta = delta
        super().__init__(
            f"reference_count for {digest} is {current}; applying {delta:+d} would go negative"
        )


class BlobNotFound(StoreError, LookupError):
    """No ledger row exists for the digest."""

    def __init__(self, digest: str):
        self.digest = digest
        super().__init__(f"Blob not found: {digest}")
