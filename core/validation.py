"""Input validation + error reporting for digests and declared media types."""

from __future__ import annotations

import re

DIGEST_PREFIX = "sha256:"
DIGEST_LENGTH = 64

_DIGEST_RE = re.compile(r"^[0-9a-f]{64}$")
_MEDIA_TYPE_RE = re.compile(r"^[\w.+-]+/[\w.+-]+(?:\s*;.*)?$")


class ValidationErrorDetail:
    """Structured validation error for API responses."""

    def __init__(self, field: str, message: str, value: object = None):
        self.field = field
        self.message = message
        self.value = value

    def to_dict(self) -> dict:
        d: dict = {"field": self.field, "message": self.message}
        if self.value is not None:
            d["value"] = repr(self.value)
        return d


class StoreValidationError(ValueError):
    """Raised when caller input fails validation with actionable error details."""

    def __init__(self, errors: list[ValidationErrorDetail]):
        self.errors = errors
        super().__init__(f"{len(errors)} validation error(s)")

    def to_response_body(self) -> dict:
        return {
            "detail": "Validation failed",
            "errors": [e.to_dict() for e in self.errors],
        }


def normalize_digest(value: str, field: str = "digest") -> str:
    """Return the bare lowercase hex digest. Raises StoreValidationError on failure.

    Accepts an optional ``sha256:`` prefix. Anything that is not exactly 64 hex
    characters is rejected, so a validated digest is always safe to use as a
    path component.
    """
    digest = value[len(DIGEST_PREFIX):] if value.startswith(DIGEST_PREFIX) else value
    digest = digest.lower()
    if not _DIGEST_RE.match(digest):
        raise StoreValidationError([ValidationErrorDetail(
            field=field,
            message=f"must be {DIGEST_LENGTH} hex characters (optionally prefixed with '{DIGEST_PREFIX}')",
            value=value,
        )])
    return digest


def validate_media_type(value: str | None, field: str = "mime") -> str | None:
    """Validate a caller-declared media type. Empty means undeclared."""
    if value is None or value == "":
        return None
    if not _MEDIA_TYPE_RE.match(value.strip()):
        raise StoreValidationError([ValidationErrorDetail(
            field=field,
            message="must look like 'type/subtype'",
            value=value,
        )])
    return value.strip()
