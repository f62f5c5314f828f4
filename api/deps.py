"""Shared FastAPI dependencies for the storage routes"""

from __future__ import annotations

from fastapi import Depends

from core.blob_store import LocalFsBlobStore
from core.object_store import ObjectStore

_blob_store: LocalFsBlobStore | None = None


def get_blob_store() -> LocalFsBlobStore:
    global _blob_store
    if _blob_store is None:
        _blob_store = LocalFsBlobStore()
    return _blob_store


def get_object_store(
    blob_store: LocalFsBlobStore = Depends(get_blob_store),
) -> ObjectStore:
    return ObjectStore(blob_store)
