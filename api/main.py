"""Entrypoint for FastAPI file vault storage service"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from api.errors import register_error_handlers
from api.routes import admin, blobs, files
from core.config import settings
from db.session import init_db

logging.basicConfig(level=settings.LOG_LEVEL)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    yield


app = FastAPI(
    title="File Vault Storage API",
    version="0.1.0",
    description="Content-addressed, deduplicating object store with reference-counted lifecycle",
    lifespan=lifespan,
)

register_error_handlers(app)
app.include_router(blobs.router)
app.include_router(files.router)
app.include_router(admin.router)


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}
