"""SQLAlchemy ORM models: blob ledger and logical files."""

import uuid

from sqlalchemy import BigInteger, ForeignKey, Index, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


class BlobRow(Base):
    __tablename__ = "blobs"
    __table_args__ = (
        Index("ix_blobs_unreferenced", "reference_count", "unreferenced_since_ms"),
    )

    digest: Mapped[str] = mapped_column(String(64), primary_key=True)
    size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False)
    declared_media_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    physical_path: Mapped[str] = mapped_column(Text, nullable=False)
    reference_count: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    created_at_ms: Mapped[int] = mapped_column(BigInteger, nullable=False)
    # Set while reference_count == 0; drives the sweep grace window
    unreferenced_since_ms: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    files: Mapped[list["FileRow"]] = relationship(back_populates="blob")


class FileRow(Base):
    __tablename__ = "files"
    __table_args__ = (
        Index("ix_files_owner", "owner_id"),
        Index("ix_files_blob", "blob_digest"),
    )

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    owner_id: Mapped[str] = mapped_column(String(255), nullable=False)
    blob_digest: Mapped[str] = mapped_column(
        String(64), ForeignKey("blobs.digest"), nullable=False
    )
    filename: Mapped[str] = mapped_column(Text, nullable=False)
    size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False)
    declared_media_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at_ms: Mapped[int] = mapped_column(BigInteger, nullable=False)

    blob: Mapped["BlobRow"] = relationship(back_populates="files")
