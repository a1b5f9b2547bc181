"""
SQLAlchemy ORM Models — Documents (search-relevant subset)

The documents table is owned by the document CRUD service. This pipeline
reads the columns below and writes exactly two of them:

  representation  JSONB  — the SearchableRepresentation, replaced as a whole
  version         int    — optimistic-concurrency token, bumped on every write

A merge is one UPDATE … WHERE id = :id AND version = :expected, so readers
see either the old representation or the new one, never a mix.

Schema: docpipe (set via __table_args__)
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import BigInteger, DateTime, Index, Integer, Text, func
from sqlalchemy.dialects.postgresql import ARRAY, JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from docpipe.indexing.types import DocumentSnapshot, SearchableRepresentation


# ---------------------------------------------------------------------------
# Declarative base: shared across all models
# ---------------------------------------------------------------------------

class Base(DeclarativeBase):
    pass


# ---------------------------------------------------------------------------
# Document model: docpipe.documents
# ---------------------------------------------------------------------------

class DocumentRow(Base):
    __tablename__ = "documents"
    __table_args__ = (
        Index("idx_documents_org",         "organization_id"),
        Index("idx_documents_org_status",  "organization_id", "status"),
        Index("idx_documents_org_folder",  "organization_id", "folder_id"),
        Index("idx_documents_folder_path", "folder_path", postgresql_using="gin"),
        {"schema": "docpipe"},
    )

    id:              Mapped[str] = mapped_column(Text, primary_key=True)
    organization_id: Mapped[str] = mapped_column(Text, nullable=False)

    name:       Mapped[str] = mapped_column(Text, nullable=False)
    mime_type:  Mapped[str] = mapped_column(Text, nullable=False)
    size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0, server_default="0")
    storage_key: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    status:            Mapped[str] = mapped_column(Text, nullable=False, default="ACTIVE", server_default="ACTIVE")
    processing_status: Mapped[str] = mapped_column(Text, nullable=False, default="PENDING", server_default="PENDING")

    folder_id:   Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    folder_path: Mapped[list[str]] = mapped_column(
        ARRAY(Text),
        nullable=False,
        default=list,
        server_default="{}",
        comment="Ancestor folder ids, root first; maintained by the folder service",
    )
    tags:          Mapped[list[str]] = mapped_column(ARRAY(Text), nullable=False, default=list, server_default="{}")
    created_by_id: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    representation: Mapped[dict] = mapped_column(
        JSONB,
        nullable=False,
        default=dict,
        server_default="{}",
        comment="SearchableRepresentation; written only by the index coordinator",
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    def to_snapshot(self) -> DocumentSnapshot:
        return DocumentSnapshot(
            id=self.id,
            organization_id=self.organization_id,
            name=self.name,
            mime_type=self.mime_type,
            size_bytes=self.size_bytes,
            status=self.status,
            processing_status=self.processing_status,
            folder_id=self.folder_id,
            folder_path=tuple(self.folder_path or ()),
            tags=tuple(self.tags or ()),
            created_by_id=self.created_by_id,
            created_at=self.created_at,
            updated_at=self.updated_at,
            storage_key=self.storage_key,
            representation=SearchableRepresentation.from_dict(self.representation),
            version=self.version,
        )

    def __repr__(self) -> str:
        return f"<DocumentRow id={self.id} org={self.organization_id} version={self.version}>"
