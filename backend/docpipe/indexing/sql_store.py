"""
PostgreSQL document store.

compare_and_swap is a single conditional UPDATE:

    UPDATE docpipe.documents
       SET representation = :rep, version = version + 1
     WHERE id = :id AND version = :expected

rowcount 1 → written, 0 → somebody else won the race (or the row is gone).

list_candidates pushes the cheap, indexed filters (status, folder, mime,
creator, include/exclude ids) into SQL; the executor re-applies the full
predicate in Python either way.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import or_, select, update
from sqlalchemy.exc import InterfaceError, OperationalError

from docpipe.core.errors import PersistenceUnavailableError
from docpipe.db.session import SessionFactory, session_scope
from docpipe.indexing.store import DocumentStore
from docpipe.indexing.types import DocumentSnapshot, SearchableRepresentation
from docpipe.models.documents import DocumentRow

if TYPE_CHECKING:
    from docpipe.search.query import SearchFilters

logger = logging.getLogger(__name__)


class SqlDocumentStore(DocumentStore):

    def __init__(self, session_factory: SessionFactory) -> None:
        self._sessions = session_factory

    async def get(self, document_id: str) -> DocumentSnapshot | None:
        try:
            async with session_scope(self._sessions) as session:
                row = await session.get(DocumentRow, document_id)
                return row.to_snapshot() if row is not None else None
        except (OperationalError, InterfaceError) as exc:
            raise PersistenceUnavailableError(f"Document store unavailable: {exc.orig or exc}") from exc

    async def compare_and_swap(
        self,
        document_id: str,
        expected_version: int,
        representation: SearchableRepresentation,
    ) -> bool:
        stmt = (
            update(DocumentRow)
            .where(DocumentRow.id == document_id, DocumentRow.version == expected_version)
            .values(representation=representation.to_dict(), version=DocumentRow.version + 1)
            .execution_options(synchronize_session=False)
        )
        try:
            async with session_scope(self._sessions) as session:
                result = await session.execute(stmt)
        except (OperationalError, InterfaceError) as exc:
            raise PersistenceUnavailableError(f"Document store unavailable: {exc.orig or exc}") from exc

        written = result.rowcount == 1
        if not written:
            logger.debug("CAS lost | doc=%s expected_version=%d", document_id, expected_version)
        return written

    async def list_candidates(
        self,
        organization_id: str,
        filters: "SearchFilters | None" = None,
    ) -> list[DocumentSnapshot]:
        stmt = select(DocumentRow).where(
            DocumentRow.organization_id == organization_id,
            DocumentRow.status != "DELETED",
        )
        if filters is not None:
            if filters.include_ids:
                stmt = stmt.where(DocumentRow.id.in_(filters.include_ids))
            if filters.exclude_ids:
                stmt = stmt.where(DocumentRow.id.not_in(filters.exclude_ids))
            if filters.folder_id:
                if filters.include_subfolders:
                    stmt = stmt.where(or_(
                        DocumentRow.folder_id == filters.folder_id,
                        DocumentRow.folder_path.any(filters.folder_id),
                    ))
                else:
                    stmt = stmt.where(DocumentRow.folder_id == filters.folder_id)
            if filters.mime_types:
                stmt = stmt.where(DocumentRow.mime_type.in_(filters.mime_types))
            if filters.created_by_id:
                stmt = stmt.where(DocumentRow.created_by_id == filters.created_by_id)

        try:
            async with session_scope(self._sessions) as session:
                rows = (await session.execute(stmt)).scalars().all()
                return [row.to_snapshot() for row in rows]
        except (OperationalError, InterfaceError) as exc:
            raise PersistenceUnavailableError(f"Document store unavailable: {exc.orig or exc}") from exc
