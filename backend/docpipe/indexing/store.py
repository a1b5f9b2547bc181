"""
Document persistence port + in-memory adapter.

The Index Coordinator needs exactly one write primitive:

    compare_and_swap(document_id, expected_version, representation) -> bool

which replaces the representation and bumps the version only if the stored
version still equals `expected_version`. Everything else is read-only.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import replace
from typing import TYPE_CHECKING

from docpipe.indexing.types import DocumentSnapshot, SearchableRepresentation

if TYPE_CHECKING:
    from docpipe.search.query import SearchFilters


class DocumentStore(ABC):

    @abstractmethod
    async def get(self, document_id: str) -> DocumentSnapshot | None: ...

    @abstractmethod
    async def compare_and_swap(
        self,
        document_id: str,
        expected_version: int,
        representation: SearchableRepresentation,
    ) -> bool:
        """True if written; False on version conflict."""

    @abstractmethod
    async def list_candidates(
        self,
        organization_id: str,
        filters: "SearchFilters | None" = None,
    ) -> list[DocumentSnapshot]:
        """
        Tenant-scoped snapshot of searchable documents.

        Adapters may push any subset of `filters` down to the backend; the
        query executor always re-applies the full predicate.
        """


class InMemoryDocumentStore(DocumentStore):

    def __init__(self, documents: list[DocumentSnapshot] | None = None) -> None:
        self._docs: dict[str, DocumentSnapshot] = {}
        self._lock = asyncio.Lock()
        for doc in documents or []:
            self._docs[doc.id] = doc

    def put(self, document: DocumentSnapshot) -> None:
        """Seed / replace a document (the CRUD service's job in production)."""
        self._docs[document.id] = document

    async def get(self, document_id: str) -> DocumentSnapshot | None:
        return self._docs.get(document_id)

    async def compare_and_swap(
        self,
        document_id: str,
        expected_version: int,
        representation: SearchableRepresentation,
    ) -> bool:
        async with self._lock:
            current = self._docs.get(document_id)
            if current is None or current.version != expected_version:
                return False
            self._docs[document_id] = replace(
                current, representation=representation, version=current.version + 1,
            )
            return True

    async def list_candidates(
        self,
        organization_id: str,
        filters: "SearchFilters | None" = None,
    ) -> list[DocumentSnapshot]:
        return [d for d in self._docs.values() if d.organization_id == organization_id]

    def __len__(self) -> int:
        return len(self._docs)
