"""
Filter predicate built from SearchFilters.

Applied to the candidate set before any scoring runs, so excluded documents
never reach the lexical index, the similarity computation or the reranker.
Deleted documents are never searchable, whatever the filters say.
"""

from __future__ import annotations

from typing import Callable, Iterable

from docpipe.indexing.types import DocumentSnapshot
from docpipe.search.query import SearchFilters

Predicate = Callable[[DocumentSnapshot], bool]

DELETED_STATUS = "DELETED"


def _lower_set(values: Iterable[str] | None) -> set[str] | None:
    if not values:
        return None
    return {v.strip().lower() for v in values if v and v.strip()} or None


def build_predicate(filters: SearchFilters | None) -> Predicate:
    """Compose one predicate; unset filters add no clause."""
    clauses: list[Predicate] = [lambda d: d.status != DELETED_STATUS]
    if filters is None:
        return clauses[0]

    if filters.include_ids:
        include = set(filters.include_ids)
        clauses.append(lambda d: d.id in include)
    if filters.exclude_ids:
        exclude = set(filters.exclude_ids)
        clauses.append(lambda d: d.id not in exclude)

    if filters.folder_id:
        folder_id, subtree = filters.folder_id, filters.include_subfolders
        clauses.append(lambda d: d.in_folder(folder_id, subtree))

    if filters.mime_types:
        mimes = {m.lower() for m in filters.mime_types}
        clauses.append(lambda d: d.mime_type.lower() in mimes)
    if filters.statuses:
        statuses = {s.upper() for s in filters.statuses}
        clauses.append(lambda d: d.status.upper() in statuses or d.processing_status.upper() in statuses)

    categories = _lower_set(filters.categories)
    if categories:
        clauses.append(lambda d: (d.representation.category or "").lower() in categories)

    tags_all = _lower_set(filters.tags)
    if tags_all:
        clauses.append(lambda d: tags_all <= {t.lower() for t in d.all_tags})
    tags_any = _lower_set(filters.tags_any)
    if tags_any:
        clauses.append(lambda d: bool(tags_any & {t.lower() for t in d.all_tags}))

    if filters.created_by_id:
        creator = filters.created_by_id
        clauses.append(lambda d: d.created_by_id == creator)
    if filters.created_at:
        created = filters.created_at
        clauses.append(lambda d: created.contains(d.created_at))
    if filters.updated_at:
        updated = filters.updated_at
        clauses.append(lambda d: updated.contains(d.updated_at))
    if filters.size_bytes:
        size = filters.size_bytes
        clauses.append(lambda d: size.contains(d.size_bytes))

    return lambda d: all(clause(d) for clause in clauses)


def apply_filters(documents: Iterable[DocumentSnapshot], filters: SearchFilters | None) -> list[DocumentSnapshot]:
    predicate = build_predicate(filters)
    return [d for d in documents if predicate(d)]
