"""
Query suggestions.

Two services share a term dictionary built from the tenant's documents
(names, tags, categories and extracted text, tokenised like the lexical
index):

  did-you-mean   when a search matches nothing, each unknown query term is
                 replaced by its nearest dictionary term within a small
                 edit distance
  autocomplete   names, tags and terms containing a partial query, scored
                 prefix 1.0 > word boundary 0.8 > substring 0.6
"""

from __future__ import annotations

from collections import Counter
from typing import Iterable

from docpipe.indexing.types import DocumentSnapshot
from docpipe.search.lexical import tokenize

MIN_AUTOCOMPLETE_LENGTH = 2
MIN_CORRECTABLE_LENGTH = 3


def levenshtein(a: str, b: str, limit: int | None = None) -> int:
    """
    Edit distance (insert / delete / substitute).

    With `limit`, gives up early and returns limit + 1 once every cell of a
    row exceeds it.
    """
    if a == b:
        return 0
    if len(a) < len(b):
        a, b = b, a
    if limit is not None and len(a) - len(b) > limit:
        return limit + 1

    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            current.append(min(
                previous[j] + 1,
                current[j - 1] + 1,
                previous[j - 1] + (ca != cb),
            ))
        if limit is not None and min(current) > limit:
            return limit + 1
        previous = current
    return previous[-1]


class TermDictionary:
    """Term → document frequency over one tenant's documents."""

    def __init__(self, frequencies: Counter[str]) -> None:
        self._freq = frequencies

    @classmethod
    def from_documents(cls, documents: Iterable[DocumentSnapshot]) -> "TermDictionary":
        freq: Counter[str] = Counter()
        for doc in documents:
            rep = doc.representation
            text = " ".join((doc.name, " ".join(doc.all_tags), rep.category or "", rep.extracted_text or ""))
            freq.update(set(tokenize(text)))
        return cls(freq)

    def __contains__(self, term: str) -> bool:
        return term in self._freq

    def __len__(self) -> int:
        return len(self._freq)

    def terms(self) -> Iterable[str]:
        return self._freq.keys()

    def nearest(self, term: str, max_distance: int) -> str | None:
        """Closest term within max_distance; ties go to the more frequent term, then alphabetical."""
        best: tuple[int, int, str] | None = None
        for candidate in self._freq:
            distance = levenshtein(term, candidate, max_distance)
            if distance == 0 or distance > max_distance:
                continue
            key = (distance, -self._freq[candidate], candidate)
            if best is None or key < best:
                best = key
        return best[2] if best else None


def did_you_mean(
    query: str, dictionary: TermDictionary, *, max_distance: int = 2, limit: int = 5,
) -> list[str]:
    """
    Corrected queries for a search that found nothing.

    The first suggestion replaces every correctable term at once; the rest
    are the individual corrected terms, so the caller always gets something
    usable when any near miss exists.
    """
    tokens = tokenize(query)
    corrections: dict[str, str] = {}
    for token in tokens:
        if token in dictionary or len(token) < MIN_CORRECTABLE_LENGTH or token in corrections:
            continue
        nearest = dictionary.nearest(token, max_distance)
        if nearest is not None:
            corrections[token] = nearest
    if not corrections:
        return []

    suggestions = [" ".join(corrections.get(t, t) for t in tokens)]
    for replacement in corrections.values():
        if replacement not in suggestions:
            suggestions.append(replacement)
    return suggestions[:limit]


def match_score(query: str, text: str) -> float:
    q, t = query.lower(), text.lower()
    if t.startswith(q):
        return 1.0
    if f" {q}" in t:
        return 0.8
    if q in t:
        return 0.6
    return 0.0


def autocomplete(
    partial: str,
    documents: Iterable[DocumentSnapshot],
    *,
    limit: int = 10,
    dictionary: TermDictionary | None = None,
) -> list[str]:
    query = partial.strip().lower()
    if len(query) < MIN_AUTOCOMPLETE_LENGTH or limit <= 0:
        return []

    documents = list(documents)
    candidates: list[str] = []
    for doc in documents:
        candidates.append(doc.name)
        candidates.extend(doc.all_tags)
    if dictionary is None:
        dictionary = TermDictionary.from_documents(documents)
    candidates.extend(dictionary.terms())

    scored: dict[str, tuple[float, str]] = {}
    for text in candidates:
        score = match_score(query, text)
        if score == 0.0:
            continue
        key = text.lower()
        if key not in scored or score > scored[key][0]:
            scored[key] = (score, text)

    ranked = sorted(scored.values(), key=lambda st: (-st[0], len(st[1]), st[1].lower()))
    return [text for _, text in ranked[:limit]]
