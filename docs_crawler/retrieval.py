"""Multi-query retrieval: run several searches, merge and rank the hits."""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from .document import ChunkHit
from .errors import InvalidParamsError
from .index import ChunkIndex
from .urls import url_matches_prefix

LOGGER = logging.getLogger(__name__)

MAX_EXCERPT_CHARS = 1500
RELEVANCE_PRECISION = 4

_WORD_RE = re.compile(r"\w+")


@dataclass(slots=True)
class RetrievalResult:
    """One ranked, deduplicated result of a multi-query search."""

    url: str
    title: str
    content: str
    relevance: float
    chunk_id: str
    matched_queries: List[str] = field(default_factory=list)
    queries: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "title": self.title,
            "content": self.content,
            "relevance": self.relevance,
            "matched_queries": list(self.matched_queries),
        }


def format_excerpt(text: str, max_chars: int = MAX_EXCERPT_CHARS) -> str:
    """Trim ``text`` to at most ``max_chars`` at a natural breakpoint."""
    if len(text) <= max_chars:
        return text
    return text[: _natural_breakpoint(text, max_chars)]


def _natural_breakpoint(text: str, near: int) -> int:
    limit = min(near, len(text))

    # Paragraph break in the last 20%
    index = text.rfind("\n\n", 0, limit)
    if index >= 0 and index >= limit - int(limit * 0.2):
        return index + 2

    # Sentence end in the last 15%, keeping the punctuation
    best = max(text.rfind(end, 0, limit) for end in (". ", "! ", "? "))
    if best > 0 and best >= limit - int(limit * 0.15):
        return best + 1

    # Word boundary in the last 10%
    index = text.rfind(" ", 0, limit)
    if index >= 0 and index >= limit - int(limit * 0.1):
        return index

    return limit


def content_words(query: str) -> List[str]:
    return [word for word in _WORD_RE.findall(query.lower()) if len(word) > 3]


def matched_queries(queries: Sequence[str], text: str) -> List[str]:
    """Queries with at least one content word present in ``text``."""
    haystack = text.lower()
    return [
        query
        for query in queries
        if any(word in haystack for word in content_words(query))
    ]


def merge_hits(hit_lists: Sequence[Sequence[ChunkHit]]) -> List[ChunkHit]:
    """Deduplicate hits by URL, keeping the most similar and unioning queries.

    The output keeps first-seen order; callers sort afterwards.
    """
    merged: Dict[str, ChunkHit] = {}
    for hits in hit_lists:
        for hit in hits:
            current = merged.get(hit.url)
            if current is None:
                merged[hit.url] = ChunkHit(
                    id=hit.id,
                    url=hit.url,
                    title=hit.title,
                    content=hit.content,
                    distance=hit.distance,
                    chunk_index=hit.chunk_index,
                    queries=list(hit.queries),
                )
                continue
            queries = current.queries + [q for q in hit.queries if q not in current.queries]
            if hit.similarity > current.similarity:
                current.id = hit.id
                current.title = hit.title
                current.content = hit.content
                current.distance = hit.distance
                current.chunk_index = hit.chunk_index
            current.queries = queries
    return list(merged.values())


class MultiQueryRetriever:
    """Broaden recall by combining the results of several queries."""

    def __init__(self, index: ChunkIndex, *, excerpt_chars: int = MAX_EXCERPT_CHARS):
        self.index = index
        self.excerpt_chars = excerpt_chars

    async def search(
        self,
        queries: Sequence[str],
        *,
        per_query_limit: int = 5,
        limit: int = 5,
        url_prefix: Optional[str] = None,
    ) -> List[RetrievalResult]:
        queries = [q.strip() for q in queries if isinstance(q, str) and q.strip()]
        if not queries:
            raise InvalidParamsError("At least one non-empty query is required")
        if limit < 1 or per_query_limit < 1:
            raise InvalidParamsError("limit must be >= 1")

        LOGGER.info("Running %d queries (prefix=%s)", len(queries), url_prefix or "-")
        hit_lists = await asyncio.gather(
            *(self.index.search(q, per_query_limit, url_prefix) for q in queries)
        )

        merged = merge_hits(hit_lists)
        if url_prefix:
            merged = [hit for hit in merged if url_matches_prefix(hit.url, url_prefix)]
        merged.sort(key=lambda hit: hit.similarity, reverse=True)

        results = []
        for hit in merged[:limit]:
            excerpt = format_excerpt(hit.content, self.excerpt_chars)
            results.append(
                RetrievalResult(
                    url=hit.url,
                    title=hit.title,
                    content=excerpt,
                    relevance=round(hit.similarity, RELEVANCE_PRECISION),
                    chunk_id=hit.id,
                    matched_queries=matched_queries(queries, excerpt),
                    queries=list(hit.queries),
                )
            )
        LOGGER.debug("Multi-query search returned %d of %d unique hits", len(results), len(merged))
        return results
