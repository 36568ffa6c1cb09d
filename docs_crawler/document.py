"""Data structures for fetched pages, indexed chunks and search hits."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


def chunk_id(url: str, ordinal: int) -> str:
    """Stable chunk identifier derived from the source URL and ordinal."""
    return f"{url}#chunk-{ordinal}"


@dataclass(slots=True, frozen=True)
class PageResult:
    """One successfully fetched page."""

    url: str
    title: str
    content: str
    links: List[str] = field(default_factory=list)
    crawled_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "title": self.title,
            "content": self.content,
            "links": list(self.links),
            "crawled_at": self.crawled_at.isoformat(),
        }


@dataclass(slots=True, frozen=True)
class Chunk:
    """A window of a source document together with its embedding."""

    id: str
    url: str
    title: str
    content: str
    embedding: List[float]
    chunk_index: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "url": self.url,
            "title": self.title,
            "content": self.content,
            "embedding": list(self.embedding),
            "chunk_index": self.chunk_index,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Chunk":
        return cls(
            id=str(data["id"]),
            url=str(data["url"]),
            title=str(data.get("title") or "Untitled"),
            content=str(data.get("content") or ""),
            embedding=list(data.get("embedding") or []),
            chunk_index=data.get("chunk_index"),
        )


@dataclass(slots=True)
class ChunkHit:
    """A chunk scored against one query. Never persisted."""

    id: str
    url: str
    title: str
    content: str
    distance: float
    chunk_index: Optional[int] = None
    queries: List[str] = field(default_factory=list)

    @property
    def similarity(self) -> float:
        return 1.0 - self.distance
