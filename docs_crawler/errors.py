"""Error types shared across the crawler, index and tool surface."""

from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .job import CrawlJob


class DocsCrawlerError(Exception):
    """Base error carrying a stable ``kind`` and a human-readable message."""

    kind = "internal_error"

    def __init__(self, message: str, *, kind: Optional[str] = None):
        if kind:
            self.kind = kind
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message}


class InvalidParamsError(DocsCrawlerError):
    """Raised before any I/O when caller input is rejected."""

    kind = "invalid_params"


class ChunkingConfigError(DocsCrawlerError, ValueError):
    """Raised when chunk window/overlap settings are inconsistent."""

    kind = "invalid_config"


class ExtractionError(DocsCrawlerError):
    """A single page could not be fetched, rendered or extracted.

    ``kind`` is one of ``fetch_failed``, ``timeout`` or ``extraction_failed``.
    """

    kind = "fetch_failed"

    def __init__(self, message: str, *, url: str = "", kind: Optional[str] = None):
        self.url = url
        super().__init__(message, kind=kind)


class StorageError(DocsCrawlerError):
    """Reading or writing persisted pages or index records failed."""

    kind = "storage_error"


class CrawlFailedError(DocsCrawlerError):
    """A crawl job finished without processing a single page."""

    kind = "crawl_failed"

    def __init__(self, message: str, job: "CrawlJob"):
        self.job = job
        super().__init__(message)
