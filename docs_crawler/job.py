"""Crawl job record and its lifecycle."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


class JobStatus(str, Enum):
    running = "running"
    completed = "completed"
    failed = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not JobStatus.running


@dataclass
class CrawlJob:
    """State of one crawl run.

    The job is mutated only by the frontier manager that created it and becomes
    read-only once its status is terminal.
    """

    id: str
    base_url: str
    output_dir: str
    max_depth: int = 2
    max_pages: int = 500
    concurrency: int = 2
    status: JobStatus = JobStatus.running
    pages_processed: int = 0
    pages_attempted: int = 0
    indexed_chunks: int = 0
    errors: List[str] = field(default_factory=list)
    processed_urls: List[str] = field(default_factory=list)
    cancelled: bool = False
    start_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    end_time: Optional[datetime] = None

    def _ensure_running(self) -> None:
        if self.status.is_terminal:
            raise RuntimeError(f"Crawl job {self.id} is already {self.status.value}")

    def record_attempt(self) -> None:
        self._ensure_running()
        self.pages_attempted += 1

    def record_page(self, url: str, chunks: int = 0) -> None:
        self._ensure_running()
        self.pages_processed += 1
        self.processed_urls.append(url)
        self.indexed_chunks += chunks

    def record_error(self, message: str) -> None:
        self._ensure_running()
        self.errors.append(message)

    def finish(self) -> JobStatus:
        """Resolve the terminal status: failed only if no page succeeded."""
        self._ensure_running()
        if self.pages_processed == 0:
            if not self.errors:
                self.errors.append("Crawl failed: No pages were processed successfully")
            self.status = JobStatus.failed
        else:
            self.status = JobStatus.completed
        self.end_time = datetime.now(timezone.utc)
        return self.status

    def fail(self, message: str) -> None:
        """Mark the job failed after an unrecoverable startup error."""
        self._ensure_running()
        self.errors.append(message)
        self.status = JobStatus.failed
        self.end_time = datetime.now(timezone.utc)

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.end_time is None:
            return None
        return round((self.end_time - self.start_time).total_seconds(), 3)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "base_url": self.base_url,
            "status": self.status.value,
            "pages_processed": self.pages_processed,
            "pages_attempted": self.pages_attempted,
            "indexed_chunks": self.indexed_chunks,
            "errors": list(self.errors),
            "cancelled": self.cancelled,
            "max_depth": self.max_depth,
            "max_pages": self.max_pages,
            "concurrency": self.concurrency,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "duration_seconds": self.duration_seconds,
            "output_dir": self.output_dir,
        }
