"""On-disk persistence for crawled pages and per-site metadata.

Layout under ``websites_dir``::

    <host>_<hash>/
        metadata.json
        <host>_<path>_<hash>.json   # one PageResult per fetched page
"""

from __future__ import annotations

import asyncio
import contextlib
import hashlib
import json
import logging
import os
import re
import shutil
import tempfile
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional
from urllib.parse import urlparse

from .document import PageResult
from .errors import StorageError
from .urls import normalize_url

if TYPE_CHECKING:
    from .job import CrawlJob

LOGGER = logging.getLogger(__name__)

METADATA_FILE = "metadata.json"


def write_json_atomic(path: Path, payload: Any) -> None:
    """Write JSON to a temp file in the same directory, then rename over ``path``.

    Readers see either the previous file or the complete new one.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            json.dump(payload, fh, indent=2, ensure_ascii=False)
        os.replace(tmp_name, path)
    except BaseException:
        with contextlib.suppress(OSError):
            os.unlink(tmp_name)
        raise


def url_to_directory_name(url: str) -> str:
    """Readable, collision-resistant directory name for a site."""
    url_hash = hashlib.md5(url.encode("utf-8")).hexdigest()[:8]
    host = urlparse(url).hostname or "unknown_domain"
    return f"{re.sub(r'[^a-zA-Z0-9]', '_', host)}_{url_hash}"


def url_to_filename(url: str) -> str:
    """Convert a page URL to a safe, unique JSON filename."""
    parsed = urlparse(url)
    path = parsed.path.strip("/").replace("/", "_") or "index"
    host = parsed.netloc.replace(":", "_").replace(".", "_")
    stem = re.sub(r"[^a-zA-Z0-9_\-]", "_", f"{host}_{path}")[:100]
    digest = hashlib.sha1(url.encode("utf-8")).hexdigest()[:8]
    return f"{stem}_{digest}.json"


def load_page(path: Path) -> PageResult:
    """Read a persisted page.

    Raises:
        OSError: If the file cannot be read.
        ValueError: If the file is not a JSON object with a ``url``.
    """
    with open(path, "r", encoding="utf-8") as fh:
        data = json.load(fh)
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object in {path.name}")
    url = data.get("url")
    if not isinstance(url, str) or not url.strip():
        raise ValueError(f"Missing url in {path.name}")
    crawled_at = data.get("crawled_at")
    extra: Dict[str, Any] = {}
    if isinstance(crawled_at, str):
        with contextlib.suppress(ValueError):
            extra["crawled_at"] = datetime.fromisoformat(crawled_at)
    return PageResult(
        url=url.strip(),
        title=str(data.get("title") or "Untitled"),
        content=str(data.get("content") or ""),
        links=[str(link) for link in data.get("links") or []],
        **extra,
    )


class SiteStorage:
    """Addressable storage of crawled pages grouped by site."""

    def __init__(self, websites_dir: Path):
        self.websites_dir = Path(websites_dir)

    def site_directory(self, url: str) -> Path:
        return self.websites_dir / url_to_directory_name(normalize_url(url) or url)

    def is_crawled(self, url: str) -> bool:
        return (self.site_directory(url) / METADATA_FILE).is_file()

    async def save_page(self, site_dir: Path, page: PageResult) -> Path:
        path = Path(site_dir) / url_to_filename(page.url)
        try:
            await asyncio.to_thread(write_json_atomic, path, page.to_dict())
        except OSError as exc:
            raise StorageError(f"Failed to save {path}: {exc}") from exc
        LOGGER.debug("Saved %s to %s", page.url, path)
        return path

    async def write_metadata(self, site_dir: Path, job: "CrawlJob") -> None:
        payload = {
            "url": job.base_url,
            "crawl_date": (job.end_time or job.start_time).isoformat(),
            "pages_count": job.pages_processed,
            "status": job.status.value,
            "job_id": job.id,
            "errors": len(job.errors),
        }
        try:
            await asyncio.to_thread(
                write_json_atomic, Path(site_dir) / METADATA_FILE, payload
            )
        except OSError as exc:
            raise StorageError(f"Failed to write metadata for {job.base_url}: {exc}") from exc

    async def clear_site(self, url: str) -> bool:
        """Remove all persisted pages and metadata for a site."""
        site_dir = self.site_directory(url)
        if not site_dir.is_dir():
            return False
        try:
            await asyncio.to_thread(shutil.rmtree, site_dir)
        except OSError as exc:
            raise StorageError(f"Failed to clear {site_dir}: {exc}") from exc
        LOGGER.info("Cleared stored pages for %s", url)
        return True

    def read_metadata(self, url: str) -> Optional[Dict[str, Any]]:
        return _read_metadata_file(self.site_directory(url) / METADATA_FILE)

    async def list_sites(self) -> List[Dict[str, Any]]:
        return await asyncio.to_thread(self._list_sites)

    def _list_sites(self) -> List[Dict[str, Any]]:
        if not self.websites_dir.is_dir():
            return []
        sites = []
        for site_dir in sorted(self.websites_dir.iterdir()):
            if not site_dir.is_dir():
                continue
            metadata = _read_metadata_file(site_dir / METADATA_FILE)
            if metadata is None:
                continue
            sites.append(
                {
                    "url": metadata.get("url"),
                    "crawl_date": metadata.get("crawl_date"),
                    "pages_count": metadata.get("pages_count", 0),
                    "status": metadata.get("status"),
                    "directory_path": str(site_dir),
                }
            )
        return sites

    async def page_urls(self, url: str) -> List[str]:
        """URLs of the pages currently saved for a site; unreadable files are skipped."""
        return await asyncio.to_thread(self._page_urls, self.site_directory(url))

    def _page_urls(self, site_dir: Path) -> List[str]:
        if not site_dir.is_dir():
            return []
        urls = []
        for path in sorted(site_dir.glob("*.json")):
            if path.name == METADATA_FILE:
                continue
            try:
                urls.append(load_page(path).url)
            except (OSError, ValueError) as exc:
                LOGGER.warning("Skipping unreadable page %s: %s", path.name, exc)
        return urls

    async def prune_pages(self, site_dir: Path, keep_urls: Iterable[str]) -> int:
        """Delete page files in ``site_dir`` not belonging to ``keep_urls``."""
        keep = {url_to_filename(url) for url in keep_urls}
        return await asyncio.to_thread(self._prune_pages, Path(site_dir), keep)

    def _prune_pages(self, site_dir: Path, keep: set) -> int:
        removed = 0
        if not site_dir.is_dir():
            return removed
        for path in site_dir.glob("*.json"):
            if path.name == METADATA_FILE or path.name in keep:
                continue
            try:
                path.unlink()
                removed += 1
            except OSError as exc:
                LOGGER.warning("Could not remove stale page %s: %s", path, exc)
        if removed:
            LOGGER.info("Removed %d stale page file(s) from %s", removed, site_dir)
        return removed


def _read_metadata_file(path: Path) -> Optional[Dict[str, Any]]:
    if not path.is_file():
        return None
    try:
        with open(path, "r", encoding="utf-8") as fh:
            data = json.load(fh)
    except (OSError, ValueError) as exc:
        LOGGER.error("Error reading website metadata %s: %s", path, exc)
        return None
    return data if isinstance(data, dict) else None
