"""Content extraction boundary: render a page, return text and same-origin links."""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, List, Optional, Protocol

from crawl4ai import AsyncWebCrawler, BrowserConfig
from crawl4ai.models import CrawlResult

from .config import build_browser_config, build_page_run_config
from .document import PageResult
from .errors import ExtractionError
from .urls import normalize_url, resolve_links

LOGGER = logging.getLogger(__name__)

_HEADING_RE = re.compile(r"^\s{0,3}#{1,6}\s+(.+?)\s*#*\s*$", re.MULTILINE)


class PageExtractor(Protocol):
    """Renders one URL into a :class:`PageResult`.

    Implementations raise :class:`ExtractionError` with kind ``fetch_failed``,
    ``timeout`` or ``extraction_failed``.
    """

    async def start(self) -> None: ...

    async def close(self) -> None: ...

    async def render(self, url: str, wait_for: Optional[str] = None) -> PageResult: ...


class Crawl4AIExtractor:
    """Extractor backed by a single shared crawl4ai browser."""

    def __init__(
        self,
        browser_config: Optional[BrowserConfig] = None,
        *,
        page_timeout: float = 30.0,
    ):
        self.browser_config = browser_config or build_browser_config()
        self.page_timeout = page_timeout
        self._crawler: Optional[AsyncWebCrawler] = None

    async def start(self) -> None:
        if self._crawler is not None:
            return
        crawler = AsyncWebCrawler(config=self.browser_config)
        await crawler.start()
        self._crawler = crawler
        LOGGER.debug("Browser started")

    async def close(self) -> None:
        crawler, self._crawler = self._crawler, None
        if crawler is not None:
            await crawler.close()
            LOGGER.debug("Browser closed")

    async def __aenter__(self) -> "Crawl4AIExtractor":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def render(self, url: str, wait_for: Optional[str] = None) -> PageResult:
        if self._crawler is None:
            raise RuntimeError("Extractor is not started")

        config = build_page_run_config(wait_for=wait_for, page_timeout=self.page_timeout)
        try:
            result = await self._crawler.arun(url=url, config=config)
        except asyncio.TimeoutError as exc:
            raise ExtractionError(
                f"Timed out loading {url}", url=url, kind="timeout"
            ) from exc
        except Exception as exc:
            raise ExtractionError(
                f"Error crawling {url}: {exc}", url=url, kind=_failure_kind(str(exc))
            ) from exc

        return build_page_result(url, result)


def build_page_result(url: str, result: CrawlResult) -> PageResult:
    """Convert a crawl4ai result into a :class:`PageResult`.

    Relative links resolve against the effective URL after redirects; the
    page keeps the requested URL as its identity.
    """
    if not getattr(result, "success", False):
        reason = _failure_reason(result)
        raise ExtractionError(
            f"Error crawling {url}: {reason}", url=url, kind=_failure_kind(reason)
        )

    effective_url = getattr(result, "redirected_url", None) or result.url or url
    try:
        content = _markdown_text(result)
    except (AttributeError, TypeError) as exc:
        raise ExtractionError(
            f"Could not extract content from {url}: {exc}",
            url=url,
            kind="extraction_failed",
        ) from exc

    metadata = result.metadata or {}
    title = _clean_title(metadata.get("title")) or _first_heading(content) or "Untitled"
    links = resolve_links(_hrefs(result.links), str(effective_url))

    LOGGER.debug("Extracted %d chars and %d links from %s", len(content), len(links), url)
    return PageResult(
        url=normalize_url(url) or url,
        title=title,
        content=content,
        links=links,
    )


def _markdown_text(result: CrawlResult) -> str:
    markdown = getattr(result, "markdown", None)
    if markdown is None:
        return ""
    fit = getattr(markdown, "fit_markdown", None) or ""
    if fit.strip():
        return fit.strip()
    raw = getattr(markdown, "raw_markdown", None)
    if raw is None and isinstance(markdown, str):
        raw = markdown
    return (raw or "").strip()


def _hrefs(links: Any) -> List[str]:
    if not isinstance(links, dict):
        return []
    hrefs: List[str] = []
    for bucket in ("internal", "external"):
        for item in links.get(bucket) or []:
            href = item.get("href") if isinstance(item, dict) else item
            if isinstance(href, str) and href.strip():
                hrefs.append(href.strip())
    return hrefs


def _clean_title(value: Any) -> str:
    if not isinstance(value, str):
        return ""
    return " ".join(value.split())


def _first_heading(markdown: str) -> str:
    match = _HEADING_RE.search(markdown)
    return match.group(1).strip() if match else ""


def _failure_reason(result: Any) -> str:
    if getattr(result, "error_message", None):
        return str(result.error_message)
    status_code = getattr(result, "status_code", None)
    if status_code:
        return f"HTTP {status_code}"
    return "Crawler returned no content"


def _failure_kind(reason: str) -> str:
    return "timeout" if "timeout" in reason.lower() else "fetch_failed"

