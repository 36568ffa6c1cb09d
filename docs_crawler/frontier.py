"""Crawl frontier manager: bounded breadth-first crawl of one site.

A single :class:`FrontierManager` owns one :class:`CrawlJob`. Discovered links
go through :meth:`FrontierManager._try_enqueue`, a synchronous
check-and-insert on the visited set. It contains no ``await``, so under asyncio
no two workers can interleave inside it and a URL is enqueued at most once.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Awaitable, Callable, Optional, Set, Tuple

from .document import PageResult
from .errors import DocsCrawlerError, ExtractionError, InvalidParamsError, StorageError
from .extractor import PageExtractor
from .job import CrawlJob
from .storage import SiteStorage
from .urls import is_absolute_http_url, normalize_url, same_origin

LOGGER = logging.getLogger(__name__)

PageSink = Callable[[PageResult], Awaitable[int]]
WorkItem = Tuple[str, int]


class FrontierManager:
    """Explore the same-origin link graph from a base URL.

    Args:
        base_url: Absolute http(s) URL; depth 0 of the crawl.
        extractor: Renders pages. Started and closed by :meth:`run`.
        storage: Receives one persisted page per successful fetch.
        page_sink: Optional coroutine called with each persisted page, e.g.
            to index it. Returns the number of chunks written.
        max_depth: Links deeper than this are never enqueued (0 = base only).
        max_pages: Hard cap on URLs ever enqueued, the base URL included.
        concurrency: Width of the worker pool.
        page_timeout: Seconds allowed for each page render.
        wait_for: Optional CSS selector to wait for on every page.
    """

    def __init__(
        self,
        base_url: str,
        extractor: PageExtractor,
        storage: SiteStorage,
        *,
        page_sink: Optional[PageSink] = None,
        max_depth: int = 2,
        max_pages: int = 500,
        concurrency: int = 2,
        page_timeout: float = 30.0,
        wait_for: Optional[str] = None,
    ):
        if not is_absolute_http_url(base_url):
            raise InvalidParamsError(f"Invalid URL: {base_url!r}")
        if max_depth < 0:
            raise InvalidParamsError("max_depth must be >= 0")
        if max_pages < 1:
            raise InvalidParamsError("max_pages must be >= 1")
        if concurrency < 1:
            raise InvalidParamsError("concurrency must be >= 1")

        self.base_url = normalize_url(base_url) or base_url
        self.extractor = extractor
        self.storage = storage
        self.page_sink = page_sink
        self.max_depth = max_depth
        self.max_pages = max_pages
        self.concurrency = concurrency
        self.page_timeout = page_timeout
        self.wait_for = wait_for

        self.site_dir = storage.site_directory(self.base_url)
        self.job = CrawlJob(
            id=uuid.uuid4().hex,
            base_url=self.base_url,
            output_dir=str(self.site_dir),
            max_depth=max_depth,
            max_pages=max_pages,
            concurrency=concurrency,
        )
        self._visited: Set[str] = set()
        self._queue: "asyncio.Queue[WorkItem]" = asyncio.Queue()
        self._cancel = asyncio.Event()

    @property
    def visited(self) -> Set[str]:
        return set(self._visited)

    def cancel(self) -> None:
        """Stop fetching; already running pages finish, queued ones are dropped."""
        if self.job.status.is_terminal or self._cancel.is_set():
            return
        LOGGER.info("Cancelling crawl of %s", self.base_url)
        self.job.cancelled = True
        self._cancel.set()

    def _try_enqueue(self, url: str, depth: int) -> bool:
        if depth > self.max_depth:
            return False
        url = normalize_url(url)
        if url is None or url in self._visited:
            return False
        if not same_origin(url, self.base_url):
            return False
        if len(self._visited) >= self.max_pages:
            return False
        self._visited.add(url)
        self._queue.put_nowait((url, depth))
        return True

    async def run(self) -> CrawlJob:
        """Crawl until the frontier is empty and return the finished job."""
        LOGGER.info(
            "Starting crawl of %s (max_depth=%d, max_pages=%d, concurrency=%d)",
            self.base_url,
            self.max_depth,
            self.max_pages,
            self.concurrency,
        )
        try:
            await self.extractor.start()
        except Exception as exc:
            LOGGER.error("Could not start browser for %s: %s", self.base_url, exc)
            self.job.fail(f"Failed to start browser: {exc}")
            await self._write_metadata()
            return self.job

        workers = []
        try:
            self._try_enqueue(self.base_url, 0)
            workers = [
                asyncio.create_task(self._worker(), name=f"crawl-worker-{i}")
                for i in range(self.concurrency)
            ]
            await self._queue.join()
        finally:
            for worker in workers:
                worker.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            await self.extractor.close()

        status = self.job.finish()
        await self._write_metadata()
        log = LOGGER.error if self.job.pages_processed == 0 else LOGGER.info
        log(
            "Crawl of %s %s: %d/%d pages processed, %d error(s), %d chunk(s) indexed",
            self.base_url,
            status.value,
            self.job.pages_processed,
            self.job.pages_attempted,
            len(self.job.errors),
            self.job.indexed_chunks,
        )
        return self.job

    async def _worker(self) -> None:
        while True:
            url, depth = await self._queue.get()
            try:
                if self._cancel.is_set():
                    continue
                await self._process(url, depth)
            except Exception as exc:
                LOGGER.exception("Unexpected error while crawling %s", url)
                self.job.record_error(f"Error crawling {url}: {exc}")
            finally:
                self._queue.task_done()

    async def _process(self, url: str, depth: int) -> None:
        LOGGER.info("Crawling: %s (depth %d)", url, depth)
        self.job.record_attempt()
        try:
            page = await asyncio.wait_for(
                self.extractor.render(url, self.wait_for), timeout=self.page_timeout
            )
        except asyncio.TimeoutError:
            LOGGER.warning("Timed out after %.0fs: %s", self.page_timeout, url)
            self.job.record_error(f"Timeout crawling {url} after {self.page_timeout:g}s")
            return
        except ExtractionError as exc:
            LOGGER.warning("Failed to crawl %s [%s]: %s", url, exc.kind, exc.message)
            self.job.record_error(exc.message)
            return

        try:
            await self.storage.save_page(self.site_dir, page)
        except StorageError as exc:
            LOGGER.warning("%s", exc.message)
            self.job.record_error(exc.message)
            return

        chunks = 0
        if self.page_sink is not None:
            try:
                chunks = await self.page_sink(page)
            except DocsCrawlerError as exc:
                LOGGER.warning("Failed to index %s: %s", url, exc.message)
                self.job.record_error(f"Indexing failed for {url}: {exc.message}")
        self.job.record_page(url, chunks)

        if depth >= self.max_depth:
            return
        added = sum(self._try_enqueue(link, depth + 1) for link in page.links)
        if added:
            LOGGER.debug("Enqueued %d new link(s) from %s", added, url)

    async def _write_metadata(self) -> None:
        try:
            await self.storage.write_metadata(self.site_dir, self.job)
        except StorageError as exc:
            LOGGER.warning("%s", exc.message)
