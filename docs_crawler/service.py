"""Service object tying crawling, indexing and retrieval together.

The host process constructs one :class:`DocsSearchService`, opens it, hands it
to the tool surface or CLI, and closes it on shutdown. Nothing here is a
module-level singleton.

Example usage:

    settings = Settings.from_env()
    async with DocsSearchService.from_settings(settings) as service:
        results = await service.crawl_and_search(
            "https://docs.example.com",
            ["install", "configuration", "authentication"],
        )
        for result in results:
            print(result.relevance, result.url)
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional, Sequence

from .document import PageResult
from .embedding import Embedder, OpenAIEmbeddingBackend
from .errors import CrawlFailedError, InvalidParamsError
from .extractor import Crawl4AIExtractor, PageExtractor
from .frontier import FrontierManager
from .index import ChunkIndex
from .job import CrawlJob, JobStatus
from .retrieval import MultiQueryRetriever, RetrievalResult
from .settings import Settings
from .storage import SiteStorage
from .urls import is_absolute_http_url, normalize_url

LOGGER = logging.getLogger(__name__)

MIN_CRAWL_QUERIES = 3
MAX_QUERIES = 10
MAX_LIMIT = 50
# Several chunks of one page can occupy a query's slots before dedup by URL.
PER_QUERY_FACTOR = 3

ExtractorFactory = Callable[[], PageExtractor]


class DocsSearchService:
    """Crawl documentation sites and answer multi-query searches over them."""

    def __init__(
        self,
        settings: Settings,
        *,
        embedder: Embedder,
        index: ChunkIndex,
        storage: SiteStorage,
        extractor_factory: Optional[ExtractorFactory] = None,
    ):
        self.settings = settings
        self.embedder = embedder
        self.index = index
        self.storage = storage
        self.retriever = MultiQueryRetriever(index)
        self.extractor_factory = extractor_factory or (
            lambda: Crawl4AIExtractor(page_timeout=settings.page_timeout)
        )
        self.jobs: Dict[str, CrawlJob] = {}
        self._frontiers: Dict[str, FrontierManager] = {}
        self._opened = False

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "DocsSearchService":
        settings = settings or Settings.from_env()
        backend = OpenAIEmbeddingBackend(
            api_key=settings.openai_api_key,
            model=settings.embedding_model,
            dimensions=settings.embedding_dimensions,
        )
        embedder = Embedder(
            backend,
            dimensions=settings.embedding_dimensions,
            batch_size=settings.embedding_batch_size,
            max_concurrency=settings.embedding_concurrency,
        )
        index = ChunkIndex(
            settings.index_dir,
            embedder,
            window=settings.chunk_words,
            overlap=settings.chunk_overlap,
        )
        return cls(
            settings,
            embedder=embedder,
            index=index,
            storage=SiteStorage(settings.websites_dir),
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> None:
        if self._opened:
            return
        LOGGER.info("Opening data directory %s", self.settings.data_dir)
        self.storage.websites_dir.mkdir(parents=True, exist_ok=True)
        await self.index.open()
        self._opened = True

    async def close(self) -> None:
        if not self._opened:
            return
        for frontier in list(self._frontiers.values()):
            frontier.cancel()
        await self.index.close()
        await self.embedder.close()
        self._opened = False

    async def __aenter__(self) -> "DocsSearchService":
        await self.open()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Crawling
    # ------------------------------------------------------------------

    async def crawl(
        self,
        url: str,
        *,
        max_depth: Optional[int] = None,
        max_pages: Optional[int] = None,
        concurrency: Optional[int] = None,
        wait_for: Optional[str] = None,
    ) -> CrawlJob:
        """Crawl and index a site, replacing any earlier crawl of it.

        Raises:
            InvalidParamsError: If the URL or limits are invalid.
            CrawlFailedError: If no page could be processed.
        """
        base_url = _validate_url(url)
        previous_urls = set(await self.storage.page_urls(base_url))

        frontier = FrontierManager(
            base_url,
            self.extractor_factory(),
            self.storage,
            page_sink=self._index_page,
            max_depth=self.settings.max_depth if max_depth is None else max_depth,
            max_pages=self.settings.max_pages if max_pages is None else max_pages,
            concurrency=self.settings.concurrency if concurrency is None else concurrency,
            page_timeout=self.settings.page_timeout,
            wait_for=wait_for,
        )
        job = frontier.job
        self.jobs[job.id] = job
        self._frontiers[job.id] = frontier
        try:
            await frontier.run()
        finally:
            self._frontiers.pop(job.id, None)

        if job.status is JobStatus.failed:
            summary = "; ".join(job.errors[:5])
            raise CrawlFailedError(f"Crawl failed for {base_url}: {summary}", job)

        if not job.cancelled:
            await self._remove_stale(frontier, previous_urls, job.processed_urls)
        return job

    def cancel(self, job_id: str) -> bool:
        frontier = self._frontiers.get(job_id)
        if frontier is None:
            return False
        frontier.cancel()
        return True

    def get_job(self, job_id: str) -> Optional[CrawlJob]:
        return self.jobs.get(job_id)

    async def _index_page(self, page: PageResult) -> int:
        return await self.index.index_document(page.url, page.title, page.content)

    async def _remove_stale(
        self,
        frontier: FrontierManager,
        previous_urls: set,
        processed_urls: Sequence[str],
    ) -> None:
        stale = previous_urls - set(processed_urls)
        if not stale:
            return
        LOGGER.info("Removing %d page(s) no longer reachable from %s", len(stale), frontier.base_url)
        await self.index.remove_documents(sorted(stale))
        await self.storage.prune_pages(frontier.site_dir, processed_urls)

    def has_completed_crawl(self, url: str) -> bool:
        metadata = self.storage.read_metadata(url)
        return bool(metadata) and metadata.get("status") == JobStatus.completed.value

    # ------------------------------------------------------------------
    # Tool operations
    # ------------------------------------------------------------------

    async def crawl_and_search(
        self,
        url: str,
        queries: Sequence[str],
        *,
        limit: int = 5,
        force_crawl: bool = False,
        wait_for: Optional[str] = None,
        max_depth: Optional[int] = None,
        max_pages: Optional[int] = None,
        concurrency: Optional[int] = None,
    ) -> List[RetrievalResult]:
        """Crawl ``url`` unless already crawled, then run the queries against it.

        The crawl limits apply only when a crawl actually runs; ``None`` uses
        the configured default.
        """
        base_url = _validate_url(url)
        queries = _validate_queries(queries, minimum=MIN_CRAWL_QUERIES)
        limit = _validate_limit(limit)

        if force_crawl or not self.has_completed_crawl(base_url):
            LOGGER.info("Crawling %s before searching", base_url)
            await self.crawl(
                base_url,
                max_depth=max_depth,
                max_pages=max_pages,
                concurrency=concurrency,
                wait_for=wait_for,
            )
        else:
            LOGGER.info("Using existing crawl data for %s", base_url)

        return await self.retriever.search(
            queries,
            per_query_limit=limit * PER_QUERY_FACTOR,
            limit=limit,
            url_prefix=base_url,
        )

    async def list_crawled_sources(self) -> List[Dict[str, Any]]:
        return await self.storage.list_sites()

    async def recrawl(self, url: str) -> Dict[str, Any]:
        base_url = _validate_url(url)
        job = await self.crawl(base_url)
        return {
            "message": f"Successfully recrawled {base_url}",
            "job": job.to_dict(),
        }

    async def search_existing(
        self,
        queries: Sequence[str],
        *,
        url: Optional[str] = None,
        limit: int = 5,
    ) -> List[RetrievalResult]:
        """Search already indexed content, optionally restricted to one site.

        Raises:
            InvalidParamsError: If ``url`` names a site that was never crawled.
        """
        queries = _validate_queries(queries, minimum=1)
        limit = _validate_limit(limit)
        prefix = None
        if url:
            prefix = _validate_url(url)
            crawled = self.storage.is_crawled(prefix) or await self.index.has_documents(prefix)
            if not crawled:
                raise InvalidParamsError(
                    f"Website {prefix} has not been crawled yet. "
                    "Use search_website to crawl it first."
                )

        return await self.retriever.search(
            queries,
            per_query_limit=limit * PER_QUERY_FACTOR,
            limit=limit,
            url_prefix=prefix,
        )

    async def status(self) -> Dict[str, Any]:
        return {
            "index": await self.index.status(),
            "sites": len(await self.storage.list_sites()),
            "embedding_failures": self.embedder.failures,
            "running_jobs": sorted(self._frontiers),
        }


def _validate_url(url: Any) -> str:
    if not isinstance(url, str) or not url.strip():
        raise InvalidParamsError("A URL is required")
    if not is_absolute_http_url(url):
        raise InvalidParamsError(f"Invalid URL: {url!r}")
    normalized = normalize_url(url)
    if normalized is None:
        raise InvalidParamsError(f"Invalid URL: {url!r}")
    return normalized


def _validate_queries(queries: Any, *, minimum: int) -> List[str]:
    if queries is None or isinstance(queries, str):
        raise InvalidParamsError("queries must be a list of strings")
    cleaned = [q.strip() for q in queries if isinstance(q, str) and q.strip()]
    if len(cleaned) < minimum:
        raise InvalidParamsError(
            f"At least {minimum} non-empty quer{'y' if minimum == 1 else 'ies'} required"
        )
    if len(cleaned) > MAX_QUERIES:
        raise InvalidParamsError(f"At most {MAX_QUERIES} queries are allowed")
    return cleaned


def _validate_limit(limit: Any) -> int:
    if isinstance(limit, bool) or not isinstance(limit, int):
        raise InvalidParamsError("limit must be an integer")
    if not 1 <= limit <= MAX_LIMIT:
        raise InvalidParamsError(f"limit must be between 1 and {MAX_LIMIT}")
    return limit
