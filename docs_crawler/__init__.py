"""Documentation crawler with chunked embeddings and multi-query search.

This package crawls a documentation site breadth-first, splits every page
into overlapping word windows, embeds them and answers several queries at
once over the resulting index. It supports:

- Bounded same-origin site crawling (depth, page cap, worker pool)
- Durable per-document chunk index with cosine similarity search
- Multi-query retrieval with per-page deduplication
- An MCP tool surface and command-line entry points

Example usage:

    from docs_crawler import crawl_and_search, search_existing

    # Crawl (once) and search
    results = crawl_and_search(
        "https://docs.example.com",
        ["installation", "configuration file", "authentication"],
    )
    for result in results:
        print(result.relevance, result.url)

    # Search what was crawled before
    results = search_existing(["rate limits"], url="https://docs.example.com")

    # Long-lived host process
    from docs_crawler import DocsSearchService, Settings
    async with DocsSearchService.from_settings(Settings.from_env()) as service:
        job = await service.crawl("https://docs.example.com", max_depth=1)
        print(job.pages_processed, job.errors)
"""

from __future__ import annotations

import asyncio
from typing import List, Optional, Sequence

from .chunker import chunk_text
from .document import Chunk, ChunkHit, PageResult
from .embedding import Embedder, OpenAIEmbeddingBackend
from .errors import (
    ChunkingConfigError,
    CrawlFailedError,
    DocsCrawlerError,
    ExtractionError,
    InvalidParamsError,
    StorageError,
)
from .extractor import Crawl4AIExtractor, PageExtractor
from .frontier import FrontierManager
from .index import ChunkIndex, cosine_similarity
from .job import CrawlJob, JobStatus
from .retrieval import MultiQueryRetriever, RetrievalResult
from .service import DocsSearchService
from .settings import Settings
from .storage import SiteStorage
from .urls import normalize_url

__all__ = [
    # Data types
    "PageResult",
    "Chunk",
    "ChunkHit",
    "CrawlJob",
    "JobStatus",
    "RetrievalResult",
    # Errors
    "DocsCrawlerError",
    "InvalidParamsError",
    "ChunkingConfigError",
    "ExtractionError",
    "CrawlFailedError",
    "StorageError",
    # Components
    "Settings",
    "PageExtractor",
    "Crawl4AIExtractor",
    "FrontierManager",
    "Embedder",
    "OpenAIEmbeddingBackend",
    "ChunkIndex",
    "MultiQueryRetriever",
    "SiteStorage",
    "DocsSearchService",
    # Helpers
    "chunk_text",
    "cosine_similarity",
    "normalize_url",
    # One-shot operations
    "crawl_and_search",
    "crawl_and_search_async",
    "search_existing",
    "search_existing_async",
    # MCP Server
    "create_server",
]


# Lazy import to avoid loading fastmcp unless the server is used
def __getattr__(name):
    if name == "create_server":
        from .mcp_server import create_server

        return create_server
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


async def crawl_and_search_async(
    url: str,
    queries: Sequence[str],
    *,
    limit: int = 5,
    force_crawl: bool = False,
    wait_for: Optional[str] = None,
    max_depth: Optional[int] = None,
    max_pages: Optional[int] = None,
    concurrency: Optional[int] = None,
    settings: Optional[Settings] = None,
) -> List[RetrievalResult]:
    """
    Crawl a site unless it was crawled before, then search it.

    Args:
        url: Base URL of the documentation site.
        queries: Between 3 and 10 search queries.
        limit: Maximum number of results.
        force_crawl: Recrawl even if crawl data exists.
        wait_for: Optional CSS selector to wait for on each page.
        max_depth: Link depth limit for the crawl; configured default if None.
        max_pages: Page cap for the crawl; configured default if None.
        concurrency: Parallel page renders; configured default if None.
        settings: Optional settings; defaults to ``Settings.from_env()``.

    Returns:
        Ranked results, one per page.

    Raises:
        InvalidParamsError: If the URL or queries are rejected.
        CrawlFailedError: If no page of the site could be processed.
    """
    async with DocsSearchService.from_settings(settings) as service:
        return await service.crawl_and_search(
            url,
            queries,
            limit=limit,
            force_crawl=force_crawl,
            wait_for=wait_for,
            max_depth=max_depth,
            max_pages=max_pages,
            concurrency=concurrency,
        )


def crawl_and_search(
    url: str,
    queries: Sequence[str],
    *,
    limit: int = 5,
    force_crawl: bool = False,
    wait_for: Optional[str] = None,
    max_depth: Optional[int] = None,
    max_pages: Optional[int] = None,
    concurrency: Optional[int] = None,
    settings: Optional[Settings] = None,
) -> List[RetrievalResult]:
    """Synchronous wrapper for crawl_and_search_async."""
    return asyncio.run(
        crawl_and_search_async(
            url,
            queries,
            limit=limit,
            force_crawl=force_crawl,
            wait_for=wait_for,
            max_depth=max_depth,
            max_pages=max_pages,
            concurrency=concurrency,
            settings=settings,
        )
    )


async def search_existing_async(
    queries: Sequence[str],
    *,
    url: Optional[str] = None,
    limit: int = 5,
    settings: Optional[Settings] = None,
) -> List[RetrievalResult]:
    """Search previously crawled content, optionally restricted to one site."""
    async with DocsSearchService.from_settings(settings) as service:
        return await service.search_existing(queries, url=url, limit=limit)


def search_existing(
    queries: Sequence[str],
    *,
    url: Optional[str] = None,
    limit: int = 5,
    settings: Optional[Settings] = None,
) -> List[RetrievalResult]:
    """Synchronous wrapper for search_existing_async."""
    return asyncio.run(
        search_existing_async(queries, url=url, limit=limit, settings=settings)
    )
