"""MCP server exposing documentation crawling and semantic search.

Provides tools for:
- Crawling a documentation site and searching it with several queries
- Listing crawled sites
- Forcing a recrawl of a site
- Searching previously indexed content

Supports both STDIO and HTTP transports.

Usage:
    # STDIO (for Claude Desktop, etc.)
    python -m docs_crawler.mcp_server

    # HTTP (for remote access)
    python -m docs_crawler.mcp_server --transport http --port 8000

Environment Variables:
    OPENAI_API_KEY: API key for the embedding model
    DOCS_CRAWLER_DATA_DIR: Storage root (default: ~/Documents/MCP/docs-crawler-data)
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, List, Optional

from dotenv import load_dotenv
from fastmcp import FastMCP
from fastmcp.exceptions import ToolError

from .errors import DocsCrawlerError
from .service import DocsSearchService
from .settings import Settings

LOGGER = logging.getLogger(__name__)

INSTRUCTIONS = """
A documentation crawler and semantic search server:

1. search_website: crawl a documentation site (once) and run 3-10 queries
   against it. Results are deduplicated by page and ranked by relevance.
2. list_crawled_websites: list sites that have been crawled.
3. recrawl_website: force a fresh crawl of a site.
4. search_existing_data: search already crawled content without crawling,
   optionally restricted to one site.
"""


def _to_json(payload: Any) -> str:
    return json.dumps(payload, indent=2, ensure_ascii=False)


async def _call(operation: str, awaitable: Awaitable[Any]) -> Any:
    """Await a service call and translate failures into tool errors."""
    try:
        return await awaitable
    except DocsCrawlerError as exc:
        LOGGER.warning("%s failed [%s]: %s", operation, exc.kind, exc.message)
        raise ToolError(f"{exc.kind}: {exc.message}") from exc
    except Exception as exc:
        LOGGER.exception("%s failed unexpectedly", operation)
        raise ToolError(f"internal_error: {exc}") from exc


class DocsCrawlerTools:
    """Tool handlers returning JSON text; registered on a FastMCP server."""

    def __init__(self, service: DocsSearchService):
        self.service = service

    async def search_website(
        self,
        url: str,
        queries: List[str],
        limit: int = 5,
        force_crawl: bool = False,
        wait_for_selector: Optional[str] = None,
    ) -> str:
        results = await _call(
            "search_website",
            self.service.crawl_and_search(
                url,
                queries,
                limit=limit,
                force_crawl=force_crawl,
                wait_for=wait_for_selector,
            ),
        )
        return _to_json([result.to_dict() for result in results])

    async def list_crawled_websites(self) -> str:
        sites = await _call("list_crawled_websites", self.service.list_crawled_sources())
        return _to_json(sites)

    async def recrawl_website(self, url: str) -> str:
        result = await _call("recrawl_website", self.service.recrawl(url))
        return _to_json(result)

    async def search_existing_data(
        self,
        queries: List[str],
        url: Optional[str] = None,
        limit: int = 5,
    ) -> str:
        results = await _call(
            "search_existing_data",
            self.service.search_existing(queries, url=url, limit=limit),
        )
        return _to_json([result.to_dict() for result in results])


def create_server(service: DocsSearchService) -> FastMCP:
    """Build a FastMCP server whose lifespan opens and closes ``service``."""

    @asynccontextmanager
    async def lifespan(_server: FastMCP) -> AsyncIterator[None]:
        await service.open()
        try:
            yield
        finally:
            await service.close()

    server = FastMCP(
        name="Docs Crawler & Search",
        instructions=INSTRUCTIONS,
        lifespan=lifespan,
    )
    tools = DocsCrawlerTools(service)

    @server.tool
    async def search_website(
        url: str,
        queries: List[str],
        limit: int = 5,
        force_crawl: bool = False,
        wait_for_selector: Optional[str] = None,
    ) -> str:
        """
        Crawl a documentation website (unless already crawled) and search it.

        Args:
            url: Base URL of the documentation site
            queries: 3 to 10 search queries covering different aspects of the question
            limit: Maximum number of results to return (default: 5)
            force_crawl: Recrawl even if the site was crawled before (default: false)
            wait_for_selector: Optional CSS selector to wait for before extracting each page

        Returns:
            JSON array of results with url, title, content, relevance and matched_queries.
        """
        return await tools.search_website(
            url, queries, limit, force_crawl, wait_for_selector
        )

    @server.tool
    async def list_crawled_websites() -> str:
        """List all crawled websites with crawl date, page count and status."""
        return await tools.list_crawled_websites()

    @server.tool
    async def recrawl_website(url: str) -> str:
        """
        Force a fresh crawl of a website, replacing its indexed content.

        Args:
            url: Base URL of the documentation site
        """
        return await tools.recrawl_website(url)

    @server.tool
    async def search_existing_data(
        queries: List[str],
        url: Optional[str] = None,
        limit: int = 5,
    ) -> str:
        """
        Search already crawled content without crawling.

        Args:
            queries: 1 to 10 search queries
            url: Optional base URL restricting results to one crawled site
            limit: Maximum number of results to return (default: 5)
        """
        return await tools.search_existing_data(queries, url, limit)

    return server


def main(argv: Optional[List[str]] = None) -> None:
    """CLI entry point for running the MCP server."""
    parser = argparse.ArgumentParser(
        description="Run the documentation crawler & search MCP server.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Environment Variables:
    OPENAI_API_KEY         API key for the embedding model
    DOCS_CRAWLER_DATA_DIR  Storage root (default: ~/Documents/MCP/docs-crawler-data)

Examples:
    # STDIO transport (default, for Claude Desktop)
    python -m docs_crawler.mcp_server

    # HTTP transport (for remote access)
    python -m docs_crawler.mcp_server --transport http --port 8000
""",
    )
    parser.add_argument(
        "--transport",
        choices=["stdio", "http"],
        default="stdio",
        help="Transport protocol (default: stdio)",
    )
    parser.add_argument(
        "--host",
        default="127.0.0.1",
        help="Host to bind to for HTTP transport (default: 127.0.0.1)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port to bind to for HTTP transport (default: 8000)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )
    load_dotenv()

    settings = Settings.from_env()
    LOGGER.info("Data directory: %s", settings.data_dir)
    LOGGER.info("Embedding model: %s", settings.embedding_model)
    server = create_server(DocsSearchService.from_settings(settings))

    if args.transport == "http":
        LOGGER.info("Starting MCP server on http://%s:%d/mcp", args.host, args.port)
        server.run(transport="http", host=args.host, port=args.port)
    else:
        LOGGER.info("Starting MCP server with STDIO transport")
        server.run(transport="stdio")


if __name__ == "__main__":
    main()
