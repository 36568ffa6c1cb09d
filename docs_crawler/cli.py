"""Command-line interface for crawling, indexing and searching documentation."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from dotenv import load_dotenv

from .errors import CrawlFailedError, DocsCrawlerError
from .retrieval import RetrievalResult
from .service import DocsSearchService
from .settings import Settings

# Configuration directory for global CLI usage
CONFIG_DIR = Path.home() / ".config" / "docs-crawler"
CONFIG_ENV_FILE = CONFIG_DIR / ".env"


def _load_config() -> None:
    """Load .env configuration with fallback to user config directory.

    Search order:
    1. .env in current working directory
    2. ~/.config/docs-crawler/.env
    """
    local_env = Path.cwd() / ".env"
    if local_env.is_file():
        load_dotenv(local_env)
        return

    if CONFIG_ENV_FILE.is_file():
        load_dotenv(CONFIG_ENV_FILE)


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )


def _format_results_markdown(
    results: Sequence[RetrievalResult], queries: Sequence[str]
) -> str:
    """Format ranked results as markdown.

    Example output:
    # Search: install, configure

    ## 1. Installation (0.8123)
    https://docs.example.com/install

    To install the package...

    ---
    """
    lines = [f"# Search: {', '.join(queries)}", f"_Found {len(results)} results_", ""]
    for i, result in enumerate(results, 1):
        lines.append(f"## {i}. {result.title} ({result.relevance:.4f})")
        lines.append(result.url)
        if result.matched_queries:
            lines.append(f"_Matched: {', '.join(result.matched_queries)}_")
        lines.append("")
        if result.content:
            lines.append(result.content)
            lines.append("")
        lines.append("---")
        lines.append("")
    return "\n".join(lines)


def _format_sites(sites: List[Dict[str, Any]]) -> str:
    if not sites:
        return "No websites crawled yet."
    lines = []
    for site in sites:
        lines.append(
            f"{site.get('url')}  [{site.get('status')}]  "
            f"{site.get('pages_count', 0)} pages  {site.get('crawl_date')}"
        )
    return "\n".join(lines)


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False))


def _run(coro_factory, verbose: bool) -> int:
    try:
        return asyncio.run(coro_factory())
    except KeyboardInterrupt:
        logging.info("Interrupted")
        return 130
    except DocsCrawlerError as exc:
        logging.error("%s: %s", exc.kind, exc.message)
        return 1
    except Exception as exc:
        logging.error("Error: %s", exc)
        if verbose:
            logging.exception("Full traceback:")
        return 1


# =============================================================================
# docs-crawl
# =============================================================================


def _parse_crawl_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="docs-crawl",
        description="Crawl and index a documentation site, optionally searching it.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""\
Examples:
  # Crawl and index a site
  docs-crawl https://docs.example.com

  # Shallow crawl with a page cap
  docs-crawl https://docs.example.com --max-depth 1 --max-pages 20

  # Crawl (if needed) and search
  docs-crawl https://docs.example.com -q install -q configure -q "api keys"

  # Wait for client-rendered content
  docs-crawl https://docs.example.com --wait-for "main article"
""",
    )
    parser.add_argument("url", help="Base URL of the site to crawl")
    parser.add_argument(
        "--max-depth",
        type=int,
        default=None,
        help="Maximum link depth (default: DOCS_CRAWLER_MAX_DEPTH or 2)",
    )
    parser.add_argument(
        "--max-pages",
        type=int,
        default=None,
        help="Maximum pages to crawl (default: DOCS_CRAWLER_MAX_PAGES or 500)",
    )
    parser.add_argument(
        "--concurrency",
        type=int,
        default=None,
        help="Concurrent page fetches (default: DOCS_CRAWLER_CONCURRENCY or 2)",
    )
    parser.add_argument(
        "--wait-for",
        type=str,
        default=None,
        help="CSS selector to wait for before extracting each page",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Recrawl even if the site was crawled before (only with -q)",
    )
    parser.add_argument(
        "-q",
        "--query",
        action="append",
        dest="queries",
        default=[],
        help="Search query to run after crawling (repeat 3-10 times)",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=5,
        help="Maximum number of search results (default: 5)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        dest="json_output",
        help="Output as JSON",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    return parser.parse_args(argv)


async def _run_crawl_async(args: argparse.Namespace) -> int:
    """Main async entry point for docs-crawl."""
    async with DocsSearchService.from_settings(Settings.from_env()) as service:
        if args.queries:
            results = await service.crawl_and_search(
                args.url,
                args.queries,
                limit=args.limit,
                force_crawl=args.force,
                wait_for=args.wait_for,
                max_depth=args.max_depth,
                max_pages=args.max_pages,
                concurrency=args.concurrency,
            )
            if args.json_output:
                _print_json([r.to_dict() for r in results])
            else:
                print(_format_results_markdown(results, args.queries))
            return 0

        try:
            job = await service.crawl(
                args.url,
                max_depth=args.max_depth,
                max_pages=args.max_pages,
                concurrency=args.concurrency,
                wait_for=args.wait_for,
            )
        except CrawlFailedError as exc:
            if args.json_output:
                _print_json(exc.job.to_dict())
            raise

        for error in job.errors:
            logging.warning("%s", error)
        if args.json_output:
            _print_json(job.to_dict())
        else:
            print(
                f"Crawled {job.pages_processed} page(s) from {job.base_url}, "
                f"indexed {job.indexed_chunks} chunk(s), {len(job.errors)} error(s)"
            )
        return 0


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point for docs-crawl command."""
    args = _parse_crawl_args(argv)
    _setup_logging(args.verbose)
    _load_config()
    return _run(lambda: _run_crawl_async(args), args.verbose)


# =============================================================================
# docs-search
# =============================================================================


def _parse_search_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="docs-search",
        description="Search already crawled documentation.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""\
Examples:
  docs-search "install on windows" "proxy settings"
  docs-search "rate limits" --url https://docs.example.com --limit 10 --json
""",
    )
    parser.add_argument("queries", nargs="+", help="Search queries (1-10)")
    parser.add_argument(
        "--url",
        type=str,
        default=None,
        help="Restrict results to a crawled site",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=5,
        help="Maximum number of results (default: 5)",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        dest="json_output",
        help="Output as JSON",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    return parser.parse_args(argv)


async def _run_search_async(args: argparse.Namespace) -> int:
    """Main async entry point for docs-search."""
    async with DocsSearchService.from_settings(Settings.from_env()) as service:
        results = await service.search_existing(
            args.queries, url=args.url, limit=args.limit
        )
    logging.info("Found %d results", len(results))
    if args.json_output:
        _print_json([r.to_dict() for r in results])
    else:
        print(_format_results_markdown(results, args.queries))
    return 0


def search_main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point for docs-search command."""
    args = _parse_search_args(argv)
    _setup_logging(args.verbose)
    _load_config()
    return _run(lambda: _run_search_async(args), args.verbose)


# =============================================================================
# docs-index
# =============================================================================


def _parse_index_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="docs-index",
        description="Re-index every saved page in a directory.",
    )
    parser.add_argument("directory", help="Directory containing saved page JSON files")
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    return parser.parse_args(argv)


async def _run_index_async(args: argparse.Namespace) -> int:
    """Main async entry point for docs-index."""
    async with DocsSearchService.from_settings(Settings.from_env()) as service:
        total = await service.index.index_corpus(Path(args.directory))
        status = await service.index.status()
    print(f"Indexed {total} chunk(s); index holds {status['chunks']} chunk(s)")
    if status["degraded_documents"]:
        logging.warning(
            "%d document(s) were indexed with placeholder embeddings",
            status["degraded_documents"],
        )
    return 0


def index_main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point for docs-index command."""
    args = _parse_index_args(argv)
    _setup_logging(args.verbose)
    _load_config()
    return _run(lambda: _run_index_async(args), args.verbose)


# =============================================================================
# docs-sites
# =============================================================================


def _parse_sites_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="docs-sites",
        description="List crawled documentation sites.",
    )
    parser.add_argument(
        "--json",
        action="store_true",
        dest="json_output",
        help="Output as JSON",
    )
    return parser.parse_args(argv)


async def _run_sites_async(args: argparse.Namespace) -> int:
    """Main async entry point for docs-sites."""
    async with DocsSearchService.from_settings(Settings.from_env()) as service:
        sites = await service.list_crawled_sources()
    if args.json_output:
        _print_json(sites)
    else:
        print(_format_sites(sites))
    return 0


def sites_main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point for docs-sites command."""
    args = _parse_sites_args(argv)
    _setup_logging(False)
    _load_config()
    return _run(lambda: _run_sites_async(args), False)


if __name__ == "__main__":
    sys.exit(main())
