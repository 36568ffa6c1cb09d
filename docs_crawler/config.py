"""Factory functions for Crawl4AI browser and run configurations."""

from __future__ import annotations

import logging
from typing import List, Optional

from crawl4ai import BrowserConfig, CrawlerRunConfig
from crawl4ai.async_configs import CacheMode
from crawl4ai.content_filter_strategy import PruningContentFilter
from crawl4ai.markdown_generation_strategy import DefaultMarkdownGenerator

LOGGER = logging.getLogger(__name__)

# Main content containers on documentation sites
MAIN_SELECTORS: List[str] = [
    "main",
    "[role='main']",
    "article",
    ".content",
    ".main-content",
    ".markdown-body",
    ".docs-content",
    ".doc-content",
    ".prose",
    ".md-content",
    "#content-area",
    "[data-docs-content]",
]

# Navigation chrome, banners and consent dialogs
EXCLUDED_SELECTORS: List[str] = [
    "nav",
    "footer",
    "aside",
    ".navbar",
    ".sidebar",
    ".menu",
    ".search",
    ".breadcrumb",
    ".breadcrumbs",
    ".toc",
    ".table-of-contents",
    ".banner",
    ".toolbar",
    ".pagination",
    ".top-nav",
    ".side-nav",
    ".skip-link",
    ".skip-to-content",
    ".cookie",
    ".consent",
    ".newsletter",
    ".share",
    ".social",
    ".promo",
    ".announcement",
    "[role='navigation']",
    "#onetrust-banner-sdk",
    ".cky-consent-container",
]

EXCLUDED_TAGS: List[str] = ["script", "style", "noscript", "nav", "footer", "aside", "form"]


def build_browser_config(*, headless: bool = True) -> BrowserConfig:
    """Shared browser configuration for one crawl job."""
    return BrowserConfig(headless=headless, use_persistent_context=False)


def build_markdown_generator() -> DefaultMarkdownGenerator:
    """Markdown generator tuned for documentation pages."""
    prune_filter = PruningContentFilter(
        threshold=0.45,
        threshold_type="dynamic",
        min_word_threshold=1,
    )
    return DefaultMarkdownGenerator(
        content_filter=prune_filter,
        options={
            "citations": False,
            "body_width": 0,
            "skip_internal_links": True,
            "ignore_images": True,
        },
    )


def wait_condition(selector: Optional[str]) -> Optional[str]:
    """Translate a CSS content-wait hint into crawl4ai's ``wait_for`` syntax."""
    if not selector or not selector.strip():
        return None
    selector = selector.strip()
    if selector.startswith(("css:", "js:")):
        return selector
    return f"css:{selector}"


def build_page_run_config(
    *,
    wait_for: Optional[str] = None,
    page_timeout: float = 30.0,
) -> CrawlerRunConfig:
    """RunConfig for rendering one page and extracting its main content.

    Links are collected from the full page, so only the markdown is
    restricted to the main content containers.
    """
    config = CrawlerRunConfig(
        verbose=False,
        cache_mode=CacheMode.BYPASS,
        markdown_generator=build_markdown_generator(),
        target_elements=list(MAIN_SELECTORS),
        excluded_tags=list(EXCLUDED_TAGS),
        excluded_selector=", ".join(EXCLUDED_SELECTORS),
        exclude_external_links=True,
        wait_until="domcontentloaded",
        page_timeout=int(page_timeout * 1000),
        delay_before_return_html=0.2,
    )
    condition = wait_condition(wait_for)
    if condition:
        config.wait_for = condition
        LOGGER.debug("Waiting for %s before extraction", condition)
    return config
