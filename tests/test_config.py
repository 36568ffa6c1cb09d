"""Tests for docs_crawler.config module."""

from crawl4ai import BrowserConfig, CrawlerRunConfig
from crawl4ai.async_configs import CacheMode

from docs_crawler.config import (
    EXCLUDED_SELECTORS,
    MAIN_SELECTORS,
    build_browser_config,
    build_markdown_generator,
    build_page_run_config,
    wait_condition,
)


class TestWaitCondition:
    def test_none(self):
        assert wait_condition(None) is None

    def test_blank(self):
        assert wait_condition("   ") is None

    def test_css_prefix_added(self):
        assert wait_condition(".docs-content") == "css:.docs-content"

    def test_existing_prefix_kept(self):
        assert wait_condition("css:main") == "css:main"
        assert wait_condition("js:() => true") == "js:() => true"


class TestBuildBrowserConfig:
    def test_headless_default(self):
        config = build_browser_config()
        assert isinstance(config, BrowserConfig)
        assert config.headless is True

    def test_headful(self):
        assert build_browser_config(headless=False).headless is False


class TestBuildPageRunConfig:
    def test_defaults(self):
        config = build_page_run_config()
        assert isinstance(config, CrawlerRunConfig)
        assert config.cache_mode == CacheMode.BYPASS
        assert config.page_timeout == 30000
        assert config.exclude_external_links is True
        assert config.target_elements == MAIN_SELECTORS
        assert "nav" in config.excluded_selector

    def test_timeout_in_milliseconds(self):
        assert build_page_run_config(page_timeout=2.5).page_timeout == 2500

    def test_wait_for_translated(self):
        config = build_page_run_config(wait_for="article")
        assert config.wait_for == "css:article"

    def test_fresh_lists_per_config(self):
        config = build_page_run_config()
        config.target_elements.append("body")
        assert "body" not in MAIN_SELECTORS


class TestSelectors:
    def test_consent_banners_excluded(self):
        assert "#onetrust-banner-sdk" in EXCLUDED_SELECTORS
        assert ".cky-consent-container" in EXCLUDED_SELECTORS

    def test_no_overlap_with_main(self):
        assert not set(MAIN_SELECTORS) & set(EXCLUDED_SELECTORS)


class TestMarkdownGenerator:
    def test_has_pruning_filter(self):
        generator = build_markdown_generator()
        assert generator.content_filter is not None
