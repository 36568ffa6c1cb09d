"""Shared fakes and fixtures, plus strict test-accounting guardrails."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import pytest

from docs_crawler.document import PageResult
from docs_crawler.embedding import Embedder
from docs_crawler.errors import ExtractionError
from docs_crawler.index import ChunkIndex
from docs_crawler.service import DocsSearchService
from docs_crawler.settings import Settings
from docs_crawler.storage import SiteStorage
from docs_crawler.urls import normalize_url

VOCAB = ["install", "config", "auth", "token", "deploy", "cache", "proxy", "error"]
DIMENSIONS = len(VOCAB)


class KeywordBackend:
    """Deterministic embedding: one dimension per vocabulary word count."""

    def __init__(self):
        self.calls: List[List[str]] = []

    async def embed_many(self, texts: Sequence[str]) -> List[List[float]]:
        self.calls.append(list(texts))
        vectors = []
        for text in texts:
            lowered = text.lower()
            vectors.append([float(lowered.count(word)) for word in VOCAB])
        return vectors


class FailingBackend:
    def __init__(self, exc: Exception = None):
        self.exc = exc or RuntimeError("service unavailable")
        self.calls = 0

    async def embed_many(self, texts: Sequence[str]) -> List[List[float]]:
        self.calls += 1
        raise self.exc


@dataclass
class ScriptedPage:
    title: str = "Page"
    content: str = "install guide"
    links: List[str] = field(default_factory=list)


class ScriptedExtractor:
    """Extractor over a fixed link graph; unknown URLs fail with fetch_failed."""

    def __init__(
        self,
        pages: Dict[str, ScriptedPage],
        *,
        failures: Optional[Dict[str, ExtractionError]] = None,
        delay: float = 0.0,
        hang: Tuple[str, ...] = (),
    ):
        self.pages = {normalize_url(url): page for url, page in pages.items()}
        self.failures = {normalize_url(url): exc for url, exc in (failures or {}).items()}
        self.delay = delay
        self.hang = {normalize_url(url) for url in hang}
        self.rendered: List[str] = []
        self.wait_hints: List[Optional[str]] = []
        self.started = False
        self.closed = False
        self.in_flight = 0
        self.max_in_flight = 0

    async def start(self) -> None:
        self.started = True

    async def close(self) -> None:
        self.closed = True

    async def render(self, url: str, wait_for: Optional[str] = None) -> PageResult:
        self.rendered.append(url)
        self.wait_hints.append(wait_for)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if url in self.hang:
                await asyncio.sleep(3600)
            if self.delay:
                await asyncio.sleep(self.delay)
            if url in self.failures:
                raise self.failures[url]
            page = self.pages.get(url)
            if page is None:
                raise ExtractionError(f"Error crawling {url}: HTTP 404", url=url)
            return PageResult(url=url, title=page.title, content=page.content, links=list(page.links))
        finally:
            self.in_flight -= 1


def make_embedder(backend=None, **kwargs) -> Embedder:
    kwargs.setdefault("dimensions", DIMENSIONS)
    kwargs.setdefault("batch_size", 4)
    return Embedder(backend or KeywordBackend(), **kwargs)


@pytest.fixture
def settings(tmp_path):
    return Settings(
        data_dir=tmp_path / "data",
        embedding_dimensions=DIMENSIONS,
        chunk_words=20,
        chunk_overlap=5,
        page_timeout=2.0,
    )


@pytest.fixture
def embedder():
    return make_embedder()


@pytest.fixture
def chunk_index(settings, embedder):
    settings.index_dir.mkdir(parents=True)
    return ChunkIndex(settings.index_dir, embedder, window=20, overlap=5)


@pytest.fixture
def storage(settings):
    return SiteStorage(settings.websites_dir)


@pytest.fixture
def docs_site():
    """A small same-origin link graph with one external and one broken link."""
    return {
        "https://docs.example.com": ScriptedPage(
            title="Home",
            content="Welcome. Read the install guide first.",
            links=[
                "https://docs.example.com/install",
                "https://docs.example.com/config",
                "https://other.example.org/elsewhere",
            ],
        ),
        "https://docs.example.com/install": ScriptedPage(
            title="Install",
            content="To install run pip install. install install",
            links=["https://docs.example.com/install/proxy", "https://docs.example.com"],
        ),
        "https://docs.example.com/config": ScriptedPage(
            title="Config",
            content="The config file controls cache and auth token settings.",
            links=["https://docs.example.com/missing"],
        ),
        "https://docs.example.com/install/proxy": ScriptedPage(
            title="Proxy",
            content="Set the proxy before you install behind a firewall. proxy proxy",
        ),
    }


@pytest.fixture
def make_service(settings, chunk_index, storage, embedder):
    def factory(extractor: ScriptedExtractor) -> DocsSearchService:
        return DocsSearchService(
            settings,
            embedder=embedder,
            index=chunk_index,
            storage=storage,
            extractor_factory=lambda: extractor,
        )

    return factory


# -----------------------------------------------------------------------------
# Strict accounting: no skipped, deselected or xfail tests are tolerated.
# -----------------------------------------------------------------------------

_ACCOUNTING = {"deselected": 0, "skipped": 0, "xfailed": 0, "xpassed": 0}


def pytest_deselected(items):  # pragma: no cover - pytest hook
    _ACCOUNTING["deselected"] += len(items)


def pytest_runtest_logreport(report):  # pragma: no cover - pytest hook
    if report.when not in {"setup", "call"}:
        return
    if getattr(report, "wasxfail", False):
        key = "xfailed" if report.outcome == "skipped" else "xpassed"
        _ACCOUNTING[key] += 1
    elif report.outcome == "skipped":
        _ACCOUNTING["skipped"] += 1


def pytest_sessionfinish(session, exitstatus):  # pragma: no cover - pytest hook
    violations = [f"{name}={count}" for name, count in _ACCOUNTING.items() if count]
    if not violations:
        return
    reporter = session.config.pluginmanager.get_plugin("terminalreporter")
    if reporter:
        reporter.write_sep(
            "=",
            f"Strict guard failed: test accounting violations ({', '.join(violations)})",
        )
    session.exitstatus = 1
