"""Tests for docs_crawler.frontier module."""

from __future__ import annotations

import asyncio
from collections import Counter

import pytest

from conftest import ScriptedExtractor, ScriptedPage
from docs_crawler.errors import ExtractionError, InvalidParamsError, StorageError
from docs_crawler.frontier import FrontierManager
from docs_crawler.job import JobStatus


def _chain(n: int, fanout: int = 3) -> dict:
    """Pages where page i links to the next ``fanout`` pages."""
    base = "https://docs.example.com"
    pages = {}
    for i in range(n):
        url = base if i == 0 else f"{base}/p{i}"
        links = [f"{base}/p{j}" for j in range(i + 1, min(n, i + 1 + fanout))]
        pages[url] = ScriptedPage(title=f"P{i}", content=f"page {i}", links=links)
    return pages


class TestValidation:
    @pytest.mark.parametrize("url", ["not a url", "/relative", "ftp://example.com"])
    def test_rejects_bad_base_url(self, url, storage):
        with pytest.raises(InvalidParamsError):
            FrontierManager(url, ScriptedExtractor({}), storage)

    @pytest.mark.parametrize(
        "kwargs", [{"max_depth": -1}, {"max_pages": 0}, {"concurrency": 0}]
    )
    def test_rejects_bad_limits(self, kwargs, storage):
        with pytest.raises(InvalidParamsError):
            FrontierManager("https://docs.example.com", ScriptedExtractor({}), storage, **kwargs)


class TestCrawl:
    @pytest.mark.asyncio
    async def test_max_depth_zero_processes_only_base(self, storage, docs_site):
        extractor = ScriptedExtractor(docs_site)
        frontier = FrontierManager("https://docs.example.com/", extractor, storage, max_depth=0)
        job = await frontier.run()
        assert job.status is JobStatus.completed
        assert job.pages_processed == 1
        assert extractor.rendered == ["https://docs.example.com"]
        assert frontier.visited == {"https://docs.example.com"}

    @pytest.mark.asyncio
    async def test_full_crawl_same_origin_only(self, storage, docs_site):
        extractor = ScriptedExtractor(docs_site)
        frontier = FrontierManager("https://docs.example.com", extractor, storage, max_depth=5)
        job = await frontier.run()

        assert set(extractor.rendered) == {
            "https://docs.example.com",
            "https://docs.example.com/install",
            "https://docs.example.com/config",
            "https://docs.example.com/install/proxy",
            "https://docs.example.com/missing",
        }
        assert all("other.example.org" not in url for url in extractor.rendered)
        assert job.status is JobStatus.completed
        assert job.pages_processed == 4
        assert job.pages_attempted == 5
        assert len(job.errors) == 1
        assert "missing" in job.errors[0]
        assert extractor.started and extractor.closed

    @pytest.mark.asyncio
    async def test_depth_limit(self, storage, docs_site):
        extractor = ScriptedExtractor(docs_site)
        job = await FrontierManager("https://docs.example.com", extractor, storage, max_depth=1).run()
        assert "https://docs.example.com/install/proxy" not in extractor.rendered
        assert "https://docs.example.com/missing" not in extractor.rendered
        assert job.pages_processed == 3

    @pytest.mark.asyncio
    async def test_breadth_first_by_depth(self, storage):
        extractor = ScriptedExtractor(_chain(10, fanout=2))
        await FrontierManager(
            "https://docs.example.com", extractor, storage, max_depth=10, concurrency=1
        ).run()
        assert extractor.rendered[:3] == [
            "https://docs.example.com",
            "https://docs.example.com/p1",
            "https://docs.example.com/p2",
        ]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("cap", [1, 3, 7])
    async def test_page_cap_bounds_attempts(self, storage, cap):
        extractor = ScriptedExtractor(_chain(30), delay=0.001)
        job = await FrontierManager(
            "https://docs.example.com", extractor, storage, max_depth=30, max_pages=cap, concurrency=3
        ).run()
        assert job.pages_attempted <= cap
        assert len(extractor.rendered) == cap

    @pytest.mark.asyncio
    async def test_no_url_fetched_twice(self, storage):
        base = "https://docs.example.com"
        pages = {
            f"{base}/{name}": ScriptedPage(
                content=name,
                links=[f"{base}/{other}" for other in "abcdef"] + [f"{base}/{other}/#frag" for other in "abc"] + [base + "/"],
            )
            for name in "abcdef"
        }
        pages[base] = ScriptedPage(links=[f"{base}/{name}" for name in "abcdef"])
        extractor = ScriptedExtractor(pages, delay=0.001)
        await FrontierManager(base, extractor, storage, max_depth=4, concurrency=4).run()
        counts = Counter(extractor.rendered)
        assert counts and max(counts.values()) == 1
        assert len(counts) == 7

    @pytest.mark.asyncio
    async def test_default_port_link_is_same_page(self, storage):
        base = "https://docs.example.com"
        pages = {
            base: ScriptedPage(links=[f"{base}/install", "https://docs.example.com:443/install"]),
            f"{base}/install": ScriptedPage(links=["https://DOCS.example.com:443/"]),
        }
        extractor = ScriptedExtractor(pages)
        job = await FrontierManager(base, extractor, storage, max_depth=3).run()
        assert extractor.rendered == [base, f"{base}/install"]
        assert job.pages_processed == 2

    @pytest.mark.asyncio
    async def test_concurrency_bounded(self, storage):
        extractor = ScriptedExtractor(_chain(20, fanout=10), delay=0.01)
        await FrontierManager(
            "https://docs.example.com", extractor, storage, max_depth=3, concurrency=3
        ).run()
        assert extractor.max_in_flight <= 3
        assert extractor.max_in_flight > 1

    @pytest.mark.asyncio
    async def test_wait_hint_forwarded(self, storage, docs_site):
        extractor = ScriptedExtractor(docs_site)
        await FrontierManager(
            "https://docs.example.com", extractor, storage, max_depth=0, wait_for="main"
        ).run()
        assert extractor.wait_hints == ["main"]


class TestFailures:
    @pytest.mark.asyncio
    async def test_page_failures_do_not_abort(self, storage, docs_site):
        failures = {
            "https://docs.example.com/install": ExtractionError(
                "Timed out loading install", kind="timeout"
            )
        }
        extractor = ScriptedExtractor(docs_site, failures=failures)
        job = await FrontierManager("https://docs.example.com", extractor, storage, max_depth=3).run()
        assert job.status is JobStatus.completed
        assert "https://docs.example.com/config" in job.processed_urls
        assert "https://docs.example.com/install/proxy" not in extractor.rendered
        assert any("Timed out" in e for e in job.errors)

    @pytest.mark.asyncio
    async def test_zero_pages_marks_failed(self, storage):
        extractor = ScriptedExtractor({})
        job = await FrontierManager("https://docs.example.com", extractor, storage).run()
        assert job.status is JobStatus.failed
        assert job.pages_processed == 0
        assert job.errors
        assert job.end_time is not None
        metadata = storage.read_metadata("https://docs.example.com")
        assert metadata["status"] == "failed"

    @pytest.mark.asyncio
    async def test_page_timeout(self, storage, docs_site):
        extractor = ScriptedExtractor(docs_site, hang=("https://docs.example.com/config",))
        job = await FrontierManager(
            "https://docs.example.com", extractor, storage, max_depth=1, page_timeout=0.05
        ).run()
        assert job.status is JobStatus.completed
        assert any("Timeout crawling https://docs.example.com/config" in e for e in job.errors)

    @pytest.mark.asyncio
    async def test_browser_start_failure(self, storage):
        class BrokenExtractor(ScriptedExtractor):
            async def start(self):
                raise RuntimeError("playwright missing")

        job = await FrontierManager("https://docs.example.com", BrokenExtractor({}), storage).run()
        assert job.status is JobStatus.failed
        assert "playwright missing" in job.errors[0]

    @pytest.mark.asyncio
    async def test_sink_errors_recorded_page_kept(self, storage, docs_site):
        async def sink(page):
            raise StorageError("index is read-only")

        extractor = ScriptedExtractor(docs_site)
        job = await FrontierManager(
            "https://docs.example.com", extractor, storage, page_sink=sink, max_depth=0
        ).run()
        assert job.pages_processed == 1
        assert "index is read-only" in job.errors[0]

    @pytest.mark.asyncio
    async def test_unexpected_error_isolated(self, storage, docs_site):
        class Exploding(ScriptedExtractor):
            async def render(self, url, wait_for=None):
                if url.endswith("/config"):
                    raise KeyError("boom")
                return await super().render(url, wait_for)

        job = await FrontierManager("https://docs.example.com", Exploding(docs_site), storage, max_depth=1).run()
        assert job.status is JobStatus.completed
        assert job.pages_processed == 2
        assert any("config" in e for e in job.errors)


class TestPersistenceAndSink:
    @pytest.mark.asyncio
    async def test_pages_and_metadata_persisted(self, storage, docs_site):
        job = await FrontierManager(
            "https://docs.example.com", ScriptedExtractor(docs_site), storage, max_depth=1
        ).run()
        urls = sorted(await storage.page_urls("https://docs.example.com"))
        assert urls == sorted(job.processed_urls)
        metadata = storage.read_metadata("https://docs.example.com")
        assert metadata["pages_count"] == 3
        assert metadata["job_id"] == job.id

    @pytest.mark.asyncio
    async def test_sink_chunk_counts(self, storage, docs_site):
        async def sink(page):
            return 2

        job = await FrontierManager(
            "https://docs.example.com", ScriptedExtractor(docs_site), storage, page_sink=sink, max_depth=1
        ).run()
        assert job.indexed_chunks == 2 * job.pages_processed


class TestCancellation:
    @pytest.mark.asyncio
    async def test_cancel_stops_new_work(self, storage):
        extractor = ScriptedExtractor(_chain(50, fanout=5), delay=0.02)
        frontier = FrontierManager(
            "https://docs.example.com", extractor, storage, max_depth=50, concurrency=2
        )
        task = asyncio.create_task(frontier.run())
        await asyncio.sleep(0.05)
        frontier.cancel()
        job = await task
        assert job.cancelled
        assert job.status.is_terminal
        assert len(extractor.rendered) < 50
        assert extractor.closed

    @pytest.mark.asyncio
    async def test_cancel_after_finish_is_noop(self, storage, docs_site):
        frontier = FrontierManager("https://docs.example.com", ScriptedExtractor(docs_site), storage, max_depth=0)
        job = await frontier.run()
        frontier.cancel()
        assert not job.cancelled
