from __future__ import annotations

import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastmcp import FastMCP
from fastmcp.exceptions import ToolError

from conftest import ScriptedExtractor
from docs_crawler import mcp_server
from docs_crawler.errors import StorageError

BASE = "https://docs.example.com"


@pytest.mark.asyncio
async def test_create_server_registers_tools(make_service) -> None:
    server = mcp_server.create_server(make_service(ScriptedExtractor({})))
    assert isinstance(server, FastMCP)
    tools = await server.get_tools()
    assert set(tools) == {
        "search_website",
        "list_crawled_websites",
        "recrawl_website",
        "search_existing_data",
    }


@pytest.mark.asyncio
async def test_search_website_returns_json(make_service, docs_site) -> None:
    service = make_service(ScriptedExtractor(docs_site))
    tools = mcp_server.DocsCrawlerTools(service)
    async with service:
        text = await tools.search_website(BASE, ["install", "proxy", "auth token"], limit=2)

    results = json.loads(text)
    assert 0 < len(results) <= 2
    assert set(results[0]) == {"url", "title", "content", "relevance", "matched_queries"}
    assert text.startswith("[\n  {")


@pytest.mark.asyncio
async def test_search_website_rejects_too_few_queries(make_service, docs_site) -> None:
    extractor = ScriptedExtractor(docs_site)
    service = make_service(extractor)
    tools = mcp_server.DocsCrawlerTools(service)
    async with service:
        with pytest.raises(ToolError, match="^invalid_params: "):
            await tools.search_website(BASE, ["install", "proxy"])
    assert extractor.rendered == []


@pytest.mark.asyncio
async def test_failed_crawl_reported(make_service) -> None:
    service = make_service(ScriptedExtractor({}))
    tools = mcp_server.DocsCrawlerTools(service)
    async with service:
        with pytest.raises(ToolError, match="^crawl_failed: "):
            await tools.recrawl_website(BASE)


@pytest.mark.asyncio
async def test_list_and_recrawl(make_service, docs_site) -> None:
    service = make_service(ScriptedExtractor(docs_site))
    tools = mcp_server.DocsCrawlerTools(service)
    async with service:
        assert json.loads(await tools.list_crawled_websites()) == []
        recrawl = json.loads(await tools.recrawl_website(BASE))
        sites = json.loads(await tools.list_crawled_websites())

    assert recrawl["message"] == f"Successfully recrawled {BASE}"
    assert recrawl["job"]["status"] == "completed"
    assert [site["url"] for site in sites] == [BASE]


@pytest.mark.asyncio
async def test_search_existing_data(make_service, chunk_index) -> None:
    await chunk_index.index_document(f"{BASE}/install", "Install", "install install")
    service = make_service(ScriptedExtractor({}))
    tools = mcp_server.DocsCrawlerTools(service)
    async with service:
        results = json.loads(await tools.search_existing_data(["install"], url=BASE))
        with pytest.raises(ToolError, match="has not been crawled yet"):
            await tools.search_existing_data(["install"], url="https://never.example.com")

    assert results[0]["url"] == f"{BASE}/install"
    assert results[0]["relevance"] == 1.0


@pytest.mark.asyncio
async def test_storage_error_mapped() -> None:
    service = MagicMock()
    service.list_crawled_sources = AsyncMock(side_effect=StorageError("disk gone"))
    with pytest.raises(ToolError, match="^storage_error: disk gone$"):
        await mcp_server.DocsCrawlerTools(service).list_crawled_websites()


@pytest.mark.asyncio
async def test_unexpected_error_mapped() -> None:
    service = MagicMock()
    service.recrawl = AsyncMock(side_effect=RuntimeError("boom"))
    with pytest.raises(ToolError, match="^internal_error: boom$"):
        await mcp_server.DocsCrawlerTools(service).recrawl_website(BASE)


def test_main_stdio(settings) -> None:
    with patch("docs_crawler.mcp_server.load_dotenv"), patch(
        "docs_crawler.mcp_server.Settings.from_env", return_value=settings
    ), patch("fastmcp.FastMCP.run") as mock_run:
        mcp_server.main([])
    mock_run.assert_called_once_with(transport="stdio")


def test_main_http(settings) -> None:
    with patch("docs_crawler.mcp_server.load_dotenv"), patch(
        "docs_crawler.mcp_server.Settings.from_env", return_value=settings
    ), patch("fastmcp.FastMCP.run") as mock_run:
        mcp_server.main(["--transport", "http", "--port", "9001"])
    mock_run.assert_called_once_with(transport="http", host="127.0.0.1", port=9001)
