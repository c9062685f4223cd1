import httpx
import pytest

from web_toolkit.settings import Settings
from web_toolkit.tools import (
    SearchArguments,
    ToolRegistry,
    UnknownToolError,
    build_registry,
)
from web_toolkit.models import TimeRange

from conftest import make_ddg_page


def _client() -> httpx.AsyncClient:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "html.duckduckgo.com":
            return httpx.Response(
                200,
                text=make_ddg_page([("Go", "https://go.dev/", "The Go language")]),
            )
        return httpx.Response(
            200, text="<html><body><p>page</p></body></html>", headers={"content-type": "text/html"}
        )

    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _settings(**kw) -> Settings:
    kw.setdefault("search_pacing_s", 0.0)
    kw.setdefault("fetch_allow_private", True)
    return Settings(**kw)


def test_registry_respects_enabled_groups():
    reg = build_registry(_client(), _settings(enabled_tools=("fetch",)))
    assert reg.names() == ["fetch"]
    reg = build_registry(_client(), _settings(), enabled=["search", "fetch"])
    assert sorted(reg.names()) == ["fetch", "search"]


def test_unknown_group_rejected():
    with pytest.raises(ValueError):
        build_registry(_client(), _settings(), enabled=["pdf"])


def test_duplicate_registration_rejected():
    reg = build_registry(_client(), _settings(), enabled=["search"])
    with pytest.raises(ValueError):
        reg.register(reg.get("search"))


def test_describe_includes_schema():
    reg = build_registry(_client(), _settings(), enabled=["search"])
    (desc,) = reg.describe()
    assert desc["name"] == "search"
    assert "DuckDuckGo" in desc["description"]
    assert "query" in desc["input_schema"]["properties"]


@pytest.mark.asyncio
async def test_search_tool():
    reg = build_registry(_client(), _settings())
    out = await reg.call("search", {"query": "golang", "time_range": "w"})
    assert out["message"] == "Found 1 results successfully."
    assert out["results"] == [
        {"title": "Go", "url": "https://go.dev/", "summary": "The Go language"}
    ]


@pytest.mark.asyncio
async def test_search_tool_empty_query_is_error_message():
    reg = build_registry(_client(), _settings())
    out = await reg.call("search", {"query": ""})
    assert "query is required" in out["error_message"]
    assert "results" not in out


@pytest.mark.asyncio
async def test_fetch_tool():
    reg = build_registry(_client(), _settings())
    out = await reg.call("fetch", {"url": "https://example.com", "format": "text"})
    assert out["content"] == "page"
    assert out["status_code"] == 200


@pytest.mark.asyncio
async def test_invalid_arguments():
    reg = build_registry(_client(), _settings())
    out = await reg.call("search", {"query": ["golang"]})
    assert out["error_message"].startswith("invalid arguments:")
    assert "query" in out["error_message"]


@pytest.mark.asyncio
async def test_unknown_tool():
    with pytest.raises(UnknownToolError):
        await ToolRegistry().call("read_document", {})


def test_time_range_codes_and_names():
    assert SearchArguments(query="x", time_range="").time_range is TimeRange.ANY
    assert SearchArguments(query="x", time_range="y").time_range is TimeRange.YEAR
    assert SearchArguments(query="x", time_range="week").time_range is TimeRange.WEEK
    assert SearchArguments(query="x", time_range="Month").time_range is TimeRange.MONTH


def test_time_range_unknown_value_is_any():
    assert SearchArguments(query="x", time_range="decade").time_range is TimeRange.ANY
    assert SearchArguments(query="x", time_range=None).time_range is TimeRange.ANY


@pytest.mark.asyncio
async def test_search_tool_missing_query_is_error_message():
    reg = build_registry(_client(), _settings())
    out = await reg.call("search", {})
    assert "query is required" in out["error_message"]


@pytest.mark.asyncio
async def test_search_tool_accepts_time_range_names():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.content.decode())
        return httpx.Response(200, text=make_ddg_page([("Go", "https://go.dev/", "The Go language")]))

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    reg = build_registry(client, _settings(), enabled=["search"])
    out = await reg.call("search", {"query": "golang", "time_range": "week"})
    assert out["message"] == "Found 1 results successfully."
    assert "df=w" in seen[0]


@pytest.mark.asyncio
async def test_fetch_tool_missing_url_is_error_message():
    reg = build_registry(_client(), _settings())
    out = await reg.call("fetch", {})
    assert out["error_message"] == "URL is required"


@pytest.mark.asyncio
async def test_doc_tools_registered_and_callable(tmp_path):
    path = tmp_path / "notes.txt"
    path.write_text("first\nsecond\nthird\n", encoding="utf-8")

    reg = build_registry(_client(), _settings(), enabled=["doc"])
    assert sorted(reg.names()) == [
        "get_document_info",
        "read_document_by_line",
        "read_document_by_page",
        "read_document_smart",
    ]
    out = await reg.call("read_document_by_line", {"file_path": str(path), "start_line": 1})
    assert out["content"] == "second\nthird"
    assert out["total_lines"] == 3

    info = await reg.call("get_document_info", {"file_path": str(path)})
    assert info["file_type"] == "TXT"
    assert "error_message" not in info


@pytest.mark.asyncio
async def test_doc_tools_respect_document_root(tmp_path):
    outside = tmp_path / "outside.txt"
    outside.write_text("secret", encoding="utf-8")
    root = tmp_path / "docs"
    root.mkdir()

    reg = build_registry(_client(), _settings(doc_root=str(root)), enabled=["doc"])
    out = await reg.call("read_document_smart", {"file_path": str(outside)})
    assert "outside the document root" in out["error_message"]
