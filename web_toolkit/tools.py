from __future__ import annotations
import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Type

import httpx
from pydantic import BaseModel, Field, ValidationError, field_validator

from .ddg_engine import DuckDuckGoHtmlSearchEngine
from .documents import DEFAULT_SMART_MAX_CHARS, DocumentReader
from .fetchers import BrowserPageFetcher, FetchPolicy, WebFetcher
from .models import FetchRequest, SearchQuery, TimeRange
from .settings import ALL_TOOL_GROUPS, Settings
from .url_utils import UrlSafetyPolicy

from logging import getLogger

logger = getLogger(__name__)


SEARCH_TOOL_DESCRIPTION = """Search for information using DuckDuckGo search engine.

## When to Use
Use this tool when you need to:
- Search for the latest information on the internet
- Find materials on specific topics
- Get search results within a specified time range

## Usage Tips
- Provide clear, specific search keywords for better results
- You can use the time_range parameter to limit search results to a specific time period"""

FETCH_TOOL_DESCRIPTION = """Fetch web resource content from URL and return content in specified format.

## When to Use
Use this tool when you need to:
- Get raw content from a web page
- Access API endpoints to get JSON data
- Download HTML/text/Markdown content

## Features
- Supports four output formats: text, markdown, html, json
- Automatically handles HTTP redirects
- Limits response size (maximum 5MB)

## Usage Tips
- text format: plain text extracted from HTML
- markdown format: HTML converted to Markdown
- html format: body of the HTML page
- json format: JSON returned as-is
- Set an appropriate timeout (default 30 seconds, maximum 120 seconds)"""

DOC_INFO_TOOL_DESCRIPTION = """Get basic information about a document, including file type, size, page count, and metadata. Supported formats: .docx, .pdf, .xlsx, .pptx, .txt, .csv, .md.
This is the first step before reading a document, helping you understand document structure and decide how to read it."""

DOC_SMART_TOOL_DESCRIPTION = """Intelligently read document content, automatically handling large documents. Features:
- Automatically adapts to context limits (default 50000 characters)
- Supports sampling mode (uniform sampling) or truncation from start
- Automatically cleans extra spaces and blank lines
- Provides suggestions when document is too large
Best for: First-time document reading, quick content overview"""

DOC_PAGES_TOOL_DESCRIPTION = """Read document content by page range. Supports multi-page documents like PDF, PPTX and XLSX (one sheet per page).
Parameters:
- start_page: Starting page (0-based)
- end_page: Ending page (-1 means to end)
Returns detailed information for each page (page number, line count).
Best for: Reading specific pages or sections"""

DOC_LINES_TOOL_DESCRIPTION = """Read document content by line range. Supports specifying page and line range.
Parameters:
- start_line: Starting line (0-based)
- end_line: Ending line (-1 means to end)
- page_index: Page index (-1 means first page)
Best for: Reading specific lines or paragraphs"""


# -----------------------
# Arguments
# -----------------------


class SearchArguments(BaseModel):
    # 未指定でもここでは弾かず、エンジン側の "query is required" に任せる
    query: str = Field(default="", description="Search keywords (required)")
    time_range: TimeRange = Field(
        default=TimeRange.ANY,
        description="d or day (past day), w or week (past week), m or month (past month), "
        "y or year (past year), empty string or any (any time, default). "
        "Unrecognized values mean any time",
    )

    @field_validator("time_range", mode="before")
    @classmethod
    def _lenient_time_range(cls, v: Any) -> TimeRange:
        return TimeRange.coerce(v)


class FetchArguments(BaseModel):
    url: str = Field(default="", description="URL to fetch (must start with http:// or https://)")
    format: str = Field(default="text", description="text / markdown / html / json")
    timeout: Optional[float] = Field(
        default=None, description="Request timeout in seconds (default 30, max 120)"
    )
    render: bool = Field(
        default=False, description="Render the page in a headless browser first"
    )


class DocumentInfoArguments(BaseModel):
    file_path: str = Field(default="", description="Document file path")


class DocumentPagesArguments(BaseModel):
    file_path: str = Field(default="", description="Document file path")
    start_page: int = Field(default=0, description="Starting page number (0-based, default 0)")
    end_page: int = Field(
        default=-1, description="Ending page number (inclusive, -1 means to end, default -1)"
    )


class DocumentLinesArguments(BaseModel):
    file_path: str = Field(default="", description="Document file path")
    start_line: int = Field(default=0, description="Starting line number (0-based, default 0)")
    end_line: int = Field(
        default=-1, description="Ending line number (inclusive, -1 means to end, default -1)"
    )
    page_index: int = Field(
        default=-1, description="Page index (0-based, -1 means first page, default -1)"
    )


class DocumentSmartArguments(BaseModel):
    file_path: str = Field(default="", description="Document file path")
    max_chars: int = Field(
        default=DEFAULT_SMART_MAX_CHARS,
        description="Maximum character limit (default 50000, recommended between 10000-100000)",
    )
    sample_mode: bool = Field(
        default=False,
        description="true samples the beginning, middle and end; false reads from the start",
    )
    clean_content: bool = Field(
        default=True, description="Remove extra spaces and blank lines (default true)"
    )


# -----------------------
# Registry
# -----------------------


class UnknownToolError(KeyError):
    pass


ToolHandler = Callable[[BaseModel], Awaitable[Dict[str, Any]]]


@dataclass(frozen=True)
class Tool:
    name: str
    group: str
    description: str
    arguments: Type[BaseModel]
    handler: ToolHandler

    def describe(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "group": self.group,
            "description": self.description,
            "input_schema": self.arguments.model_json_schema(),
        }


class ToolRegistry:
    """
    tool名 -> handler のディスパッチだけを担当。
    引数エラーも error_message で返す（呼び出し側に例外を見せない）。
    """

    def __init__(self, tools: Iterable[Tool] = ()) -> None:
        self._tools: dict[str, Tool] = {}
        for t in tools:
            self.register(t)

    def register(self, tool: Tool) -> None:
        if tool.name in self._tools:
            raise ValueError(f"tool already registered: {tool.name}")
        self._tools[tool.name] = tool

    def names(self) -> list[str]:
        return list(self._tools)

    def get(self, name: str) -> Tool:
        try:
            return self._tools[name]
        except KeyError:
            raise UnknownToolError(name) from None

    def describe(self) -> list[dict[str, Any]]:
        return [t.describe() for t in self._tools.values()]

    async def call(self, name: str, arguments: Optional[Dict[str, Any]]) -> dict[str, Any]:
        tool = self.get(name)
        try:
            args = tool.arguments.model_validate(arguments or {})
        except ValidationError as e:
            logger.warning(f"invalid arguments for {name}: {e.error_count()} error(s)")
            return {"error_message": f"invalid arguments: {_summarize(e)}"}
        return await tool.handler(args)


def _summarize(e: ValidationError) -> str:
    parts = []
    for err in e.errors():
        loc = ".".join(str(x) for x in err.get("loc", ())) or "arguments"
        parts.append(f"{loc}: {err.get('msg', 'invalid')}")
    return "; ".join(parts)


# -----------------------
# Tool groups
# -----------------------


def search_tool(engine: DuckDuckGoHtmlSearchEngine) -> Tool:
    async def handle(args: BaseModel) -> dict[str, Any]:
        assert isinstance(args, SearchArguments)
        outcome = await engine.search(
            SearchQuery(text=args.query, time_range=args.time_range)
        )
        return outcome.to_dict()

    return Tool(
        name="search",
        group="search",
        description=SEARCH_TOOL_DESCRIPTION,
        arguments=SearchArguments,
        handler=handle,
    )


def fetch_tool(fetcher: WebFetcher) -> Tool:
    async def handle(args: BaseModel) -> dict[str, Any]:
        assert isinstance(args, FetchArguments)
        outcome = await fetcher.fetch(
            FetchRequest(
                url=args.url,
                format=args.format,
                timeout_s=args.timeout,
                render=args.render,
            )
        )
        return outcome.to_dict()

    return Tool(
        name="fetch",
        group="fetch",
        description=FETCH_TOOL_DESCRIPTION,
        arguments=FetchArguments,
        handler=handle,
    )


def doc_tools(reader: DocumentReader) -> list[Tool]:
    # パーサは同期APIなのでスレッドに逃がす
    async def info(args: BaseModel) -> dict[str, Any]:
        assert isinstance(args, DocumentInfoArguments)
        return (await asyncio.to_thread(reader.info, args.file_path)).to_dict()

    async def smart(args: BaseModel) -> dict[str, Any]:
        assert isinstance(args, DocumentSmartArguments)
        out = await asyncio.to_thread(
            reader.read_smart,
            args.file_path,
            args.max_chars,
            args.sample_mode,
            args.clean_content,
        )
        return out.to_dict()

    async def pages(args: BaseModel) -> dict[str, Any]:
        assert isinstance(args, DocumentPagesArguments)
        out = await asyncio.to_thread(
            reader.read_pages, args.file_path, args.start_page, args.end_page
        )
        return out.to_dict()

    async def lines(args: BaseModel) -> dict[str, Any]:
        assert isinstance(args, DocumentLinesArguments)
        out = await asyncio.to_thread(
            reader.read_lines,
            args.file_path,
            args.start_line,
            args.end_line,
            args.page_index,
        )
        return out.to_dict()

    return [
        Tool("get_document_info", "doc", DOC_INFO_TOOL_DESCRIPTION, DocumentInfoArguments, info),
        Tool("read_document_smart", "doc", DOC_SMART_TOOL_DESCRIPTION, DocumentSmartArguments, smart),
        Tool("read_document_by_page", "doc", DOC_PAGES_TOOL_DESCRIPTION, DocumentPagesArguments, pages),
        Tool("read_document_by_line", "doc", DOC_LINES_TOOL_DESCRIPTION, DocumentLinesArguments, lines),
    ]


def build_registry(
    client: httpx.AsyncClient,
    settings: Settings,
    enabled: Optional[Iterable[str]] = None,
) -> ToolRegistry:
    groups = list(enabled) if enabled is not None else list(settings.enabled_tools)
    unknown = [g for g in groups if g not in ALL_TOOL_GROUPS]
    if unknown:
        raise ValueError(
            f"unknown tool group(s): {', '.join(unknown)} "
            f"(available: {', '.join(ALL_TOOL_GROUPS)})"
        )

    registry = ToolRegistry()
    if "doc" in groups:
        for tool in doc_tools(DocumentReader(root=settings.doc_root)):
            registry.register(tool)
    if "fetch" in groups:
        policy = FetchPolicy(
            safety=UrlSafetyPolicy(enabled=not settings.fetch_allow_private),
            default_timeout_s=settings.fetch_timeout_s,
        )
        registry.register(
            fetch_tool(
                WebFetcher(
                    client, policy, browser_fetcher=BrowserPageFetcher(policy)
                )
            )
        )
    if "search" in groups:
        engine = DuckDuckGoHtmlSearchEngine(
            client, settings.session, pacing_s=settings.search_pacing_s
        )
        registry.register(search_tool(engine))

    logger.info(f"enabled tools: [{', '.join(registry.names())}]")
    return registry
