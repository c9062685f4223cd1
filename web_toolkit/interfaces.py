from __future__ import annotations
from typing import Protocol
from .models import (
    FetchOutcome,
    FetchRequest,
    PageFetchResult,
    ParsedPage,
    SearchOutcome,
    SearchQuery,
)


class SearchEngine(Protocol):
    async def search(self, query: SearchQuery) -> SearchOutcome: ...


class ResultsPageParser(Protocol):
    def parse(self, markup: str | bytes) -> ParsedPage:
        """raise ResponseFormatError if markup cannot be traversed"""
        ...


class PageFetcher(Protocol):
    async def fetch(self, url: str, timeout_s: float) -> PageFetchResult: ...


class ContentFetcher(Protocol):
    async def fetch(self, req: FetchRequest) -> FetchOutcome: ...


class HtmlToMarkdownConverter(Protocol):
    def convert(self, html: str) -> str: ...

