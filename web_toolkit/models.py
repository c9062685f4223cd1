from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple


class TimeRange(str, Enum):
    ANY = "any"
    DAY = "d"
    WEEK = "w"
    MONTH = "m"
    YEAR = "y"

    @property
    def code(self) -> str:
        # DDGのdf相当（anyは空文字）
        return "" if self is TimeRange.ANY else self.value

    @classmethod
    def coerce(cls, value: Any) -> "TimeRange":
        """
        "d" / "day" / "DAY" どれでも受ける。知らない値と空はany。
        """
        if isinstance(value, TimeRange):
            return value
        key = str(value or "").strip().lower()
        key = _TIME_RANGE_ALIASES.get(key, key)
        try:
            return cls(key)
        except ValueError:
            return cls.ANY


_TIME_RANGE_ALIASES = {
    "": "any",
    "day": "d",
    "week": "w",
    "month": "m",
    "year": "y",
}


class Region(str, Enum):
    """
    DDGのkl相当。
    https://duckduckgo.com/duckduckgo-help-pages/settings/params/
    """

    WORLD = "wt-wt"
    US = "us-en"
    UK = "uk-en"
    DE = "de-de"
    FR = "fr-fr"
    JP = "jp-jp"
    CN = "cn-zh"
    RU = "ru-ru"


# 前ページのhidden input (name -> value) をそのまま次ページに送り返すだけ。
# DDG側のフォーム構成は変わり得るので固定の型にはしない。空 = 次ページなし
ContinuationToken = Dict[str, str]

MAX_QUERY_CHARS = 500
DEFAULT_MAX_RESULTS = 10
DEFAULT_TIMEOUT_S = 30.0


@dataclass(frozen=True)
class SearchQuery:
    text: str
    time_range: TimeRange = TimeRange.ANY

    def __post_init__(self) -> None:
        # "" や未知の値は any 扱い
        object.__setattr__(self, "time_range", TimeRange.coerce(self.time_range))


@dataclass(frozen=True)
class SessionConfig:
    region: Region = Region.WORLD
    max_results: int = DEFAULT_MAX_RESULTS
    # 1リクエストあたりのtimeout（ページング全体ではない）
    timeout_s: float = DEFAULT_TIMEOUT_S

    def __post_init__(self) -> None:
        if self.max_results <= 0:
            object.__setattr__(self, "max_results", DEFAULT_MAX_RESULTS)
        if self.timeout_s <= 0:
            object.__setattr__(self, "timeout_s", DEFAULT_TIMEOUT_S)
        object.__setattr__(self, "region", Region(self.region))


@dataclass(frozen=True)
class SearchResult:
    title: str
    url: str
    summary: str = ""

    def to_dict(self) -> dict[str, str]:
        return {"title": self.title, "url": self.url, "summary": self.summary}


@dataclass(frozen=True)
class ParsedPage:
    results: Tuple[SearchResult, ...] = ()
    next_token: ContinuationToken = field(default_factory=dict)

    @property
    def is_last(self) -> bool:
        return not self.next_token


@dataclass(frozen=True)
class SearchOutcome:
    """
    message + results か error_message のどちらか一方だけを持つ。
    """

    message: str = ""
    results: Tuple[SearchResult, ...] = ()
    error_message: str = ""

    @classmethod
    def success(cls, message: str, results: Tuple[SearchResult, ...] = ()) -> "SearchOutcome":
        return cls(message=message, results=tuple(results))

    @classmethod
    def failure(cls, error_message: str) -> "SearchOutcome":
        return cls(error_message=error_message)

    @property
    def is_error(self) -> bool:
        return bool(self.error_message)

    def to_dict(self) -> dict[str, Any]:
        # 空フィールドは出さない
        if self.error_message:
            return {"error_message": self.error_message}
        out: dict[str, Any] = {"message": self.message}
        if self.results:
            out["results"] = [r.to_dict() for r in self.results]
        return out


class FetchFormat(str, Enum):
    TEXT = "text"
    MARKDOWN = "markdown"
    HTML = "html"
    JSON = "json"


@dataclass(frozen=True)
class FetchRequest:
    url: str
    format: str = FetchFormat.TEXT.value
    timeout_s: Optional[float] = None
    # Playwrightでレンダリングしてから処理する
    render: bool = False


@dataclass(frozen=True)
class PageFetchResult:
    requested_url: str
    final_url: str
    status_code: int
    content_type: Optional[str]
    html: str
    is_truncated: bool = False


@dataclass(frozen=True)
class FetchOutcome:
    content: str = ""
    status_code: int = 0
    content_type: str = ""
    is_truncated: bool = False
    error_message: str = ""

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"content": self.content}
        if self.status_code:
            out["status_code"] = self.status_code
        if self.content_type:
            out["content_type"] = self.content_type
        if self.is_truncated:
            out["is_truncated"] = True
        if self.error_message:
            out["error_message"] = self.error_message
        return out
