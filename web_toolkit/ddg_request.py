from __future__ import annotations
import random
from typing import Mapping

from .models import ContinuationToken, Region, SearchQuery

SEARCH_HTML_URL = "https://html.duckduckgo.com/html/"
SEARCH_REFERER = "https://html.duckduckgo.com/"

# 固定のUAプール（読み取り専用）。毎回同じUAだと弾かれやすい
USER_AGENTS: tuple[str, ...] = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:125.0) Gecko/20100101 Firefox/125.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.4 Safari/605.1.15",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/123.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Ubuntu; Linux x86_64; rv:124.0) Gecko/20100101 Firefox/124.0",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36 Edg/124.0.2478.51",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/91.0.4472.124",
)


def random_user_agent() -> str:
    return random.choice(USER_AGENTS)


def build_headers() -> dict[str, str]:
    return {
        "Referer": SEARCH_REFERER,
        "Sec-Fetch-Site": "same-origin",
        "Sec-Fetch-Dest": "document",
        "Sec-Fetch-Mode": "navigate",
        "Sec-Fetch-User": "?1",
        "Content-Type": "application/x-www-form-urlencoded",
        "User-Agent": random_user_agent(),
    }


def build_initial_body(query: SearchQuery, region: Region) -> dict[str, str]:
    """
    q: 検索語
    b: ページングのoffset（初回は空）
    kl: 地域コード（worldなら空）
    df: 期間フィルタ d/w/m/y（anyなら空）
    """
    region = Region(region)
    return {
        "q": query.text,
        "b": "",
        "kl": "" if region is Region.WORLD else region.value,
        "df": query.time_range.code,
    }


def build_continuation_body(token: Mapping[str, str]) -> ContinuationToken:
    # hidden inputをそのまま送り返す（何も足さない）
    return dict(token)
