from __future__ import annotations
import urllib.parse

from bs4 import BeautifulSoup
from bs4.builder import ParserRejectedMarkup

from .errors import ResponseFormatError
from .interfaces import ResultsPageParser
from .models import ContinuationToken, ParsedPage, SearchResult

from logging import getLogger

logger = getLogger(__name__)

# 広告/他エンジンのリダイレクトは結果として扱わない
SKIP_URL_PREFIXES: tuple[str, ...] = (
    "http://www.google.com/search?q=",
    "https://duckduckgo.com/y.js?ad_domain",
)

_DDG_REDIRECT_PREFIX = "//duckduckgo.com/l/?"


def unwrap_redirect(href: str) -> str:
    """
    //duckduckgo.com/l/?uddg=<encoded>&rut=... → 実URL
    """
    if not href.startswith(_DDG_REDIRECT_PREFIX):
        return href
    qs = urllib.parse.parse_qs(urllib.parse.urlsplit("https:" + href).query)
    target = qs.get("uddg")
    return target[0] if target and target[0] else href


class DuckDuckGoHtmlParser(ResultsPageParser):
    """
    html.duckduckgo.com の1ページ分を (結果, 次ページ用hidden input) に分解する。
    ※DDG側のHTML構造は変わり得るので、selectorはここに閉じ込める。
    """

    RESULT_SELECTOR = "div#links div.web-result"
    TITLE_SELECTOR = "h2.result__title > a"
    SNIPPET_SELECTOR = "a.result__snippet"
    NAV_SELECTOR = "div.nav-link"

    def parse(self, markup: str | bytes) -> ParsedPage:
        if not isinstance(markup, (str, bytes)):
            raise ResponseFormatError(f"unsupported markup type: {type(markup).__name__}")
        try:
            soup = BeautifulSoup(markup, "html.parser")
        except (ParserRejectedMarkup, AssertionError) as e:
            raise ResponseFormatError(str(e) or type(e).__name__) from e

        results: list[SearchResult] = []
        # 同一ページ内だけの重複除去（ページをまたいだ重複はそのまま）
        seen: set[str] = set()

        for entry in soup.select(self.RESULT_SELECTOR):
            link = entry.select_one(self.TITLE_SELECTOR)
            if link is None:
                continue

            href = (link.get("href") or "").strip()
            if not href:
                continue
            if href.startswith(SKIP_URL_PREFIXES):
                continue

            url = unwrap_redirect(href)
            if url in seen:
                continue

            title = link.get_text(strip=True)
            if not title:
                continue

            snippet = entry.select_one(self.SNIPPET_SELECTOR)
            summary = snippet.get_text(strip=True) if snippet is not None else ""
            if not summary:
                continue

            seen.add(url)
            results.append(SearchResult(title=title, url=url, summary=summary))

        logger.debug(f"parsed {len(results)} results")
        return ParsedPage(results=tuple(results), next_token=self._next_token(soup))

    def _next_token(self, soup: BeautifulSoup) -> ContinuationToken:
        # "Next" ボタンがなければ最終ページ
        if not soup.select(self.NAV_SELECTOR):
            return {}

        forms = soup.find_all("form")
        if not forms:
            return {}

        token: ContinuationToken = {}
        for inp in forms[-1].select("input[type=hidden]"):
            name = inp.get("name")
            value = inp.get("value")
            if name is not None and value is not None:
                token[name] = value
        return token
