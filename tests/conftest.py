import html
from typing import Iterable, Optional, Sequence, Tuple

import pytest


def make_ddg_page(
    entries: Iterable[Tuple[str, str, Optional[str]]],
    next_fields: Optional[Sequence[Tuple[str, str]]] = None,
) -> str:
    """
    html.duckduckgo.com っぽい1ページ。
    entries: (title, href, snippet) / snippet=None ならsnippet要素なし
    next_fields: Nextボタンのフォームに入れる hidden input（None なら最終ページ）
    """
    items = []
    for title, href, snippet in entries:
        snippet_html = (
            f'<a class="result__snippet" href="{html.escape(href)}">{html.escape(snippet)}</a>'
            if snippet is not None
            else ""
        )
        items.append(
            '<div class="result results_links results_links_deep web-result">'
            '<div class="links_main links_deep result__body">'
            f'<h2 class="result__title"><a rel="nofollow" class="result__a" href="{html.escape(href)}">{html.escape(title)}</a></h2>'
            f"{snippet_html}"
            "</div></div>"
        )

    nav = ""
    if next_fields is not None:
        hidden = "".join(
            f'<input type="hidden" name="{html.escape(k)}" value="{html.escape(v)}">'
            for k, v in next_fields
        )
        nav = (
            '<div class="nav-link"><form action="/html/" method="post">'
            '<input type="submit" class="btn btn--alt" value="Next">'
            f"{hidden}</form></div>"
        )

    return (
        "<html><head><title>DuckDuckGo</title></head><body>"
        '<form id="search_form" action="/html/" method="post">'
        '<input type="text" name="q" value="query">'
        '<input type="hidden" name="kl" value="">'
        "</form>"
        f'<div id="links" class="results">{"".join(items)}{nav}</div>'
        "</body></html>"
    )


@pytest.fixture
def ddg_page():
    return make_ddg_page
