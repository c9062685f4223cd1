from __future__ import annotations
import re
from bs4 import BeautifulSoup
from markdownify import markdownify as md

from .interfaces import HtmlToMarkdownConverter


_NOISE_SELECTORS = [
    "script",
    "style",
    "noscript",
]


def _strip_noise(soup: BeautifulSoup) -> None:
    for sel in _NOISE_SELECTORS:
        for tag in soup.select(sel):
            tag.decompose()


def is_html(content_type: str | None) -> bool:
    return "text/html" in (content_type or "").lower()


def extract_text(html: str) -> str:
    """
    bodyのテキストだけ。空行は詰める。
    """
    soup = BeautifulSoup(html, "html.parser")
    _strip_noise(soup)
    root = soup.body or soup
    text = root.get_text()

    lines = [line.strip() for line in text.strip().split("\n")]
    return "\n".join(line for line in lines if line)


def extract_body(html: str) -> str:
    soup = BeautifulSoup(html, "html.parser")
    if soup.body is None:
        return html
    inner = soup.body.decode_contents()
    if not inner:
        # bodyタグがない/空なら元のまま
        return html
    return "<html>\n<body>\n" + inner + "\n</body>\n</html>"


class MarkdownifyConverter(HtmlToMarkdownConverter):
    def convert(self, html: str) -> str:
        soup = BeautifulSoup(html, "html.parser")
        _strip_noise(soup)
        return normalize_markdown(md(str(soup), heading_style="ATX"))


def wrap_code_block(content: str) -> str:
    # HTML以外はそのままコードブロックに入れる
    return "```\n" + content + "\n```"


def normalize_markdown(text: str) -> str:
    text = text.replace("\r\n", "\n")
    text = re.sub(r"[ \t]+\n", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()
