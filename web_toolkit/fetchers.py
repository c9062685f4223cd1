from __future__ import annotations
import asyncio
import codecs
from dataclasses import dataclass
from typing import Optional

import httpx

from .extractor import (
    MarkdownifyConverter,
    extract_body,
    extract_text,
    is_html,
    wrap_code_block,
)
from .interfaces import ContentFetcher, HtmlToMarkdownConverter, PageFetcher
from .models import FetchFormat, FetchOutcome, FetchRequest, PageFetchResult
from .url_utils import (
    UrlSafetyError,
    UrlSafetyPolicy,
    has_http_scheme,
    validate_url_safe,
)

from logging import getLogger

logger = getLogger(__name__)

FETCH_USER_AGENT = "web-toolkit/1.0"


@dataclass(frozen=True)
class FetchPolicy:
    safety: UrlSafetyPolicy = UrlSafetyPolicy()
    default_timeout_s: float = 30.0
    max_timeout_s: float = 120.0
    # これ以上は読まずに切り捨てる（5MB）
    max_response_bytes: int = 5 * 1024 * 1024

    def effective_timeout(self, timeout_s: Optional[float]) -> float:
        if not timeout_s or timeout_s <= 0:
            return self.default_timeout_s
        return min(float(timeout_s), self.max_timeout_s)


class HttpxPageFetcher(PageFetcher):
    def __init__(
        self, client: httpx.AsyncClient, policy: FetchPolicy = FetchPolicy()
    ) -> None:
        self._client = client
        self._policy = policy

    async def fetch(self, url: str, timeout_s: float) -> PageFetchResult:
        await validate_url_safe(url, self._policy.safety)

        limit = self._policy.max_response_bytes
        async with self._client.stream(
            "GET",
            url,
            follow_redirects=True,
            timeout=timeout_s,
            headers={"User-Agent": FETCH_USER_AGENT},
        ) as r:
            content_type = r.headers.get("content-type")
            if r.status_code != 200:
                # 本文は読まずにステータスだけ返す
                return PageFetchResult(
                    requested_url=url,
                    final_url=str(r.url),
                    status_code=r.status_code,
                    content_type=content_type,
                    html="",
                )

            buf = bytearray()
            async for chunk in r.aiter_bytes():
                buf.extend(chunk)
                if len(buf) >= limit:
                    break
            truncated = len(buf) >= limit
            del buf[limit:]

        # UTF-8として読めないものは扱わない（UnicodeDecodeErrorは呼び出し側で拾う）
        # 切り捨てた場合は末尾の途中までのマルチバイトだけ落とす
        decoder = codecs.getincrementaldecoder("utf-8")()
        html = decoder.decode(bytes(buf), final=not truncated)
        return PageFetchResult(
            requested_url=url,
            final_url=str(r.url),
            status_code=r.status_code,
            content_type=content_type,
            html=html,
            is_truncated=truncated,
        )


class BrowserPageFetcher(PageFetcher):
    """
    Playwrightでレンダリング後HTMLを取得。
    依存が重いので render=True のときだけ使う。
    """

    def __init__(self, policy: FetchPolicy = FetchPolicy()) -> None:
        self._policy = policy

    async def fetch(self, url: str, timeout_s: float) -> PageFetchResult:
        await validate_url_safe(url, self._policy.safety)

        try:
            from playwright.async_api import Error as PlaywrightError
        except ImportError as e:
            raise RuntimeError("playwright is not installed or import failed") from e

        try:
            return await self._render(url, timeout_s)
        except PlaywrightError as e:
            raise RuntimeError(f"browser fetch failed: {e}") from e

    async def _render(self, url: str, timeout_s: float) -> PageFetchResult:
        from playwright.async_api import async_playwright

        async with async_playwright() as p:
            browser = await p.chromium.launch(headless=True)
            try:
                context = await browser.new_context()
                page = await context.new_page()

                # 画像/フォント/メディアは落とす
                await page.route(
                    "**/*",
                    lambda route, request: asyncio.create_task(
                        route.abort()
                        if request.resource_type in {"image", "media", "font"}
                        else route.continue_()
                    ),
                )

                resp = await page.goto(
                    url,
                    wait_until="domcontentloaded",
                    timeout=int(timeout_s * 1000),
                )
                html = await page.content()
                final_url = page.url
                status = resp.status if resp else 0
                content_type = None
                if resp:
                    headers = await resp.all_headers()
                    content_type = headers.get("content-type")
                await context.close()
            finally:
                await browser.close()

        return PageFetchResult(
            requested_url=url,
            final_url=final_url,
            status_code=status,
            content_type=content_type,
            html=html,
        )


def process_content(
    content: str,
    content_type: Optional[str],
    fmt: FetchFormat,
    converter: Optional[HtmlToMarkdownConverter] = None,
) -> str:
    html = is_html(content_type)
    if fmt is FetchFormat.TEXT:
        return extract_text(content) if html else content
    if fmt is FetchFormat.MARKDOWN:
        if not html:
            return wrap_code_block(content)
        return (converter or MarkdownifyConverter()).convert(content)
    if fmt is FetchFormat.HTML:
        return extract_body(content) if html else content
    return content


class WebFetcher(ContentFetcher):
    """
    fetchツール本体。失敗は例外ではなく error_message で返す。
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        policy: FetchPolicy = FetchPolicy(),
        *,
        http_fetcher: Optional[PageFetcher] = None,
        browser_fetcher: Optional[PageFetcher] = None,
        converter: Optional[HtmlToMarkdownConverter] = None,
    ) -> None:
        self._policy = policy
        self._http = http_fetcher or HttpxPageFetcher(client, policy)
        self._browser = browser_fetcher
        self._converter = converter or MarkdownifyConverter()

    async def fetch(self, req: FetchRequest) -> FetchOutcome:
        if not req.url:
            return FetchOutcome(error_message="URL is required")
        if not has_http_scheme(req.url):
            return FetchOutcome(error_message="URL must start with http:// or https://")

        try:
            fmt = FetchFormat((req.format or FetchFormat.TEXT.value).lower())
        except ValueError:
            return FetchOutcome(
                error_message="format must be one of: text, markdown, html, json"
            )

        timeout_s = self._policy.effective_timeout(req.timeout_s)
        fetcher = self._http
        if req.render:
            if self._browser is None:
                return FetchOutcome(error_message="browser rendering is not configured")
            fetcher = self._browser

        try:
            page = await fetcher.fetch(req.url, timeout_s)
        except UrlSafetyError as e:
            logger.warning(f"unsafe url {req.url}: {e}")
            return FetchOutcome(error_message=f"URL is not allowed: {e}")
        except UnicodeDecodeError:
            return FetchOutcome(error_message="response content is not valid UTF-8")
        except (httpx.HTTPError, httpx.InvalidURL, RuntimeError) as e:
            logger.warning(f"fetch failed {req.url}: {e!r}")
            return FetchOutcome(error_message=f"failed to fetch URL: {e}")

        content_type = page.content_type or ""
        if page.status_code != 200:
            return FetchOutcome(
                status_code=page.status_code,
                content_type=content_type,
                error_message=f"request failed with status code: {page.status_code}",
            )

        try:
            content = process_content(page.html, content_type, fmt, self._converter)
        except Exception as e:
            logger.error(f"content processing failed {req.url}: {e!r}")
            return FetchOutcome(
                status_code=page.status_code,
                content_type=content_type,
                error_message=f"failed to process content: {e}",
            )

        logger.info(f"fetched {page.final_url} ({fmt.value}, {len(content)} chars)")
        return FetchOutcome(
            content=content,
            status_code=page.status_code,
            content_type=content_type,
            is_truncated=page.is_truncated,
        )
