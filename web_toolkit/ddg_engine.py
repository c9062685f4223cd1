from __future__ import annotations
import asyncio
from enum import Enum
from typing import Awaitable, Callable, Mapping, Optional

import httpx

from .ddg_parser import DuckDuckGoHtmlParser
from .ddg_request import (
    SEARCH_HTML_URL,
    build_continuation_body,
    build_headers,
    build_initial_body,
)
from .errors import ErrorKind, HttpErrorClassifier, SearchError
from .interfaces import ResultsPageParser, SearchEngine
from .models import (
    MAX_QUERY_CHARS,
    ContinuationToken,
    ParsedPage,
    SearchOutcome,
    SearchQuery,
    SearchResult,
    SessionConfig,
)

from logging import getLogger

logger = getLogger(__name__)

# 速すぎると202（結果なし）が返るので、ページ間は固定で待つ
DEFAULT_PACING_S = 3.0

NO_RESULTS_MESSAGE = (
    "No results found for your query. "
    "Try using different keywords or broader search terms."
)


class DriverState(str, Enum):
    INIT = "init"
    REQUESTING = "requesting"
    PARSED = "parsed"
    DONE = "done"
    FAILED = "failed"


def validate_query(query: SearchQuery) -> Optional[SearchError]:
    if not query.text:
        return SearchError(ErrorKind.INVALID_QUERY)
    if len(query.text) > MAX_QUERY_CHARS:
        return SearchError(ErrorKind.QUERY_TOO_LONG)
    return None


class DuckDuckGoHtmlSearchEngine(SearchEngine):
    """
    DDG HTML版をフォームPOSTでページングしながらスクレイピング。

    1回の search() は逐次の状態遷移:
        INIT -> REQUESTING -> PARSED -> (REQUESTING | DONE | FAILED)
    - 次ページのリクエストは前ページのhidden inputに依存するので並列化しない
    - timeoutは1リクエストごと（ページング全体の時間は縛らない）
    - 途中のページで失敗したら、それまでの結果も含めて全部捨ててエラーを返す
    - 429/403などはリトライしない。呼び出し側が必要なら search() ごとやり直す

    httpx.AsyncClient（コネクションプール）は複数のsearch()で共有してよい。
    それ以外の可変状態はsearch()ごとのローカル変数にしか持たない。
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        config: SessionConfig = SessionConfig(),
        *,
        parser: Optional[ResultsPageParser] = None,
        classifier: Optional[HttpErrorClassifier] = None,
        pacing_s: float = DEFAULT_PACING_S,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        endpoint: str = SEARCH_HTML_URL,
    ) -> None:
        self._client = client
        self._cfg = config
        self._parser = parser or DuckDuckGoHtmlParser()
        self._classifier = classifier or HttpErrorClassifier()
        self._pacing_s = pacing_s
        self._sleep = sleep
        self._endpoint = endpoint

    @property
    def config(self) -> SessionConfig:
        return self._cfg

    async def search(
        self, query: SearchQuery, *, deadline_s: Optional[float] = None
    ) -> SearchOutcome:
        """
        例外は投げず、必ず SearchOutcome を返す（キャンセルだけはそのまま伝播）。
        deadline_s を超えたらネットワークエラー扱い。
        """
        if deadline_s is None:
            return await self._run(query)
        try:
            return await asyncio.wait_for(self._run(query), timeout=deadline_s)
        except asyncio.TimeoutError:
            err = SearchError(
                ErrorKind.NETWORK_ERROR, f"search deadline of {deadline_s}s exceeded"
            )
            logger.warning(f"search deadline exceeded: {query.text!r}")
            return self._failed(err)

    async def _run(self, query: SearchQuery) -> SearchOutcome:
        state = DriverState.INIT
        logger.debug(f"[{state.value}] query={query.text[:50]!r} range={query.time_range.value}")
        invalid = validate_query(query)
        if invalid is not None:
            logger.info(f"invalid query: {invalid.kind.value}")
            return SearchOutcome.failure(invalid.message)

        accumulated: list[SearchResult] = []
        body: ContinuationToken = build_initial_body(query, self._cfg.region)
        page_no = 0

        while True:
            state = DriverState.REQUESTING
            page_no += 1
            logger.debug(f"[{state.value}] page={page_no} fields={list(body)}")
            try:
                page = await self._request_page(body)
            except SearchError as e:
                state = DriverState.FAILED
                logger.warning(
                    f"[{state.value}] page={page_no} kind={e.kind.value}: {e}"
                )
                # 途中まで取れていても捨てる（全部かゼロか）
                return self._failed(e)

            state = DriverState.PARSED
            logger.debug(
                f"[{state.value}] page={page_no} results={len(page.results)} "
                f"last={page.is_last}"
            )

            if not page.results:
                break

            accumulated.extend(page.results)
            if len(accumulated) >= self._cfg.max_results:
                del accumulated[self._cfg.max_results :]
                break

            if page.is_last:
                break

            body = build_continuation_body(page.next_token)
            # キャンセルはここでも効く
            await self._sleep(self._pacing_s)

        state = DriverState.DONE
        logger.info(
            f"[{state.value}] {len(accumulated)} results in {page_no} page(s): {query.text!r}"
        )
        if not accumulated:
            return SearchOutcome.success(NO_RESULTS_MESSAGE)
        return SearchOutcome.success(
            f"Found {len(accumulated)} results successfully.", tuple(accumulated)
        )

    async def _request_page(self, body: Mapping[str, str]) -> ParsedPage:
        """
        1ページ分: POST -> ステータス判定 -> 本文読み込み -> パース。
        失敗はすべて SearchError にして投げる。
        """
        try:
            async with self._client.stream(
                "POST",
                self._endpoint,
                data=dict(body),
                headers=build_headers(),
                timeout=self._cfg.timeout_s,
            ) as r:
                status_err = self._classifier.status_error(r.status_code)
                if status_err is not None:
                    raise status_err
                try:
                    await r.aread()
                except httpx.HTTPError as e:
                    raise self._classifier.transport_error(e, during_read=True) from e
        except httpx.HTTPError as e:
            raise self._classifier.transport_error(e) from e

        # charsetはレスポンスヘッダに従う（なければutf-8）
        return self._parser.parse(r.text)

    def _failed(self, err: SearchError) -> SearchOutcome:
        if err.kind in (ErrorKind.INVALID_QUERY, ErrorKind.QUERY_TOO_LONG):
            return SearchOutcome.failure(err.message)
        return SearchOutcome.failure(
            f"search request failed: {err.message}. "
            "Please try again or rephrase your query"
        )
