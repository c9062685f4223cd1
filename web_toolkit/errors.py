from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    INVALID_QUERY = "invalid_query"
    QUERY_TOO_LONG = "query_too_long"
    NETWORK_ERROR = "network_error"
    RATE_LIMITED = "rate_limited"
    BLOCKED = "blocked"
    UPSTREAM_ERROR = "upstream_error"
    RESPONSE_FORMAT_ERROR = "response_format_error"


def describe(
    kind: ErrorKind,
    detail: str = "",
    status_code: Optional[int] = None,
    *,
    during_read: bool = False,
) -> str:
    if kind is ErrorKind.INVALID_QUERY:
        return "search query is required, please provide a query string"
    if kind is ErrorKind.QUERY_TOO_LONG:
        return "search query is too long (max 500 characters), please shorten your query"
    if kind is ErrorKind.RATE_LIMITED:
        return "rate limit exceeded (status 429), please wait a moment and try again"
    if kind is ErrorKind.BLOCKED:
        return "access forbidden (status 403), the search service may have blocked requests"
    if kind is ErrorKind.UPSTREAM_ERROR:
        return f"search service returned status {status_code}, please try again later"
    if kind is ErrorKind.RESPONSE_FORMAT_ERROR:
        return f"failed to parse search results: {detail}"
    if during_read:
        return f"failed to read search results: {detail}"
    return f"network error, please check your connection: {detail}"


class SearchError(RuntimeError):
    """
    検索1回分の失敗。呼び出し側には例外ではなく error_message として返す。
    """

    def __init__(
        self,
        kind: ErrorKind,
        detail: str = "",
        status_code: Optional[int] = None,
        *,
        during_read: bool = False,
    ) -> None:
        self.kind = kind
        self.detail = detail
        self.status_code = status_code
        super().__init__(describe(kind, detail, status_code, during_read=during_read))

    @property
    def message(self) -> str:
        return str(self)


class ResponseFormatError(SearchError):
    def __init__(self, detail: str = "") -> None:
        super().__init__(ErrorKind.RESPONSE_FORMAT_ERROR, detail)


@dataclass(frozen=True)
class ClassifierConfig:
    # 速すぎると202が返る（結果なし）ので、200だけを成功とみなす
    success_status: int = 200


class HttpErrorClassifier:
    """
    HTTP段階の結果（ステータス/例外）を ErrorKind に落とすだけ（ルールベース）。
    - 429 はレート制限
    - 403 はブロック
    - それ以外の非200 はupstreamエラー（ステータスコード付き）
    リトライはしない。種類によって呼び出し側へのメッセージが変わるだけ。
    """

    def __init__(self, cfg: ClassifierConfig = ClassifierConfig()) -> None:
        self._cfg = cfg

    def classify_status(self, status_code: int) -> Optional[ErrorKind]:
        """
        問題なければ None。
        """
        if status_code == self._cfg.success_status:
            return None
        if status_code == 429:
            return ErrorKind.RATE_LIMITED
        if status_code == 403:
            return ErrorKind.BLOCKED
        return ErrorKind.UPSTREAM_ERROR

    def classify_exception(self, exc: BaseException) -> ErrorKind:
        if isinstance(exc, SearchError):
            return exc.kind
        # 接続/DNS/timeout/proxy/本文読み込み失敗 はすべてネットワーク扱い
        return ErrorKind.NETWORK_ERROR

    def status_error(self, status_code: int) -> Optional[SearchError]:
        kind = self.classify_status(status_code)
        if kind is None:
            return None
        return SearchError(kind, status_code=status_code)

    def transport_error(
        self, exc: BaseException, *, during_read: bool = False
    ) -> SearchError:
        if isinstance(exc, SearchError):
            return exc
        return SearchError(
            self.classify_exception(exc),
            str(exc) or type(exc).__name__,
            during_read=during_read,
        )
