import asyncio
import urllib.parse

import httpx
import pytest

from web_toolkit.ddg_engine import DuckDuckGoHtmlSearchEngine
from web_toolkit.ddg_request import SEARCH_HTML_URL
from web_toolkit.errors import ResponseFormatError
from web_toolkit.models import ParsedPage, Region, SearchQuery, SessionConfig, TimeRange

from conftest import make_ddg_page


class FakeSleep:
    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class FakeDdg:
    """
    リクエストを記録して、用意したレスポンスを順番に返す。
    """

    def __init__(self, responses) -> None:
        self._responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        r = self._responses[len(self.requests) - 1]
        if isinstance(r, Exception):
            raise r
        if isinstance(r, httpx.Response):
            return r
        return httpx.Response(200, text=r)

    def bodies(self) -> list[list[tuple[str, str]]]:
        return [
            urllib.parse.parse_qsl(req.content.decode(), keep_blank_values=True)
            for req in self.requests
        ]


def _entries(prefix: str, n: int):
    return [(f"{prefix} {i}", f"https://{prefix}.example/{i}", f"snippet {i}") for i in range(n)]


def _engine(fake: FakeDdg, sleep: FakeSleep, **cfg) -> DuckDuckGoHtmlSearchEngine:
    client = httpx.AsyncClient(transport=httpx.MockTransport(fake))
    return DuckDuckGoHtmlSearchEngine(client, SessionConfig(**cfg), sleep=sleep)


@pytest.mark.asyncio
async def test_empty_query_sends_nothing():
    fake, sleep = FakeDdg([]), FakeSleep()
    out = await _engine(fake, sleep).search(SearchQuery(""))
    assert "query is required" in out.error_message
    assert out.results == ()
    assert fake.requests == []


@pytest.mark.asyncio
async def test_too_long_query_sends_nothing():
    fake, sleep = FakeDdg([]), FakeSleep()
    out = await _engine(fake, sleep).search(SearchQuery("a" * 501))
    assert "too long" in out.error_message
    assert out.results == ()
    assert fake.requests == []


@pytest.mark.asyncio
async def test_500_chars_is_accepted():
    fake, sleep = FakeDdg([make_ddg_page([])]), FakeSleep()
    out = await _engine(fake, sleep).search(SearchQuery("a" * 500))
    assert not out.is_error
    assert len(fake.requests) == 1


@pytest.mark.asyncio
async def test_first_request_shape():
    fake, sleep = FakeDdg([make_ddg_page(_entries("a", 1))]), FakeSleep()
    engine = _engine(fake, sleep, region=Region.DE)
    await engine.search(SearchQuery("golang", TimeRange.MONTH))

    req = fake.requests[0]
    assert req.method == "POST"
    assert str(req.url) == SEARCH_HTML_URL
    assert req.headers["Content-Type"] == "application/x-www-form-urlencoded"
    assert req.headers["Sec-Fetch-Mode"] == "navigate"
    assert req.headers["Referer"] == "https://html.duckduckgo.com/"
    assert fake.bodies()[0] == [("q", "golang"), ("b", ""), ("kl", "de-de"), ("df", "m")]


@pytest.mark.asyncio
async def test_no_results_is_success():
    fake, sleep = FakeDdg([make_ddg_page([])]), FakeSleep()
    out = await _engine(fake, sleep).search(SearchQuery("nothing"))
    assert not out.is_error
    assert "No results" in out.message
    assert out.results == ()
    assert out.to_dict() == {"message": out.message}


@pytest.mark.asyncio
async def test_paginates_with_hidden_fields_and_pacing():
    token = [("q", "golang"), ("s", "3"), ("nextParams", ""), ("v", "l"), ("vqd", "4-9")]
    fake = FakeDdg(
        [
            make_ddg_page(_entries("p1", 3), next_fields=token),
            make_ddg_page(_entries("p2", 2)),
        ]
    )
    sleep = FakeSleep()
    out = await _engine(fake, sleep, max_results=10).search(SearchQuery("golang"))

    assert out.message == "Found 5 results successfully."
    assert [r.url for r in out.results][:3] == [f"https://p1.example/{i}" for i in range(3)]
    assert [r.url for r in out.results][3:] == [f"https://p2.example/{i}" for i in range(2)]
    # 2ページ目はhidden inputそのまま（何も足さない）
    assert fake.bodies()[1] == token
    # 待つのはページ間だけ
    assert sleep.calls == [3.0]


@pytest.mark.asyncio
async def test_truncates_to_max_results_and_stops():
    fake = FakeDdg(
        [
            make_ddg_page(_entries("p1", 4), next_fields=[("s", "4")]),
            make_ddg_page(_entries("p2", 4), next_fields=[("s", "8")]),
        ]
    )
    sleep = FakeSleep()
    out = await _engine(fake, sleep, max_results=6).search(SearchQuery("q"))
    assert len(out.results) == 6
    assert len(fake.requests) == 2
    assert sleep.calls == [3.0]


@pytest.mark.asyncio
async def test_empty_token_stops_without_another_request():
    fake = FakeDdg([make_ddg_page(_entries("p1", 2))])
    sleep = FakeSleep()
    out = await _engine(fake, sleep).search(SearchQuery("q"))
    assert len(out.results) == 2
    assert len(fake.requests) == 1
    assert sleep.calls == []


@pytest.mark.asyncio
async def test_empty_page_after_results_keeps_results():
    fake = FakeDdg(
        [
            make_ddg_page(_entries("p1", 2), next_fields=[("s", "2")]),
            make_ddg_page([], next_fields=[("s", "4")]),
        ]
    )
    out = await _engine(fake, FakeSleep()).search(SearchQuery("q"))
    assert len(out.results) == 2
    assert len(fake.requests) == 2


@pytest.mark.asyncio
async def test_cross_page_duplicates_are_kept():
    dup = [("same", "https://dup.example/", "s")]
    fake = FakeDdg(
        [
            make_ddg_page(dup + _entries("a", 1), next_fields=[("s", "2")]),
            make_ddg_page(dup),
        ]
    )
    out = await _engine(fake, FakeSleep()).search(SearchQuery("q"))
    urls = [r.url for r in out.results]
    assert urls.count("https://dup.example/") == 2


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status,contains",
    [
        (429, "rate limit"),
        (403, "forbidden"),
        (403, "blocked"),
        (500, "status 500"),
        (202, "status 202"),
    ],
)
async def test_status_errors(status, contains):
    fake = FakeDdg([httpx.Response(status, text=make_ddg_page(_entries("a", 2)))])
    out = await _engine(fake, FakeSleep()).search(SearchQuery("q"))
    assert out.is_error
    assert contains in out.error_message
    assert out.results == ()
    assert out.to_dict() == {"error_message": out.error_message}


@pytest.mark.asyncio
async def test_network_error():
    fake = FakeDdg([httpx.ConnectError("connection refused")])
    out = await _engine(fake, FakeSleep()).search(SearchQuery("q"))
    assert "network error" in out.error_message
    assert "connection refused" in out.error_message


@pytest.mark.asyncio
async def test_timeout_is_network_error():
    fake = FakeDdg([httpx.ReadTimeout("timed out")])
    out = await _engine(fake, FakeSleep()).search(SearchQuery("q"))
    assert "network error" in out.error_message


class _BrokenStream(httpx.AsyncByteStream):
    async def __aiter__(self):
        raise httpx.ReadError("connection reset")
        yield b""  # pragma: no cover


@pytest.mark.asyncio
async def test_body_read_failure():
    fake = FakeDdg([httpx.Response(200, stream=_BrokenStream())])
    out = await _engine(fake, FakeSleep()).search(SearchQuery("q"))
    assert "failed to read search results" in out.error_message


@pytest.mark.asyncio
async def test_failure_on_second_page_discards_everything():
    fake = FakeDdg(
        [
            make_ddg_page(_entries("p1", 3), next_fields=[("s", "3")]),
            httpx.Response(429),
        ]
    )
    out = await _engine(fake, FakeSleep()).search(SearchQuery("q"))
    assert out.is_error
    assert "rate limit" in out.error_message
    assert out.results == ()
    assert out.message == ""


class _BrokenParser:
    def parse(self, markup):
        raise ResponseFormatError("unreadable")


@pytest.mark.asyncio
async def test_parser_failure_is_error():
    fake = FakeDdg(["<html></html>"])
    client = httpx.AsyncClient(transport=httpx.MockTransport(fake))
    engine = DuckDuckGoHtmlSearchEngine(client, parser=_BrokenParser(), sleep=FakeSleep())
    out = await engine.search(SearchQuery("q"))
    assert "failed to parse search results: unreadable" in out.error_message


@pytest.mark.asyncio
async def test_results_never_exceed_max_and_have_title_and_url():
    pages = [
        make_ddg_page(_entries(f"p{i}", 3), next_fields=[("s", str(i))]) for i in range(5)
    ]
    out = await _engine(FakeDdg(pages), FakeSleep(), max_results=7).search(SearchQuery("q"))
    assert len(out.results) == 7
    assert all(r.title and r.url for r in out.results)


@pytest.mark.asyncio
async def test_cancelled_during_pacing_delay():
    first_page_served = asyncio.Event()

    def handler(request: httpx.Request) -> httpx.Response:
        first_page_served.set()
        return httpx.Response(
            200, text=make_ddg_page(_entries("p1", 1), next_fields=[("s", "1")])
        )

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    engine = DuckDuckGoHtmlSearchEngine(client, pacing_s=30.0)

    task = asyncio.create_task(engine.search(SearchQuery("q")))
    await asyncio.wait_for(first_page_served.wait(), timeout=1.0)
    await asyncio.sleep(0.05)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task


@pytest.mark.asyncio
async def test_cancelled_while_request_in_flight():
    requests: list[httpx.Request] = []
    in_flight = asyncio.Event()
    never = asyncio.Event()

    async def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        in_flight.set()
        await never.wait()
        return httpx.Response(200, text=make_ddg_page([]))

    sleep = FakeSleep()
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    engine = DuckDuckGoHtmlSearchEngine(client, sleep=sleep)

    task = asyncio.create_task(engine.search(SearchQuery("q")))
    await asyncio.wait_for(in_flight.wait(), timeout=1.0)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert len(requests) == 1
    assert sleep.calls == []

@pytest.mark.asyncio
async def test_deadline_exceeded_is_error_outcome():
    fake = FakeDdg(
        [make_ddg_page(_entries("p1", 1), next_fields=[("s", "1")]), make_ddg_page([])]
    )
    client = httpx.AsyncClient(transport=httpx.MockTransport(fake))
    engine = DuckDuckGoHtmlSearchEngine(client, pacing_s=30.0)
    out = await engine.search(SearchQuery("q"), deadline_s=0.1)
    assert "deadline" in out.error_message
    assert out.results == ()
    assert len(fake.requests) == 1


@pytest.mark.asyncio
async def test_concurrent_searches_share_client():
    def handler(request: httpx.Request) -> httpx.Response:
        q = dict(urllib.parse.parse_qsl(request.content.decode(), keep_blank_values=True))["q"]
        return httpx.Response(200, text=make_ddg_page(_entries(q, 2)))

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    engine = DuckDuckGoHtmlSearchEngine(client, sleep=FakeSleep())
    a, b = await asyncio.gather(
        engine.search(SearchQuery("alpha")), engine.search(SearchQuery("beta"))
    )
    assert {r.url.split("/")[2] for r in a.results} == {"alpha.example"}
    assert {r.url.split("/")[2] for r in b.results} == {"beta.example"}


def test_parsed_page_is_last():
    assert ParsedPage().is_last
    assert not ParsedPage(next_token={"s": "1"}).is_last
