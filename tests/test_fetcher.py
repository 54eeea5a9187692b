"""
Tests for BlockFetcher: outcome classification, retry/backoff, tip discovery.

HTTP is served by httpx.MockTransport; sleeps are recorded instead of awaited.
"""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from conftest import make_block
from whisper_indexer.near_listener.fetcher import BlockFetcher

BASE = "https://neardata.test/v0"


class Recorder:
    def __init__(self) -> None:
        self.sleeps: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.sleeps.append(seconds)


def _fetcher(handler, *, max_retries: int = 3, retry_base_sec: float = 1.0):
    sleep = Recorder()
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    fetcher = BlockFetcher(
        BASE,
        client=client,
        max_retries=max_retries,
        retry_base_sec=retry_base_sec,
        sleep=sleep,
    )
    return fetcher, sleep, client


def _run(coro):
    return asyncio.run(coro)


def test_fetch_block_returns_block_json():
    block = make_block(42)

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v0/block/42"
        return httpx.Response(200, json=block)

    fetcher, _, _ = _fetcher(handler)
    assert _run(fetcher.fetch_block(42)) == block


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(404, text="not found"),
        httpx.Response(429, json={"error": "rate limited"}),
        httpx.Response(500, text=""),
        httpx.Response(200, text=""),
        httpx.Response(200, text="null"),
        httpx.Response(200, text="<html>oops"),
        httpx.Response(200, json={"error": "Rate limit exceeded"}),
        httpx.Response(200, json=[1, 2, 3]),
    ],
)
def test_no_data_shapes_are_none(response):
    fetcher, _, _ = _fetcher(lambda request: response)
    assert _run(fetcher.fetch_block(1)) is None


def test_retry_bound_and_exponential_backoff():
    calls = []

    def handler(request):
        calls.append(request.url.path)
        return httpx.Response(200, json={"error": "rate limited"})

    fetcher, sleep, _ = _fetcher(handler, max_retries=3, retry_base_sec=0.5)
    assert _run(fetcher.fetch_block_with_retry(7)) is None
    assert len(calls) == 3
    # base * 2**attempt between attempts, nothing after the last one
    assert sleep.sleeps == [0.5, 1.0]


def test_retry_returns_first_data():
    responses = iter([httpx.Response(503), httpx.Response(200, json=make_block(7))])
    fetcher, sleep, _ = _fetcher(lambda request: next(responses))
    result = _run(fetcher.fetch_block_with_retry(7))
    assert result["block"]["header"]["height"] == 7
    assert sleep.sleeps == [1.0]


def test_transport_error_is_retried_then_raised():
    calls = []

    def handler(request):
        calls.append(1)
        raise httpx.ConnectError("connection refused", request=request)

    fetcher, sleep, _ = _fetcher(handler, max_retries=4, retry_base_sec=1.0)
    with pytest.raises(httpx.ConnectError):
        _run(fetcher.fetch_block_with_retry(9))
    assert len(calls) == 4
    assert sleep.sleeps == [1.0, 2.0, 4.0]


def test_transport_error_then_success():
    state = {"n": 0}

    def handler(request):
        state["n"] += 1
        if state["n"] == 1:
            raise httpx.ReadTimeout("timed out", request=request)
        return httpx.Response(200, json=make_block(9))

    fetcher, sleep, _ = _fetcher(handler)
    assert _run(fetcher.fetch_block_with_retry(9)) is not None
    assert sleep.sleeps == [1.0]


def test_latest_block_height_caches_and_falls_back():
    responses = iter(
        [
            httpx.Response(200, json={"block": {"header": {"height": 500}}}),
            httpx.Response(200, json={"error": "rate limited"}),
            httpx.Response(502),
            httpx.Response(200, text="{bad"),
            httpx.Response(200, json={"block": None}),
        ]
    )
    fetcher, _, _ = _fetcher(lambda request: next(responses))

    async def scenario():
        heights = [await fetcher.fetch_latest_block_height() for _ in range(5)]
        return heights

    assert _run(scenario()) == [500, 500, 500, 500, 500]
    assert fetcher.latest_known_height == 500


def test_latest_block_height_never_raises():
    def handler(request):
        raise httpx.ConnectError("down", request=request)

    fetcher, _, _ = _fetcher(handler)
    assert _run(fetcher.fetch_latest_block_height()) == 0


def test_latest_block_path():
    seen = []

    def handler(request):
        seen.append(request.url.path)
        return httpx.Response(200, text=json.dumps({"block": {"header": {"height": 1}}}))

    fetcher, _, _ = _fetcher(handler)
    _run(fetcher.fetch_latest_block_height())
    assert seen == ["/v0/last_block/final"]


def test_constructor_validation():
    with pytest.raises(ValueError):
        BlockFetcher("")
    with pytest.raises(ValueError):
        BlockFetcher(BASE, client=httpx.AsyncClient(), max_retries=0)
