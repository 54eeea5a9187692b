"""
Block fetcher: neardata HTTP API with retry/backoff and tip discovery.

Every fetch outcome is one of: block data, no data (None), or a raised
transport error. "No data" covers non-200 statuses, unparsable bodies, a
JSON null body and bodies with an "error" field: the upstream API answers
rate-limited and not-yet-available blocks the same way, so they are not
told apart.
"""

from __future__ import annotations

import asyncio
import json
from typing import Any, Awaitable, Callable

import httpx

from whisper_indexer.indexer_logging import get_logger

logger = get_logger(__name__)

Sleep = Callable[[float], Awaitable[Any]]


class BlockFetcher:
    """
    Async accessor for GET {base}/block/{height} and GET {base}/last_block/final.

    Holds the last known chain tip; fetch_latest_block_height() falls back to
    it on any failure. Use as an async context manager or call aclose().
    """

    def __init__(
        self,
        base_url: str,
        *,
        client: httpx.AsyncClient | None = None,
        max_retries: int = 3,
        retry_base_sec: float = 1.0,
        request_timeout_sec: float = 30.0,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        """
        Args:
            base_url: API base, e.g. https://mainnet.neardata.xyz/v0.
            client: Optional pre-built client (tests pass one with a MockTransport).
            max_retries: Max attempts per fetch_block_with_retry call.
            retry_base_sec: Backoff before retry i is retry_base_sec * 2**i.
            request_timeout_sec: HTTP timeout when the client is created here.
            sleep: Awaitable sleep, injectable for tests.
        """
        if not base_url.strip():
            raise ValueError("base_url must be non-empty")
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        self._base_url = base_url.rstrip("/")
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(request_timeout_sec)
        )
        self._max_retries = max_retries
        self._retry_base_sec = retry_base_sec
        self._sleep = sleep
        self._latest_known_height = 0

    @property
    def latest_known_height(self) -> int:
        return self._latest_known_height

    @property
    def max_retries(self) -> int:
        return self._max_retries

    def backoff_delay(self, attempt: int) -> float:
        """Delay after failed attempt number `attempt` (0-based)."""
        return self._retry_base_sec * (2 ** attempt)

    async def __aenter__(self) -> "BlockFetcher":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _get_json(self, path: str) -> Any:
        """GET base/path; return the decoded body, or None for any no-data shape."""
        resp = await self._client.get(f"{self._base_url}/{path}")
        if resp.status_code != 200:
            logger.debug("fetch_non_200", path=path, status=resp.status_code)
            return None
        text = resp.text
        if not text or len(text) < 2:
            return None
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            logger.debug("fetch_unparsable_body", path=path)
            return None
        if isinstance(data, dict) and data.get("error"):
            # Rate limiting comes back as a 200 with an "error" field
            logger.debug("fetch_error_body", path=path, error=str(data["error"])[:200])
            return None
        return data

    async def fetch_block(self, height: int) -> dict[str, Any] | None:
        """
        Single request for the block at height.

        Returns the block JSON, or None when no data is available.

        Raises:
            httpx.HTTPError: transport failure (connect, timeout, ...).
        """
        data = await self._get_json(f"block/{height}")
        if not isinstance(data, dict):
            return None
        return data

    async def fetch_block_with_retry(self, height: int) -> dict[str, Any] | None:
        """
        Call fetch_block up to max_retries times with exponential backoff.

        Returns the block JSON, or None if every attempt produced no data
        (the caller treats that as a skippable block).

        Raises:
            httpx.HTTPError: the final attempt raised.
        """
        for attempt in range(self._max_retries):
            last_attempt = attempt == self._max_retries - 1
            try:
                result = await self.fetch_block(height)
            except httpx.HTTPError as e:
                if last_attempt:
                    raise
                logger.warning(
                    "fetch_block_retry",
                    block_height=height,
                    attempt=attempt + 1,
                    max_retries=self._max_retries,
                    error=str(e),
                )
                await self._sleep(self.backoff_delay(attempt))
                continue
            if result is not None:
                return result
            if not last_attempt:
                await self._sleep(self.backoff_delay(attempt))
        return None

    async def fetch_latest_block_height(self) -> int:
        """
        Best-effort chain tip. Never raises: on any failure returns the last
        known tip (0 before the first success).
        """
        try:
            data = await self._get_json("last_block/final")
            height = data["block"]["header"]["height"]
            if not isinstance(height, int) or isinstance(height, bool):
                raise TypeError(f"tip height is not an integer: {height!r}")
        except Exception as e:
            logger.debug(
                "tip_refresh_failed",
                error=str(e),
                cached_tip=self._latest_known_height,
            )
            return self._latest_known_height
        self._latest_known_height = height
        return height
