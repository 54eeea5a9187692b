"""
Block poller: drives the indexing loop.

Resolves a start height (checkpoint + 1, else configured START_BLOCK, else
the current tip), then processes heights strictly in increasing order:
fetch, parse and store, advance the checkpoint, sleep. The sleep adapts to
the distance from the cached tip: short while catching up, rate-limit
friendly near the tip, idle at the tip.

stop() only sets a flag that is read at the top of each iteration, so a
fetch, parse, save or backoff already in progress always finishes first.
A block whose fetch, parse or checkpoint write raises is retried at the same height after a fixed
delay; the checkpoint does not advance past it.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Protocol

from whisper_indexer.indexer_logging import get_logger

logger = get_logger(__name__)

PROGRESS_LOG_EVERY = 1000


class PollerState(str, Enum):
    STOPPED = "stopped"
    AT_TIP = "at_tip"
    FETCHING = "fetching"
    BACKOFF = "backoff"


class BlockSource(Protocol):
    async def fetch_block_with_retry(self, height: int) -> dict[str, Any] | None: ...

    async def fetch_latest_block_height(self) -> int: ...


class CheckpointStore(Protocol):
    def get_checkpoint(self) -> int | None: ...

    def set_checkpoint(self, height: int) -> None: ...


@dataclass
class PollerConfig:
    """Loop timing and start-height settings."""

    poll_interval_sec: float = 0.35
    catchup_interval_sec: float = 0.05
    idle_interval_sec: float = 1.0
    catchup_threshold: int = 100
    tip_refresh_every: int = 200
    error_delay_sec: float = 5.0
    start_height: int | None = None
    """Used only when no checkpoint is stored."""

    @classmethod
    def from_settings(cls, settings: Any) -> "PollerConfig":
        return cls(
            poll_interval_sec=settings.poll_interval_sec,
            catchup_interval_sec=settings.catchup_interval_sec,
            idle_interval_sec=settings.idle_interval_sec,
            catchup_threshold=settings.catchup_threshold,
            tip_refresh_every=settings.tip_refresh_every,
            error_delay_sec=settings.error_delay_sec,
            start_height=settings.start_block,
        )


@dataclass
class IndexerStats:
    total_events: int = 0
    blocks_processed: int = 0
    skipped_blocks: int = 0
    failed_attempts: int = 0


class BlockPoller:
    """Single-task indexing loop; one instance owns its running flag and cached tip."""

    def __init__(
        self,
        fetcher: BlockSource,
        parse: Callable[[dict[str, Any]], int],
        checkpoints: CheckpointStore,
        config: PollerConfig | None = None,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """
        Args:
            fetcher: BlockFetcher (or anything with the same two coroutines).
            parse: Callable storing the events of one block JSON; returns the event count.
            checkpoints: get_checkpoint / set_checkpoint store (Database).
            config: Loop timing; defaults match the upstream 180 req/min limit.
            sleep: Awaitable sleep, injectable for tests.
        """
        self._fetcher = fetcher
        self._parse = parse
        self._checkpoints = checkpoints
        self._config = config or PollerConfig()
        self._sleep = sleep
        self._running = False
        self._cached_tip = 0
        self._current_height: int | None = None
        self.state = PollerState.STOPPED
        self.stats = IndexerStats()

    @property
    def running(self) -> bool:
        return self._running

    @property
    def cached_tip(self) -> int:
        return self._cached_tip

    @property
    def current_height(self) -> int | None:
        """Next height to process; None before start."""
        return self._current_height

    def compute_sleep(self, current_height: int) -> float:
        """Interval before the next iteration given the next height to process."""
        if current_height > self._cached_tip:
            return self._config.idle_interval_sec
        if self._cached_tip - current_height > self._config.catchup_threshold:
            return self._config.catchup_interval_sec
        return self._config.poll_interval_sec

    async def resolve_start_height(self) -> int | None:
        """
        checkpoint + 1, else the configured start height, else the current tip.
        None when only the tip would do and it is not known yet.
        """
        checkpoint = self._checkpoints.get_checkpoint()
        if checkpoint is not None and checkpoint > 0:
            return checkpoint + 1
        if self._config.start_height is not None and self._config.start_height > 0:
            return self._config.start_height
        latest = await self._fetcher.fetch_latest_block_height()
        if latest <= 0:
            logger.warning("poller_start_tip_unknown")
            return None
        logger.info("poller_no_checkpoint_start_at_tip", block_height=latest)
        return latest

    async def _refresh_tip(self) -> None:
        # fetch_latest_block_height falls back to its own cache on failure;
        # never let a stale 0 replace a known tip
        tip = await self._fetcher.fetch_latest_block_height()
        if tip > 0:
            self._cached_tip = tip

    def _advance(self, height: int) -> None:
        self._checkpoints.set_checkpoint(height)
        self._current_height = height + 1

    async def start(self) -> None:
        """Run until stop(). Returns immediately if already running."""
        if self._running:
            return
        self._running = True
        try:
            self._current_height = await self.resolve_start_height()
            await self._refresh_tip()
            logger.info(
                "poller_started",
                start_height=self._current_height,
                chain_tip=self._cached_tip,
            )
            while self._running:
                await self.run_once()
        finally:
            self._running = False
            self.state = PollerState.STOPPED
            logger.info("poller_loop_exited", block_height=self._current_height)

    def stop(self) -> None:
        """Request shutdown; the loop exits at the top of its next iteration."""
        if self._running:
            logger.info("poller_stop_requested", block_height=self._current_height)
        self._running = False

    async def run_once(self) -> None:
        """One loop iteration. Errors from fetch/parse/save are logged and retried later."""
        if self._current_height is None:
            self._current_height = await self.resolve_start_height()
            if self._current_height is None:
                self.state = PollerState.AT_TIP
                await self._sleep(self._config.idle_interval_sec)
                return
        height = self._current_height
        try:
            if self.stats.blocks_processed % self._config.tip_refresh_every == 0:
                await self._refresh_tip()

            if height > self._cached_tip:
                self.state = PollerState.AT_TIP
                await self._sleep(self._config.idle_interval_sec)
                await self._refresh_tip()
                return

            self.state = PollerState.FETCHING
            block = await self._fetcher.fetch_block_with_retry(height)
            if block is None:
                self.stats.skipped_blocks += 1
                logger.info("block_skipped_no_data", block_height=height)
                self._advance(height)
                return

            events = self._parse(block)
            if events > 0:
                self.stats.total_events += events
                logger.info(
                    "block_events_indexed",
                    block_height=height,
                    events=events,
                    total_events=self.stats.total_events,
                )
            self._advance(height)
            self.stats.blocks_processed += 1
            if self.stats.blocks_processed % PROGRESS_LOG_EVERY == 0:
                logger.info(
                    "indexer_progress",
                    block_height=height,
                    total_events=self.stats.total_events,
                    blocks_processed=self.stats.blocks_processed,
                    skipped_blocks=self.stats.skipped_blocks,
                    behind_blocks=self._cached_tip - height,
                )
            await self._sleep(self.compute_sleep(self._current_height))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.stats.failed_attempts += 1
            self.state = PollerState.BACKOFF
            logger.exception("block_processing_failed", block_height=height, error=str(e))
            await self._sleep(self._config.error_delay_sec)
