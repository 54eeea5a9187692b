"""
Process entrypoint: indexer, API server, or both.

    whisper-indexer run      # indexer in a background thread + API in the main thread
    whisper-indexer index    # indexer only; SIGINT/SIGTERM stop after the current block
    whisper-indexer serve    # API only
    whisper-indexer status   # print the stored checkpoint
    whisper-indexer index --log-level DEBUG

Configuration comes from env / .env (see whisper_indexer.config.env).
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys
import threading
from typing import Any

from whisper_indexer.config import Settings, get_settings
from whisper_indexer.config.env import print_indexer_startup
from whisper_indexer.database import Database, get_database
from whisper_indexer.indexer_logging import configure_logging, get_logger
from whisper_indexer.near_listener import (
    BlockFetcher,
    BlockParser,
    BlockPoller,
    PollerConfig,
)

logger = get_logger("main")

SHUTDOWN_JOIN_TIMEOUT_SEC = 15.0
STOP_CHECK_INTERVAL_SEC = 0.2


async def _stop_when_set(stop_requested: threading.Event, poller: BlockPoller) -> None:
    while not stop_requested.is_set():
        await asyncio.sleep(STOP_CHECK_INTERVAL_SEC)
    poller.stop()


async def run_indexer(
    settings: Settings,
    db: Database,
    stop_requested: threading.Event | None = None,
) -> None:
    """
    Build fetcher, parser and poller and run the loop until stop_requested is set.

    stop_requested may be set from any thread, before or after the loop starts;
    the block in progress finishes first.
    """
    if stop_requested is None:
        stop_requested = threading.Event()
    async with BlockFetcher(
        settings.neardata_url,
        max_retries=settings.max_retries,
        retry_base_sec=settings.retry_base_sec,
        request_timeout_sec=settings.request_timeout_sec,
    ) as fetcher:
        parser = BlockParser(db, settings.contract_id)
        poller = BlockPoller(
            fetcher,
            parser.parse,
            db,
            PollerConfig.from_settings(settings),
        )
        if stop_requested.is_set():
            logger.info("indexer_stopped_before_start")
            return
        watcher = asyncio.create_task(_stop_when_set(stop_requested, poller))
        try:
            await poller.start()
        finally:
            watcher.cancel()
            logger.info(
                "indexer_finished",
                total_events=poller.stats.total_events,
                blocks_processed=poller.stats.blocks_processed,
                skipped_blocks=poller.stats.skipped_blocks,
                parse_stats=parser.stats.to_dict(),
            )


def cmd_index(settings: Settings) -> int:
    """Indexer only; blocks until a signal stops the poller."""
    db = get_database(settings.db_path)
    stop_requested = threading.Event()

    def _handle_sig(signum: int, frame: Any) -> None:
        sig = "SIGINT" if signum == signal.SIGINT else "SIGTERM"
        logger.info("indexer_shutdown_signal", signal=sig)
        stop_requested.set()

    try:
        signal.signal(signal.SIGINT, _handle_sig)
        if hasattr(signal, "SIGTERM"):
            signal.signal(signal.SIGTERM, _handle_sig)
    except (ValueError, OSError):
        # Signal only valid in main thread / not supported on this platform
        pass

    asyncio.run(run_indexer(settings, db, stop_requested))
    return 0


def cmd_serve(settings: Settings) -> int:
    import uvicorn

    from whisper_indexer.api_server.server import app

    uvicorn.run(app, host=settings.api_host, port=settings.api_port)
    return 0


def cmd_run(settings: Settings) -> int:
    """Indexer in a daemon thread, API server in the main thread (uvicorn handles signals)."""
    db = get_database(settings.db_path)
    stop_requested = threading.Event()
    worker = threading.Thread(
        target=lambda: asyncio.run(run_indexer(settings, db, stop_requested)),
        name="block-indexer",
        daemon=True,
    )
    worker.start()
    logger.info("indexer_thread_started", contract=settings.contract_id)
    try:
        cmd_serve(settings)
    finally:
        logger.info("api_server_stopped")
        stop_requested.set()
        worker.join(timeout=SHUTDOWN_JOIN_TIMEOUT_SEC)
        if worker.is_alive():
            logger.warning("indexer_thread_join_timeout", timeout_sec=SHUTDOWN_JOIN_TIMEOUT_SEC)
    return 0


def cmd_status(settings: Settings) -> int:
    print_indexer_startup("status")
    db = get_database(settings.db_path)
    checkpoint = db.get_checkpoint()
    if checkpoint is None:
        print("checkpoint: none (next run starts at START_BLOCK or the chain tip)")
    else:
        print(f"checkpoint: {checkpoint} (next block: {checkpoint + 1})")
    return 0


COMMANDS = {
    "run": cmd_run,
    "index": cmd_index,
    "serve": cmd_serve,
    "status": cmd_status,
}


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="whisper-indexer",
        description="Index whisper events from NEAR blocks and serve them over HTTP.",
    )
    parser.add_argument(
        "command",
        nargs="?",
        default="run",
        choices=sorted(COMMANDS),
        help="What to run (default: run = indexer + API)",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Override LOG_LEVEL (DEBUG, INFO, WARNING, ...)",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_arg_parser().parse_args(argv)
    try:
        settings = get_settings()
    except ValueError as e:
        logger.error("main_config_error", error=str(e))
        return 2
    # .env is loaded by now, so LOG_LEVEL/LOG_FORMAT from it apply too
    configure_logging(level=args.log_level)
    return COMMANDS[args.command](settings)


if __name__ == "__main__":
    sys.exit(main())
