"""
NEAR block listener package.

Polls the neardata block API, decodes whisper events from the target
contract's logs and stores them, tracking a resumable checkpoint.
"""

from whisper_indexer.near_listener.fetcher import BlockFetcher
from whisper_indexer.near_listener.parser import BlockParser, ParseStats, parse_block
from whisper_indexer.near_listener.poller import (
    BlockPoller,
    IndexerStats,
    PollerConfig,
    PollerState,
)

__all__ = [
    "BlockFetcher",
    "BlockParser",
    "BlockPoller",
    "IndexerStats",
    "ParseStats",
    "PollerConfig",
    "PollerState",
    "parse_block",
]
