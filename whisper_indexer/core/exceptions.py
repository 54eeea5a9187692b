"""
Application-level exceptions.

Network failures are left as httpx.HTTPError and storage failures as
sqlite3.Error; these classes cover what the indexer itself detects.
"""

from __future__ import annotations


class IndexerError(Exception):
    """Base class for indexer errors."""


class BlockFormatError(IndexerError):
    """Block JSON is missing structure the parser needs (header, height, shards)."""


class EventDecodeError(IndexerError):
    """A single event log line could not be decoded into typed events."""

    def __init__(self, reason: str, line: str | None = None) -> None:
        super().__init__(reason)
        self.reason = reason
        self.line = line
