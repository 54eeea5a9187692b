"""
Data models for raw NEAR blocks as served by neardata.

Only the parts the parser reads are modelled: header (height, timestamp,
hash) and, per shard, the receipt execution outcomes with their executor and
log lines. Everything else in the payload is ignored.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from whisper_indexer.core.exceptions import BlockFormatError


@dataclass(frozen=True)
class BlockHeader:
    height: int
    timestamp_ns: int
    """Block timestamp in nanoseconds."""
    hash: str | None = None


@dataclass(frozen=True)
class ExecutionOutcome:
    """One receipt execution outcome: the logs emitted by one contract call."""

    id: str
    executor_id: str
    logs: tuple[str, ...]
    tx_hash: str | None = None

    @property
    def transaction_hash(self) -> str:
        """Explicit tx hash when present, otherwise the outcome id."""
        return self.tx_hash or self.id

    @classmethod
    def from_json(cls, item: dict[str, Any]) -> "ExecutionOutcome":
        execution = item.get("execution_outcome") or {}
        outcome = execution.get("outcome") or {}
        logs = outcome.get("logs") or []
        return cls(
            id=str(execution.get("id") or ""),
            executor_id=str(outcome.get("executor_id") or ""),
            logs=tuple(line for line in logs if isinstance(line, str)),
            tx_hash=item.get("tx_hash") or None,
        )


@dataclass(frozen=True)
class Shard:
    shard_id: int | None
    outcomes: tuple[ExecutionOutcome, ...] = field(default_factory=tuple)

    @classmethod
    def from_json(cls, item: dict[str, Any]) -> "Shard":
        raw = item.get("receipt_execution_outcomes") or []
        return cls(
            shard_id=item.get("shard_id"),
            outcomes=tuple(
                ExecutionOutcome.from_json(o) for o in raw if isinstance(o, dict)
            ),
        )


@dataclass(frozen=True)
class RawBlock:
    header: BlockHeader
    shards: tuple[Shard, ...]

    @property
    def height(self) -> int:
        return self.header.height

    @classmethod
    def from_json(cls, data: Any) -> "RawBlock":
        """
        Build from a neardata /block/{height} body.

        Raises:
            BlockFormatError: header or height missing / not an integer.
        """
        if not isinstance(data, dict):
            raise BlockFormatError(f"block payload must be an object, got {type(data).__name__}")
        header = (data.get("block") or {}).get("header")
        if not isinstance(header, dict):
            raise BlockFormatError("block.header missing")
        height = header.get("height")
        if not isinstance(height, int) or isinstance(height, bool) or height < 0:
            raise BlockFormatError(f"invalid block height: {height!r}")
        try:
            timestamp_ns = int(header.get("timestamp", 0))
        except (TypeError, ValueError):
            raise BlockFormatError(f"invalid block timestamp: {header.get('timestamp')!r}") from None
        shards = data.get("shards") or []
        if not isinstance(shards, list):
            raise BlockFormatError("shards must be a list")
        return cls(
            header=BlockHeader(height=height, timestamp_ns=timestamp_ns, hash=header.get("hash")),
            shards=tuple(Shard.from_json(s) for s in shards if isinstance(s, dict)),
        )
