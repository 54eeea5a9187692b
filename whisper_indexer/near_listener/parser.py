"""
Block parser: raw block to stored whisper events.

Walks every shard and receipt execution outcome, keeps outcomes executed by
the target contract, decodes their EVENT_JSON log lines and hands the typed
events to the sink in the same pass. A line that fails to decode is logged
and skipped without affecting sibling lines, outcomes or the rest of the
block. A save that raises is logged and counted the same way: the rest of
that line is dropped and parsing continues with the next line.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

from whisper_indexer.core.exceptions import EventDecodeError
from whisper_indexer.database.models import MessageRecord, ProfileRecord
from whisper_indexer.indexer_logging import get_logger
from whisper_indexer.near_listener.events import (
    EVENT_STANDARD,
    UNRECOGNIZED,
    DomainEvent,
    GroupCreated,
    KeyRegistered,
    MessageSent,
    MessageSentWithPayment,
    decode_event,
    decode_log_line,
)
from whisper_indexer.near_listener.models import ExecutionOutcome, RawBlock

logger = get_logger(__name__)


class EventSink(Protocol):
    """Persistence contract the parser writes through (Database implements it)."""

    def save_message(self, message: MessageRecord) -> Any: ...

    def save_profile(self, profile: ProfileRecord) -> Any: ...


@dataclass
class ParseStats:
    """Counters for lines and events that did not produce a stored row."""

    malformed_lines: int = 0
    foreign_standard_lines: int = 0
    unrecognized_events: int = 0
    unpersisted_events: int = 0
    store_failed_lines: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "malformed_lines": self.malformed_lines,
            "foreign_standard_lines": self.foreign_standard_lines,
            "unrecognized_events": self.unrecognized_events,
            "unpersisted_events": self.unpersisted_events,
            "store_failed_lines": self.store_failed_lines,
        }


def _message_record(
    event: MessageSent | MessageSentWithPayment,
    tx_hash: str,
    block: RawBlock,
) -> MessageRecord:
    amount = event.amount if isinstance(event, MessageSentWithPayment) else None
    return MessageRecord(
        tx_hash=tx_hash,
        block_height=block.height,
        timestamp_ns=str(block.header.timestamp_ns),
        event_type=event.kind.value,
        sender=event.sender,
        recipient=event.recipient,
        encrypted_body=event.encrypted_body,
        nonce=event.nonce,
        recipient_key_version=event.recipient_key_version,
        reply_to=event.reply_to,
        amount=amount,
    )


def _store_event(
    event: DomainEvent,
    tx_hash: str,
    block: RawBlock,
    sink: EventSink,
    stats: ParseStats,
) -> bool:
    """Persist one decoded event. Returns True if it maps to a stored entity."""
    if isinstance(event, (MessageSent, MessageSentWithPayment)):
        sink.save_message(_message_record(event, tx_hash, block))
        return True
    if isinstance(event, KeyRegistered):
        sink.save_profile(
            ProfileRecord(
                account_id=event.account_id,
                x25519_pubkey=event.x25519_pubkey,
                key_version=event.key_version,
                display_name=event.display_name,
                registered_at=str(block.header.timestamp_ns),
            )
        )
        return True
    if isinstance(event, GroupCreated):
        # No group entity in storage yet
        stats.unpersisted_events += 1
        logger.info(
            "group_created_not_persisted",
            block_height=block.height,
            tx_hash=tx_hash,
            group_id=event.group_id,
        )
        return False
    raise TypeError(f"unhandled event type: {type(event).__name__}")


def _decode_line(line: str, stats: ParseStats) -> list[DomainEvent]:
    """
    Decode every item of one log line before anything is stored.

    Raises:
        EventDecodeError: JSON/envelope invalid or any item fails validation.
    """
    envelope = decode_log_line(line)
    if envelope is None:
        return []
    if envelope.standard != EVENT_STANDARD:
        stats.foreign_standard_lines += 1
        return []
    events: list[DomainEvent] = []
    for item in envelope.data:
        result = decode_event(envelope.event, item)
        if result.ok:
            events.append(result.event)
        elif result.reason == UNRECOGNIZED:
            stats.unrecognized_events += 1
            logger.debug("event_tag_unrecognized", event_tag=envelope.event)
        else:
            raise EventDecodeError(f"{envelope.event}: {result.reason}", line)
    return events


def _parse_outcome(
    outcome: ExecutionOutcome,
    block: RawBlock,
    sink: EventSink,
    stats: ParseStats,
) -> int:
    stored = 0
    tx_hash = outcome.transaction_hash
    for line in outcome.logs:
        try:
            events = _decode_line(line, stats)
        except EventDecodeError as e:
            stats.malformed_lines += 1
            logger.warning(
                "event_log_malformed",
                block_height=block.height,
                tx_hash=tx_hash,
                reason=e.reason,
            )
            continue
        try:
            for event in events:
                if _store_event(event, tx_hash, block, sink, stats):
                    stored += 1
        except Exception as e:
            stats.store_failed_lines += 1
            logger.exception(
                "event_store_failed",
                block_height=block.height,
                tx_hash=tx_hash,
                error=str(e),
            )
    return stored


def parse_block(
    block: RawBlock | dict[str, Any],
    sink: EventSink,
    contract_id: str,
    stats: ParseStats | None = None,
) -> int:
    """
    Extract whisper events emitted by contract_id and save them via sink.

    Args:
        block: RawBlock, or the raw /block/{height} JSON body.
        sink: save_message / save_profile target.
        contract_id: executor identity whose outcomes are inspected.
        stats: optional counters, updated in place.

    Returns:
        Number of events recognized and stored (0 is a normal result).

    Raises:
        BlockFormatError: block JSON lacks header/height.
    """
    if not isinstance(block, RawBlock):
        block = RawBlock.from_json(block)
    if stats is None:
        stats = ParseStats()
    stored = 0
    for shard in block.shards:
        for outcome in shard.outcomes:
            if outcome.executor_id != contract_id:
                continue
            stored += _parse_outcome(outcome, block, sink, stats)
    return stored


class BlockParser:
    """parse_block bound to a sink and contract, accumulating ParseStats across blocks."""

    def __init__(self, sink: EventSink, contract_id: str) -> None:
        if not contract_id.strip():
            raise ValueError("contract_id must be non-empty")
        self._sink = sink
        self._contract_id = contract_id
        self.stats = ParseStats()

    @property
    def contract_id(self) -> str:
        return self._contract_id

    def parse(self, block: RawBlock | dict[str, Any]) -> int:
        return parse_block(block, self._sink, self._contract_id, self.stats)
