"""
Domain models for database entities.

Messages (projection of message_sent* events) and profiles (projection of
key_registered events). Used by the sink and query layer; no ORM coupling so
backends stay swappable.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any


@dataclass
class MessageRecord:
    """Stored message row. Natural key: (tx_hash, event_type, sender, recipient)."""

    tx_hash: str
    block_height: int
    timestamp_ns: str
    """Block timestamp in nanoseconds, kept as a string ordering token."""
    event_type: str
    sender: str
    recipient: str
    encrypted_body: str
    nonce: str
    recipient_key_version: int
    reply_to: str | None = None
    amount: str | None = None
    """yoctoNEAR as a decimal string; None for plain messages."""
    id: int | None = None

    def dedup_key(self) -> tuple[str, str, str, str]:
        return (self.tx_hash, self.event_type, self.sender, self.recipient)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ProfileRecord:
    """Stored profile row keyed by account_id."""

    account_id: str
    x25519_pubkey: str
    key_version: int
    display_name: str | None
    registered_at: str
    """Timestamp (ns string) of the first registration; never overwritten."""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ConversationSummary:
    """One peer in an account's conversation list."""

    peer: str
    last_message_at: str
    last_message_preview: str
    total_count: int
    unread_count: int = 0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
