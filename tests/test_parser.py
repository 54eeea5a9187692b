"""
Tests for parse_block / BlockParser: extraction, isolation, persistence.
"""

from __future__ import annotations

import sqlite3

import pytest

from conftest import CONTRACT_ID, event_log, make_block, make_outcome, message_item
from whisper_indexer.core.exceptions import BlockFormatError
from whisper_indexer.near_listener.models import RawBlock
from whisper_indexer.near_listener.parser import BlockParser, ParseStats, parse_block


def test_example_block_yields_one_message(db):
    line = event_log("message_sent", [message_item(encrypted_body="…", nonce="…")])
    block = make_block(100_000_000, [make_outcome([line])])
    assert parse_block(block, db, CONTRACT_ID) == 1
    rows = db.get_messages("a.near")
    assert len(rows) == 1
    row = rows[0]
    assert row.sender == "a.near"
    assert row.recipient == "b.near"
    assert row.event_type == "message_sent"
    assert row.amount is None
    assert row.block_height == 100_000_000
    assert row.timestamp_ns == "1700000000000000000"
    assert row.tx_hash == "tx1"


def test_one_malformed_line_does_not_affect_the_others(db):
    logs = [
        event_log("message_sent", [message_item(recipient="b.near")]),
        "EVENT_JSON:{broken",
        event_log("message_sent", [message_item(recipient="c.near")]),
        event_log("message_sent", [message_item(recipient="d.near")]),
    ]
    stats = ParseStats()
    count = parse_block(make_block(outcomes=[make_outcome(logs)]), db, CONTRACT_ID, stats)
    assert count == 3
    assert {r.recipient for r in db.get_messages("a.near")} == {"b.near", "c.near", "d.near"}
    assert stats.malformed_lines == 1


def test_line_with_invalid_item_is_discarded_whole(db):
    line = event_log("message_sent", [message_item(recipient="b.near"), message_item(nonce=None)])
    stats = ParseStats()
    assert parse_block(make_block(outcomes=[make_outcome([line])]), db, CONTRACT_ID, stats) == 0
    assert db.get_messages("a.near") == []
    assert stats.malformed_lines == 1


def test_other_contracts_and_plain_logs_are_ignored(db):
    outcomes = [
        make_outcome([event_log("message_sent", [message_item()])], executor_id="other.near"),
        make_outcome(["just a log line"], tx_hash="tx2"),
    ]
    assert parse_block(make_block(outcomes=outcomes), db, CONTRACT_ID) == 0
    assert db.get_messages("a.near") == []


def test_foreign_standard_and_unknown_tags_are_skipped(db):
    logs = [
        event_log("nft_mint", [{"owner_id": "a.near"}], standard="nep171"),
        event_log("poll_created", [{"id": 1}]),
    ]
    stats = ParseStats()
    assert parse_block(make_block(outcomes=[make_outcome(logs)]), db, CONTRACT_ID, stats) == 0
    assert stats.foreign_standard_lines == 1
    assert stats.unrecognized_events == 1
    assert stats.malformed_lines == 0


def test_payment_and_key_registration(db):
    logs = [
        event_log("message_sent_with_payment", [message_item(amount="5000")]),
        event_log(
            "key_registered",
            [{"account_id": "a.near", "x25519_pubkey": "pk1", "key_version": 1, "display_name": "A"}],
        ),
    ]
    block = make_block(outcomes=[make_outcome(logs)], timestamp_ns=123)
    assert parse_block(block, db, CONTRACT_ID) == 2
    (msg,) = db.get_messages("a.near")
    assert msg.event_type == "message_sent_with_payment"
    assert msg.amount == "5000"
    profile = db.get_profile("a.near")
    assert profile.x25519_pubkey == "pk1"
    assert profile.registered_at == "123"


def test_multiple_items_in_one_envelope(db):
    line = event_log("message_sent", [message_item(recipient="b.near"), message_item(recipient="c.near")])
    assert parse_block(make_block(outcomes=[make_outcome([line])]), db, CONTRACT_ID) == 2


def test_tx_hash_falls_back_to_outcome_id(db):
    line = event_log("message_sent", [message_item()])
    block = make_block(outcomes=[make_outcome([line], tx_hash=None, outcome_id="receipt-xyz")])
    parse_block(block, db, CONTRACT_ID)
    assert db.get_messages("a.near")[0].tx_hash == "receipt-xyz"


def test_group_created_is_decoded_but_not_stored(db):
    line = event_log("group_created", [{"group_id": "g1", "creator": "a.near", "name": "Friends"}])
    stats = ParseStats()
    assert parse_block(make_block(outcomes=[make_outcome([line])]), db, CONTRACT_ID, stats) == 0
    assert stats.unpersisted_events == 1


def test_reprocessing_a_block_is_safe(db):
    block = make_block(outcomes=[make_outcome([event_log("message_sent", [message_item()])])])
    parse_block(block, db, CONTRACT_ID)
    parse_block(block, db, CONTRACT_ID)
    assert len(db.get_messages("a.near")) == 1


def test_empty_block_and_missing_outcomes():
    class NoSink:
        def save_message(self, message):
            raise AssertionError("unexpected save")

        def save_profile(self, profile):
            raise AssertionError("unexpected save")

    block = make_block()
    block["shards"].append({"shard_id": 1})
    assert parse_block(block, NoSink(), CONTRACT_ID) == 0


def test_block_without_header_raises():
    with pytest.raises(BlockFormatError):
        parse_block({"shards": []}, None, CONTRACT_ID)
    with pytest.raises(BlockFormatError):
        RawBlock.from_json(None)


def test_failed_save_skips_only_that_line(db):
    class FlakySink:
        """Fails the first save_message, delegates the rest to the real db."""

        def __init__(self):
            self.calls = 0

        def save_message(self, message):
            self.calls += 1
            if self.calls == 1:
                raise sqlite3.OperationalError("database is locked")
            return db.save_message(message)

        def save_profile(self, profile):
            return db.save_profile(profile)

    first = event_log("message_sent", [message_item("a.near", "b.near")])
    second = event_log("message_sent", [message_item("a.near", "c.near")])
    other_outcome = event_log("message_sent", [message_item("d.near", "a.near")])
    block = make_block(
        outcomes=[
            make_outcome([first, second], tx_hash="tx1"),
            make_outcome([other_outcome], tx_hash="tx2", outcome_id="receipt2"),
        ]
    )
    stats = ParseStats()
    assert parse_block(block, FlakySink(), CONTRACT_ID, stats) == 2
    assert stats.store_failed_lines == 1
    assert stats.to_dict()["store_failed_lines"] == 1
    peers = sorted(m.recipient for m in db.get_messages("a.near"))
    assert peers == ["a.near", "c.near"]


def test_block_parser_accumulates_stats(db):
    parser = BlockParser(db, CONTRACT_ID)
    bad = make_block(outcomes=[make_outcome(["EVENT_JSON:nope"])])
    good = make_block(outcomes=[make_outcome([event_log("message_sent", [message_item()])])])
    assert parser.parse(bad) == 0
    assert parser.parse(good) == 1
    assert parser.stats.malformed_lines == 1
    with pytest.raises(ValueError):
        BlockParser(db, " ")
