"""
Tests for the SQLite sink, checkpoint store and read queries.
"""

from __future__ import annotations

import sqlite3

import pytest

from whisper_indexer.database import CHECKPOINT_KEY, MessageRecord, ProfileRecord


def _message(**overrides) -> MessageRecord:
    fields = dict(
        tx_hash="tx1",
        block_height=100,
        timestamp_ns="1000",
        event_type="message_sent",
        sender="a.near",
        recipient="b.near",
        encrypted_body="body-1",
        nonce="n1",
        recipient_key_version=1,
    )
    fields.update(overrides)
    return MessageRecord(**fields)


def test_save_message_is_idempotent_and_keeps_first_payload(db):
    """Same (tx_hash, event_type, sender, recipient) twice → one row with the first payload."""
    assert db.save_message(_message(encrypted_body="first")) is True
    assert db.save_message(_message(encrypted_body="second", block_height=999)) is False
    rows = db.get_messages("a.near")
    assert len(rows) == 1
    assert rows[0].encrypted_body == "first"
    assert rows[0].block_height == 100


def test_dedup_key_components_distinguish_rows(db):
    db.save_message(_message())
    db.save_message(_message(event_type="message_sent_with_payment", amount="5"))
    db.save_message(_message(recipient="c.near"))
    db.save_message(_message(tx_hash="tx2"))
    assert len(db.get_messages("a.near")) == 4


def test_profile_reregistration_keeps_registered_at(db):
    db.save_profile(ProfileRecord("alice.near", "K1", 1, "Alice", registered_at="T1"))
    db.save_profile(ProfileRecord("alice.near", "K2", 2, None, registered_at="T2"))
    profile = db.get_profile("alice.near")
    assert profile is not None
    assert profile.x25519_pubkey == "K2"
    assert profile.key_version == 2
    assert profile.display_name is None
    assert profile.registered_at == "T1"


def test_checkpoint_absent_then_replaced(db, tmp_path):
    assert db.get_checkpoint() is None
    db.set_checkpoint(100)
    db.set_checkpoint(101)
    assert db.get_checkpoint() == 101
    # Stored as a string-encoded integer under the fixed key
    conn = sqlite3.connect(str(tmp_path / "whisper.db"))
    try:
        rows = conn.execute("SELECT key, value FROM sync_state").fetchall()
    finally:
        conn.close()
    assert rows == [(CHECKPOINT_KEY, "101")]


def test_checkpoint_rejects_negative(db):
    with pytest.raises(ValueError):
        db.set_checkpoint(-1)


def test_get_messages_with_peer_is_conversation_oldest_first(db):
    db.save_message(_message(tx_hash="t1", block_height=10))
    db.save_message(_message(tx_hash="t2", block_height=12, sender="b.near", recipient="a.near"))
    db.save_message(_message(tx_hash="t3", block_height=11, recipient="c.near"))
    rows = db.get_messages("a.near", peer="b.near")
    assert [r.tx_hash for r in rows] == ["t1", "t2"]


def test_get_messages_without_peer_newest_first_with_cursor(db):
    for i in range(5):
        db.save_message(_message(tx_hash=f"t{i}", block_height=10 + i))
    rows = db.get_messages("a.near")
    assert [r.block_height for r in rows] == [14, 13, 12, 11, 10]
    first_id = min(r.id for r in rows)
    after = db.get_messages("a.near", after=first_id, limit=2)
    assert len(after) == 2
    assert all(r.id > first_id for r in after)


def test_get_conversations_groups_by_peer(db):
    db.save_message(_message(tx_hash="t1", timestamp_ns="100", encrypted_body="old"))
    db.save_message(_message(tx_hash="t2", timestamp_ns="300", encrypted_body="latest",
                             sender="b.near", recipient="a.near"))
    db.save_message(_message(tx_hash="t3", timestamp_ns="200", recipient="c.near"))
    convos = db.get_conversations("a.near")
    assert [c.peer for c in convos] == ["b.near", "c.near"]
    assert convos[0].total_count == 2
    assert convos[0].last_message_at == "300"
    assert convos[0].last_message_preview == "latest"
    assert convos[0].unread_count == 0


def test_search_profiles_matches_account_or_display_name(db):
    db.save_profile(ProfileRecord("alice.near", "K", 1, "Wonderland", "T"))
    db.save_profile(ProfileRecord("bob.near", "K", 1, "Alice's friend", "T"))
    db.save_profile(ProfileRecord("carol.near", "K", 1, None, "T"))
    found = {p.account_id for p in db.search_profiles("lice")}
    assert found == {"alice.near", "bob.near"}
    assert db.get_profile("nobody.near") is None
