"""
Pytest fixtures for whisper indexer tests. Uses a temporary SQLite DB per test.
"""

from __future__ import annotations

import json
from typing import Any

import pytest

CONTRACT_ID = "whisper.kaizap.near"


def event_log(event: str, data: list[dict[str, Any]], standard: str = "whisper") -> str:
    """Build an EVENT_JSON log line."""
    envelope = {"standard": standard, "version": "1.0.0", "event": event, "data": data}
    return "EVENT_JSON:" + json.dumps(envelope)


def message_item(sender: str = "a.near", recipient: str = "b.near", **overrides: Any) -> dict[str, Any]:
    item = {
        "from": sender,
        "to": recipient,
        "encrypted_body": "ciphertext==",
        "nonce": "nonce==",
        "recipient_key_version": 1,
        "reply_to": None,
    }
    item.update(overrides)
    return item


def make_block(
    height: int = 100_000_000,
    outcomes: list[dict[str, Any]] | None = None,
    timestamp_ns: int = 1_700_000_000_000_000_000,
) -> dict[str, Any]:
    """neardata-shaped block with a single shard holding the given outcomes."""
    return {
        "block": {"header": {"height": height, "timestamp": timestamp_ns, "hash": f"hash{height}"}},
        "shards": [{"shard_id": 0, "receipt_execution_outcomes": outcomes or []}],
    }


def make_outcome(
    logs: list[str],
    executor_id: str = CONTRACT_ID,
    tx_hash: str | None = "tx1",
    outcome_id: str = "receipt1",
) -> dict[str, Any]:
    return {
        "execution_outcome": {
            "id": outcome_id,
            "outcome": {"executor_id": executor_id, "logs": logs, "receipt_ids": [], "status": {}},
        },
        "receipt": {},
        "tx_hash": tx_hash,
    }


@pytest.fixture
def db(tmp_path):
    """Fresh Database on a temporary SQLite file."""
    from whisper_indexer.database import get_database

    return get_database(tmp_path / "whisper.db")


@pytest.fixture
def api_client(db, tmp_path, monkeypatch):
    """FastAPI TestClient reading the same temp DB as the `db` fixture."""
    from fastapi.testclient import TestClient

    monkeypatch.setenv("DB_PATH", str(tmp_path / "whisper.db"))
    from whisper_indexer.api_server.server import app

    return TestClient(app)
