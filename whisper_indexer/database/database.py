"""
Database abstraction layer for messages, profiles and the indexing checkpoint.

SQLite backend; all access goes through the abstract interface so the engine
can be swapped. Writes are idempotent: messages are insert-if-absent on their
natural key and profiles are upserts that keep the first registration time.
The checkpoint is a plain string-encoded scalar in sync_state, written
independently of event writes.
"""

from __future__ import annotations

import sqlite3
from abc import ABC, abstractmethod
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from whisper_indexer.database.models import (
    ConversationSummary,
    MessageRecord,
    ProfileRecord,
)
from whisper_indexer.indexer_logging import get_logger

logger = get_logger(__name__)

CHECKPOINT_KEY = "last_block_height"

# -----------------------------------------------------------------------------
# Schema (SQLite)
# -----------------------------------------------------------------------------

SCHEMA_MESSAGES = """
CREATE TABLE IF NOT EXISTS messages (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    tx_hash TEXT NOT NULL,
    block_height INTEGER NOT NULL,
    timestamp_ns TEXT NOT NULL,
    event_type TEXT NOT NULL,
    sender TEXT NOT NULL,
    recipient TEXT NOT NULL,
    encrypted_body TEXT NOT NULL,
    nonce TEXT NOT NULL,
    recipient_key_version INTEGER NOT NULL,
    reply_to TEXT,
    amount TEXT,
    UNIQUE(tx_hash, event_type, sender, recipient)
);
CREATE INDEX IF NOT EXISTS idx_messages_sender ON messages(sender);
CREATE INDEX IF NOT EXISTS idx_messages_recipient ON messages(recipient);
CREATE INDEX IF NOT EXISTS idx_messages_block_height ON messages(block_height);
"""

SCHEMA_PROFILES = """
CREATE TABLE IF NOT EXISTS profiles (
    account_id TEXT PRIMARY KEY,
    x25519_pubkey TEXT NOT NULL,
    key_version INTEGER NOT NULL,
    display_name TEXT,
    registered_at TEXT NOT NULL
);
"""

SCHEMA_SYNC_STATE = """
CREATE TABLE IF NOT EXISTS sync_state (
    key TEXT PRIMARY KEY,
    value TEXT NOT NULL
);
"""

_MESSAGE_COLUMNS = (
    "id, tx_hash, block_height, timestamp_ns, event_type, sender, recipient, "
    "encrypted_body, nonce, recipient_key_version, reply_to, amount"
)


# -----------------------------------------------------------------------------
# Abstract backend
# -----------------------------------------------------------------------------


class DatabaseBackend(ABC):
    """Abstract interface for persistence."""

    @abstractmethod
    def ensure_schema(self) -> None:
        """Create tables and indexes if they do not exist."""
        ...

    @abstractmethod
    def insert_message(self, message: MessageRecord) -> bool:
        """Insert unless (tx_hash, event_type, sender, recipient) exists. Returns True if inserted."""
        ...

    @abstractmethod
    def upsert_profile(self, profile: ProfileRecord) -> None:
        """Insert, or overwrite key fields while keeping registered_at."""
        ...

    @abstractmethod
    def get_state(self, key: str) -> str | None:
        ...

    @abstractmethod
    def set_state(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    def get_messages(
        self,
        account: str,
        *,
        peer: str | None = None,
        after: int | None = None,
        limit: int = 50,
    ) -> list[MessageRecord]:
        ...

    @abstractmethod
    def get_conversations(self, account: str) -> list[ConversationSummary]:
        ...

    @abstractmethod
    def get_profile(self, account_id: str) -> ProfileRecord | None:
        ...

    @abstractmethod
    def search_profiles(self, query: str, *, limit: int = 20) -> list[ProfileRecord]:
        ...


# -----------------------------------------------------------------------------
# SQLite backend
# -----------------------------------------------------------------------------


def _row_to_message(row: sqlite3.Row) -> MessageRecord:
    return MessageRecord(
        id=row["id"],
        tx_hash=row["tx_hash"],
        block_height=row["block_height"],
        timestamp_ns=row["timestamp_ns"],
        event_type=row["event_type"],
        sender=row["sender"],
        recipient=row["recipient"],
        encrypted_body=row["encrypted_body"],
        nonce=row["nonce"],
        recipient_key_version=row["recipient_key_version"],
        reply_to=row["reply_to"],
        amount=row["amount"],
    )


def _row_to_profile(row: sqlite3.Row) -> ProfileRecord:
    return ProfileRecord(
        account_id=row["account_id"],
        x25519_pubkey=row["x25519_pubkey"],
        key_version=row["key_version"],
        display_name=row["display_name"],
        registered_at=row["registered_at"],
    )


class SQLiteBackend(DatabaseBackend):
    """SQLite implementation; single file, one connection per operation."""

    def __init__(self, path: str | Path, *, timeout_sec: float = 5.0) -> None:
        self._path = Path(path)
        self._timeout_sec = timeout_sec

    def _connect(self) -> sqlite3.Connection:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self._path), timeout=self._timeout_sec)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode = WAL")
        return conn

    @contextmanager
    def _cursor(self) -> Iterator[sqlite3.Cursor]:
        conn = self._connect()
        try:
            cur = conn.cursor()
            yield cur
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def ensure_schema(self) -> None:
        with self._cursor() as cur:
            for stmt in (SCHEMA_MESSAGES, SCHEMA_PROFILES, SCHEMA_SYNC_STATE):
                cur.executescript(stmt)

    def insert_message(self, message: MessageRecord) -> bool:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT OR IGNORE INTO messages (
                    tx_hash, block_height, timestamp_ns, event_type, sender, recipient,
                    encrypted_body, nonce, recipient_key_version, reply_to, amount
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    message.tx_hash,
                    message.block_height,
                    message.timestamp_ns,
                    message.event_type,
                    message.sender,
                    message.recipient,
                    message.encrypted_body,
                    message.nonce,
                    message.recipient_key_version,
                    message.reply_to,
                    message.amount,
                ),
            )
            return cur.rowcount > 0

    def upsert_profile(self, profile: ProfileRecord) -> None:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO profiles (account_id, x25519_pubkey, key_version, display_name, registered_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(account_id) DO UPDATE SET
                    x25519_pubkey = excluded.x25519_pubkey,
                    key_version = excluded.key_version,
                    display_name = excluded.display_name
                """,
                (
                    profile.account_id,
                    profile.x25519_pubkey,
                    profile.key_version,
                    profile.display_name,
                    profile.registered_at,
                ),
            )

    def get_state(self, key: str) -> str | None:
        with self._cursor() as cur:
            cur.execute("SELECT value FROM sync_state WHERE key = ?", (key,))
            row = cur.fetchone()
        return row["value"] if row is not None else None

    def set_state(self, key: str, value: str) -> None:
        with self._cursor() as cur:
            cur.execute(
                "INSERT OR REPLACE INTO sync_state (key, value) VALUES (?, ?)",
                (key, value),
            )

    def get_messages(
        self,
        account: str,
        *,
        peer: str | None = None,
        after: int | None = None,
        limit: int = 50,
    ) -> list[MessageRecord]:
        params: list[Any]
        if peer:
            sql = f"""
                SELECT {_MESSAGE_COLUMNS} FROM messages
                WHERE ((sender = ? AND recipient = ?) OR (sender = ? AND recipient = ?))
            """
            params = [account, peer, peer, account]
            order = " ORDER BY block_height ASC, id ASC"
        else:
            sql = f"""
                SELECT {_MESSAGE_COLUMNS} FROM messages
                WHERE (sender = ? OR recipient = ?)
            """
            params = [account, account]
            order = " ORDER BY block_height DESC, id DESC"
        if after is not None:
            sql += " AND id > ?"
            params.append(after)
        sql += order + " LIMIT ?"
        params.append(limit)
        with self._cursor() as cur:
            cur.execute(sql, params)
            rows = cur.fetchall()
        return [_row_to_message(row) for row in rows]

    def get_conversations(self, account: str) -> list[ConversationSummary]:
        # SQLite returns bare columns from the row holding MAX(), so the
        # preview is the body of the latest message with that peer.
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT
                    CASE WHEN sender = ? THEN recipient ELSE sender END AS peer,
                    MAX(timestamp_ns) AS last_message_at,
                    encrypted_body AS last_message_preview,
                    COUNT(*) AS total_count
                FROM messages
                WHERE sender = ? OR recipient = ?
                GROUP BY peer
                ORDER BY last_message_at DESC
                """,
                (account, account, account),
            )
            rows = cur.fetchall()
        return [
            ConversationSummary(
                peer=row["peer"],
                last_message_at=row["last_message_at"],
                last_message_preview=row["last_message_preview"],
                total_count=row["total_count"],
            )
            for row in rows
        ]

    def get_profile(self, account_id: str) -> ProfileRecord | None:
        with self._cursor() as cur:
            cur.execute(
                "SELECT account_id, x25519_pubkey, key_version, display_name, registered_at "
                "FROM profiles WHERE account_id = ?",
                (account_id,),
            )
            row = cur.fetchone()
        return _row_to_profile(row) if row is not None else None

    def search_profiles(self, query: str, *, limit: int = 20) -> list[ProfileRecord]:
        pattern = f"%{query}%"
        with self._cursor() as cur:
            cur.execute(
                "SELECT account_id, x25519_pubkey, key_version, display_name, registered_at "
                "FROM profiles WHERE account_id LIKE ? OR display_name LIKE ? "
                "ORDER BY account_id LIMIT ?",
                (pattern, pattern, limit),
            )
            rows = cur.fetchall()
        return [_row_to_profile(row) for row in rows]


# -----------------------------------------------------------------------------
# Database facade: event sink + checkpoint store + read queries.
# -----------------------------------------------------------------------------


class Database:
    """
    Storage collaborator for the indexer and the query API.

    Sink contract: save_message / save_profile (idempotent).
    Checkpoint contract: get_checkpoint / set_checkpoint.
    """

    def __init__(self, backend: DatabaseBackend) -> None:
        self._backend = backend

    def ensure_schema(self) -> None:
        """Create tables and indexes if they do not exist."""
        self._backend.ensure_schema()

    # --- Event sink ---

    def save_message(self, message: MessageRecord) -> bool:
        """Insert-if-absent on the dedup key; a duplicate is a silent no-op. Returns True if inserted."""
        inserted = self._backend.insert_message(message)
        if not inserted:
            logger.debug(
                "message_duplicate_ignored",
                tx_hash=message.tx_hash,
                event_kind=message.event_type,
            )
        return inserted

    def save_profile(self, profile: ProfileRecord) -> None:
        self._backend.upsert_profile(profile)

    # --- Checkpoint ---

    def get_checkpoint(self) -> int | None:
        """Last fully processed block height, or None if nothing was processed yet."""
        raw = self._backend.get_state(CHECKPOINT_KEY)
        if raw is None:
            return None
        return int(raw, 10)

    def set_checkpoint(self, height: int) -> None:
        if height < 0:
            raise ValueError("checkpoint height must be non-negative")
        self._backend.set_state(CHECKPOINT_KEY, str(height))

    # --- Read queries ---

    def get_messages(
        self,
        account: str,
        *,
        peer: str | None = None,
        after: int | None = None,
        limit: int = 50,
    ) -> list[MessageRecord]:
        """With peer: the conversation oldest first. Without: everything for account, newest first."""
        return self._backend.get_messages(account, peer=peer, after=after, limit=limit)

    def get_conversations(self, account: str) -> list[ConversationSummary]:
        return self._backend.get_conversations(account)

    def get_profile(self, account_id: str) -> ProfileRecord | None:
        return self._backend.get_profile(account_id)

    def search_profiles(self, query: str, *, limit: int = 20) -> list[ProfileRecord]:
        return self._backend.search_profiles(query, limit=limit)


def get_database(path: str | Path | None = None) -> Database:
    """
    Return a SQLite-backed Database with the schema ensured.

    path: SQLite file (e.g. "data/whisper.db"). Default: "whisper.db" in cwd.
    """
    if path is None:
        path = Path("whisper.db")
    backend = SQLiteBackend(path)
    db = Database(backend)
    db.ensure_schema()
    return db
