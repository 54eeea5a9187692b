"""
FastAPI server: read-only API over the indexer database.

GET /messages, /messages/conversations, /profiles/search, /profiles/{id}
and /health. Reads only; the indexer writes. Config via env (DB_PATH).
"""

from __future__ import annotations

import functools
import time
from pathlib import Path

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from whisper_indexer.config.env import get_db_path as env_db_path
from whisper_indexer.database import Database, get_database
from whisper_indexer.indexer_logging import get_logger

logger = get_logger(__name__)

MAX_MESSAGES_LIMIT = 200
DEFAULT_MESSAGES_LIMIT = 50

_STARTED_AT = time.monotonic()


# -----------------------------------------------------------------------------
# Config and dependency
# -----------------------------------------------------------------------------

def get_db_path() -> Path:
    return env_db_path()


@functools.lru_cache(maxsize=8)
def _database_for(path: Path) -> Database:
    return get_database(path)


def get_db() -> Database:
    """Dependency: Database over DB_PATH, built once per path (one connection per operation underneath)."""
    return _database_for(get_db_path())


# -----------------------------------------------------------------------------
# Response models
# -----------------------------------------------------------------------------

class MessageResponse(BaseModel):
    id: int
    tx_hash: str
    block_height: int
    timestamp_ns: str = Field(..., description="Block timestamp in nanoseconds")
    event_type: str
    sender: str
    recipient: str
    encrypted_body: str
    nonce: str
    recipient_key_version: int
    reply_to: str | None = None
    amount: str | None = Field(None, description="yoctoNEAR; null unless paid")


class ConversationResponse(BaseModel):
    peer: str
    last_message_at: str
    last_message_preview: str
    unread_count: int = 0


class ProfileResponse(BaseModel):
    account_id: str
    x25519_pubkey: str
    key_version: int
    display_name: str | None = None
    registered_at: str


class HealthResponse(BaseModel):
    ok: bool
    lastBlock: int = Field(..., description="Last fully processed block height (0 if none)")
    uptime: float = Field(..., description="Seconds since the API process started")


# -----------------------------------------------------------------------------
# App and routes
# -----------------------------------------------------------------------------

app = FastAPI(
    title="Whisper Indexer API",
    description="Read-only access to indexed whisper messages and profiles.",
    version="0.1.0",
)


@app.exception_handler(HTTPException)
async def _http_error(request: Request, exc: HTTPException) -> JSONResponse:
    """Errors as {"error": "..."} rather than FastAPI's {"detail": "..."}."""
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


@app.get("/messages", response_model=list[MessageResponse])
def list_messages(
    account: str | None = None,
    with_: str | None = Query(None, alias="with"),
    after: int | None = None,
    limit: int = DEFAULT_MESSAGES_LIMIT,
    db: Database = Depends(get_db),
) -> list[MessageResponse]:
    """Messages between account and `with` (oldest first), or all of account's (newest first)."""
    if not account:
        raise HTTPException(status_code=400, detail="account is required")
    limit = max(1, min(limit, MAX_MESSAGES_LIMIT))
    rows = db.get_messages(account, peer=with_, after=after, limit=limit)
    return [MessageResponse(**row.to_dict()) for row in rows]


@app.get("/messages/conversations", response_model=list[ConversationResponse])
def list_conversations(
    account: str | None = None,
    db: Database = Depends(get_db),
) -> list[ConversationResponse]:
    if not account:
        raise HTTPException(status_code=400, detail="account is required")
    return [
        ConversationResponse(
            peer=c.peer,
            last_message_at=c.last_message_at,
            last_message_preview=c.last_message_preview,
            unread_count=c.unread_count,
        )
        for c in db.get_conversations(account)
    ]


# Must be registered before /profiles/{account_id}
@app.get("/profiles/search", response_model=list[ProfileResponse])
def search_profiles(
    q: str | None = None,
    db: Database = Depends(get_db),
) -> list[ProfileResponse]:
    if not q:
        raise HTTPException(status_code=400, detail="q is required")
    return [ProfileResponse(**p.to_dict()) for p in db.search_profiles(q)]


@app.get("/profiles/{account_id}", response_model=ProfileResponse)
def get_profile(account_id: str, db: Database = Depends(get_db)) -> ProfileResponse:
    profile = db.get_profile(account_id)
    if profile is None:
        raise HTTPException(status_code=404, detail="profile not found")
    return ProfileResponse(**profile.to_dict())


@app.get("/health", response_model=HealthResponse)
def health(db: Database = Depends(get_db)) -> HealthResponse:
    return HealthResponse(
        ok=True,
        lastBlock=db.get_checkpoint() or 0,
        uptime=round(time.monotonic() - _STARTED_AT, 3),
    )
