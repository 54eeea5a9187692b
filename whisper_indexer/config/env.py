"""
Environment variable loading and validation for the Whisper indexer.

- NEARDATA_URL: upstream block API base (default: mainnet neardata v0)
- CONTRACT_ID: contract whose logs carry whisper events
- START_BLOCK: explicit start height, only used when no checkpoint is stored
- DB_PATH: SQLite file for messages, profiles and the checkpoint
- Loads .env from the working directory and the project root when available.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

# Project root: config is whisper_indexer/config/, root is 2 levels up
_CONFIG_DIR = Path(__file__).resolve().parent
_PACKAGE_DIR = _CONFIG_DIR.parent
_ROOT = _PACKAGE_DIR.parent
_ENV_PATH = _ROOT / ".env"

DEFAULT_NEARDATA_URL = "https://mainnet.neardata.xyz/v0"
DEFAULT_CONTRACT_ID = "whisper.kaizap.near"
DEFAULT_DB_PATH = "./data/whisper.db"


def load_indexer_env() -> None:
    """Load .env from cwd, then project root. Existing env vars win. Safe to call multiple times."""
    load_dotenv(Path.cwd() / ".env")
    load_dotenv(_ENV_PATH)


def _env_str(name: str, default: str) -> str:
    return (os.getenv(name) or "").strip() or default


def _env_float(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw, 10)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def get_neardata_url() -> str:
    """Upstream base URL without trailing slash."""
    load_indexer_env()
    return _env_str("NEARDATA_URL", DEFAULT_NEARDATA_URL).rstrip("/")


def get_contract_id() -> str:
    load_indexer_env()
    return _env_str("CONTRACT_ID", DEFAULT_CONTRACT_ID)


def get_start_block() -> int | None:
    """
    Return START_BLOCK from env, or None when unset or not positive.
    Only consulted when no checkpoint exists.
    """
    load_indexer_env()
    value = _env_int("START_BLOCK", 0)
    return value if value > 0 else None


def get_db_path() -> Path:
    load_indexer_env()
    return Path(_env_str("DB_PATH", DEFAULT_DB_PATH))


def print_indexer_startup(script_name: str) -> None:
    """Print upstream, contract and DB path at script start."""
    load_indexer_env()
    print(
        f"[whisper] {script_name} | upstream={get_neardata_url()} "
        f"| contract={get_contract_id()} | db={get_db_path()}"
    )
