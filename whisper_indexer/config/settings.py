"""
Application settings and environment configuration.

Responsibilities:
- Load configuration from environment variables and .env files.
- Validate numeric settings and provide defaults for optional ones.
- Expose typed settings (upstream URL, contract, intervals, DB path, API bind)
  for use across the poller, fetcher, parser and API server.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from whisper_indexer.config.env import (
    _env_float,
    _env_int,
    _env_str,
    get_contract_id,
    get_db_path,
    get_neardata_url,
    get_start_block,
    load_indexer_env,
)

# ~170 blocks/min, under the upstream 180/min rate limit
DEFAULT_POLL_INTERVAL_SEC = 0.35
DEFAULT_CATCHUP_INTERVAL_SEC = 0.05
DEFAULT_IDLE_INTERVAL_SEC = 1.0
DEFAULT_CATCHUP_THRESHOLD = 100
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_BASE_SEC = 1.0
DEFAULT_TIP_REFRESH_EVERY = 200
DEFAULT_ERROR_DELAY_SEC = 5.0
DEFAULT_REQUEST_TIMEOUT_SEC = 30.0


@dataclass(frozen=True)
class Settings:
    """Typed view of the indexer configuration."""

    neardata_url: str
    contract_id: str
    start_block: int | None
    db_path: Path
    api_host: str = "0.0.0.0"
    api_port: int = 3001
    poll_interval_sec: float = DEFAULT_POLL_INTERVAL_SEC
    catchup_interval_sec: float = DEFAULT_CATCHUP_INTERVAL_SEC
    idle_interval_sec: float = DEFAULT_IDLE_INTERVAL_SEC
    catchup_threshold: int = DEFAULT_CATCHUP_THRESHOLD
    max_retries: int = DEFAULT_MAX_RETRIES
    retry_base_sec: float = DEFAULT_RETRY_BASE_SEC
    tip_refresh_every: int = DEFAULT_TIP_REFRESH_EVERY
    error_delay_sec: float = DEFAULT_ERROR_DELAY_SEC
    request_timeout_sec: float = DEFAULT_REQUEST_TIMEOUT_SEC


def get_settings() -> Settings:
    """
    Return the current application settings.

    Raises:
        ValueError: a numeric variable is not parseable, or max_retries /
            tip_refresh_every is not positive.
    """
    load_indexer_env()
    settings = Settings(
        neardata_url=get_neardata_url(),
        contract_id=get_contract_id(),
        start_block=get_start_block(),
        db_path=get_db_path(),
        api_host=_env_str("API_HOST", "0.0.0.0"),
        api_port=_env_int("PORT", 3001),
        poll_interval_sec=_env_float("POLL_INTERVAL_SEC", DEFAULT_POLL_INTERVAL_SEC),
        catchup_interval_sec=_env_float("CATCHUP_INTERVAL_SEC", DEFAULT_CATCHUP_INTERVAL_SEC),
        idle_interval_sec=_env_float("IDLE_INTERVAL_SEC", DEFAULT_IDLE_INTERVAL_SEC),
        catchup_threshold=_env_int("CATCHUP_THRESHOLD", DEFAULT_CATCHUP_THRESHOLD),
        max_retries=_env_int("MAX_RETRIES", DEFAULT_MAX_RETRIES),
        retry_base_sec=_env_float("RETRY_BASE_SEC", DEFAULT_RETRY_BASE_SEC),
        tip_refresh_every=_env_int("TIP_REFRESH_EVERY", DEFAULT_TIP_REFRESH_EVERY),
        error_delay_sec=_env_float("ERROR_DELAY_SEC", DEFAULT_ERROR_DELAY_SEC),
        request_timeout_sec=_env_float("REQUEST_TIMEOUT_SEC", DEFAULT_REQUEST_TIMEOUT_SEC),
    )
    if settings.max_retries < 1:
        raise ValueError("MAX_RETRIES must be at least 1")
    if settings.tip_refresh_every < 1:
        raise ValueError("TIP_REFRESH_EVERY must be at least 1")
    return settings
