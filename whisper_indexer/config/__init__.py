"""
Configuration management for the Whisper indexer.

Loads and validates settings from environment variables and optional .env
files. Exposes a single source of truth for all service configuration.
"""

from whisper_indexer.config.settings import Settings, get_settings  # noqa: F401

__all__ = ["Settings", "get_settings"]
