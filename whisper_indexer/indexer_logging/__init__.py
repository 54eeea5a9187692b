"""
Structured logging for the Whisper indexer.

JSON logs with timestamp, level, event_type. Use get_logger() in all modules.
"""

from whisper_indexer.indexer_logging.logger import configure_logging, get_logger

__all__ = ["configure_logging", "get_logger"]
