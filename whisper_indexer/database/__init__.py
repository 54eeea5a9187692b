"""
Database abstraction layer: messages, profiles, indexing checkpoint.

SQLite via Database and get_database(); backend is swappable.
"""

from whisper_indexer.database.database import (
    CHECKPOINT_KEY,
    Database,
    DatabaseBackend,
    SQLiteBackend,
    get_database,
)
from whisper_indexer.database.models import (
    ConversationSummary,
    MessageRecord,
    ProfileRecord,
)

__all__ = [
    "CHECKPOINT_KEY",
    "Database",
    "DatabaseBackend",
    "SQLiteBackend",
    "get_database",
    "ConversationSummary",
    "MessageRecord",
    "ProfileRecord",
]
