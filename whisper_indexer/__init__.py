"""
Whisper indexer: NEAR block stream to queryable message and profile store.

Polls a neardata-style block API, extracts `whisper` NEP-297 events emitted by
one contract, persists them idempotently into SQLite, and serves them over a
read-only HTTP API.
"""

__version__ = "0.1.0"
