"""
Main entrypoint: indexer (background thread) + FastAPI server (main thread).

    python main.py            # same as `whisper-indexer run`
    python main.py index      # indexer only

API-only: uvicorn whisper_indexer.api_server.server:app --host 0.0.0.0 --port 3001
"""

import sys

from whisper_indexer.main import main

if __name__ == "__main__":
    sys.exit(main())
