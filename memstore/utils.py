"""memstore utilities — shared constants and logging helpers."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

MEMSTORE_DIR = Path.home() / ".memstore"

DEFAULT_DB = MEMSTORE_DIR / "memory.db"
DEFAULT_SEMANTIC_COMMAND = "npx -y @modelcontextprotocol/server-memory"
DEFAULT_RPC_TIMEOUT = 2.0  # seconds
STARTUP_GRACE = 0.5  # seconds
POLL_INTERVAL = 0.01  # seconds
STOP_TIMEOUT = 2.0  # seconds
MAX_FRAME_BYTES = 4 * 1024 * 1024  # longest accepted response line


def get_logger(name: str, level: int = logging.INFO) -> logging.Logger:
    """Create a consistently-formatted logger."""
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        formatter = logging.Formatter(
            "[%(asctime)s] %(name)s %(levelname)s — %(message)s",
            datefmt="%H:%M:%S",
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    logger.setLevel(level)
    return logger
