"""memstore — dual-backend memory store for conversational assistants.

Persists short text memories per owner in SQLite and, when configured,
in an external semantic-search server spoken to over line-delimited
JSON-RPC. Falls back to the database whenever the semantic server is
unavailable.
"""

from .categories import VALID_CATEGORIES, Category
from .config import Config
from .models import MemoryMetadata, MemoryRecord
from .store import MemoryStore

__version__ = "0.1.0"

__all__ = [
    "Category",
    "Config",
    "MemoryMetadata",
    "MemoryRecord",
    "MemoryStore",
    "VALID_CATEGORIES",
]
