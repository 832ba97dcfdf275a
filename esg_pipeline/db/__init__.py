"""Persistence collaborators: SQLite status store and file-based record stores.

Provides:
- StatusStore for per-record processing status and batch bookkeeping
- RawResponseStore for raw model text kept for debugging
- RecordStore for extracted records
"""

from .file_store import RawResponseStore, RecordStore
from .status_store import StatusStore

__all__ = ["RawResponseStore", "RecordStore", "StatusStore"]
