"""
Persistent Storage Module.

Provides SQLite-backed persistence for:
- Auctions, participants and bids
- Claim events and notification acknowledgements
- The auction code counter
"""

from roundbid.core.storage.sqlite_adapter import SQLiteAdapter
from roundbid.core.storage.storage_manager import StorageManager

__all__ = ["SQLiteAdapter", "StorageManager"]
