"""
SQLite storage for grants, classifications and sync runs.
"""

from .db import Database
from .grant_store import GrantStore
from .classification_store import JunctionNormalizer
from .sync_run_store import SyncRunStore

__all__ = ['Database', 'GrantStore', 'JunctionNormalizer', 'SyncRunStore']
