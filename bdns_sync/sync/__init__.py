"""
Sync orchestration and control surface.
"""

from .orchestrator import SyncOrchestrator
from .control import ControlResponse, start_sync, stop_sync, sync_status, list_active_syncs

__all__ = [
    'SyncOrchestrator',
    'ControlResponse',
    'start_sync',
    'stop_sync',
    'sync_status',
    'list_active_syncs',
]
