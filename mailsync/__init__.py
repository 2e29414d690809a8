"""
Incremental Gmail synchronization.
Copies a user's inbox into SQLite and offloads attachments to Google Drive.
"""

from .config import SyncSettings, load_settings
from .models import SyncResult, SyncState
from .storage import EmailStorage
from .sync import SyncContext, SyncOrchestrator, build_orchestrator

__all__ = [
    'SyncSettings',
    'load_settings',
    'SyncResult',
    'SyncState',
    'EmailStorage',
    'SyncContext',
    'SyncOrchestrator',
    'build_orchestrator',
]
