"""
Per-principal sync checkpoint.

The checkpoint is the lower time bound of the next sync window. It is
advanced to the run's start time, so messages arriving mid-run are covered
again next time; idempotent persistence absorbs the overlap.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from .storage import EmailStorage

logger = logging.getLogger(__name__)

DEFAULT_LOOKBACK_DAYS = 7


class CheckpointTracker:
    """Reads and advances principals.last_email_sync."""

    def __init__(
        self,
        storage: EmailStorage,
        lookback_days: int = DEFAULT_LOOKBACK_DAYS,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.storage = storage
        self.lookback_days = lookback_days
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def default_checkpoint(self) -> datetime:
        return self._clock() - timedelta(days=self.lookback_days)

    def get_checkpoint(self, principal_id: str) -> datetime:
        """
        Get the lower bound for the next sync of a principal.

        Falls back to now minus the lookback window when nothing is stored or
        the read fails.
        """
        try:
            stored = self.storage.get_last_sync(principal_id)
        except Exception as e:
            logger.error(f"Error reading checkpoint for {principal_id}, using default: {e}")
            return self.default_checkpoint()

        if stored is None:
            default = self.default_checkpoint()
            logger.info(
                f"No previous sync for {principal_id}, using default "
                f"({self.lookback_days} days ago): {default.isoformat()}"
            )
            return default

        logger.info(f"Found last sync checkpoint for {principal_id}: {stored.isoformat()}")
        return stored

    def advance_checkpoint(self, principal_id: str, timestamp: datetime) -> bool:
        """
        Overwrite the checkpoint.

        Returns:
            True if written. A failed write is logged and the next run simply
            re-covers the same window.
        """
        try:
            written = self.storage.set_last_sync(principal_id, timestamp)
        except Exception as e:
            logger.error(f"Error updating checkpoint for {principal_id}: {e}")
            return False

        if not written:
            logger.error(f"Checkpoint not updated: principal {principal_id} not found")
            return False

        logger.info(f"Updated last sync checkpoint to {timestamp.isoformat()} for {principal_id}")
        return True
