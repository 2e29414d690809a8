"""
Email synchronization orchestrator.

One run walks: read checkpoint → list → fetch (per batch) → process →
advance checkpoint. Phase-level failures (credentials, listing) end the run in
the FAILED state without moving the checkpoint; item-level failures are
counted and the run carries on.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, List, Optional, Tuple

from .checkpoint import CheckpointTracker
from .config import SyncSettings
from .credentials import CredentialSupplier, StorageCredentialSupplier
from .exceptions import CredentialError, MailSyncError, PrincipalNotFoundError
from .extractor import extract
from .fetcher import FetchOutcome, MessageFetcher, batches
from .lister import MessageLister
from .models import Credential, SyncResult, SyncState
from .offloader import AttachmentOffloader
from .persistence import MessagePersister
from .providers.base import MailService, ObjectStore
from .storage import EmailStorage

logger = logging.getLogger(__name__)


def _gmail_factory(settings: SyncSettings) -> Callable[[Credential], MailService]:
    from .providers.gmail import GmailService
    return lambda credential: GmailService(credential, timeout=settings.request_timeout)


def _drive_factory(settings: SyncSettings) -> Callable[[Credential], ObjectStore]:
    from .providers.drive import DriveStore
    return lambda credential: DriveStore(credential, timeout=settings.request_timeout)


@dataclass
class SyncContext:
    """
    Everything a sync run depends on, passed in explicitly.

    The storage instance is shared by all runs. Mail and object-store clients
    are built per run from the principal's credential.
    """
    storage: EmailStorage
    settings: SyncSettings = field(default_factory=SyncSettings)
    credentials: Optional[CredentialSupplier] = None
    mail_factory: Optional[Callable[[Credential], MailService]] = None
    store_factory: Optional[Callable[[Credential], ObjectStore]] = None
    clock: Callable[[], datetime] = field(default=lambda: datetime.now(timezone.utc))

    def __post_init__(self):
        if self.credentials is None:
            self.credentials = StorageCredentialSupplier(self.storage)
        if self.mail_factory is None:
            self.mail_factory = _gmail_factory(self.settings)
        if self.store_factory is None:
            self.store_factory = _drive_factory(self.settings)


async def _gather_or_cancel(aws: List[Awaitable]) -> list:
    """Gather awaitables; if one raises, cancel the rest and re-raise."""
    futures = [asyncio.ensure_future(aw) for aw in aws]
    try:
        return await asyncio.gather(*futures)
    except BaseException:
        for future in futures:
            future.cancel()
        raise


class SyncOrchestrator:
    """
    Runs synchronizations for principals.

    Runs for the same principal are serialized; runs for different principals
    may proceed in parallel.
    The per-principal locks belong to the event loop of the first run, so an
    orchestrator serves a single loop; build a new one for each `asyncio.run`.
    """

    def __init__(self, context: SyncContext):
        self.context = context
        self.storage = context.storage
        self.settings = context.settings
        self.checkpoints = CheckpointTracker(
            context.storage,
            lookback_days=context.settings.lookback_days,
            clock=context.clock
        )
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, principal_id: str) -> asyncio.Lock:
        lock = self._locks.get(principal_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[principal_id] = lock
        return lock

    def _transition(self, result: SyncResult, state: SyncState) -> None:
        logger.debug(f"Sync {result.principal_id}: {result.state.value} -> {state.value}")
        result.state = state

    # ==================== Trigger surface ====================

    async def run_sync(self, principal_id: str) -> SyncResult:
        """
        Synchronize one principal's inbox.

        Returns only after the run finishes or fails.
        """
        lock = self._lock_for(principal_id)
        if lock.locked():
            logger.info(f"Sync already running for {principal_id}, waiting for it to finish")
        async with lock:
            return await self._run(principal_id)

    async def run_sync_all(self) -> Dict[str, SyncResult]:
        """Synchronize every principal that has a Google account, in parallel."""
        principals = await asyncio.to_thread(
            self.storage.get_all_principals, True
        )
        logger.info(f"Found {len(principals)} users with OAuth tokens")

        ids = [p['id'] for p in principals]
        results = await asyncio.gather(*(self.run_sync(pid) for pid in ids))
        return dict(zip(ids, results))

    # ==================== Run ====================

    async def _run(self, principal_id: str) -> SyncResult:
        result = SyncResult(principal_id=principal_id)
        run_started = self.context.clock()
        logger.info(f"Processing emails for user: {principal_id}")

        log_id = None
        try:
            principal = await asyncio.to_thread(self.storage.get_principal, principal_id)
            if not principal:
                raise PrincipalNotFoundError(f"User not found: {principal_id}")
            log_id = await asyncio.to_thread(self.storage.start_sync_log, principal_id)

            credential = await asyncio.to_thread(
                self.context.credentials.get_credential, principal_id
            )

            self._transition(result, SyncState.READING_CHECKPOINT)
            since = await asyncio.to_thread(self.checkpoints.get_checkpoint, principal_id)
            result.checkpoint = since

            mail = self.context.mail_factory(credential)
            store = self.context.store_factory(credential)

            self._transition(result, SyncState.LISTING)
            lister = MessageLister(mail, page_size=self.settings.page_size)
            refs = await asyncio.to_thread(
                lister.list, since, self.settings.label, self.settings.max_results
            )
            result.total_count = len(refs)
            logger.info(f"Found {len(refs)} new emails since last sync")

            if refs:
                await self._process_all(principal_id, refs, mail, store, result)

            self._transition(result, SyncState.ADVANCING_CHECKPOINT)
            await self._advance(principal_id, run_started, result)

            self._transition(result, SyncState.IDLE)
        except asyncio.CancelledError:
            logger.warning(f"Sync cancelled for {principal_id}; checkpoint not advanced")
            if log_id is not None:
                await asyncio.shield(self._close_log(log_id, 'failed', result, 'cancelled'))
            raise
        except Exception as e:
            self._fail(result, e)
            if log_id is not None:
                await self._close_log(log_id, 'failed', result, str(e))
            return result

        await self._close_log(log_id, 'success', result)
        logger.info(
            f"Successfully processed {result.success_count} out of {result.total_count} "
            f"emails for {principal_id} ({result.error_count} errors)"
        )
        return result

    async def _close_log(self, log_id: int, status: str, result: SyncResult, error: Optional[str] = None) -> None:
        try:
            await asyncio.to_thread(
                self.storage.complete_sync_log, log_id, status,
                result.total_count, result.success_count, result.error_count, error
            )
        except Exception as e:
            logger.error(f"Error completing sync log {log_id}: {e}")

    def _fail(self, result: SyncResult, error: Exception) -> SyncResult:
        if isinstance(error, CredentialError):
            result.reauth_required = True
            logger.error(f"Sync failed for {result.principal_id}, reauthentication required: {error}")
        elif isinstance(error, MailSyncError):
            logger.error(f"Sync failed for {result.principal_id}: {error}")
        else:
            logger.exception(f"Unexpected error syncing {result.principal_id}: {error}")
        result.error = str(error)
        self._transition(result, SyncState.FAILED)
        return result

    async def _process_all(self, principal_id, refs, mail, store, result: SyncResult) -> None:
        fetcher = MessageFetcher(
            mail,
            concurrency=self.settings.batch_size,
            timeout=self.settings.request_timeout
        )
        offloader = AttachmentOffloader(mail, store, folder_name=self.settings.attachment_folder)
        persister = MessagePersister(
            self.storage,
            offloader=offloader,
            mail=mail,
            mark_as_read=self.settings.mark_as_read
        )

        total_batches = (len(refs) + self.settings.batch_size - 1) // self.settings.batch_size
        for number, batch in enumerate(batches(refs, self.settings.batch_size), start=1):
            logger.info(f"Processing batch {number} of {total_batches} ({len(batch)} messages)")

            self._transition(result, SyncState.FETCHING)
            outcomes = await fetcher.fetch_batch(batch)

            self._transition(result, SyncState.PROCESSING)
            processed = await _gather_or_cancel([
                self._process_one(principal_id, outcome, persister) for outcome in outcomes
            ])
            for ok, created, attachment_errors in processed:
                if ok:
                    result.success_count += 1
                    if not created:
                        result.skipped_count += 1
                else:
                    result.error_count += 1
                result.attachment_errors += attachment_errors

    async def _process_one(
        self,
        principal_id: str,
        outcome: FetchOutcome,
        persister: MessagePersister
    ) -> Tuple[bool, bool, int]:
        """Extract and store one fetched message. Returns (ok, created, attachment_errors)."""
        if not outcome.ok:
            return False, False, 0

        try:
            content = extract(outcome.message, now=self.context.clock())
            stored = await persister.store(outcome.ref, content, principal_id)
            return True, stored.created, stored.attachment_errors
        except CredentialError:
            raise
        except Exception as e:
            logger.error(f"Error processing email {outcome.ref.message_id}: {e}")
            return False, False, 0

    async def _advance(self, principal_id: str, run_started: datetime, result: SyncResult) -> None:
        if result.error_count and not self.settings.advance_on_partial_failure:
            logger.warning(
                f"{result.error_count} messages failed for {principal_id}; "
                f"checkpoint left at {result.checkpoint.isoformat()}"
            )
            return

        advanced = await asyncio.to_thread(
            self.checkpoints.advance_checkpoint, principal_id, run_started
        )
        result.checkpoint_advanced = advanced
        if advanced:
            result.checkpoint = run_started


def build_orchestrator(settings: SyncSettings, storage: Optional[EmailStorage] = None) -> SyncOrchestrator:
    """Wire a production orchestrator from settings."""
    storage = storage or EmailStorage(settings.db_path)
    return SyncOrchestrator(SyncContext(storage=storage, settings=settings))
