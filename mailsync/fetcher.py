"""
Batch retrieval of full messages.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Sequence

from .exceptions import CredentialError, RemoteServiceError
from .models import MessageRef
from .providers.base import MailService

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 50


@dataclass
class FetchOutcome:
    """Result of fetching one message: either the message or the error."""
    ref: MessageRef
    message: Optional[Dict[str, Any]] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def batches(refs: Sequence[MessageRef], size: int) -> Iterator[List[MessageRef]]:
    """Split refs into consecutive batches."""
    for start in range(0, len(refs), size):
        yield list(refs[start:start + size])


class MessageFetcher:
    """
    Fetches full messages with bounded concurrency.

    A failure fetching one message is reported in its outcome and never
    aborts the batch. A CredentialError means the whole token is unusable
    and propagates.
    """

    def __init__(
        self,
        service: MailService,
        concurrency: int = DEFAULT_BATCH_SIZE,
        timeout: float = 30.0
    ):
        self.service = service
        self.concurrency = concurrency
        self.timeout = timeout

    async def _fetch_one(self, ref: MessageRef, semaphore: asyncio.Semaphore) -> FetchOutcome:
        async with semaphore:
            try:
                message = await asyncio.wait_for(
                    asyncio.to_thread(self.service.get_message, ref.message_id),
                    timeout=self.timeout
                )
                return FetchOutcome(ref=ref, message=message)
            except CredentialError:
                raise
            except asyncio.TimeoutError:
                logger.error(f"Timed out fetching message {ref.message_id}")
                return FetchOutcome(
                    ref=ref,
                    error=RemoteServiceError(f"get message {ref.message_id}: timed out")
                )
            except Exception as e:
                logger.error(f"Error fetching message {ref.message_id}: {e}")
                return FetchOutcome(ref=ref, error=e)

    async def fetch_batch(self, refs: Sequence[MessageRef]) -> List[FetchOutcome]:
        """
        Fetch a batch of messages concurrently.

        Returns:
            One outcome per ref, in the order of refs
        """
        semaphore = asyncio.Semaphore(self.concurrency)
        tasks = [asyncio.ensure_future(self._fetch_one(ref, semaphore)) for ref in refs]
        try:
            outcomes = await asyncio.gather(*tasks)
        except CredentialError:
            for task in tasks:
                task.cancel()
            raise

        failed = sum(1 for o in outcomes if not o.ok)
        logger.info(f"Fetched {len(outcomes) - failed} of {len(outcomes)} messages in batch")
        return list(outcomes)
