"""
Message listing with pagination.
"""

import logging
from datetime import datetime
from typing import Iterator, List

from .models import MessageRef
from .providers.base import MailService

logger = logging.getLogger(__name__)

DEFAULT_LABEL = 'INBOX'
DEFAULT_MAX_RESULTS = 2000
# Gmail's largest allowed page
DEFAULT_PAGE_SIZE = 100


def build_query(since: datetime) -> str:
    """Gmail search query for messages received after a timestamp."""
    return f"after:{int(since.timestamp())}"


class MessageLister:
    """
    Lists message references newer than a checkpoint.

    Listing is all-or-nothing: a failed page request propagates and nothing
    collected so far is returned.
    """

    def __init__(self, service: MailService, page_size: int = DEFAULT_PAGE_SIZE):
        self.service = service
        self.page_size = page_size

    def iter_pages(
        self,
        since: datetime,
        label: str = DEFAULT_LABEL,
        max_results: int = DEFAULT_MAX_RESULTS
    ) -> Iterator[List[MessageRef]]:
        """
        Yield pages of refs lazily, following continuation tokens.

        Stops when no token is returned or max_results refs have been yielded.
        The last page is trimmed so no more than max_results are yielded.
        """
        query = build_query(since)
        page_token = None
        collected = 0

        while True:
            response = self.service.list_messages(
                label=label,
                query=query,
                page_token=page_token,
                page_size=min(self.page_size, max_results - collected)
            ) or {}

            refs = [
                MessageRef(message_id=m['id'], thread_id=m.get('threadId'))
                for m in response.get('messages') or []
                if m.get('id')
            ]
            refs = refs[:max_results - collected]
            collected += len(refs)
            page_token = response.get('nextPageToken')

            logger.debug(f"Fetched page of {len(refs)} messages. Total so far: {collected}")
            yield refs

            if collected >= max_results:
                if page_token:
                    logger.info(f"Reached maximum of {max_results} messages. Stopping pagination.")
                break
            if not page_token:
                break

    def list(
        self,
        since: datetime,
        label: str = DEFAULT_LABEL,
        max_results: int = DEFAULT_MAX_RESULTS
    ) -> List[MessageRef]:
        """List all refs in the window, up to max_results."""
        logger.info(f"Listing {label} messages after {since.isoformat()}")
        refs = []
        for page in self.iter_pages(since, label=label, max_results=max_results):
            refs.extend(page)
        logger.info(f"Completed listing. Found {len(refs)} messages")
        return refs
