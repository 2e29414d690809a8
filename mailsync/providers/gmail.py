"""
Gmail API client.
Implements the remote mail operations the sync engine needs.
"""

import base64
import logging
from typing import List, Dict, Any, Optional

from .base import MailService
from .google_client import GoogleApiClient

logger = logging.getLogger(__name__)

GMAIL_SCOPES = frozenset({
    'https://www.googleapis.com/auth/gmail.readonly',
    'https://www.googleapis.com/auth/gmail.modify',
    'https://mail.google.com/',
})


def decode_base64url(data: str) -> bytes:
    """Decode base64url data, repairing missing padding."""
    padding = 4 - len(data) % 4
    if padding != 4:
        data += '=' * padding
    return base64.urlsafe_b64decode(data)


class GmailService(GoogleApiClient, MailService):
    """
    Gmail API access for one principal.

    Every call is blocking; the fetcher and offloader run them in worker
    threads.
    """

    API_NAME = 'gmail'
    API_VERSION = 'v1'
    USER_ID = 'me'

    def list_messages(
        self,
        label: str,
        query: str,
        page_token: Optional[str] = None,
        page_size: int = 100
    ) -> Dict[str, Any]:
        """List message ids for a label and search query."""
        params = {
            'userId': self.USER_ID,
            'labelIds': [label],
            'q': query,
            'maxResults': page_size,
        }
        if page_token:
            params['pageToken'] = page_token

        logger.debug(f"Listing messages: label={label} q={query!r} page_token={page_token}")
        return self._execute(
            lambda service: service.users().messages().list(**params),
            f"list messages ({label})"
        )

    def get_message(self, message_id: str) -> Dict[str, Any]:
        """Get a full message."""
        return self._execute(
            lambda service: service.users().messages().get(
                userId=self.USER_ID,
                id=message_id,
                format='full'
            ),
            f"get message {message_id}"
        )

    def get_attachment(self, message_id: str, attachment_id: str) -> Optional[bytes]:
        """Download an attachment, returning None if the body has no data."""
        attachment = self._execute(
            lambda service: service.users().messages().attachments().get(
                userId=self.USER_ID,
                messageId=message_id,
                id=attachment_id
            ),
            f"get attachment {attachment_id} of {message_id}"
        )

        data = (attachment or {}).get('data', '')
        if not data:
            return None
        return decode_base64url(data)

    def modify_message(self, message_id: str, remove_labels: List[str]) -> None:
        """Remove labels from a message."""
        self._execute(
            lambda service: service.users().messages().modify(
                userId=self.USER_ID,
                id=message_id,
                body={'removeLabelIds': list(remove_labels)}
            ),
            f"modify message {message_id}"
        )

    def get_profile(self) -> Dict[str, Any]:
        """Get the mailbox profile (address and message totals)."""
        return self._execute(
            lambda service: service.users().getProfile(userId=self.USER_ID),
            "get profile"
        )

    def list_labels(self) -> List[Dict[str, Any]]:
        """List all labels of the mailbox."""
        result = self._execute(
            lambda service: service.users().labels().list(userId=self.USER_ID),
            "list labels"
        )
        return (result or {}).get('labels', [])
