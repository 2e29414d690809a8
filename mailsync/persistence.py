"""
Idempotent persistence of extracted messages.

Writes happen in two phases: the message row first (with no attachment
links), then one row per offloaded attachment and a follow-up update of the
message's attachment links.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from .exceptions import CredentialError, MailSyncError
from .models import ExtractedContent, MessageRecord, MessageRef, StoredAttachment
from .offloader import AttachmentOffloader
from .providers.base import MailService
from .storage import EmailStorage

logger = logging.getLogger(__name__)

DEFAULT_SUBJECT = "No Subject"
DEFAULT_SENDER = "Unknown Sender"
UNREAD_LABEL = "UNREAD"


def normalize(
    ref: MessageRef,
    content: ExtractedContent,
    principal_id: str,
    now: Optional[datetime] = None
) -> MessageRecord:
    """Apply every field default once, producing an insert-ready record."""
    labels = list(content.labels or [])
    return MessageRecord(
        message_id=ref.message_id,
        thread_id=ref.thread_id or ref.message_id,
        principal_id=principal_id,
        subject=content.subject or DEFAULT_SUBJECT,
        sender=content.sender or DEFAULT_SENDER,
        recipients=list(content.recipients or []),
        cc_recipients=list(content.cc_recipients or []),
        body_text=content.body_text or None,
        body_html=content.body_html or None,
        snippet=content.snippet or '',
        received_at=content.received_at or now or datetime.now(timezone.utc),
        is_read=UNREAD_LABEL not in labels,
        labels=labels,
    )


@dataclass
class StoreResult:
    """Outcome of storing one message."""
    email: Dict[str, Any]
    created: bool
    attachments: List[StoredAttachment] = field(default_factory=list)
    attachment_errors: int = 0


class MessagePersister:
    """
    Stores messages keyed by provider message id.

    An already stored message is returned unchanged; it is never updated or
    duplicated. Attachment failures are isolated per attachment, except a
    CredentialError: the token is unusable for every later attachment too, so
    the new message row is removed again and the error propagates.
    """

    def __init__(
        self,
        storage: EmailStorage,
        offloader: Optional[AttachmentOffloader] = None,
        mail: Optional[MailService] = None,
        mark_as_read: bool = False
    ):
        self.storage = storage
        self.offloader = offloader
        self.mail = mail
        self.mark_as_read = mark_as_read

    async def _offload_all(self, ref: MessageRef, content: ExtractedContent):
        stored = []
        errors = 0
        for descriptor in content.attachments:
            try:
                attachment = await asyncio.to_thread(
                    self.offloader.offload, ref.message_id, descriptor
                )
                stored.append(attachment)
            except CredentialError:
                raise
            except MailSyncError as e:
                errors += 1
                logger.error(f"Error processing attachment {descriptor.filename} of {ref.message_id}: {e}")
            except Exception as e:
                errors += 1
                logger.exception(
                    f"Unexpected error processing attachment {descriptor.filename} of {ref.message_id}: {e}"
                )
        return stored, errors

    async def store(
        self,
        ref: MessageRef,
        content: ExtractedContent,
        principal_id: str
    ) -> StoreResult:
        """
        Store a message and offload its attachments.

        Returns:
            StoreResult with created=False when the message already existed
        """
        record = normalize(ref, content, principal_id)
        email, created = await asyncio.to_thread(self.storage.insert_email, record)
        if not created:
            logger.info(f"Email {ref.message_id} already exists in database, skipping")
            return StoreResult(email=email, created=False)

        logger.info(f"Stored email {ref.message_id} in database")
        result = StoreResult(email=email, created=True)

        if content.attachments and self.offloader is not None:
            logger.info(f"Processing {len(content.attachments)} attachments for email {ref.message_id}")
            try:
                stored, errors = await self._offload_all(ref, content)
            except (CredentialError, asyncio.CancelledError):
                # drop the row so a retry offloads again instead of skipping it
                await asyncio.to_thread(self.storage.delete_email, email['id'])
                logger.warning(f"Removed email {ref.message_id}: attachments were not offloaded")
                raise
            result.attachment_errors = errors

            for attachment in stored:
                await asyncio.to_thread(self.storage.add_attachment, email['id'], attachment)
            result.attachments = stored

            if stored:
                links = [a.drive_link for a in stored]
                await asyncio.to_thread(self.storage.update_attachment_links, email['id'], links)
                email['attachment_links'] = links
                logger.info(f"Updated email {ref.message_id} with {len(links)} attachment links")

        if self.mark_as_read and self.mail is not None and not record.is_read:
            try:
                await asyncio.to_thread(self.mail.modify_message, ref.message_id, [UNREAD_LABEL])
                logger.debug(f"Marked email {ref.message_id} as read")
            except MailSyncError as e:
                logger.warning(f"Error marking email {ref.message_id} as read: {e}")

        return result
