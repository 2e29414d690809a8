"""
Attachment offloading: Gmail attachment → Drive file.
"""

import logging
import threading
from typing import Optional

from .config import DEFAULT_ATTACHMENT_FOLDER
from .exceptions import AttachmentUnavailable
from .models import AttachmentDescriptor, StoredAttachment
from .providers.base import MailService, ObjectStore

logger = logging.getLogger(__name__)


class AttachmentOffloader:
    """
    Copies attachment payloads from the mail service into the object store.

    The destination folder is looked up by name and created only if absent,
    once per offloader; concurrent offloads share the resolved id.
    """

    def __init__(
        self,
        mail: MailService,
        store: ObjectStore,
        folder_name: str = DEFAULT_ATTACHMENT_FOLDER
    ):
        self.mail = mail
        self.store = store
        self.folder_name = folder_name
        self._folder_id: Optional[str] = None
        self._folder_lock = threading.Lock()

    def folder_id(self) -> str:
        """Resolve the attachment folder, creating it on first use."""
        with self._folder_lock:
            if self._folder_id is None:
                folder_id = self.store.find_folder(self.folder_name)
                if folder_id:
                    logger.info(f"Using existing folder: {self.folder_name} ({folder_id})")
                else:
                    folder_id = self.store.create_folder(self.folder_name)
                self._folder_id = folder_id
            return self._folder_id

    def download(self, message_id: str, descriptor: AttachmentDescriptor) -> bytes:
        """Download an attachment payload or raise AttachmentUnavailable."""
        if not descriptor.attachment_id:
            raise AttachmentUnavailable(
                f"Attachment {descriptor.filename!r} of {message_id} has no attachment id"
            )
        data = self.mail.get_attachment(message_id, descriptor.attachment_id)
        if not data:
            raise AttachmentUnavailable(
                f"No attachment data found for {descriptor.filename!r} of {message_id}"
            )
        return data

    def offload(self, message_id: str, descriptor: AttachmentDescriptor) -> StoredAttachment:
        """
        Download an attachment and upload it to the object store.

        Blocking; callers run it in a worker thread.
        """
        data = self.download(message_id, descriptor)
        uploaded = self.store.upload_file(
            self.folder_id(),
            descriptor.filename,
            descriptor.mime_type,
            data
        )
        logger.info(f"Offloaded attachment {descriptor.filename} of {message_id} ({uploaded.file_id})")
        return StoredAttachment(
            file_name=descriptor.filename,
            mime_type=descriptor.mime_type,
            file_size=descriptor.size or len(data),
            drive_file_id=uploaded.file_id,
            drive_link=uploaded.access_link,
        )
