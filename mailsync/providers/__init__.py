"""
Remote service clients: Gmail for mail, Google Drive for attachments.
"""

from .base import MailService, ObjectStore
from .gmail import GmailService, GMAIL_SCOPES
from .drive import DriveStore, DRIVE_SCOPES

__all__ = [
    'MailService',
    'ObjectStore',
    'GmailService',
    'GMAIL_SCOPES',
    'DriveStore',
    'DRIVE_SCOPES',
]
