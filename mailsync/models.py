"""
Data structures shared by the sync engine.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Dict, Any, Optional, FrozenSet, Union


@dataclass(frozen=True)
class Principal:
    """A user whose mailbox is synchronized."""
    principal_id: str
    email: Optional[str] = None
    name: Optional[str] = None
    last_email_sync: Optional[datetime] = None


@dataclass(frozen=True)
class Credential:
    """Bearer token set for one principal's Google account."""
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    scopes: FrozenSet[str] = frozenset()

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        now = now or datetime.now(timezone.utc)
        return self.expires_at <= now


@dataclass(frozen=True)
class MessageRef:
    """Identifier pair returned by listing, before content is fetched."""
    message_id: str
    thread_id: Optional[str] = None


# ==================== Part tree ====================

@dataclass(frozen=True)
class Leaf:
    """A message part with no sub-parts."""
    mime_type: str
    filename: str = ""
    part_id: str = ""
    data: Optional[str] = None
    attachment_id: Optional[str] = None
    size: int = 0
    headers: Dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class Container:
    """
    A node holding child parts.

    Usually multipart/*, but a forwarded message (message/rfc822) has a
    filename and its own attachment id alongside its sub-parts.
    """
    mime_type: str
    part_id: str = ""
    filename: str = ""
    parts: List["PartNode"] = field(default_factory=list)
    attachment_id: Optional[str] = None
    size: int = 0


PartNode = Union[Leaf, Container]


@dataclass(frozen=True)
class AttachmentDescriptor:
    """Attachment metadata found during extraction."""
    filename: str
    mime_type: str
    size: int
    attachment_id: Optional[str]
    part_id: str = ""


@dataclass
class ExtractedContent:
    """Result of decoding a fetched message. Optional fields may be empty."""
    subject: str = ""
    sender: str = ""
    recipients: List[str] = field(default_factory=list)
    cc_recipients: List[str] = field(default_factory=list)
    received_at: Optional[datetime] = None
    snippet: str = ""
    body_text: Optional[str] = None
    body_html: Optional[str] = None
    attachments: List[AttachmentDescriptor] = field(default_factory=list)
    labels: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class MessageRecord:
    """Fully defaulted message, ready to insert."""
    message_id: str
    thread_id: str
    principal_id: str
    subject: str
    sender: str
    recipients: List[str]
    cc_recipients: List[str]
    body_text: Optional[str]
    body_html: Optional[str]
    snippet: str
    received_at: datetime
    is_read: bool
    labels: List[str]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for storage."""
        return {
            'message_id': self.message_id,
            'thread_id': self.thread_id,
            'principal_id': self.principal_id,
            'subject': self.subject,
            'sender': self.sender,
            'recipients': list(self.recipients),
            'cc_recipients': list(self.cc_recipients),
            'body_text': self.body_text,
            'body_html': self.body_html,
            'snippet': self.snippet,
            'received_at': self.received_at.isoformat(),
            'is_read': self.is_read,
            'labels': list(self.labels),
        }


@dataclass(frozen=True)
class UploadedFile:
    """Reference returned by the object store after an upload."""
    file_id: str
    access_link: str


@dataclass(frozen=True)
class StoredAttachment:
    """An attachment copied to the object store."""
    file_name: str
    mime_type: str
    file_size: int
    drive_file_id: str
    drive_link: str


# ==================== Sync run ====================

class SyncState(str, Enum):
    """States of one synchronization run."""
    IDLE = "idle"
    READING_CHECKPOINT = "reading_checkpoint"
    LISTING = "listing"
    FETCHING = "fetching"
    PROCESSING = "processing"
    ADVANCING_CHECKPOINT = "advancing_checkpoint"
    FAILED = "failed"


@dataclass
class SyncResult:
    """Summary reported to the trigger surface."""
    principal_id: str
    state: SyncState = SyncState.IDLE
    success_count: int = 0
    error_count: int = 0
    total_count: int = 0
    skipped_count: int = 0
    attachment_errors: int = 0
    checkpoint: Optional[datetime] = None
    checkpoint_advanced: bool = False
    reauth_required: bool = False
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.state != SyncState.FAILED

    def to_dict(self) -> Dict[str, Any]:
        return {
            'principal_id': self.principal_id,
            'success': self.success,
            'state': self.state.value,
            'success_count': self.success_count,
            'error_count': self.error_count,
            'total_count': self.total_count,
            'skipped_count': self.skipped_count,
            'attachment_errors': self.attachment_errors,
            'checkpoint': self.checkpoint.isoformat() if self.checkpoint else None,
            'checkpoint_advanced': self.checkpoint_advanced,
            'reauth_required': self.reauth_required,
            'error': self.error,
        }
