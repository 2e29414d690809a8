"""
Content extraction for Gmail API messages.

Turns the nested ``payload`` of a full message into structured content:
headers, plain-text body, HTML body and attachment descriptors. Extraction
never fails on missing or malformed optional fields.
"""

import binascii
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import List, Dict, Any, Optional

from .models import (
    AttachmentDescriptor,
    Container,
    ExtractedContent,
    Leaf,
    PartNode,
)
from .providers.gmail import decode_base64url

logger = logging.getLogger(__name__)

DEFAULT_CHARSET = 'utf-8'

_CHARSET_RE = re.compile(r'charset\s*=\s*"?([^";\s]+)"?', re.IGNORECASE)


# ==================== Headers ====================

def get_header(headers: List[Dict[str, Any]], name: str) -> str:
    """Get header value by name (case-insensitive). Returns '' if absent."""
    wanted = name.lower()
    for header in headers or []:
        if (header.get('name') or '').lower() == wanted:
            return header.get('value') or ''
    return ""


def split_addresses(value: str) -> List[str]:
    """
    Split an address header on commas.

    Commas inside double quotes or angle brackets do not split, so
    '"Doe, Jane" <jane@example.com>' stays one entry.
    """
    if not value:
        return []

    addresses = []
    current = []
    in_quotes = False
    in_angle = False
    for char in value:
        if char == '"':
            in_quotes = not in_quotes
        elif char == '<' and not in_quotes:
            in_angle = True
        elif char == '>' and not in_quotes:
            in_angle = False
        elif char == ',' and not in_quotes and not in_angle:
            addresses.append(''.join(current))
            current = []
            continue
        current.append(char)
    addresses.append(''.join(current))

    return [addr.strip() for addr in addresses if addr.strip()]


def parse_date(value: str, now: Optional[datetime] = None) -> datetime:
    """Parse a Date header to an aware datetime; fall back to now."""
    fallback = now or datetime.now(timezone.utc)
    if not value:
        return fallback
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        logger.debug(f"Unparsable Date header: {value!r}")
        return fallback
    if parsed is None:
        return fallback
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ==================== Bodies ====================

def charset_of(headers: Dict[str, str]) -> str:
    """Declared charset of a part, from its Content-Type header."""
    for name, value in (headers or {}).items():
        if name.lower() == 'content-type':
            match = _CHARSET_RE.search(value or '')
            if match:
                return match.group(1).lower()
    return DEFAULT_CHARSET


def decode_body(data: str, charset: str = DEFAULT_CHARSET) -> Optional[str]:
    """Decode base64url body data to text. Returns None if data is unusable."""
    if not data:
        return None
    try:
        raw = decode_base64url(data)
    except (binascii.Error, ValueError):
        logger.debug("Body data is not valid base64")
        return None
    try:
        return raw.decode(charset, errors='replace')
    except LookupError:
        return raw.decode(DEFAULT_CHARSET, errors='replace')


# ==================== Part tree ====================

def parse_part_tree(payload: Dict[str, Any]) -> PartNode:
    """
    Build a tagged part tree from a Gmail payload.

    A payload without sub-parts becomes a single Leaf.
    """
    payload = payload or {}
    mime_type = payload.get('mimeType') or ''
    part_id = payload.get('partId') or ''
    filename = payload.get('filename') or ''
    children = payload.get('parts') or []

    body = payload.get('body') or {}
    try:
        size = int(body.get('size') or 0)
    except (TypeError, ValueError):
        size = 0

    if children:
        return Container(
            mime_type=mime_type,
            part_id=part_id,
            filename=filename,
            parts=[parse_part_tree(child) for child in children],
            attachment_id=body.get('attachmentId'),
            size=size,
        )

    headers = {
        h.get('name', ''): h.get('value', '')
        for h in payload.get('headers') or []
        if h.get('name')
    }

    return Leaf(
        mime_type=mime_type,
        filename=filename,
        part_id=part_id,
        data=body.get('data'),
        attachment_id=body.get('attachmentId'),
        size=size,
        headers=headers,
    )


@dataclass(frozen=True)
class PartSummary:
    """What a subtree contributes to the message."""
    body_text: Optional[str] = None
    body_html: Optional[str] = None
    attachments: List[AttachmentDescriptor] = field(default_factory=list)

    def then(self, later: 'PartSummary') -> 'PartSummary':
        """Combine with a summary that comes later in document order."""
        return PartSummary(
            body_text=later.body_text if later.body_text is not None else self.body_text,
            body_html=later.body_html if later.body_html is not None else self.body_html,
            attachments=self.attachments + later.attachments,
        )


def _attachment_summary(node: PartNode) -> PartSummary:
    descriptor = AttachmentDescriptor(
        filename=node.filename,
        mime_type=node.mime_type or 'application/octet-stream',
        size=node.size,
        attachment_id=node.attachment_id,
        part_id=node.part_id,
    )
    return PartSummary(attachments=[descriptor])


def fold_parts(node: PartNode) -> PartSummary:
    """
    Fold a part tree into bodies and attachment descriptors.

    Any part with a filename is an attachment whatever its MIME type. When
    several parts share a text type, the last one in document order wins.
    """
    if node.filename:
        return _attachment_summary(node)

    if isinstance(node, Container):
        summary = PartSummary()
        for child in node.parts:
            summary = summary.then(fold_parts(child))
        return summary

    mime_type = node.mime_type.lower()
    if mime_type == 'text/plain':
        return PartSummary(body_text=decode_body(node.data, charset_of(node.headers)))
    if mime_type == 'text/html':
        return PartSummary(body_html=decode_body(node.data, charset_of(node.headers)))
    return PartSummary()


# ==================== Message ====================

def extract(message: Dict[str, Any], now: Optional[datetime] = None) -> ExtractedContent:
    """
    Extract structured content from a full Gmail message.

    Args:
        message: Message resource returned by messages.get(format='full')
        now: Fallback receipt time when the Date header is missing or invalid

    Returns:
        ExtractedContent; To and Cc are kept as separate lists
    """
    payload = message.get('payload') or {}
    headers = payload.get('headers') or []

    summary = fold_parts(parse_part_tree(payload))

    return ExtractedContent(
        subject=get_header(headers, 'Subject'),
        sender=get_header(headers, 'From'),
        recipients=split_addresses(get_header(headers, 'To')),
        cc_recipients=split_addresses(get_header(headers, 'Cc')),
        received_at=parse_date(get_header(headers, 'Date'), now=now),
        snippet=message.get('snippet') or '',
        body_text=summary.body_text,
        body_html=summary.body_html,
        attachments=list(summary.attachments),
        labels=list(message.get('labelIds') or []),
    )
