"""
Shared fixtures: in-memory fakes for Gmail and Drive, and a temporary store.
"""

import base64
import itertools
import time
from datetime import datetime, timezone
from typing import List, Dict, Any, Optional

import pytest

from mailsync.exceptions import RemoteServiceError
from mailsync.models import UploadedFile
from mailsync.providers.base import MailService, ObjectStore
from mailsync.storage import EmailStorage

FIXED_NOW = datetime(2026, 10, 17, 12, 0, tzinfo=timezone.utc)


def b64(text, encoding='utf-8') -> str:
    """Encode text (or bytes) the way the Gmail API does: base64url, no padding."""
    raw = text if isinstance(text, bytes) else text.encode(encoding)
    return base64.urlsafe_b64encode(raw).decode('ascii').rstrip('=')


def text_part(mime_type: str, text: str, part_id: str = "", charset: Optional[str] = None) -> Dict[str, Any]:
    headers = []
    if charset:
        headers.append({'name': 'Content-Type', 'value': f'{mime_type}; charset="{charset}"'})
    encoding = charset or 'utf-8'
    return {
        'partId': part_id,
        'mimeType': mime_type,
        'filename': '',
        'headers': headers,
        'body': {'size': len(text), 'data': b64(text, encoding)},
    }


def attachment_part(filename: str, mime_type: str = 'application/pdf',
                    attachment_id: str = 'att-1', size: int = 1024, part_id: str = "") -> Dict[str, Any]:
    return {
        'partId': part_id,
        'mimeType': mime_type,
        'filename': filename,
        'headers': [],
        'body': {'size': size, 'attachmentId': attachment_id},
    }


def multipart(subtype: str, *parts, part_id: str = "") -> Dict[str, Any]:
    return {
        'partId': part_id,
        'mimeType': f'multipart/{subtype}',
        'filename': '',
        'headers': [],
        'body': {'size': 0},
        'parts': list(parts),
    }


def make_message(
    message_id: str,
    payload: Optional[Dict[str, Any]] = None,
    subject: Optional[str] = "Hello",
    sender: Optional[str] = "Alice <alice@example.com>",
    to: Optional[str] = "bob@example.com",
    cc: Optional[str] = None,
    date: Optional[str] = "Fri, 16 Oct 2026 09:30:00 +0000",
    labels: Optional[List[str]] = None,
    snippet: str = "Hello there",
    thread_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Build a full Gmail API message resource."""
    payload = dict(payload or text_part('text/plain', 'Hello there'))
    headers = []
    for name, value in (('Subject', subject), ('From', sender), ('To', to), ('Cc', cc), ('Date', date)):
        if value is not None:
            headers.append({'name': name, 'value': value})
    payload['headers'] = headers + list(payload.get('headers') or [])
    return {
        'id': message_id,
        'threadId': thread_id or f"thread-{message_id}",
        'labelIds': labels if labels is not None else ['INBOX', 'UNREAD'],
        'snippet': snippet,
        'payload': payload,
    }


class FakeMailService(MailService):
    """In-memory Gmail: serves listed pages, messages and attachments."""

    def __init__(self, messages: Optional[List[Dict[str, Any]]] = None, page_size: Optional[int] = None):
        self.messages = {m['id']: m for m in messages or []}
        self.order = [m['id'] for m in messages or []]
        self.fixed_page_size = page_size
        self.pages: Optional[List[Dict[str, Any]]] = None
        self.attachments: Dict[tuple, bytes] = {}
        self.list_calls: List[Dict[str, Any]] = []
        self.get_calls: List[str] = []
        self.modified: List[tuple] = []
        self.list_error: Optional[Exception] = None
        self.list_error_on_call: Optional[int] = None
        self.get_errors: Dict[str, Exception] = {}
        self.get_delay: float = 0.0
        self.attachment_errors: Dict[tuple, Exception] = {}
        self.profile_error: Optional[Exception] = None

    def list_messages(self, label, query, page_token=None, page_size=100):
        self.list_calls.append({
            'label': label, 'query': query, 'page_token': page_token, 'page_size': page_size
        })
        call_number = len(self.list_calls)
        if self.list_error is not None and (
                self.list_error_on_call is None or self.list_error_on_call == call_number):
            raise self.list_error

        if self.pages is not None:
            index = int(page_token) if page_token else 0
            return self.pages[index]

        size = self.fixed_page_size or page_size
        start = int(page_token) if page_token else 0
        ids = self.order[start:start + size]
        response = {
            'messages': [{'id': i, 'threadId': self.messages[i]['threadId']} for i in ids],
        }
        if start + size < len(self.order):
            response['nextPageToken'] = str(start + size)
        return response

    def get_message(self, message_id):
        self.get_calls.append(message_id)
        if self.get_delay:
            time.sleep(self.get_delay)
        if message_id in self.get_errors:
            raise self.get_errors[message_id]
        if message_id not in self.messages:
            raise RemoteServiceError(f"get message {message_id}: HTTP 404 notFound", status=404)
        return self.messages[message_id]

    def get_attachment(self, message_id, attachment_id):
        key = (message_id, attachment_id)
        if key in self.attachment_errors:
            raise self.attachment_errors[key]
        return self.attachments.get(key)

    def modify_message(self, message_id, remove_labels):
        self.modified.append((message_id, tuple(remove_labels)))

    def get_profile(self):
        if self.profile_error is not None:
            raise self.profile_error
        return {
            'emailAddress': 'user1@example.com',
            'messagesTotal': len(self.messages),
            'threadsTotal': len({m['threadId'] for m in self.messages.values()}),
        }

    def list_labels(self):
        return [{'id': 'INBOX', 'name': 'INBOX'}, {'id': 'Label_1', 'name': 'Invoices'}]


def paged_listing(pages: int, per_page: int) -> List[Dict[str, Any]]:
    """Listing responses of fixed-size pages, the last without a token."""
    counter = itertools.count(1)
    result = []
    for index in range(pages):
        messages = [{'id': f"m{next(counter)}", 'threadId': 't'} for _ in range(per_page)]
        page = {'messages': messages}
        if index < pages - 1:
            page['nextPageToken'] = str(index + 1)
        result.append(page)
    return result


class FakeObjectStore(ObjectStore):
    """In-memory Drive."""

    def __init__(self, existing_folders: Optional[Dict[str, str]] = None):
        self.folders = dict(existing_folders or {})
        self.find_calls: List[str] = []
        self.create_calls: List[str] = []
        self.uploads: List[Dict[str, Any]] = []
        self.fail_uploads_for: set = set()
        self.find_error: Optional[Exception] = None
        self._ids = itertools.count(1)

    def find_folder(self, name):
        self.find_calls.append(name)
        if self.find_error is not None:
            raise self.find_error
        return self.folders.get(name)

    def create_folder(self, name):
        self.create_calls.append(name)
        folder_id = f"folder-{next(self._ids)}"
        self.folders[name] = folder_id
        return folder_id

    def upload_file(self, folder_id, name, mime_type, data):
        if name in self.fail_uploads_for:
            raise RemoteServiceError(f"upload {name!r}: HTTP 500 backendError", status=500)
        file_id = f"file-{next(self._ids)}"
        self.uploads.append({
            'folder_id': folder_id, 'name': name, 'mime_type': mime_type, 'data': data, 'file_id': file_id
        })
        return UploadedFile(file_id=file_id, access_link=f"https://drive.google.com/file/d/{file_id}/view")


@pytest.fixture
def storage(tmp_path):
    return EmailStorage(str(tmp_path / "mailsync.db"))


@pytest.fixture
def principal(storage):
    """A principal with a valid Google account."""
    storage.add_principal("user-1", email="user1@example.com", name="User One")
    storage.save_account(
        "user-1",
        provider_account_id="google-1",
        access_token="ya29.token",
        refresh_token="1//refresh",
        expires_at=int(datetime(2099, 1, 1, tzinfo=timezone.utc).timestamp()),
        scope="https://www.googleapis.com/auth/gmail.readonly https://www.googleapis.com/auth/drive.file",
    )
    return "user-1"
