"""
Google Drive client used as the attachment object store.
"""

import io
import logging
from typing import Optional

from googleapiclient.http import MediaIoBaseUpload

from .base import ObjectStore
from .google_client import GoogleApiClient
from ..models import UploadedFile

logger = logging.getLogger(__name__)

FOLDER_MIME_TYPE = 'application/vnd.google-apps.folder'
DRIVE_SCOPES = frozenset({
    'https://www.googleapis.com/auth/drive.file',
    'https://www.googleapis.com/auth/drive',
})


def _quote(value: str) -> str:
    """Escape a literal for a Drive search query."""
    return value.replace('\\', '\\\\').replace("'", "\\'")


class DriveStore(GoogleApiClient, ObjectStore):
    """Google Drive access for one principal."""

    API_NAME = 'drive'
    API_VERSION = 'v3'

    def find_folder(self, name: str) -> Optional[str]:
        """Find a non-trashed folder by exact name."""
        query = (
            f"name='{_quote(name)}' and mimeType='{FOLDER_MIME_TYPE}' "
            f"and trashed=false"
        )
        result = self._execute(
            lambda service: service.files().list(
                q=query,
                spaces='drive',
                fields='files(id, name)',
                pageSize=1
            ),
            f"find folder {name!r}"
        )
        files = (result or {}).get('files', [])
        return files[0]['id'] if files else None

    def create_folder(self, name: str) -> str:
        """Create a folder in the root of the drive."""
        folder = self._execute(
            lambda service: service.files().create(
                body={'name': name, 'mimeType': FOLDER_MIME_TYPE},
                fields='id'
            ),
            f"create folder {name!r}"
        )
        logger.info(f"Created Drive folder: {name} ({folder['id']})")
        return folder['id']

    def upload_file(
        self,
        folder_id: str,
        name: str,
        mime_type: str,
        data: bytes
    ) -> UploadedFile:
        """Upload bytes as a new file inside a folder."""
        media = MediaIoBaseUpload(
            io.BytesIO(data),
            mimetype=mime_type or 'application/octet-stream',
            resumable=False
        )
        created = self._execute(
            lambda service: service.files().create(
                body={'name': name, 'parents': [folder_id]},
                media_body=media,
                fields='id, name, webViewLink'
            ),
            f"upload {name!r}"
        )
        logger.debug(f"Uploaded file to Drive: {name} ({created['id']})")
        return UploadedFile(
            file_id=created['id'],
            access_link=created.get('webViewLink', '')
        )
