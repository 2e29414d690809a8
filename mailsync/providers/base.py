"""
Interfaces for the remote services the sync engine consumes.
The Gmail and Drive clients implement these; tests substitute in-memory fakes.
"""

from abc import ABC, abstractmethod
from typing import List, Dict, Any, Optional

from ..models import UploadedFile


class MailService(ABC):
    """
    Remote mail API.

    Implementations raise CredentialError or RemoteServiceError; they never
    return partial results for a failed call.
    """

    @abstractmethod
    def list_messages(
        self,
        label: str,
        query: str,
        page_token: Optional[str] = None,
        page_size: int = 100
    ) -> Dict[str, Any]:
        """
        List message identifiers matching a label and query.

        Returns:
            Dictionary with 'messages' (list of {'id', 'threadId'}) and an
            optional 'nextPageToken'
        """
        pass

    @abstractmethod
    def get_message(self, message_id: str) -> Dict[str, Any]:
        """Get a full message including its payload part tree."""
        pass

    @abstractmethod
    def get_attachment(self, message_id: str, attachment_id: str) -> Optional[bytes]:
        """
        Download an attachment payload.

        Returns:
            Decoded bytes, or None if the provider returned no data
        """
        pass

    @abstractmethod
    def modify_message(self, message_id: str, remove_labels: List[str]) -> None:
        """Remove labels from a message (used for read-marking)."""
        pass

    @abstractmethod
    def get_profile(self) -> Dict[str, Any]:
        """
        Get the mailbox profile.

        Returns:
            Dictionary with 'emailAddress', 'messagesTotal' and 'threadsTotal'
        """
        pass

    @abstractmethod
    def list_labels(self) -> List[Dict[str, Any]]:
        """List the mailbox labels as {'id', 'name'} dictionaries."""
        pass


class ObjectStore(ABC):
    """Remote durable file store with named folders."""

    @abstractmethod
    def find_folder(self, name: str) -> Optional[str]:
        """Return the id of a folder with this name, or None."""
        pass

    @abstractmethod
    def create_folder(self, name: str) -> str:
        """Create a folder and return its id."""
        pass

    @abstractmethod
    def upload_file(
        self,
        folder_id: str,
        name: str,
        mime_type: str,
        data: bytes
    ) -> UploadedFile:
        """Upload a file into a folder."""
        pass
