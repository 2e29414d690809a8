"""
Credential supply for sync runs.

Tokens are acquired and refreshed by the authentication layer, which writes
them to the accounts table. The sync engine only reads them and rejects
unusable ones up front.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional

from .exceptions import CredentialError, PrincipalNotFoundError
from .models import Credential
from .providers.gmail import GMAIL_SCOPES
from .storage import EmailStorage

logger = logging.getLogger(__name__)


class CredentialSupplier(ABC):
    """Provides a currently valid credential for a principal."""

    @abstractmethod
    def get_credential(self, principal_id: str) -> Credential:
        """
        Raises:
            PrincipalNotFoundError: principal does not exist
            CredentialError: no usable token
        """
        pass


def check_credential(credential: Credential, now: Optional[datetime] = None) -> None:
    """Raise CredentialError if a credential is missing, expired or under-scoped."""
    if not credential.access_token:
        raise CredentialError("Google account missing access token")
    if credential.is_expired(now):
        raise CredentialError(
            f"Access token expired at {credential.expires_at.isoformat()}; reauthentication required"
        )
    # An empty scope set means the grant did not report scopes; let the API decide.
    if credential.scopes and not GMAIL_SCOPES.intersection(credential.scopes):
        raise CredentialError(
            "Insufficient Gmail permissions. Please sign out and sign in again to grant access to Gmail."
        )


class StorageCredentialSupplier(CredentialSupplier):
    """Reads the principal's Google account from the relational store."""

    def __init__(self, storage: EmailStorage, provider: str = 'google'):
        self.storage = storage
        self.provider = provider

    def get_credential(self, principal_id: str) -> Credential:
        if not self.storage.get_principal(principal_id):
            raise PrincipalNotFoundError(f"User not found: {principal_id}")

        account = self.storage.get_account(principal_id, self.provider)
        if not account:
            raise CredentialError(f"No Google account found for user: {principal_id}")

        expires_at = None
        if account.get('expires_at'):
            expires_at = datetime.fromtimestamp(int(account['expires_at']), tz=timezone.utc)

        scopes = frozenset((account.get('scope') or '').split())
        credential = Credential(
            access_token=account.get('access_token') or '',
            refresh_token=account.get('refresh_token'),
            expires_at=expires_at,
            scopes=scopes,
        )
        check_credential(credential)
        logger.debug(
            f"Credential for {principal_id}: refresh_token={'yes' if credential.refresh_token else 'no'}, "
            f"expires_at={expires_at.isoformat() if expires_at else None}"
        )
        return credential
