"""
Unit tests for mailsync/credentials.py.
"""

from datetime import timedelta

import pytest

from mailsync.credentials import StorageCredentialSupplier, check_credential
from mailsync.exceptions import CredentialError, PrincipalNotFoundError
from mailsync.models import Credential

from conftest import FIXED_NOW

GMAIL_READONLY = 'https://www.googleapis.com/auth/gmail.readonly'


def test_reads_stored_account(storage, principal):
    credential = StorageCredentialSupplier(storage).get_credential(principal)

    assert credential.access_token == 'ya29.token'
    assert credential.refresh_token == '1//refresh'
    assert GMAIL_READONLY in credential.scopes
    assert credential.expires_at.tzinfo is not None


def test_unknown_principal(storage):
    with pytest.raises(PrincipalNotFoundError):
        StorageCredentialSupplier(storage).get_credential('ghost')


def test_principal_without_account(storage):
    storage.add_principal('user-2')
    with pytest.raises(CredentialError, match="No Google account"):
        StorageCredentialSupplier(storage).get_credential('user-2')


def test_expired_token_is_rejected(storage, principal):
    storage.save_account(
        principal,
        provider_account_id='google-1',
        access_token='old',
        expires_at=1,
        scope=GMAIL_READONLY,
    )
    with pytest.raises(CredentialError, match="expired"):
        StorageCredentialSupplier(storage).get_credential(principal)


class TestCheckCredential:

    def test_missing_token(self):
        with pytest.raises(CredentialError):
            check_credential(Credential(access_token=''))

    def test_missing_gmail_scope(self):
        credential = Credential(
            access_token='t',
            scopes=frozenset({'https://www.googleapis.com/auth/drive.file'}),
        )
        with pytest.raises(CredentialError, match="Insufficient Gmail permissions"):
            check_credential(credential)

    def test_unreported_scopes_are_accepted(self):
        check_credential(Credential(access_token='t'))

    def test_expiry_boundary(self):
        credential = Credential(access_token='t', expires_at=FIXED_NOW)
        with pytest.raises(CredentialError):
            check_credential(credential, now=FIXED_NOW)
        check_credential(credential, now=FIXED_NOW - timedelta(seconds=1))
