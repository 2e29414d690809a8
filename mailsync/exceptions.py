"""
Error taxonomy for the sync engine.

Phase-level errors (credentials, listing) abort a run; item-level errors
(a single message fetch, a single attachment) are logged and counted.
"""


class MailSyncError(Exception):
    """Base class for all sync engine errors."""


class CredentialError(MailSyncError):
    """Missing, invalid or expired token, or insufficient scope.

    Always terminal for the run. Callers surface it as "reauthentication
    required".
    """


class RemoteServiceError(MailSyncError):
    """Transport failure, timeout or rate limit from a remote API."""

    def __init__(self, message: str, status: int = None):
        super().__init__(message)
        self.status = status


class AttachmentUnavailable(RemoteServiceError):
    """The provider returned no data for an attachment."""


class PrincipalNotFoundError(MailSyncError):
    """The principal to sync does not exist in the store."""
