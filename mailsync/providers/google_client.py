"""
Shared plumbing for Google API clients.

Builds google-auth credentials from a Credential, gives each worker thread its
own authorized HTTP transport, and translates client exceptions into the sync
engine's error taxonomy.
"""
from __future__ import annotations

import json
import logging
import threading
from datetime import timezone
from typing import Any, Callable, List, Optional, Tuple

import httplib2
from google.auth.exceptions import GoogleAuthError, RefreshError, TransportError
from google.oauth2.credentials import Credentials
from google_auth_httplib2 import AuthorizedHttp
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from ..exceptions import CredentialError, RemoteServiceError
from ..models import Credential

logger = logging.getLogger(__name__)

# 403 reasons that mean the token lacks a grant, not that we were throttled
AUTH_FAILURE_REASONS = {
    'insufficientPermissions',
    'authError',
    'forbidden',
    'ACCESS_TOKEN_SCOPE_INSUFFICIENT',
}

# Google sets status PERMISSION_DENIED on these too, so they are checked first
RATE_LIMIT_REASONS = {
    'rateLimitExceeded',
    'userRateLimitExceeded',
    'quotaExceeded',
    'dailyLimitExceeded',
    'RATE_LIMIT_EXCEEDED',
}

# Only trusted when the body carries no more specific reason
AUTH_FAILURE_STATUSES = {'PERMISSION_DENIED', 'UNAUTHENTICATED'}


def to_google_credentials(credential: Credential) -> Credentials:
    """
    Convert a Credential into google-auth Credentials.

    No client id or secret is set, so the library cannot refresh the token on
    its own; an expired token surfaces as RefreshError.
    """
    expiry = None
    if credential.expires_at is not None:
        # google-auth compares against naive UTC
        expiry = credential.expires_at.astimezone(timezone.utc).replace(tzinfo=None)

    creds = Credentials(
        token=credential.access_token,
        refresh_token=credential.refresh_token,
        scopes=sorted(credential.scopes) or None,
    )
    creds.expiry = expiry
    return creds


def _error_details(exc: HttpError) -> Tuple[Optional[str], List[str]]:
    """
    Read the status text and machine-readable reasons from an HttpError body.

    Returns:
        (status text such as 'PERMISSION_DENIED' or None, list of reasons)
    """
    reasons = []
    try:
        content = exc.content.decode('utf-8') if isinstance(exc.content, bytes) else exc.content
        data = json.loads(content)
    except (ValueError, TypeError, AttributeError, UnicodeDecodeError):
        return None, reasons

    error = data.get('error') if isinstance(data, dict) else None
    if not isinstance(error, dict):
        return None, reasons

    for item in (error.get('errors') or []) + (error.get('details') or []):
        if isinstance(item, dict) and item.get('reason'):
            reasons.append(item['reason'])
    return error.get('status') or None, reasons


def translate_error(exc: Exception, context: str) -> Exception:
    """
    Map a Google client exception to CredentialError or RemoteServiceError.

    A 403 is a credential failure only when its reason says so; rate-limit
    and quota reasons win over the PERMISSION_DENIED status Google attaches
    to every 403.

    Args:
        exc: The exception raised by the client library
        context: Short description of the failed call, used in the message

    Returns:
        The translated exception (not raised)
    """
    if isinstance(exc, TransportError):
        return RemoteServiceError(f"{context}: transport failure ({exc})")

    if isinstance(exc, (RefreshError, GoogleAuthError)):
        return CredentialError(f"{context}: credentials rejected ({exc})")

    if isinstance(exc, HttpError):
        status = exc.resp.status if exc.resp is not None else None
        status_text, reasons = _error_details(exc)
        detail = ', '.join(filter(None, [status_text] + reasons)) or 'error'
        if status == 401:
            return CredentialError(f"{context}: HTTP 401 unauthorized")
        if status == 403 and not RATE_LIMIT_REASONS.intersection(reasons):
            if AUTH_FAILURE_REASONS.intersection(reasons) or (
                    not reasons and status_text in AUTH_FAILURE_STATUSES):
                return CredentialError(f"{context}: HTTP 403 {detail}")
        return RemoteServiceError(f"{context}: HTTP {status} {detail}", status=status)

    if isinstance(exc, (OSError, httplib2.HttpLib2Error)):
        return RemoteServiceError(f"{context}: transport failure ({exc})")

    return exc


class GoogleApiClient:
    """
    Base class for thread-safe Google API service wrappers.

    httplib2 transports are not thread-safe, so every thread that executes a
    request builds its own service object over its own AuthorizedHttp.
    """

    API_NAME: str = ""
    API_VERSION: str = ""

    def __init__(
        self,
        credential: Credential,
        timeout: float = 30.0,
        service_factory: Optional[Callable[[Any], Any]] = None
    ):
        """
        Args:
            credential: Token set for the principal being synced
            timeout: Socket timeout in seconds for every request
            service_factory: Optional callable taking an http object and
                returning a service (used by tests)
        """
        self.credential = credential
        self.timeout = timeout
        self._google_credentials = to_google_credentials(credential)
        self._service_factory = service_factory or self._build_service
        self._local = threading.local()

    def _build_service(self, http):
        return build(
            self.API_NAME,
            self.API_VERSION,
            http=http,
            cache_discovery=False
        )

    def _get_service(self):
        """Get or create the service object for the current thread."""
        service = getattr(self._local, 'service', None)
        if service is None:
            http = AuthorizedHttp(
                self._google_credentials,
                http=httplib2.Http(timeout=self.timeout)
            )
            service = self._service_factory(http)
            self._local.service = service
        return service

    def _execute(self, request_fn: Callable[[Any], Any], context: str) -> Any:
        """
        Build a request against the thread's service and execute it.

        Args:
            request_fn: Callable receiving the service and returning a request
            context: Description used in translated error messages
        """
        try:
            return request_fn(self._get_service()).execute()
        except Exception as e:
            translated = translate_error(e, context)
            if translated is e:
                raise
            raise translated from e
