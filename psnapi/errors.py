"""
errors.py
=========
Exception hierarchy for the PSN client.

Every exception raised by :mod:`psnapi` derives from :class:`PSNError`, so
callers can catch the whole family with one ``except`` clause or pick the
specific failure they care about::

    PSNError
    ├── ConfigurationError          (also ValueError)
    │   ├── UnsupportedRegionError
    │   ├── UnsupportedLanguageError
    │   └── NilTransportError
    ├── ValidationError             (also ValueError)
    │   ├── NPSSOEmptyError
    │   └── NPSSOLengthError
    ├── AuthenticationError
    │   ├── AuthorizationFailedError
    │   ├── TokenExchangeError
    │   ├── MalformedTokenResponseError
    │   ├── RefreshFailedError
    │   └── NotAuthenticatedError
    ├── APIError
    │   ├── RemoteError
    │   ├── NotFoundError
    │   ├── RateLimitedError
    │   ├── UnexpectedStatusError
    │   └── MalformedResponseError
    ├── TransportError
    └── RequestCancelledError
"""
from __future__ import annotations

from typing import Optional


class PSNError(Exception):
    """Base class for every error raised by the PSN client."""


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

class ConfigurationError(PSNError, ValueError):
    """Raised when a :class:`~psnapi.client.Client` is configured incorrectly."""


class UnsupportedRegionError(ConfigurationError):
    """Raised when the requested region is not one of :class:`Region`."""

    def __init__(self, region) -> None:
        super().__init__(f"unsupported region {region}")
        self.region = region


class UnsupportedLanguageError(ConfigurationError):
    """Raised when the requested language is not one of :class:`Language`."""

    def __init__(self, language) -> None:
        super().__init__(f"unsupported lang {language}")
        self.language = language


class NilTransportError(ConfigurationError):
    """Raised when ``None`` is passed explicitly as the HTTP transport."""

    def __init__(self) -> None:
        super().__init__("cannot use nil http transport")


# ---------------------------------------------------------------------------
# Credential validation
# ---------------------------------------------------------------------------

class ValidationError(PSNError, ValueError):
    """Raised when an NPSSO credential has the wrong shape."""


class NPSSOEmptyError(ValidationError):
    def __init__(self) -> None:
        super().__init__("npsso is empty")


class NPSSOLengthError(ValidationError):
    def __init__(self, length: int) -> None:
        super().__init__(f"npsso must be exactly 64 characters (got {length})")
        self.length = length


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------

class AuthenticationError(PSNError):
    """Base class for failures of the token lifecycle."""


class AuthorizationFailedError(AuthenticationError):
    """The authorize step did not answer with a usable ``v3`` code redirect."""

    def __init__(self, reason: str, status_code: Optional[int] = None) -> None:
        super().__init__(f"authorization failed, check npsso: {reason}")
        self.reason = reason
        self.status_code = status_code


class TokenExchangeError(AuthenticationError):
    """The token endpoint answered with a non-200 status."""

    def __init__(self, status_code: int, body: str = '') -> None:
        super().__init__(
            f"unable to obtain authentication token (HTTP {status_code})"
        )
        self.status_code = status_code
        self.body = body


class MalformedTokenResponseError(AuthenticationError):
    """The token endpoint answered 200 with a body that is not a token pair."""

    def __init__(self, reason: str, body: str = '') -> None:
        super().__init__(f"error parsing token response: {reason}")
        self.reason = reason
        self.body = body


class RefreshFailedError(AuthenticationError):
    """Refreshing an expired token pair failed; the original call was aborted.

    The underlying failure is available as ``__cause__``.
    """


class NotAuthenticatedError(AuthenticationError):
    """A protected call was attempted without an access token."""


# ---------------------------------------------------------------------------
# Resource requests
# ---------------------------------------------------------------------------

class APIError(PSNError):
    """Base class for failures of protected resource requests."""


class RemoteError(APIError):
    """The server returned an error envelope with a non-zero code."""

    def __init__(
        self,
        message: str,
        code: int,
        reason: str = '',
        source: str = '',
        reference_id: str = '',
    ) -> None:
        super().__init__(f"request error: {message}")
        self.message = message
        self.code = code
        self.reason = reason
        self.source = source
        self.reference_id = reference_id


class NotFoundError(APIError):
    def __init__(self, url: str) -> None:
        super().__init__(f"resource not found: {url}")
        self.url = url


class RateLimitedError(APIError):
    """HTTP 429.  ``retry_after`` holds the server hint in seconds, if any."""

    def __init__(self, url: str, retry_after: Optional[float] = None) -> None:
        super().__init__("rate limit exceeded")
        self.url = url
        self.retry_after = retry_after


class UnexpectedStatusError(APIError):
    def __init__(self, status_code: int, body: str = '') -> None:
        super().__init__(f"unexpected status code: {status_code}, body: {body}")
        self.status_code = status_code
        self.body = body


class MalformedResponseError(APIError):
    """A response body could not be decoded into the expected shape."""

    def __init__(self, reason: str, body: str = '') -> None:
        super().__init__(f"error decoding response: {reason}, body: {body}")
        self.reason = reason
        self.body = body


# ---------------------------------------------------------------------------
# Transport / cancellation
# ---------------------------------------------------------------------------

class TransportError(PSNError):
    """The HTTP request could not be sent or its response could not be read.

    The originating :class:`requests.RequestException` is the ``__cause__``.
    """


class RequestCancelledError(PSNError):
    """The request context was cancelled or its deadline expired."""
