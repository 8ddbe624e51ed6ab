"""
auth.py
=======
NPSSO validation and the OAuth token exchange against Sony's account service.

Auth flow
---------
1. ``GET /api/authz/v3/oauth/authorize`` with the NPSSO as a cookie.  Sony
   answers ``302 Found`` with ``Location: <redirect_uri>?code=v3.XXXX``.
2. ``POST /api/authz/v3/oauth/token`` with that code (``authorization_code``
   grant) returns an access token and a refresh token.

Later on the refresh token can be traded for a new pair with the
``refresh_token`` grant against the same token endpoint.
"""
from __future__ import annotations

import logging
import urllib.parse
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

import requests

from .context import RequestContext
from .errors import (
    AuthorizationFailedError,
    MalformedTokenResponseError,
    NPSSOEmptyError,
    NPSSOLengthError,
    TokenExchangeError,
)

logger = logging.getLogger(__name__)

NPSSO_LENGTH = 64
AUTH_CODE_PREFIX = 'v3'


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def validate_npsso(npsso: str) -> None:
    """Check the shape of an NPSSO credential without touching the network.

    Raises:
        NPSSOEmptyError:  *npsso* is empty.
        NPSSOLengthError: *npsso* is not exactly 64 characters long.
    """
    if not npsso:
        raise NPSSOEmptyError()
    if len(npsso) != NPSSO_LENGTH:
        raise NPSSOLengthError(len(npsso))


# ---------------------------------------------------------------------------
# Client application
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class OAuthApp:
    """OAuth client application used for the code exchange.

    The defaults are the public credentials shipped in the PlayStation
    Android app; every third-party PSN client uses them.  Swap in another
    instance to point the exchange at a test double.
    """

    client_id: str = '09515159-7237-4370-9b40-3806e67c0891'
    client_secret: str = field(default='ucPjka5tntB2KqsP', repr=False)
    redirect_uri: str = 'com.scee.psxandroid.scecompcall://redirect'
    scope: str = 'psn:mobile.v2.core psn:clientapp'
    authorize_url: str = 'https://ca.account.sony.com/api/authz/v3/oauth/authorize'
    token_url: str = 'https://ca.account.sony.com/api/authz/v3/oauth/token'
    token_format: str = 'jwt'

    def authorize_params(self) -> Dict[str, str]:
        return {
            'access_type':   'offline',
            'client_id':     self.client_id,
            'response_type': 'code',
            'scope':         self.scope,
            'redirect_uri':  self.redirect_uri,
        }

    @property
    def basic_auth(self):
        return (self.client_id, self.client_secret)


# ---------------------------------------------------------------------------
# Token pair
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Tokens:
    """Access/refresh token pair with the instants at which each expires.

    Instances are never mutated; a refresh produces a new ``Tokens``.
    """

    access_token: str = field(repr=False)
    refresh_token: str = field(repr=False)
    access_expires: int
    refresh_expires: int
    access_expires_at: datetime
    refresh_expires_at: datetime

    @property
    def is_authenticated(self) -> bool:
        return bool(self.access_token)

    def access_expired(self, now: Optional[datetime] = None) -> bool:
        """True when the access token expired strictly before *now*."""
        return self.access_expires_at < (now or _utcnow())

    def refresh_expired(self, now: Optional[datetime] = None) -> bool:
        return self.refresh_expires_at < (now or _utcnow())

    @classmethod
    def from_response(cls, data: Any, completed_at: datetime, body: str = '') -> 'Tokens':
        """Build a token pair from a decoded token-endpoint response.

        ``access_token`` and ``expires_in`` are required; a missing refresh
        token or refresh lifetime decodes as empty / zero.  Negative
        lifetimes are clamped to zero so expiry never precedes *completed_at*.

        Raises:
            MalformedTokenResponseError: *data* is not a usable token object.
        """
        if not isinstance(data, dict):
            raise MalformedTokenResponseError('response is not a JSON object', body)

        access_token = data.get('access_token')
        if not isinstance(access_token, str) or not access_token:
            raise MalformedTokenResponseError('missing access_token', body)
        refresh_token = data.get('refresh_token', '')
        if not isinstance(refresh_token, str):
            raise MalformedTokenResponseError('refresh_token is not a string', body)

        if 'expires_in' not in data:
            raise MalformedTokenResponseError('missing expires_in', body)
        access_expires = _lifetime(data, 'expires_in', body)
        refresh_expires = _lifetime(data, 'refresh_token_expires_in', body)

        return cls(
            access_token=access_token,
            refresh_token=refresh_token,
            access_expires=access_expires,
            refresh_expires=refresh_expires,
            access_expires_at=completed_at + timedelta(seconds=access_expires),
            refresh_expires_at=completed_at + timedelta(seconds=refresh_expires),
        )


def _lifetime(data: Dict[str, Any], key: str, body: str) -> int:
    value = data.get(key, 0)
    if isinstance(value, bool) or not isinstance(value, int):
        raise MalformedTokenResponseError(f'{key} is not an integer', body)
    return max(0, value)


# ---------------------------------------------------------------------------
# Exchange engine
# ---------------------------------------------------------------------------

class TokenExchange:
    """Turns an NPSSO (or a refresh token) into a fresh :class:`Tokens`.

    Args:
        transport: A :class:`~psnapi.client.NoRedirectTransport`.
        app:       OAuth client application credentials.
        clock:     Returns the current UTC time; used for expiry instants.
    """

    def __init__(
        self,
        transport,
        app: Optional[OAuthApp] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._transport = transport
        self.app = app or OAuthApp()
        self._clock = clock or _utcnow

    def exchange_npsso(self, npsso: str, ctx: Optional[RequestContext] = None) -> Tokens:
        """Run the full authorize → token exchange for *npsso*.

        Raises:
            AuthorizationFailedError, TokenExchangeError,
            MalformedTokenResponseError, TransportError, RequestCancelledError
        """
        ctx = ctx or RequestContext.background()
        code = self.request_auth_code(npsso, ctx)
        return self._token_request({
            'code':         code,
            'redirect_uri': self.app.redirect_uri,
            'grant_type':   'authorization_code',
            'token_format': self.app.token_format,
        }, ctx, stage='token request')

    def exchange_refresh_token(
        self,
        refresh_token: str,
        ctx: Optional[RequestContext] = None,
    ) -> Tokens:
        """Trade *refresh_token* for a new pair using the ``refresh_token`` grant.

        When the server does not rotate the refresh token the previous one
        is carried over.
        """
        ctx = ctx or RequestContext.background()
        tokens = self._token_request({
            'refresh_token': refresh_token,
            'grant_type':    'refresh_token',
            'scope':         self.app.scope,
            'token_format':  self.app.token_format,
        }, ctx, stage='refresh request')
        if not tokens.refresh_token:
            tokens = replace(tokens, refresh_token=refresh_token)
        return tokens

    def request_auth_code(self, npsso: str, ctx: RequestContext) -> str:
        """Step 1: fetch the ``v3`` authorization code for *npsso*."""
        resp = self._transport.get(
            self.app.authorize_url,
            ctx=ctx,
            stage='authorization request',
            params=self.app.authorize_params(),
            headers={'Cookie': f'npsso={npsso}'},
        )
        if resp.status_code != requests.codes.found:
            logger.warning("PSN: authorize returned HTTP %s instead of a redirect",
                           resp.status_code)
            raise AuthorizationFailedError(
                f'expected HTTP 302, got {resp.status_code}', resp.status_code
            )

        location = resp.headers.get('Location', '')
        if not location:
            raise AuthorizationFailedError('redirect has no Location header', resp.status_code)
        try:
            query = urllib.parse.urlsplit(location).query
        except ValueError as exc:
            raise AuthorizationFailedError(
                f'unparseable Location header: {exc}', resp.status_code
            ) from exc

        codes = urllib.parse.parse_qs(query).get('code', [])
        code = codes[0] if codes else ''
        if not code.startswith(AUTH_CODE_PREFIX):
            logger.warning("PSN: authorize redirect did not carry a v3 code. "
                           "NPSSO may be expired or invalid.")
            raise AuthorizationFailedError('redirect did not carry a v3 code', resp.status_code)
        return code

    def _token_request(self, data: Dict[str, str], ctx: RequestContext, stage: str) -> Tokens:
        resp = self._transport.post(
            self.app.token_url,
            ctx=ctx,
            stage=stage,
            data=data,
            auth=self.app.basic_auth,
            headers={'Content-Type': 'application/x-www-form-urlencoded'},
        )
        if resp.status_code != requests.codes.ok:
            logger.warning("PSN: %s failed with HTTP %s", stage, resp.status_code)
            raise TokenExchangeError(resp.status_code, resp.text)

        body = resp.text
        try:
            payload = resp.json()
        except ValueError as exc:
            raise MalformedTokenResponseError(str(exc), body) from exc

        tokens = Tokens.from_response(payload, self._clock(), body)
        logger.debug("PSN: %s succeeded, access token expires in %ds",
                     stage, tokens.access_expires)
        return tokens
