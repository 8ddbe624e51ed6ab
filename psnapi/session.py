"""
session.py
==========
Authenticated PSN session: protected request dispatch with lazy token
refresh, and the three read-only resource queries built on top of it.
"""
from __future__ import annotations

import json
import logging
import threading
import urllib.parse
from dataclasses import replace
from typing import Any, Callable, Dict, Iterator, Optional, TypeVar

import requests

from .auth import Tokens, _utcnow
from .context import RequestContext
from .errors import (
    AuthenticationError,
    MalformedResponseError,
    NotAuthenticatedError,
    NotFoundError,
    RateLimitedError,
    RefreshFailedError,
    RemoteError,
    RequestCancelledError,
    TransportError,
    UnexpectedStatusError,
)
from .models import ErrorEnvelope, GameTitle, UserAccountResponse, UserGamesResponse, UserProfileResponse

logger = logging.getLogger(__name__)

T = TypeVar('T')

ACCOUNT_URL = (
    "https://us-prof.np.community.playstation.net/userProfile/v1/users/{id}/profile2"
    "?fields=accountId,onlineId,currentOnlineId"
)
PROFILE_URL = "https://m.np.playstation.com/api/userProfile/v1/internal/users/{id}/profiles"
GAMES_URL = "https://m.np.playstation.com/api/gamelist/v2/users/{id}/titles"

DEFAULT_GAMES_LIMIT = 10

REFRESH_TOKEN = 'refresh_token'
REEXCHANGE = 'reexchange'
REFRESH_STRATEGIES = (REFRESH_TOKEN, REEXCHANGE)


def _retry_after(resp: requests.Response) -> Optional[float]:
    value = resp.headers.get('Retry-After', '')
    try:
        return float(value)
    except ValueError:
        return None


class ClientAPI:
    """A :class:`~psnapi.client.Client` bound to one token pair and its NPSSO.

    Created by :meth:`Client.authenticate`.  Before every protected request
    the access token is checked; once it has expired it is refreshed and
    swapped for a new :class:`Tokens` before the request goes out.

    Refresh strategies
    ------------------
    ``'refresh_token'`` (default)
        Use the OAuth ``refresh_token`` grant while the refresh token is
        still valid, and fall back to a full NPSSO re-exchange if the grant
        fails.
    ``'reexchange'``
        Always re-run the full authorize → token exchange with the stored
        NPSSO.

    A session may be shared between threads; the expiry check and token swap
    run under a lock so only one refresh is in flight at a time.
    """

    def __init__(
        self,
        client,
        tokens: Tokens,
        npsso: str,
        refresh_strategy: str = REFRESH_TOKEN,
        clock: Optional[Callable] = None,
    ) -> None:
        if refresh_strategy not in REFRESH_STRATEGIES:
            raise ValueError(f"unknown refresh strategy {refresh_strategy!r}")
        self.client = client
        self._tokens = tokens
        self._npsso = npsso
        self.refresh_strategy = refresh_strategy
        self._clock = clock or _utcnow
        self._refresh_lock = threading.Lock()

    def __repr__(self) -> str:
        return f"ClientAPI(client={self.client!r}, tokens={self._tokens!r})"

    @property
    def tokens(self) -> Tokens:
        return self._tokens

    @property
    def is_authenticated(self) -> bool:
        return self._tokens is not None and self._tokens.is_authenticated

    # ------------------------------------------------------------------
    # Token lifecycle
    # ------------------------------------------------------------------

    def ensure_fresh_tokens(self, ctx: Optional[RequestContext] = None) -> Tokens:
        """Return valid tokens, refreshing first if the access token expired.

        Raises:
            NotAuthenticatedError: The session holds no access token.
            RefreshFailedError:    The refresh failed; the old pair is kept.
            RequestCancelledError: *ctx* was cancelled during the refresh.
        """
        if not self.is_authenticated:
            raise NotAuthenticatedError("invalid tokens: access token is required")

        with self._refresh_lock:
            if self._tokens.access_expired(self._clock()):
                self._tokens = self._refresh(ctx)
            return self._tokens

    def _refresh(self, ctx: Optional[RequestContext]) -> Tokens:
        exchange = self.client.token_exchange
        current = self._tokens

        if (self.refresh_strategy == REFRESH_TOKEN and current.refresh_token
                and not current.refresh_expired(self._clock())):
            try:
                tokens = exchange.exchange_refresh_token(current.refresh_token, ctx=ctx)
                if tokens.refresh_token == current.refresh_token and not tokens.refresh_expires:
                    # not rotated: the old refresh token keeps its expiry
                    tokens = replace(tokens,
                                     refresh_expires=current.refresh_expires,
                                     refresh_expires_at=current.refresh_expires_at)
                logger.info("PSN: access token refreshed")
                return tokens
            except RequestCancelledError:
                raise
            except (AuthenticationError, TransportError) as exc:
                logger.warning("PSN: refresh token grant failed (%s), "
                               "falling back to NPSSO exchange", exc)

        try:
            tokens = exchange.exchange_npsso(self._npsso, ctx=ctx)
        except RequestCancelledError:
            raise
        except (AuthenticationError, TransportError) as exc:
            logger.warning("PSN: token refresh failed: %s", exc)
            raise RefreshFailedError(f"error refreshing tokens: {exc}") from exc
        logger.info("PSN: tokens renewed from NPSSO")
        return tokens

    # ------------------------------------------------------------------
    # Request dispatch
    # ------------------------------------------------------------------

    def request(self, url: str, ctx: Optional[RequestContext] = None, **kwargs) -> str:
        """GET *url* with the session's bearer token and return the body.

        401 and 403 bodies are returned rather than raised: the service wraps
        the reason in an error envelope that :meth:`request_and_decode`
        surfaces as :class:`RemoteError`.

        Raises:
            NotFoundError:         HTTP 404.
            RateLimitedError:      HTTP 429.
            UnexpectedStatusError: Any other non-2xx status.
            RefreshFailedError, NotAuthenticatedError, TransportError,
            RequestCancelledError
        """
        tokens = self.ensure_fresh_tokens(ctx)

        headers = {
            'Authorization': f'Bearer {tokens.access_token}',
            'Accept':        'application/json',
        }
        language = self.client.language
        if language:
            headers['Accept-Language'] = language.value

        logger.debug("PSN: GET %s", url)
        resp = self.client.transport.get(url, ctx=ctx, stage='request', headers=headers, **kwargs)
        body = resp.text

        status = resp.status_code
        if status in (200, 401, 403):
            return body
        if status == 404:
            raise NotFoundError(url)
        if status == 429:
            raise RateLimitedError(url, _retry_after(resp))
        raise UnexpectedStatusError(status, body)

    def request_and_decode(
        self,
        url: str,
        decode: Callable[[Dict[str, Any]], T],
        ctx: Optional[RequestContext] = None,
        **kwargs,
    ) -> T:
        """GET *url* and decode the body with *decode* (a ``from_dict``).

        Raises:
            RemoteError:            The body is an error envelope with a
                                    non-zero code.
            MalformedResponseError: The body is not JSON or does not fit
                                    the expected shape.
        """
        body = self.request(url, ctx=ctx, **kwargs)

        try:
            data = json.loads(body)
        except ValueError as exc:
            raise MalformedResponseError(str(exc), body) from exc
        if not isinstance(data, dict):
            raise MalformedResponseError('response is not a JSON object', body)

        try:
            envelope = ErrorEnvelope.from_dict(data)
        except (TypeError, ValueError) as exc:
            raise MalformedResponseError(str(exc), body) from exc
        if envelope.code != 0:
            raise RemoteError(
                envelope.message,
                envelope.code,
                reason=envelope.reason,
                source=envelope.source,
                reference_id=envelope.reference_id,
            )

        try:
            return decode(data)
        except (TypeError, ValueError, AttributeError, KeyError) as exc:
            raise MalformedResponseError(str(exc), body) from exc

    # ------------------------------------------------------------------
    # Resource queries
    # ------------------------------------------------------------------

    def get_user_account_id(
        self,
        online_id: str,
        ctx: Optional[RequestContext] = None,
    ) -> UserAccountResponse:
        """Look up the account ID (and current online ID) for *online_id*."""
        url = ACCOUNT_URL.format(id=urllib.parse.quote(online_id, safe=''))
        return self.request_and_decode(url, UserAccountResponse.from_dict, ctx=ctx)

    def get_user_profile(
        self,
        account_id: str,
        ctx: Optional[RequestContext] = None,
    ) -> UserProfileResponse:
        """Fetch the public profile of *account_id*."""
        url = PROFILE_URL.format(id=urllib.parse.quote(account_id, safe=''))
        return self.request_and_decode(url, UserProfileResponse.from_dict, ctx=ctx)

    def get_user_games(
        self,
        account_id: str,
        ctx: Optional[RequestContext] = None,
        limit: int = DEFAULT_GAMES_LIMIT,
        offset: int = 0,
    ) -> UserGamesResponse:
        """Fetch one page of the game library of *account_id*.

        Args:
            account_id: PSN account ID (``'me'`` for the authenticated user).
            ctx:        Optional request context.
            limit:      Page size.
            offset:     Index of the first title to return.
        """
        url = GAMES_URL.format(id=urllib.parse.quote(account_id, safe=''))
        params = {'limit': limit}
        if offset:
            params['offset'] = offset
        return self.request_and_decode(url, UserGamesResponse.from_dict, ctx=ctx, params=params)

    def iter_user_games(
        self,
        account_id: str,
        ctx: Optional[RequestContext] = None,
        page_size: int = 100,
    ) -> Iterator[GameTitle]:
        """Yield every title in the library, following ``nextOffset``."""
        offset = 0
        while True:
            page = self.get_user_games(account_id, ctx=ctx, limit=page_size, offset=offset)
            yield from page.titles
            if not page.titles or not page.next_offset or page.next_offset <= offset:
                break
            offset = page.next_offset
