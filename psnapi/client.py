"""
client.py
=========
Client configuration and the HTTP transport it owns.

A :class:`Client` holds the settings shared by every authenticated session
built from it (transport, language, region).  It is immutable: the
``with_*`` builder steps validate their argument and return a new client, so
one client can safely be shared between threads.

Usage
-----
::

    from psnapi import Client, Language

    client = Client(language=Language.FR_FR)
    api = client.authenticate(npsso)
    account = api.get_user_account_id("some_online_id")
"""
from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Optional

import requests

from .auth import OAuthApp, TokenExchange, validate_npsso
from .context import RequestContext
from .errors import (
    NilTransportError,
    RequestCancelledError,
    TransportError,
    UnsupportedLanguageError,
    UnsupportedRegionError,
)
from .session import REFRESH_TOKEN, ClientAPI

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 10  # seconds

# Marker for "no transport given"; an explicit ``None`` is a configuration error.
_DEFAULT_TRANSPORT: Any = object()


class Language(str, Enum):
    """Languages accepted for the ``Accept-Language`` header."""

    EN_US = 'en-US'
    EN_GB = 'en-GB'
    FR_FR = 'fr-FR'
    FR_CA = 'fr-CA'
    DE_DE = 'de-DE'
    ES_ES = 'es-ES'
    ES_419 = 'es-419'
    IT_IT = 'it-IT'
    NL_NL = 'nl-NL'
    PT_PT = 'pt-PT'
    PT_BR = 'pt-BR'
    PL_PL = 'pl-PL'
    RU_RU = 'ru-RU'
    UK_UA = 'uk-UA'
    FI_FI = 'fi-FI'
    SV_SE = 'sv-SE'
    NO_NO = 'no-NO'
    DA_DK = 'da-DK'
    TR_TR = 'tr-TR'
    AR_AE = 'ar-AE'
    JA_JP = 'ja-JP'
    KO_KR = 'ko-KR'
    ZH_HANS = 'zh-Hans'
    ZH_HANT = 'zh-Hant'


class Region(str, Enum):
    """PlayStation Network store regions."""

    US = 'us'
    CA = 'ca'
    MX = 'mx'
    BR = 'br'
    AR = 'ar'
    GB = 'gb'
    DE = 'de'
    FR = 'fr'
    ES = 'es'
    IT = 'it'
    NL = 'nl'
    PT = 'pt'
    PL = 'pl'
    RU = 'ru'
    UA = 'ua'
    FI = 'fi'
    SE = 'se'
    NO = 'no'
    DK = 'dk'
    TR = 'tr'
    AE = 'ae'
    JP = 'jp'
    KR = 'kr'
    HK = 'hk'
    TW = 'tw'
    AU = 'au'


def _coerce_language(language) -> Language:
    try:
        return Language(language)
    except ValueError:
        raise UnsupportedLanguageError(language) from None


def _coerce_region(region) -> Region:
    try:
        return Region(region)
    except ValueError:
        raise UnsupportedRegionError(region) from None


# ---------------------------------------------------------------------------
# Transport adapter
# ---------------------------------------------------------------------------

class NoRedirectTransport:
    """Wraps a :class:`requests.Session` so redirects are never followed.

    The authorization step must see the ``302 Found`` response itself to read
    the code from its ``Location`` header, so every request goes out with
    ``allow_redirects=False``.  The wrapped session is not modified.

    Network failures surface as :class:`TransportError`, unless the context
    was cancelled or ran past its deadline while the request was in flight:
    those surface as :class:`RequestCancelledError`.
    """

    def __init__(self, session: requests.Session, timeout: float = _DEFAULT_TIMEOUT) -> None:
        self.session = session
        self.timeout = timeout

    def request(
        self,
        method: str,
        url: str,
        ctx: Optional[RequestContext] = None,
        stage: str = 'request',
        **kwargs,
    ) -> requests.Response:
        """Send one request and return the raw response.

        Args:
            method: HTTP method.
            url:    Absolute URL.
            ctx:    Request context; checked before and after the call.
            stage:  Label used in cancellation messages.
            **kwargs: Passed through to :meth:`requests.Session.request`.
        """
        ctx = ctx or RequestContext.background()
        kwargs['allow_redirects'] = False
        kwargs.setdefault('timeout', ctx.timeout_for(self.timeout))
        # checked after timeout_for so a zero timeout is never sent
        ctx.check(stage)
        try:
            resp = self.session.request(method, url, **kwargs)
        except requests.RequestException as exc:
            # a capped read timeout can surface as ConnectionError mid-body
            if ctx.cancelled:
                raise RequestCancelledError(f"{stage} cancelled") from exc
            raise TransportError(f"error sending {stage}: {exc}") from exc
        ctx.check(stage)
        return resp

    def get(self, url: str, ctx: Optional[RequestContext] = None, **kwargs) -> requests.Response:
        return self.request('GET', url, ctx=ctx, **kwargs)

    def post(self, url: str, ctx: Optional[RequestContext] = None, **kwargs) -> requests.Response:
        return self.request('POST', url, ctx=ctx, **kwargs)


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class Client:
    """Immutable PSN client configuration and the entry point for authentication."""

    def __init__(
        self,
        language=Language.EN_US,
        region=Region.US,
        transport=_DEFAULT_TRANSPORT,
        timeout: float = _DEFAULT_TIMEOUT,
        oauth_app: Optional[OAuthApp] = None,
    ) -> None:
        """
        Args:
            language:  A :class:`Language` or its tag (``'en-US'``).
            region:    A :class:`Region` or its code (``'us'``).
            transport: A :class:`requests.Session` to send requests with.
                       Omit to use a fresh session; ``None`` is rejected.
            timeout:   Per-request timeout in seconds.
            oauth_app: Client application credentials for the token
                       exchange (defaults to the PlayStation app).

        Raises:
            UnsupportedLanguageError, UnsupportedRegionError, NilTransportError
        """
        if transport is None:
            raise NilTransportError()
        self._language = _coerce_language(language)
        self._region = _coerce_region(region)
        self._session = requests.Session() if transport is _DEFAULT_TRANSPORT else transport
        self._timeout = timeout
        self._oauth_app = oauth_app or OAuthApp()
        self.transport = NoRedirectTransport(self._session, timeout=timeout)
        self.token_exchange = TokenExchange(self.transport, app=self._oauth_app)

    def __repr__(self) -> str:
        return (
            f"Client(language={self._language.value!r}, "
            f"region={self._region.value!r})"
        )

    @property
    def language(self) -> Language:
        return self._language

    @property
    def region(self) -> Region:
        return self._region

    # ------------------------------------------------------------------
    # Builder steps
    # ------------------------------------------------------------------

    def _copy(self, **overrides) -> 'Client':
        settings = {
            'language':  self._language,
            'region':    self._region,
            'transport': self._session,
            'timeout':   self._timeout,
            'oauth_app': self._oauth_app,
        }
        settings.update(overrides)
        return Client(**settings)

    def with_language(self, language) -> 'Client':
        return self._copy(language=language)

    def with_region(self, region) -> 'Client':
        return self._copy(region=region)

    def with_transport(self, transport: requests.Session) -> 'Client':
        return self._copy(transport=transport)

    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------

    def authenticate(
        self,
        npsso: str,
        ctx: Optional[RequestContext] = None,
        refresh_strategy: str = REFRESH_TOKEN,
    ) -> ClientAPI:
        """Exchange an NPSSO credential for tokens and return a session.

        The NPSSO can be obtained by logging in to ``https://my.playstation.com``
        and reading the ``npsso`` cookie.

        Args:
            npsso: The 64-character NPSSO session credential.
            ctx:   Optional request context (deadline / cancellation).
            refresh_strategy: How the session renews expired tokens
                (``'refresh_token'`` or ``'reexchange'``, see
                :class:`ClientAPI`).

        Returns:
            An authenticated :class:`ClientAPI`.

        Raises:
            ValidationError: The NPSSO is empty or not 64 characters.
            AuthenticationError: The code or token exchange failed.
            RequestCancelledError: ``ctx`` was cancelled or timed out.
        """
        validate_npsso(npsso)
        tokens = self.token_exchange.exchange_npsso(npsso, ctx=ctx)
        logger.info("PSN: authenticated successfully")
        return ClientAPI(self, tokens, npsso, refresh_strategy=refresh_strategy)
