"""
psnapi: read-only PlayStation Network client.

Authenticates with an NPSSO session cookie value, keeps the resulting
OAuth token pair fresh, and exposes account, profile and game-library
lookups::

    from psnapi import Client

    api = Client().authenticate(npsso)
    account = api.get_user_account_id("some_online_id")
    games = api.get_user_games(account.profile.account_id)
"""
from .auth import OAuthApp, TokenExchange, Tokens, validate_npsso
from .client import Client, Language, NoRedirectTransport, Region
from .context import RequestContext
from .errors import (
    APIError,
    AuthenticationError,
    AuthorizationFailedError,
    ConfigurationError,
    MalformedResponseError,
    MalformedTokenResponseError,
    NilTransportError,
    NotAuthenticatedError,
    NotFoundError,
    NPSSOEmptyError,
    NPSSOLengthError,
    PSNError,
    RateLimitedError,
    RefreshFailedError,
    RemoteError,
    RequestCancelledError,
    TokenExchangeError,
    TransportError,
    UnexpectedStatusError,
    UnsupportedLanguageError,
    UnsupportedRegionError,
    ValidationError,
)
from .models import (
    GameTitle,
    UserAccountResponse,
    UserGamesResponse,
    UserProfileResponse,
)
from .retry import RetryPolicy, call_with_retry
from .session import ClientAPI

__version__ = '0.1.0'

__all__ = [
    'Client',
    'ClientAPI',
    'Language',
    'Region',
    'NoRedirectTransport',
    'RequestContext',
    'OAuthApp',
    'TokenExchange',
    'Tokens',
    'validate_npsso',
    'RetryPolicy',
    'call_with_retry',
    'GameTitle',
    'UserAccountResponse',
    'UserGamesResponse',
    'UserProfileResponse',
    'PSNError',
    'ConfigurationError',
    'UnsupportedRegionError',
    'UnsupportedLanguageError',
    'NilTransportError',
    'ValidationError',
    'NPSSOEmptyError',
    'NPSSOLengthError',
    'AuthenticationError',
    'AuthorizationFailedError',
    'TokenExchangeError',
    'MalformedTokenResponseError',
    'RefreshFailedError',
    'NotAuthenticatedError',
    'APIError',
    'RemoteError',
    'NotFoundError',
    'RateLimitedError',
    'UnexpectedStatusError',
    'MalformedResponseError',
    'TransportError',
    'RequestCancelledError',
]
