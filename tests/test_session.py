#!/usr/bin/env python3
"""
Tests for:
* ClientAPI lazy token refresh (refresh grant, re-exchange, fallback)
* Protected request dispatch (headers, status handling, error envelope)
* Resource queries (account, profile, games, pagination)

Run with:
    python -m pytest tests/test_session.py
"""
import json
import os
import sys
import threading
import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import requests

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from psnapi import (
    Client,
    ClientAPI,
    MalformedResponseError,
    NotAuthenticatedError,
    NotFoundError,
    RateLimitedError,
    RefreshFailedError,
    RemoteError,
    RequestCancelledError,
    RequestContext,
    Tokens,
    TransportError,
    UnexpectedStatusError,
)
from psnapi.auth import OAuthApp


NPSSO = 's' * 64
TOKEN_URL = OAuthApp().token_url
AUTHORIZE_URL = OAuthApp().authorize_url

NEW_TOKENS = {
    'access_token':             'NEW_ACCESS',
    'refresh_token':            'NEW_REFRESH',
    'expires_in':               3600,
    'refresh_token_expires_in': 5184000,
}

ACCOUNT_BODY = {
    'profile': {
        'onlineId':        'CoolGamer',
        'accountId':       '1234567890123456789',
        'currentOnlineId': 'CoolGamer',
    }
}


# ===========================================================================
# Helpers
# ===========================================================================

def _resp(status=200, body=None, headers=None, text=None):
    if text is None:
        text = json.dumps(body) if body is not None else ''
    resp = MagicMock()
    resp.status_code = status
    resp.headers = headers or {}
    resp.text = text
    resp.json.side_effect = lambda: json.loads(text)
    return resp


def _redirect_resp():
    return _resp(302, headers={'Location': 'com.scee.psxandroid.scecompcall://redirect?code=v3new'})


def _tokens(access_delta=timedelta(hours=1), refresh_delta=timedelta(days=60),
            access='OLD_ACCESS', refresh='OLD_REFRESH'):
    now = datetime.now(timezone.utc)
    return Tokens(
        access_token=access,
        refresh_token=refresh,
        access_expires=3600,
        refresh_expires=5184000,
        access_expires_at=now + access_delta,
        refresh_expires_at=now + refresh_delta,
    )


def _expired_tokens(**kwargs):
    return _tokens(access_delta=timedelta(minutes=-1), **kwargs)


def _api(tokens, *responses, strategy='refresh_token', language='en-US'):
    session = MagicMock()
    session.request.side_effect = list(responses)
    client = Client(language=language, transport=session)
    return ClientAPI(client, tokens, NPSSO, refresh_strategy=strategy), session


def _token_calls(session):
    return [c for c in session.request.call_args_list if c[0][1] in (TOKEN_URL, AUTHORIZE_URL)]


# ===========================================================================
# Lazy refresh
# ===========================================================================

class TestLazyRefresh(unittest.TestCase):

    def test_fresh_token_triggers_no_exchange(self):
        api, session = _api(_tokens(), _resp(200, ACCOUNT_BODY))
        api.get_user_account_id('CoolGamer')
        self.assertEqual(session.request.call_count, 1)
        self.assertEqual(_token_calls(session), [])

    def test_expired_token_refreshed_once_with_refresh_grant(self):
        api, session = _api(_expired_tokens(), _resp(200, NEW_TOKENS), _resp(200, ACCOUNT_BODY))
        api.get_user_account_id('CoolGamer')

        self.assertEqual(session.request.call_count, 2)
        token_call, resource_call = session.request.call_args_list
        self.assertEqual(token_call[0], ('POST', TOKEN_URL))
        self.assertEqual(token_call[1]['data']['grant_type'], 'refresh_token')
        self.assertEqual(token_call[1]['data']['refresh_token'], 'OLD_REFRESH')
        self.assertEqual(resource_call[1]['headers']['Authorization'], 'Bearer NEW_ACCESS')
        self.assertEqual(api.tokens.access_token, 'NEW_ACCESS')

    def test_unrotated_refresh_token_keeps_expiry(self):
        old = _expired_tokens()
        api, _ = _api(old, _resp(200, {'access_token': 'NEW_ACCESS', 'expires_in': 3600}),
                      _resp(200, ACCOUNT_BODY))
        api.get_user_account_id('CoolGamer')

        self.assertEqual(api.tokens.refresh_token, 'OLD_REFRESH')
        self.assertEqual(api.tokens.refresh_expires_at, old.refresh_expires_at)
        self.assertFalse(api.tokens.access_expired())

    def test_expired_token_reexchanged_once_with_npsso(self):
        api, session = _api(
            _expired_tokens(), _redirect_resp(), _resp(200, NEW_TOKENS), _resp(200, ACCOUNT_BODY),
            strategy='reexchange',
        )
        api.get_user_account_id('CoolGamer')

        calls = session.request.call_args_list
        self.assertEqual(len(calls), 3)
        self.assertEqual(calls[0][0], ('GET', AUTHORIZE_URL))
        self.assertEqual(calls[0][1]['headers'], {'Cookie': f'npsso={NPSSO}'})
        self.assertEqual(calls[1][1]['data']['grant_type'], 'authorization_code')
        self.assertEqual(calls[2][1]['headers']['Authorization'], 'Bearer NEW_ACCESS')

    def test_expired_refresh_token_goes_straight_to_reexchange(self):
        tokens = _expired_tokens()
        tokens = Tokens(
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            access_expires=tokens.access_expires,
            refresh_expires=tokens.refresh_expires,
            access_expires_at=tokens.access_expires_at,
            refresh_expires_at=tokens.access_expires_at,
        )
        api, session = _api(tokens, _redirect_resp(), _resp(200, NEW_TOKENS), _resp(200, ACCOUNT_BODY))
        api.get_user_account_id('CoolGamer')
        self.assertEqual(session.request.call_args_list[0][0], ('GET', AUTHORIZE_URL))

    def test_refresh_grant_failure_falls_back_to_reexchange(self):
        api, session = _api(
            _expired_tokens(),
            _resp(400, text='{"error":"invalid_grant"}'),
            _redirect_resp(),
            _resp(200, NEW_TOKENS),
            _resp(200, ACCOUNT_BODY),
        )
        result = api.get_user_account_id('CoolGamer')
        self.assertEqual(result.profile.online_id, 'CoolGamer')
        self.assertEqual(session.request.call_count, 4)
        self.assertEqual(api.tokens.access_token, 'NEW_ACCESS')

    def test_refresh_failure_aborts_call_and_keeps_old_tokens(self):
        old = _expired_tokens()
        api, session = _api(
            old,
            _resp(400),
            _resp(200, text='not a redirect'),
            strategy='refresh_token',
        )
        with self.assertRaises(RefreshFailedError) as cm:
            api.get_user_account_id('CoolGamer')
        self.assertIsNotNone(cm.exception.__cause__)
        self.assertIs(api.tokens, old)
        self.assertEqual(session.request.call_count, 2)

    def test_reexchange_network_error_is_refresh_failure(self):
        api, _ = _api(_expired_tokens(), requests.ConnectionError('down'), strategy='reexchange')
        with self.assertRaises(RefreshFailedError) as cm:
            api.get_user_profile('123')
        self.assertIsInstance(cm.exception.__cause__, TransportError)

    def test_cancel_during_refresh_installs_no_tokens(self):
        old = _expired_tokens()
        ctx = RequestContext()

        def token_endpoint(*args, **kwargs):
            ctx.cancel()
            return _resp(200, NEW_TOKENS)

        api, session = _api(old, strategy='reexchange')
        steps = [_redirect_resp(), token_endpoint]

        def side_effect(*args, **kwargs):
            step = steps.pop(0)
            return step(*args, **kwargs) if step is token_endpoint else step

        session.request.side_effect = side_effect
        with self.assertRaises(RequestCancelledError):
            api.get_user_account_id('CoolGamer', ctx=ctx)
        self.assertIs(api.tokens, old)
        self.assertEqual(session.request.call_count, 2)

    def test_connection_drop_after_cancel_during_refresh_is_not_refresh_failure(self):
        old = _expired_tokens()
        ctx = RequestContext()
        api, session = _api(old)

        def token_endpoint(*args, **kwargs):
            ctx.cancel()
            raise requests.ConnectionError('connection aborted')

        session.request.side_effect = token_endpoint
        with self.assertRaises(RequestCancelledError):
            api.get_user_account_id('CoolGamer', ctx=ctx)
        self.assertIs(api.tokens, old)
        # no NPSSO fallback after cancellation
        self.assertEqual(session.request.call_count, 1)

    def test_concurrent_callers_refresh_once(self):
        lock = threading.Lock()
        counts = {'token': 0}

        def respond(method, url, **kwargs):
            if url == TOKEN_URL:
                with lock:
                    counts['token'] += 1
                return _resp(200, NEW_TOKENS)
            return _resp(200, ACCOUNT_BODY)

        api, session = _api(_expired_tokens())
        session.request.side_effect = respond

        errors = []

        def worker():
            try:
                api.get_user_account_id('CoolGamer')
            except Exception as exc:  # surfaced through the assertion below
                errors.append(exc)

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        self.assertEqual(errors, [])
        self.assertEqual(counts['token'], 1)

    def test_unauthenticated_session_rejected_without_network(self):
        api, session = _api(_tokens(access=''))
        self.assertFalse(api.is_authenticated)
        with self.assertRaises(NotAuthenticatedError):
            api.get_user_profile('123')
        session.request.assert_not_called()

    def test_unknown_strategy_rejected(self):
        with self.assertRaises(ValueError):
            _api(_tokens(), strategy='sometimes')


# ===========================================================================
# Dispatch
# ===========================================================================

class TestRequestDispatch(unittest.TestCase):

    def test_headers(self):
        api, session = _api(_tokens(), _resp(200, ACCOUNT_BODY), language='de-DE')
        api.request('https://example.com/x')
        args, kwargs = session.request.call_args
        self.assertEqual(args, ('GET', 'https://example.com/x'))
        self.assertEqual(kwargs['headers'], {
            'Authorization':   'Bearer OLD_ACCESS',
            'Accept':          'application/json',
            'Accept-Language': 'de-DE',
        })
        self.assertFalse(kwargs['allow_redirects'])

    def test_200_returns_body(self):
        api, _ = _api(_tokens(), _resp(200, text='{"ok": true}'))
        self.assertEqual(api.request('https://example.com/x'), '{"ok": true}')

    def test_401_and_403_pass_body_through(self):
        for status in (401, 403):
            with self.subTest(status=status):
                api, _ = _api(_tokens(), _resp(status, text='{"error": {"code": 2105}}'))
                self.assertEqual(api.request('https://example.com/x'), '{"error": {"code": 2105}}')

    def test_403_envelope_surfaces_as_remote_error(self):
        body = {'error': {'reason': 'Forbidden', 'source': 'gamelist', 'code': 2240526,
                          'message': 'Access denied', 'referenceId': 'ref-1'}}
        api, _ = _api(_tokens(), _resp(403, body))
        with self.assertRaises(RemoteError) as cm:
            api.get_user_games('123')
        self.assertEqual(cm.exception.message, 'Access denied')
        self.assertEqual(cm.exception.code, 2240526)
        self.assertEqual(cm.exception.reference_id, 'ref-1')

    def test_404_not_found(self):
        api, _ = _api(_tokens(), _resp(404, text='gone'))
        with self.assertRaises(NotFoundError) as cm:
            api.get_user_profile('123')
        self.assertIn('/users/123/profiles', cm.exception.url)

    def test_429_rate_limited(self):
        api, _ = _api(_tokens(), _resp(429, headers={'Retry-After': '7'}))
        with self.assertRaises(RateLimitedError) as cm:
            api.get_user_profile('123')
        self.assertEqual(cm.exception.retry_after, 7.0)

    def test_429_without_retry_after(self):
        api, _ = _api(_tokens(), _resp(429))
        with self.assertRaises(RateLimitedError) as cm:
            api.get_user_profile('123')
        self.assertIsNone(cm.exception.retry_after)

    def test_other_status_unexpected(self):
        api, _ = _api(_tokens(), _resp(503, text='maintenance'))
        with self.assertRaises(UnexpectedStatusError) as cm:
            api.get_user_profile('123')
        self.assertEqual(cm.exception.status_code, 503)
        self.assertEqual(cm.exception.body, 'maintenance')

    def test_no_retry_on_failure(self):
        api, session = _api(_tokens(), _resp(429), _resp(200, ACCOUNT_BODY))
        with self.assertRaises(RateLimitedError):
            api.get_user_account_id('CoolGamer')
        self.assertEqual(session.request.call_count, 1)


class TestDecoding(unittest.TestCase):

    def test_nonzero_envelope_code_is_remote_error(self):
        body = {'error': {'code': 2105356, 'message': 'User not found'}}
        api, _ = _api(_tokens(), _resp(200, body))
        with self.assertRaises(RemoteError) as cm:
            api.get_user_account_id('nobody')
        self.assertEqual(cm.exception.message, 'User not found')
        self.assertIn('User not found', str(cm.exception))

    def test_zero_envelope_code_decodes_target(self):
        body = dict(ACCOUNT_BODY, error={'code': 0})
        api, _ = _api(_tokens(), _resp(200, body))
        self.assertEqual(api.get_user_account_id('CoolGamer').profile.account_id,
                         '1234567890123456789')

    def test_invalid_json_is_malformed(self):
        api, _ = _api(_tokens(), _resp(200, text='<html></html>'))
        with self.assertRaises(MalformedResponseError) as cm:
            api.get_user_profile('123')
        self.assertEqual(cm.exception.body, '<html></html>')

    def test_non_object_is_malformed(self):
        api, _ = _api(_tokens(), _resp(200, text='[1, 2]'))
        with self.assertRaises(MalformedResponseError):
            api.get_user_profile('123')

    def test_bad_envelope_is_malformed(self):
        api, _ = _api(_tokens(), _resp(200, {'error': {'code': 'oops'}}))
        with self.assertRaises(MalformedResponseError):
            api.get_user_profile('123')

    def test_shape_mismatch_is_malformed(self):
        api, _ = _api(_tokens(), _resp(200, {'titles': 'not-a-list'}))
        with self.assertRaises(MalformedResponseError):
            api.get_user_games('123')


# ===========================================================================
# Resource queries
# ===========================================================================

class TestResourceQueries(unittest.TestCase):

    def test_account_url(self):
        api, session = _api(_tokens(), _resp(200, ACCOUNT_BODY))
        result = api.get_user_account_id('CoolGamer')
        url = session.request.call_args[0][1]
        self.assertEqual(
            url,
            'https://us-prof.np.community.playstation.net/userProfile/v1/users/CoolGamer/profile2'
            '?fields=accountId,onlineId,currentOnlineId',
        )
        self.assertEqual(result.profile.account_id, '1234567890123456789')

    def test_profile_url(self):
        api, session = _api(_tokens(), _resp(200, {'onlineId': 'CoolGamer'}))
        result = api.get_user_profile('42')
        self.assertEqual(
            session.request.call_args[0][1],
            'https://m.np.playstation.com/api/userProfile/v1/internal/users/42/profiles',
        )
        self.assertEqual(result.online_id, 'CoolGamer')

    def test_games_url_and_limit(self):
        api, session = _api(_tokens(), _resp(200, {'titles': [], 'totalItemCount': 0}))
        api.get_user_games('42')
        args, kwargs = session.request.call_args
        self.assertEqual(args[1], 'https://m.np.playstation.com/api/gamelist/v2/users/42/titles')
        self.assertEqual(kwargs['params'], {'limit': 10})

    def test_games_offset(self):
        api, session = _api(_tokens(), _resp(200, {'titles': []}))
        api.get_user_games('42', limit=25, offset=50)
        self.assertEqual(session.request.call_args[1]['params'], {'limit': 25, 'offset': 50})

    def test_path_parameter_quoted(self):
        api, session = _api(_tokens(), _resp(200, ACCOUNT_BODY))
        api.get_user_account_id('a/b c')
        self.assertIn('/users/a%2Fb%20c/profile2', session.request.call_args[0][1])

    def test_iter_user_games_follows_next_offset(self):
        api, session = _api(
            _tokens(),
            _resp(200, {'titles': [{'titleId': 'PPSA001', 'name': 'A'},
                                   {'titleId': 'PPSA002', 'name': 'B'}],
                        'nextOffset': 2, 'totalItemCount': 3}),
            _resp(200, {'titles': [{'titleId': 'PPSA003', 'name': 'C'}],
                        'previousOffset': 0, 'totalItemCount': 3}),
        )
        titles = list(api.iter_user_games('me', page_size=2))
        self.assertEqual([t.title_id for t in titles], ['PPSA001', 'PPSA002', 'PPSA003'])
        first, second = session.request.call_args_list
        self.assertEqual(first[1]['params'], {'limit': 2})
        self.assertEqual(second[1]['params'], {'limit': 2, 'offset': 2})

    def test_iter_user_games_stops_on_empty_page(self):
        api, session = _api(_tokens(), _resp(200, {'titles': [], 'nextOffset': 10}))
        self.assertEqual(list(api.iter_user_games('me')), [])
        self.assertEqual(session.request.call_count, 1)


if __name__ == '__main__':
    unittest.main()
