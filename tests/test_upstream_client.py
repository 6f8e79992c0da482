"""
Upstream client tests - reply classification with a mocked requests session
"""

import threading
import pytest
from unittest.mock import MagicMock

import requests

import config
from upstream.client import (
    LoginError, SessionExpiredError, UpstreamApiError, UpstreamBlockedError, UpstreamClient, UpstreamError,
)
from utils.circuit_breaker import CircuitBreaker, CircuitBreakerOpenError


def response(status=200, payload=None, text='', cookies=None):
    mock = MagicMock()
    mock.status_code = status
    mock.text = text
    mock.cookies = cookies or {}
    if isinstance(payload, Exception):
        mock.json.side_effect = payload
    else:
        mock.json.return_value = payload
    return mock


def _raise_blocked():
    raise UpstreamBlockedError('HTTP 429')


def client_returning(*replies, breaker=None):
    session = MagicMock()
    session.post.side_effect = list(replies)
    return UpstreamClient(session=session, breaker=breaker), session


class TestAjaxCalls:
    """Test AJAX reply handling"""

    @pytest.mark.unit
    def test_returned_value(self):
        client, session = client_returning(response(payload={
            'exceptionClass': None, 'returnedValue': {'items': [{'a': 1}]}
        }))

        assert client.get_group_schedule('tok', 101, 1000) == [{'a': 1}]
        kwargs = session.post.call_args.kwargs
        assert kwargs['json'] == {
            'service': 'Planowanie',
            'method': 'getUlozoneTerminyGrupy',
            'params': {'idGrupyDziekanskiej': 101, 'poczatekTygodnia': 1000},
        }
        assert kwargs['headers']['Cookie'] == 'JSESSIONID=tok'
        assert kwargs['timeout'] == config.REQUEST_TIMEOUT

    @pytest.mark.session
    @pytest.mark.parametrize('exception_class', config.SESSION_EXPIRED_EXCEPTIONS)
    def test_session_expired(self, exception_class):
        client, _ = client_returning(response(payload={'exceptionClass': exception_class}))

        with pytest.raises(SessionExpiredError):
            client.call('tok', 'Planowanie', 'x', {})

    @pytest.mark.unit
    def test_other_exception_class(self):
        client, _ = client_returning(response(payload={'exceptionClass': 'java.lang.NullPointerException'}))

        with pytest.raises(UpstreamApiError) as exc_info:
            client.call('tok', 'Planowanie', 'x', {})
        assert exc_info.value.exception_class == 'java.lang.NullPointerException'

    @pytest.mark.unit
    @pytest.mark.parametrize('status', [403, 429])
    def test_blocking_status(self, status):
        client, _ = client_returning(response(status=status))

        with pytest.raises(UpstreamBlockedError):
            client.call('tok', 'Planowanie', 'x', {})

    @pytest.mark.unit
    def test_connection_reset_is_blocking(self):
        client, _ = client_returning(requests.exceptions.ConnectionError('Connection reset by peer'))

        with pytest.raises(UpstreamBlockedError):
            client.call('tok', 'Planowanie', 'x', {})

    @pytest.mark.unit
    def test_timeout_is_plain_upstream_error(self):
        client, _ = client_returning(requests.exceptions.Timeout('slow'))

        with pytest.raises(UpstreamError) as exc_info:
            client.call('tok', 'Planowanie', 'x', {})
        assert not isinstance(exc_info.value, UpstreamBlockedError)

    @pytest.mark.unit
    def test_server_error_and_bad_json(self):
        client, _ = client_returning(response(status=500), response(payload=ValueError('no json')))

        with pytest.raises(UpstreamError):
            client.call('tok', 'Planowanie', 'x', {})
        with pytest.raises(UpstreamError):
            client.call('tok', 'Planowanie', 'x', {})

    @pytest.mark.unit
    def test_group_tree_params(self):
        client, session = client_returning(
            response(payload={'exceptionClass': None, 'returnedValue': {'items': []}}),
            response(payload={'exceptionClass': None, 'returnedValue': {'items': [{'id': 1}]}}),
        )

        client.get_group_tree('tok', 88)
        assert session.post.call_args.kwargs['json']['params'] == {
            'idSemestru': 88, 'cyklRoczny': True, 'itemIdList': ['r0']
        }
        assert client.get_group_tree('tok', 88, [{'idJednostki': 5}]) == [{'id': 1}]

    @pytest.mark.unit
    def test_ping_returns_raw_value(self):
        client, _ = client_returning(response(payload={'exceptionClass': None, 'returnedValue': None}))

        assert client.ping('tok') is None


class TestCircuitBreaker:
    """Test that blocking replies open the breaker and nothing else does"""

    @pytest.mark.unit
    def test_breaker_opens_after_blocking(self):
        breaker = CircuitBreaker(failure_threshold=2, recovery_timeout=60, expected_exception=UpstreamBlockedError)
        client, session = client_returning(response(status=429), response(status=403), breaker=breaker)

        for _ in range(2):
            with pytest.raises(UpstreamBlockedError):
                client.call('tok', 'Planowanie', 'x', {})
        with pytest.raises(CircuitBreakerOpenError):
            client.call('tok', 'Planowanie', 'x', {})
        assert session.post.call_count == 2

    @pytest.mark.unit
    def test_session_expiry_does_not_trip_breaker(self):
        breaker = CircuitBreaker(failure_threshold=1, expected_exception=UpstreamBlockedError)
        expired = {'exceptionClass': config.SESSION_EXPIRED_EXCEPTIONS[0]}
        client, _ = client_returning(response(payload=expired), response(payload=expired), breaker=breaker)

        for _ in range(2):
            with pytest.raises(SessionExpiredError):
                client.call('tok', 'Planowanie', 'x', {})
        assert breaker.state == 'closed'

    @pytest.mark.unit
    def test_breaker_half_open_after_timeout(self):
        now = [0.0]
        breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=10,
                                 expected_exception=UpstreamBlockedError, clock=lambda: now[0])
        client, _ = client_returning(
            response(status=429),
            response(payload={'exceptionClass': None, 'returnedValue': 'ok'}),
            breaker=breaker,
        )

        with pytest.raises(UpstreamBlockedError):
            client.call('tok', 'Planowanie', 'x', {})
        assert breaker.state == 'open'
        now[0] = 11.0
        assert breaker.state == 'half_open'
        assert client.call('tok', 'Planowanie', 'x', {}) == 'ok'
        assert breaker.state == 'closed'

    @pytest.mark.unit
    def test_half_open_lets_one_call_through(self):
        """While the first call after the timeout is running, other callers fail fast"""
        now = [0.0]
        breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=10,
                                 expected_exception=UpstreamBlockedError, clock=lambda: now[0])
        with pytest.raises(UpstreamBlockedError):
            breaker.call(_raise_blocked)
        now[0] = 11.0

        entered, release = threading.Event(), threading.Event()
        second_calls = []

        def slow_call():
            entered.set()
            release.wait(5)
            return 'ok'

        first = threading.Thread(target=breaker.call, args=(slow_call,))
        first.start()
        entered.wait(5)

        with pytest.raises(CircuitBreakerOpenError):
            breaker.call(lambda: second_calls.append(1))
        release.set()
        first.join(5)

        assert second_calls == []
        assert breaker.state == 'closed'
        assert breaker.call(lambda: 'next') == 'next'

    @pytest.mark.unit
    def test_failed_half_open_call_reopens(self):
        now = [0.0]
        breaker = CircuitBreaker(failure_threshold=1, recovery_timeout=10,
                                 expected_exception=UpstreamBlockedError, clock=lambda: now[0])
        with pytest.raises(UpstreamBlockedError):
            breaker.call(_raise_blocked)
        now[0] = 11.0

        with pytest.raises(UpstreamBlockedError):
            breaker.call(_raise_blocked)

        assert breaker.state == 'open'
        now[0] = 22.0
        assert breaker.call(lambda: 'ok') == 'ok'


class TestLogin:
    """Test the service account login"""

    @pytest.mark.session
    def test_login_returns_cookie(self):
        client, session = client_returning(response(cookies={'JSESSIONID': 'abc'}))

        assert client.login('user', 'secret') == 'abc'
        assert session.post.call_args.args[0] == config.LOGIN_URL

    @pytest.mark.session
    def test_wrong_password(self):
        client, _ = client_returning(response(text='<p>Podane hasło jest nieprawidłowe</p>'))

        with pytest.raises(LoginError):
            client.login('user', 'wrong')

    @pytest.mark.session
    def test_missing_cookie(self):
        client, _ = client_returning(response())

        with pytest.raises(LoginError):
            client.login('user', 'secret')

    @pytest.mark.session
    def test_missing_credentials(self):
        client, session = client_returning()

        with pytest.raises(LoginError):
            client.login('', '')
        session.post.assert_not_called()
