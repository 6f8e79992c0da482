# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Upstream Client - Login and AJAX calls against the university schedule system
"""
import logging
import time
from typing import Any, Dict, List, Optional

import requests

import config
from utils.circuit_breaker import CircuitBreaker
from utils.logger import StructuredLogger

logger = logging.getLogger(__name__)

INVALID_PASSWORD_MARKER = "Podane hasło jest nieprawidłowe"
BLOCKING_STATUS_CODES = (403, 429)


class UpstreamError(Exception):
    """The upstream call failed"""
    pass


class SessionExpiredError(UpstreamError):
    """The upstream no longer accepts the session cookie"""
    pass


class UpstreamBlockedError(UpstreamError):
    """Connection reset, 403 or 429 - the upstream is probably rate-limiting us"""
    pass


class UpstreamApiError(UpstreamError):
    """The upstream answered with an exception class other than session expiry"""

    def __init__(self, exception_class: str):
        self.exception_class = exception_class
        super().__init__(f"ApiError: {exception_class}")


class LoginError(UpstreamError):
    """No session could be obtained with the service account"""
    pass


class UpstreamClient:
    """Talks to the upstream AJAX endpoint with a borrowed session token"""

    def __init__(self, session: Optional[requests.Session] = None,
                 breaker: Optional[CircuitBreaker] = None):
        self.session = session or requests.Session()
        self.breaker = breaker or CircuitBreaker(
            failure_threshold=config.CIRCUIT_BREAKER_FAIL_MAX,
            recovery_timeout=config.CIRCUIT_BREAKER_RESET_TIMEOUT,
            expected_exception=UpstreamBlockedError,
            name="upstream"
        )
        self.structured_logger = StructuredLogger(__name__)

    # =========================================================================
    # LOGIN
    # =========================================================================

    def login(self, username: str, password: str) -> str:
        """
        Log in with the service account and return the session cookie

        Raises:
            LoginError: On wrong credentials, transport errors or a missing cookie
        """
        if not username or not password:
            raise LoginError("Upstream credentials are not configured")

        logger.info(f"🔐 Logging in to the upstream as {username}...")
        try:
            response = self.session.post(
                config.LOGIN_URL,
                data={'login': username, 'password': password},
                headers={'User-Agent': config.USER_AGENT},
                allow_redirects=False,
                timeout=config.REQUEST_TIMEOUT
            )
        except requests.exceptions.RequestException as e:
            raise LoginError(f"Login request failed: {e}") from e

        if INVALID_PASSWORD_MARKER in (response.text or ''):
            raise LoginError("Login rejected: invalid password")
        if not 200 <= response.status_code < 300:
            raise LoginError(f"Login failed with status {response.status_code}")

        token = response.cookies.get(config.SESSION_COOKIE_NAME)
        if not token:
            raise LoginError("Login looked successful but no session cookie was set")

        logger.info("✅ Logged in to the upstream")
        return token

    # =========================================================================
    # AJAX
    # =========================================================================

    def call(self, token: str, service: str, method: str, params: Any) -> Any:
        """
        Call one AJAX service method and return its ``returnedValue``

        Raises:
            SessionExpiredError: The session cookie is no longer valid
            UpstreamBlockedError: Connection reset, 403 or 429
            UpstreamApiError: Any other upstream exception class
            UpstreamError: Timeouts, other HTTP errors, unreadable replies
            CircuitBreakerOpenError: The upstream blocked us recently
        """
        return self.breaker.call(self._call, token, service, method, params)

    def _call(self, token: str, service: str, method: str, params: Any) -> Any:
        headers = {
            'Accept': 'application/json, text/javascript, */*; q=0.01',
            'Content-Type': 'application/json',
            'Cookie': f"{config.SESSION_COOKIE_NAME}={token}",
            'User-Agent': config.USER_AGENT,
            'X-Requested-With': 'XMLHttpRequest',
        }
        payload = {'service': service, 'method': method, 'params': params}

        started = time.monotonic()
        try:
            response = self.session.post(config.AJAX_URL, json=payload, headers=headers,
                                         timeout=config.REQUEST_TIMEOUT)
        except requests.exceptions.ConnectionError as e:
            self.structured_logger.log_upstream_call(method, error=str(e))
            raise UpstreamBlockedError(f"Connection error calling {method}: {e}") from e
        except requests.exceptions.RequestException as e:
            self.structured_logger.log_upstream_call(method, error=str(e))
            raise UpstreamError(f"Request failed calling {method}: {e}") from e

        duration_ms = (time.monotonic() - started) * 1000
        if response.status_code in BLOCKING_STATUS_CODES:
            self.structured_logger.log_upstream_call(method, duration_ms=duration_ms,
                                                     error=f"HTTP {response.status_code}")
            raise UpstreamBlockedError(f"{method} returned {response.status_code}")
        if response.status_code != 200:
            self.structured_logger.log_upstream_call(method, duration_ms=duration_ms,
                                                     error=f"HTTP {response.status_code}")
            raise UpstreamError(f"{method} returned {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamError(f"{method} returned a non-JSON reply") from e

        self.structured_logger.log_upstream_call(method, duration_ms=duration_ms)
        return self._validate(data)

    @staticmethod
    def _validate(data: Any) -> Any:
        if not isinstance(data, dict):
            raise UpstreamError(f"Unexpected reply: {str(data)[:200]}")

        exception_class = data.get('exceptionClass')
        if exception_class in config.SESSION_EXPIRED_EXCEPTIONS:
            raise SessionExpiredError(exception_class)
        if exception_class is not None:
            raise UpstreamApiError(exception_class)
        return data.get('returnedValue')

    # =========================================================================
    # SERVICES
    # =========================================================================

    def get_group_schedule(self, token: str, group_id: int, week_start_ms: int) -> List[Dict[str, Any]]:
        """Scheduled meetings of one dean group in the week starting at ``week_start_ms``"""
        value = self.call(token, config.SCHEDULE_SERVICE, config.SCHEDULE_METHOD, {
            'idGrupyDziekanskiej': group_id,
            'poczatekTygodnia': week_start_ms,
        })
        return list((value or {}).get('items') or [])

    def get_group_tree(self, token: str, semester_id: int, item_ids: Optional[List[Any]] = None) -> List[Dict[str, Any]]:
        """
        Group tree items of a winter semester

        Args:
            token: Session token
            semester_id: Upstream winter semester id
            item_ids: Tree items to expand; defaults to the root item

        Returns:
            The ``items`` list of the reply
        """
        value = self.call(token, config.SCHEDULE_SERVICE, config.GROUP_TREE_METHOD, {
            'idSemestru': semester_id,
            'cyklRoczny': True,
            'itemIdList': item_ids if item_ids is not None else [config.GROUP_TREE_ROOT_ITEM],
        })
        return list((value or {}).get('items') or [])

    def ping(self, token: str) -> Any:
        """Keep-alive call; returns the raw ``returnedValue`` (None when healthy)"""
        return self.call(token, config.KEEPALIVE_SERVICE, config.KEEPALIVE_METHOD, [])
