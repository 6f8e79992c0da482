# © 2024–2025 Harnisch LLC. All Rights Reserved.
# Licensed exclusively for use by St. Edward Church & School (Nashville, TN).
# Unauthorized use, distribution, or modification is prohibited.

"""
Session Broker - One shared upstream session per process

The upstream allows a single service account, and logging in again kills
every session in flight. At most one login runs at a time; everyone else
waits for its result.
"""
import logging
import time
from threading import Lock
from typing import Callable, Optional

import config
from auth.credential_store import CredentialStore
from storage.document_store import StoreError

logger = logging.getLogger(__name__)


class SessionBroker:
    """Hands out the shared session token and coordinates refreshes"""

    def __init__(self, login_func: Callable[[], str], credential_store: Optional[CredentialStore] = None,
                 poll_interval: Optional[float] = None, sleep: Callable[[float], None] = time.sleep):
        """
        Args:
            login_func: Performs a real login and returns the new token
            credential_store: Durable store consulted before logging in
            poll_interval: Seconds between cache checks while another refresh runs
            sleep: Sleep function (replaced in tests)
        """
        self.login_func = login_func
        self.credential_store = credential_store
        self.poll_interval = config.SESSION_POLL_INTERVAL if poll_interval is None else poll_interval
        self._sleep = sleep

        self._lock = Lock()
        self._token: Optional[str] = None
        self._invalidated: Optional[str] = None
        self._refreshing = False
        self.login_count = 0

    @property
    def cached_token(self) -> Optional[str]:
        with self._lock:
            return self._token

    def acquire(self) -> str:
        """
        Return a session token, logging in only when nothing is cached

        Raises:
            LoginError: If a login was needed and failed
        """
        while True:
            with self._lock:
                if self._token:
                    return self._token
                if not self._refreshing:
                    self._refreshing = True
                    break
            logger.debug("⏳ Session refresh in progress - waiting")
            self._sleep(self.poll_interval)

        try:
            token = self._load_durable()
            if token is None:
                token = self._login()
            with self._lock:
                self._token = token
            return token
        finally:
            with self._lock:
                self._refreshing = False

    def invalidate_and_refresh(self, stale_token: Optional[str] = None) -> str:
        """
        Replace an expired session with a fresh login

        Args:
            stale_token: The token the caller saw rejected; if the cache already
                holds a different one, it is returned without a login

        Raises:
            LoginError: If the login failed
        """
        waited = False
        while True:
            with self._lock:
                if self._token and stale_token is not None and self._token != stale_token:
                    logger.debug("Session already refreshed by another caller")
                    return self._token
                if not self._refreshing:
                    if waited and self._token:
                        return self._token
                    self._refreshing = True
                    self._invalidated = stale_token or self._token
                    self._token = None
                    break
            waited = True
            logger.debug("⏳ Session refresh in progress - waiting")
            self._sleep(self.poll_interval)

        try:
            logger.info("🔄 Session expired - logging in again")
            token = self._login()
            with self._lock:
                self._token = token
            return token
        finally:
            with self._lock:
                self._refreshing = False

    def _load_durable(self) -> Optional[str]:
        if self.credential_store is None:
            return None
        token = self.credential_store.get()
        if token is not None and token == self._invalidated:
            logger.info("Persisted session token was already rejected - logging in")
            return None
        return token

    def _login(self) -> str:
        token = self.login_func()
        self.login_count += 1
        if self.credential_store is not None:
            try:
                self.credential_store.set(token)
            except (OSError, StoreError) as e:
                logger.error(f"Failed to persist session token: {e}")
        return token
