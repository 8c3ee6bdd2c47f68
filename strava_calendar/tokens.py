"""
Access-token lifecycle: the one place that decides whether a credential is
still usable and the only caller of the refresh endpoint.
"""

import threading
import time

from loguru import logger

from .errors import ExchangeFailedError, NoCredentialError

# Refresh this many seconds early to absorb clock drift and request latency.
EXPIRY_SKEW = 10


class TokenManager:
    def __init__(self, provider, credential_store, clock=time.time, skew=EXPIRY_SKEW):
        self.provider = provider
        self.store = credential_store
        self.clock = clock
        self.skew = skew
        self._refresh_lock = threading.Lock()

    def _load(self):
        credential = self.store.load()
        if credential is None:
            raise NoCredentialError("no Strava credential stored; authorize via /auth/start")
        return credential

    def ensure_fresh(self):
        """Return a usable credential, refreshing it first if it is about to expire.

        Refreshes are single-flight: callers that lose the race wait on the
        lock, re-read the store and pick up the winner's credential.
        """
        credential = self._load()
        if not credential.is_expired(self.clock(), self.skew):
            return credential

        with self._refresh_lock:
            credential = self._load()
            if not credential.is_expired(self.clock(), self.skew):
                logger.debug("Token was refreshed by a concurrent request")
                return credential

            logger.info("Refreshing Strava access token...")
            fresh = self.provider.refresh_token(credential.refresh_token)
            self.store.save(fresh)
            logger.info(f"Strava access token refreshed, expires at {fresh.expires_at}")
            return fresh

    def exchange(self, code):
        """Trade a one-time authorization code for a credential and store it."""
        if not code:
            raise ExchangeFailedError("no authorization code provided")
        credential = self.provider.exchange_code(code)
        self.store.save(credential)
        logger.info("Stored Strava credential from authorization code exchange")
        return credential
