from __future__ import annotations

import datetime
from typing import Callable

from pydantic import ValidationError

from stockdata.auth.lock import TokenLock
from stockdata.cache import Clock, TieredCache, utcnow
from stockdata.config.settings import TokenSettings
from stockdata.errors import TokenExchangeError, TokenRateLimitedError
from stockdata.logging_config import get_logger
from stockdata.providers.kis import RATE_LIMIT_CODE
from stockdata.schemas.token import CachedToken, TokenResponse, TokenStatus

logger = get_logger(__name__)

TOKEN_KEY = "kis:access_token"
RATE_LIMIT_KEY = "kis:token_rate_limited"


class TokenManager:
    """Hands out a shared bearer token, refreshing it at most once across instances.

    The token is considered usable only while ``now < expires_at - buffer``,
    whichever cache tier served it. Refreshes are serialised through
    ``TokenLock``; instances that lose the race wait for the holder and then
    re-read the cache. Exchange failures propagate as ``TokenError``.
    """

    def __init__(
        self,
        cache: TieredCache,
        lock: TokenLock,
        exchange: Callable[[], TokenResponse],
        config: TokenSettings,
        clock: Clock = utcnow,
    ) -> None:
        self._cache = cache
        self._lock = lock
        self._exchange = exchange
        self._config = config
        self._clock = clock

    def get_token(self) -> CachedToken:
        cached = self._read_cached()
        if cached is not None and cached.is_usable(
            self._clock(), self._config.expiry_buffer_seconds
        ):
            return cached

        if self._lock.acquire(self._config.lock_ttl_seconds):
            try:
                return self._refresh_if_stale()
            finally:
                self._lock.release()

        logger.info("Another instance is refreshing the token, waiting")
        released = self._lock.wait_for_release(
            self._config.lock_max_wait_seconds,
            self._config.lock_poll_interval_seconds,
        )
        if not released:
            logger.warning("Token lock still held after wait, refreshing anyway")
        return self._refresh_if_stale()

    def status(self) -> TokenStatus:
        cached = self._read_cached()
        return TokenStatus(
            has_token=cached is not None and not cached.is_expired(self._clock()),
            expires_at=cached.expires_at if cached else None,
            rate_limited_until=self._rate_limited_until(),
            remote_available=self._cache.remote.available,
        )

    def clear(self) -> None:
        self._cache.delete(TOKEN_KEY)
        self._cache.delete(RATE_LIMIT_KEY)
        self._lock.force_release()
        logger.info("Token cache cleared")

    def _read_cached(self) -> CachedToken | None:
        data = self._cache.get(TOKEN_KEY)
        if data is None:
            return None
        try:
            return CachedToken.model_validate(data)
        except ValidationError as exc:
            logger.warning("Discarding unreadable cached token: %s", exc)
            return None

    def _rate_limited_until(self) -> datetime.datetime | None:
        raw = self._cache.get(RATE_LIMIT_KEY)
        if not isinstance(raw, str):
            return None
        try:
            until = datetime.datetime.fromisoformat(raw)
        except ValueError:
            return None
        if until <= self._clock():
            return None
        return until

    def _refresh_if_stale(self) -> CachedToken:
        # The previous holder may have stored a fresh token while we waited.
        cached = self._read_cached()
        now = self._clock()
        if cached is not None and cached.is_usable(now, self._config.expiry_buffer_seconds):
            return cached

        until = self._rate_limited_until()
        if until is not None:
            if cached is not None and not cached.is_expired(now):
                logger.warning("Token issuance rate limited, reusing token near expiry")
                return cached
            raise TokenRateLimitedError(until)

        return self._refresh(cached)

    def _refresh(self, previous: CachedToken | None) -> CachedToken:
        try:
            response = self._exchange()
        except TokenExchangeError as exc:
            if exc.vendor_code != RATE_LIMIT_CODE:
                raise
            now = self._clock()
            cooldown = self._config.rate_limit_cooldown_seconds
            until = now + datetime.timedelta(seconds=cooldown)
            self._cache.set(RATE_LIMIT_KEY, until.isoformat(), cooldown)
            if previous is not None and not previous.is_expired(now):
                logger.warning("Token issuance rate limited, reusing token near expiry")
                return previous
            raise TokenRateLimitedError(until) from exc

        now = self._clock()
        token = CachedToken(value=response.access_token, expires_at=response.expires_at(now))
        ttl_seconds = (token.expires_at - now).total_seconds()
        if ttl_seconds <= 0:
            raise TokenExchangeError("Token exchange returned an already expired token.")
        self._cache.set(TOKEN_KEY, token.model_dump(mode="json"), ttl_seconds)
        logger.info("Access token refreshed, expires at %s", token.expires_at.isoformat())
        return token
