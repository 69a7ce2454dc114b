from __future__ import annotations

import time
import uuid
from typing import Callable

from stockdata.cache import RemoteTier
from stockdata.errors import CacheTierUnavailable
from stockdata.logging_config import get_logger

logger = get_logger(__name__)

TOKEN_LOCK_KEY = "kis:token_lock"


class TokenLock:
    """Cross-instance mutex on the remote tier's atomic SET NX EX.

    With ``fail_open`` enabled an unavailable remote tier makes ``acquire``
    report success, so concurrent instances may each refresh once during an
    outage. The lock TTL bounds how long a crashed holder can block others.
    """

    def __init__(
        self,
        remote: RemoteTier,
        key: str = TOKEN_LOCK_KEY,
        fail_open: bool = True,
        sleep: Callable[[float], None] = time.sleep,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._remote = remote
        self.key = key
        self.fail_open = fail_open
        self._sleep = sleep
        self._monotonic = monotonic
        self.marker = uuid.uuid4().hex

    def acquire(self, ttl_seconds: float) -> bool:
        try:
            acquired = self._remote.set_if_absent(self.key, self.marker, ttl_seconds)
        except CacheTierUnavailable as exc:
            logger.warning(
                "Token lock store unavailable (%s), fail_open=%s", exc, self.fail_open
            )
            return self.fail_open
        logger.debug("Token lock %s", "acquired" if acquired else "busy")
        return acquired

    def release(self) -> None:
        """Delete the lock only if this instance still holds it.

        A holder whose TTL lapsed mid-refresh must not remove a newer holder's lock.
        """
        try:
            released = self._remote.delete_if_equals(self.key, self.marker)
        except CacheTierUnavailable as exc:
            logger.debug("Token lock release skipped: %s", exc)
            return
        if not released:
            logger.debug("Token lock not held by this instance, nothing to release")

    def force_release(self) -> None:
        try:
            self._remote.delete(self.key)
        except CacheTierUnavailable as exc:
            logger.debug("Token lock force release skipped: %s", exc)

    def is_held(self) -> bool:
        try:
            return self._remote.exists(self.key)
        except CacheTierUnavailable:
            return False

    def wait_for_release(self, max_wait_seconds: float, poll_interval_seconds: float) -> bool:
        """Poll until the lock disappears or max_wait elapses.

        Returns True when the lock was observed released, False on timeout.
        Callers proceed either way.
        """
        deadline = self._monotonic() + max_wait_seconds
        while True:
            if not self.is_held():
                return True
            remaining = deadline - self._monotonic()
            if remaining <= 0:
                logger.info("Timed out waiting for token lock after %.1fs", max_wait_seconds)
                return False
            self._sleep(min(poll_interval_seconds, remaining))
