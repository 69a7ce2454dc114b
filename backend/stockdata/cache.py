from __future__ import annotations

import datetime
import json
import os
import re
import tempfile
from pathlib import Path
from typing import Any, Callable

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from redis import Redis
from redis.exceptions import RedisError

from stockdata.config.settings import Settings
from stockdata.errors import CacheTierUnavailable
from stockdata.logging_config import get_logger

logger = get_logger(__name__)

Clock = Callable[[], datetime.datetime]

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9._-]")

_DELETE_IF_EQUALS_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


def _ttl(seconds: float) -> int:
    return max(1, int(seconds))


class CacheEntry(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    data: Any = None
    created_at: datetime.datetime = Field(alias="createdAt")
    expires_at: datetime.datetime = Field(alias="expiresAt")

    def is_expired(self, now: datetime.datetime) -> bool:
        return now >= self.expires_at


class RemoteTier:
    """Shared redis store. Every failure surfaces as CacheTierUnavailable."""

    def __init__(self, client: Redis | None) -> None:
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> RemoteTier:
        if not settings.remote_cache_configured:
            logger.info("Remote cache tier not configured, using local tier only")
            return cls(None)
        try:
            client = Redis.from_url(
                settings.redis_url,
                password=settings.redis_token,
                socket_timeout=settings.redis_socket_timeout_seconds,
                socket_connect_timeout=settings.redis_socket_timeout_seconds,
                decode_responses=True,
            )
        except (RedisError, ValueError) as exc:
            logger.warning("Remote cache tier misconfigured: %s", exc)
            return cls(None)
        return cls(client)

    @property
    def available(self) -> bool:
        return self._client is not None

    def _require(self) -> Redis:
        if self._client is None:
            raise CacheTierUnavailable("Remote cache tier is not configured.")
        return self._client

    def get(self, key: str) -> str | None:
        client = self._require()
        try:
            raw = client.get(key)
        except (RedisError, OSError) as exc:
            raise CacheTierUnavailable(str(exc)) from exc
        if isinstance(raw, bytes):
            return raw.decode("utf-8")
        return raw

    def set(self, key: str, value: str, ttl_seconds: float) -> None:
        client = self._require()
        try:
            client.set(key, value, ex=_ttl(ttl_seconds))
        except (RedisError, OSError) as exc:
            raise CacheTierUnavailable(str(exc)) from exc

    def set_if_absent(self, key: str, value: str, ttl_seconds: float) -> bool:
        client = self._require()
        try:
            result = client.set(key, value, ex=_ttl(ttl_seconds), nx=True)
        except (RedisError, OSError) as exc:
            raise CacheTierUnavailable(str(exc)) from exc
        return bool(result)

    def exists(self, key: str) -> bool:
        client = self._require()
        try:
            return bool(client.exists(key))
        except (RedisError, OSError) as exc:
            raise CacheTierUnavailable(str(exc)) from exc

    def delete(self, key: str) -> None:
        client = self._require()
        try:
            client.delete(key)
        except (RedisError, OSError) as exc:
            raise CacheTierUnavailable(str(exc)) from exc

    def delete_if_equals(self, key: str, expected: str) -> bool:
        """Atomically delete ``key`` only while it still holds ``expected``."""
        client = self._require()
        try:
            return bool(client.eval(_DELETE_IF_EQUALS_SCRIPT, 1, key, expected))
        except (RedisError, OSError) as exc:
            raise CacheTierUnavailable(str(exc)) from exc


class LocalTier:
    """One JSON file per key holding {data, createdAt, expiresAt}."""

    def __init__(self, directory: str | os.PathLike[str], clock: Clock = utcnow) -> None:
        self.directory = Path(directory)
        self._clock = clock

    def path_for(self, key: str) -> Path:
        return self.directory / f"{_UNSAFE_KEY_CHARS.sub('_', key)}.json"

    def read_entry(self, key: str) -> CacheEntry | None:
        """Return the stored entry even when expired; None if missing or unreadable."""
        path = self.path_for(key)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except OSError as exc:
            logger.warning("Local cache read failed for %s: %s", key, exc)
            return None
        try:
            return CacheEntry.model_validate_json(raw)
        except ValidationError as exc:
            logger.warning("Local cache entry %s is corrupt: %s", key, exc)
            return None

    def get(self, key: str) -> Any | None:
        entry = self.read_entry(key)
        if entry is None or entry.is_expired(self._clock()):
            return None
        return entry.data

    def set(
        self,
        key: str,
        value: Any,
        ttl_seconds: float,
        now: datetime.datetime | None = None,
    ) -> bool:
        now = now or self._clock()
        entry = CacheEntry(
            data=value,
            created_at=now,
            expires_at=now + datetime.timedelta(seconds=ttl_seconds),
        )
        payload = entry.model_dump_json(by_alias=True)
        path = self.path_for(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            # Readers only ever see a complete file.
            fd, tmp_name = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
            os.replace(tmp_name, path)
        except OSError as exc:
            logger.warning("Local cache write failed for %s: %s", key, exc)
            return False
        return True

    def exists(self, key: str) -> bool:
        return self.get(key) is not None

    def delete(self, key: str) -> None:
        try:
            self.path_for(key).unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("Local cache delete failed for %s: %s", key, exc)


class TieredCache:
    """Reads remote first then local; writes remote best-effort and local always."""

    def __init__(self, remote: RemoteTier, local: LocalTier) -> None:
        self.remote = remote
        self.local = local

    @classmethod
    def from_settings(cls, settings: Settings) -> TieredCache:
        return cls(RemoteTier.from_settings(settings), LocalTier(settings.cache_dir))

    def get(self, key: str) -> Any | None:
        if self.remote.available:
            try:
                raw = self.remote.get(key)
            except CacheTierUnavailable as exc:
                logger.warning("Remote cache get failed for %s: %s", key, exc)
            else:
                if raw is not None:
                    try:
                        return json.loads(raw)
                    except json.JSONDecodeError:
                        logger.warning("Remote cache value for %s is not JSON", key)
        return self.local.get(key)

    def set(self, key: str, value: Any, ttl_seconds: float) -> None:
        if self.remote.available:
            try:
                self.remote.set(key, json.dumps(value, ensure_ascii=False), ttl_seconds)
            except CacheTierUnavailable as exc:
                logger.warning("Remote cache set failed for %s: %s", key, exc)
        self.local.set(key, value, ttl_seconds)

    def exists(self, key: str) -> bool:
        if self.remote.available:
            try:
                if self.remote.exists(key):
                    return True
            except CacheTierUnavailable as exc:
                logger.warning("Remote cache exists failed for %s: %s", key, exc)
        return self.local.exists(key)

    def delete(self, key: str) -> None:
        if self.remote.available:
            try:
                self.remote.delete(key)
            except CacheTierUnavailable as exc:
                logger.warning("Remote cache delete failed for %s: %s", key, exc)
        self.local.delete(key)
