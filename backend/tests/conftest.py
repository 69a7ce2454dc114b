import threading

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from stockdata.cache import LocalTier, RemoteTier, TieredCache


class FakeRedis:
    def __init__(self) -> None:
        self.store: dict[str, str] = {}
        self.expirations: dict[str, int | None] = {}
        self.fail = False
        self._lock = threading.Lock()

    def _check(self) -> None:
        if self.fail:
            raise RedisConnectionError("connection refused")

    def get(self, key: str) -> str | None:
        self._check()
        with self._lock:
            return self.store.get(key)

    def set(self, key: str, value: str, ex: int | None = None, nx: bool = False):
        self._check()
        with self._lock:
            if nx and key in self.store:
                return None
            self.store[key] = value
            self.expirations[key] = ex
            return True

    def exists(self, key: str) -> int:
        self._check()
        with self._lock:
            return int(key in self.store)

    def eval(self, script: str, numkeys: int, *args: str) -> int:
        # Only the compare-and-delete script is ever evaluated.
        self._check()
        key, expected = args[0], args[1]
        with self._lock:
            if self.store.get(key) != expected:
                return 0
            del self.store[key]
            self.expirations.pop(key, None)
            return 1

    def delete(self, *keys: str) -> int:
        self._check()
        removed = 0
        with self._lock:
            for key in keys:
                if self.store.pop(key, None) is not None:
                    removed += 1
                self.expirations.pop(key, None)
        return removed


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()


@pytest.fixture
def local_tier(tmp_path) -> LocalTier:
    return LocalTier(tmp_path / "cache")


@pytest.fixture
def tiered_cache(fake_redis, local_tier) -> TieredCache:
    return TieredCache(RemoteTier(fake_redis), local_tier)


@pytest.fixture
def local_only_cache(local_tier) -> TieredCache:
    return TieredCache(RemoteTier(None), local_tier)
