from __future__ import annotations

from dataclasses import dataclass
from functools import partial

from stockdata.auth.lock import TokenLock
from stockdata.auth.token_manager import TokenManager
from stockdata.cache import TieredCache
from stockdata.config.settings import Settings
from stockdata.master.dataset import MasterDataService
from stockdata.providers.kis import issue_token


@dataclass
class Runtime:
    """Per-process collaborators, built once and handed to callers explicitly."""

    settings: Settings
    cache: TieredCache
    token_manager: TokenManager
    master: MasterDataService


def build_runtime(settings: Settings) -> Runtime:
    cache = TieredCache.from_settings(settings)
    lock = TokenLock(cache.remote, fail_open=settings.token.lock_fail_open)
    token_manager = TokenManager(
        cache,
        lock,
        exchange=partial(issue_token, settings.kis),
        config=settings.token,
    )
    master = MasterDataService.from_settings(cache.local, settings.master)
    return Runtime(settings=settings, cache=cache, token_manager=token_manager, master=master)
