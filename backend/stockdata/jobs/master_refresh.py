from __future__ import annotations

from stockdata.config.settings import settings
from stockdata.logging_config import get_logger
from stockdata.master.dataset import MasterDataService, resolve_markets
from stockdata.runtime import build_runtime

logger = get_logger(__name__)


def refresh_markets(master: MasterDataService, market: str) -> dict[str, int]:
    counts: dict[str, int] = {}
    for name in resolve_markets(market):
        dataset = master.get_dataset(name, force_refresh=True)
        counts[name] = len(dataset)
    logger.info("Master refresh finished: %s", counts)
    return counts


def run_master_refresh(market: str = "all") -> dict[str, int]:
    runtime = build_runtime(settings)
    return refresh_markets(runtime.master, market)
