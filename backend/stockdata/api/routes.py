from functools import lru_cache

from fastapi import APIRouter, Depends, HTTPException, status
from redis.exceptions import RedisError

from stockdata.cache import utcnow
from stockdata.config.settings import settings
from stockdata.jobs.master_refresh import refresh_markets
from stockdata.jobs.queue import enqueue_master_refresh
from stockdata.logging_config import get_logger
from stockdata.master.dataset import DOMESTIC, FOREIGN, resolve_markets
from stockdata.master.search import search_records
from stockdata.runtime import Runtime, build_runtime
from stockdata.schemas.master import (
    DatasetCacheStatus,
    MasterDataResponse,
    RefreshResponse,
    SearchResponse,
)
from stockdata.schemas.token import TokenStatus

logger = get_logger(__name__)

router = APIRouter()

_MAX_SEARCH_LIMIT = 500


@lru_cache(maxsize=1)
def get_runtime() -> Runtime:
    return build_runtime(settings)


def _markets_or_400(market: str) -> list[str]:
    try:
        return resolve_markets(market)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": str(exc)},
        ) from exc


@router.get("/health")
def health() -> dict:
    return {"status": "ok"}


@router.get("/token/status", response_model=TokenStatus)
def token_status(runtime: Runtime = Depends(get_runtime)) -> TokenStatus:
    return runtime.token_manager.status()


@router.post("/token/warm", response_model=TokenStatus)
def warm_token(runtime: Runtime = Depends(get_runtime)) -> TokenStatus:
    # TokenError propagates to the app-level handler (503).
    runtime.token_manager.get_token()
    return runtime.token_manager.status()


@router.get("/stocks/master", response_model=MasterDataResponse)
def get_master_data(
    market: str = "all",
    refresh: bool = False,
    runtime: Runtime = Depends(get_runtime),
) -> MasterDataResponse:
    markets = _markets_or_400(market)
    korean = None
    us = None
    if DOMESTIC in markets:
        korean = list(runtime.master.get_dataset(DOMESTIC, force_refresh=refresh).records.values())
    if FOREIGN in markets:
        us = list(runtime.master.get_dataset(FOREIGN, force_refresh=refresh).records.values())
    return MasterDataResponse(
        korean=korean,
        us=us,
        cache=runtime.master.get_cache_status(),
        timestamp=utcnow(),
    )


@router.post("/stocks/master/refresh", response_model=RefreshResponse)
def refresh_master_data(
    market: str = "all", runtime: Runtime = Depends(get_runtime)
) -> RefreshResponse:
    markets = _markets_or_400(market)
    if runtime.settings.remote_cache_configured:
        try:
            job = enqueue_master_refresh(market)
        except RedisError as exc:
            logger.warning("Could not enqueue master refresh, running inline: %s", exc)
        else:
            return RefreshResponse(markets=markets, status="queued", job_id=job.id)

    counts = refresh_markets(runtime.master, market)
    return RefreshResponse(markets=markets, status="completed", counts=counts)


@router.delete("/stocks/master/cache", response_model=dict[str, DatasetCacheStatus])
def clear_master_cache(runtime: Runtime = Depends(get_runtime)) -> dict[str, DatasetCacheStatus]:
    runtime.master.clear_cache()
    return runtime.master.get_cache_status()


@router.get("/search", response_model=SearchResponse)
def search_stocks(
    q: str = "",
    market: str = "all",
    limit: int = 50,
    runtime: Runtime = Depends(get_runtime),
) -> SearchResponse:
    query = q.strip()
    if not query:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": "Query parameter q is required."},
        )
    markets = _markets_or_400(market)
    limit = max(1, min(limit, _MAX_SEARCH_LIMIT))
    datasets = [runtime.master.get_dataset(name) for name in markets]
    results = search_records(datasets, query, limit)
    return SearchResponse(
        query=query,
        results=results,
        total_count=len(results),
        timestamp=utcnow(),
    )
