from __future__ import annotations

from redis import Redis
from rq import Queue
from rq.job import Job

from stockdata.config.settings import settings
from stockdata.jobs.master_refresh import run_master_refresh


def get_redis_connection() -> Redis:
    return Redis.from_url(
        settings.redis_url,
        password=settings.redis_token,
        socket_timeout=settings.redis_socket_timeout_seconds,
        socket_connect_timeout=settings.redis_socket_timeout_seconds,
    )


def get_queue(name: str | None = None) -> Queue:
    queue_name = name or settings.refresh_queue_name
    return Queue(name=queue_name, connection=get_redis_connection())


def enqueue_master_refresh(market: str) -> Job:
    queue = get_queue()
    return queue.enqueue(run_master_refresh, market=market)
