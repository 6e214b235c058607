"""Retention worker: prunes action records that no window can see any more.

The widest rate limit window is a week, so records older than the retention
horizon (default 7 days) never influence a decision and are deleted on a
fixed interval. The Redis backend also expires idle keys on its own; the
sweep trims the tails of keys that stay active.

Run standalone:
    cd api
    python -m ringhub.worker.retention_worker
"""

import asyncio
from datetime import timedelta

import redis.asyncio as aioredis
import structlog

from ringhub.clock import Clock, SystemClock
from ringhub.config import settings
from ringhub.database import async_session_factory
from ringhub.exceptions import StoreUnavailable
from ringhub.logging_config import configure_logging
from ringhub.metrics import action_records_pruned
from ringhub.services.counters import CounterStore, build_counter_store

log = structlog.get_logger()


async def run_retention_sweep(
    counters: CounterStore, clock: Clock, retention: timedelta
) -> int:
    """Delete every record older than ``retention``. Returns the number removed.

    Raises StoreUnavailable; the loop logs it and tries again next interval.
    """
    horizon = clock.now() - retention
    removed = await counters.prune_older_than(horizon)
    action_records_pruned.inc(removed)
    log.info("retention_sweep_completed", removed=removed, horizon=horizon.isoformat())
    return removed


async def run_worker() -> None:
    configure_logging()
    clock = SystemClock()
    retention = timedelta(days=settings.action_retention_days)
    interval = settings.retention_sweep_interval_hours * 3600

    redis_client = aioredis.from_url(settings.redis_url, encoding="utf-8", decode_responses=True)
    counters = build_counter_store(
        settings.counter_backend,
        clock,
        session_factory=async_session_factory,
        redis_client=redis_client,
        retention=retention,
    )
    log.info(
        "retention_worker_started",
        backend=settings.counter_backend,
        interval_hours=settings.retention_sweep_interval_hours,
        retention_days=settings.action_retention_days,
    )

    try:
        while True:
            try:
                await run_retention_sweep(counters, clock, retention)
            except StoreUnavailable as exc:
                log.warning(
                    "retention_sweep_failed",
                    store=exc.store,
                    operation=exc.operation,
                    exc_info=True,
                )
            await asyncio.sleep(interval)
    finally:
        await redis_client.aclose()


if __name__ == "__main__":
    asyncio.run(run_worker())
