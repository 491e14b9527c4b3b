"""Scheduler service for periodic payout jobs using APScheduler."""
import logging
import os
import multiprocessing
from datetime import datetime, timedelta
from typing import Optional
from uuid import uuid4
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
import redis.asyncio as redis

from app.config import settings
from app.services.container import PayoutServices
from app.services.exceptions import FxRateUnavailableError

logger = logging.getLogger(__name__)

# Initialize scheduler
scheduler = AsyncIOScheduler()

# Redis client for distributed locking
redis_client = None

# uvicorn --workers N names its app processes SpawnProcess-1..N; a single
# process runs the app in MainProcess.
SCHEDULER_PROCESS_NAMES = ("SpawnProcess-1", "MainProcess")


def is_scheduler_process() -> bool:
    return multiprocessing.current_process().name in SCHEDULER_PROCESS_NAMES


async def get_redis_client():
    """Get or create Redis client."""
    global redis_client
    if redis_client is None:
        redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)
    return redis_client


# Deletes the lock only while it still holds this run's token, so a run that
# outlived the TTL cannot free a lock another instance has since taken.
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""


async def acquire_lock(lock_name: str, timeout: int = 300) -> Optional[str]:
    """
    Acquire a distributed lock using Redis.

    Args:
        lock_name: Name of the lock
        timeout: Lock timeout in seconds

    Returns:
        The owner token to pass to ``release_lock``, or None if the lock is held
    """
    token = uuid4().hex
    try:
        client = await get_redis_client()
        # Use SET with NX (only set if not exists) and EX (expiry)
        result = await client.set(f"payouts:lock:{lock_name}", token, nx=True, ex=timeout)
        return token if result else None
    except Exception as e:
        logger.error(f"Failed to acquire lock {lock_name}: {e}")
        return None


async def release_lock(lock_name: str, token: str):
    """Release a distributed lock if this caller still owns it."""
    try:
        client = await get_redis_client()
        released = await client.eval(_RELEASE_SCRIPT, 1, f"payouts:lock:{lock_name}", token)
        if not released:
            logger.warning(f"Lock {lock_name} expired before release; left for its current owner")
    except Exception as e:
        logger.error(f"Failed to release lock {lock_name}: {e}")


async def process_campaign_payouts(services: PayoutServices):
    """Calculate earnings for the most recent closed period and pay every eligible record."""
    lock_name = "process_campaign_payouts"

    # Held for at most one interval so a crashed run cannot block the next tick.
    token = await acquire_lock(lock_name, timeout=settings.PAYOUT_INTERVAL_MINUTES * 60)
    if token is None:
        logger.info(f"Skipping {lock_name} - another instance is running")
        return

    try:
        logger.info("Running process_campaign_payouts job")
        summary = await services.scheduler.run_cycle()
        logger.info(
            f"Payout job finished for {summary.month:02d}/{summary.year}: "
            f"{summary.payouts.paid} paid, {summary.payouts.failed} failed"
        )
    except Exception as e:
        logger.error(f"Error in process_campaign_payouts: {e}", exc_info=True)
    finally:
        await release_lock(lock_name, token)


async def refresh_fx_rates(services: PayoutServices):
    """Refresh every supported currency pair in the process-local FX cache."""
    lock_name = "refresh_fx_rates"

    token = await acquire_lock(lock_name)
    if token is None:
        logger.info(f"Skipping {lock_name} - another instance is running")
        return

    try:
        logger.info("Running refresh_fx_rates job")
        currencies = settings.supported_currencies
        refreshed = 0
        for from_currency in currencies:
            for to_currency in currencies:
                if from_currency == to_currency:
                    continue
                try:
                    await services.fx_cache.refresh(from_currency, to_currency)
                    refreshed += 1
                except FxRateUnavailableError as e:
                    logger.warning(f"Keeping previous FX rate for {from_currency}->{to_currency}: {e}")
        logger.info(f"Refreshed {refreshed} FX rates")
    except Exception as e:
        logger.error(f"Error in refresh_fx_rates: {e}")
    finally:
        await release_lock(lock_name, token)


def start_scheduler(services: PayoutServices):
    """Start the APScheduler with the payout jobs."""
    current_pid = os.getpid()
    current_process_name = multiprocessing.current_process().name

    if not is_scheduler_process():
        logger.info(f"Skipping scheduler on {current_process_name} (PID: {current_pid}) - scheduler only runs on SpawnProcess-1")
        return

    logger.info(f"Starting scheduler on {current_process_name} (PID: {current_pid})...")

    # Job 1: Calculate and pay out campaign earnings
    scheduler.add_job(
        process_campaign_payouts,
        trigger=IntervalTrigger(minutes=settings.PAYOUT_INTERVAL_MINUTES),
        args=[services],
        id="process_campaign_payouts",
        name="Process campaign payouts",
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )

    # Job 2: Refresh FX rates once per cache TTL (staggered: starts after 5 minutes)
    scheduler.add_job(
        refresh_fx_rates,
        trigger=IntervalTrigger(
            hours=settings.FX_CACHE_TTL_HOURS,
            start_date=datetime.utcnow() + timedelta(minutes=5),
        ),
        args=[services],
        id="refresh_fx_rates",
        name="Refresh FX rates",
        replace_existing=True,
    )

    scheduler.start()
    logger.info("Scheduler started with 2 payout jobs")


def stop_scheduler():
    """Stop the APScheduler."""
    current_pid = os.getpid()
    current_process_name = multiprocessing.current_process().name

    if not is_scheduler_process():
        logger.info(f"Skipping scheduler shutdown on {current_process_name} (PID: {current_pid})")
        return

    logger.info(f"Stopping scheduler on {current_process_name} (PID: {current_pid})...")
    if scheduler.running:
        scheduler.shutdown()
        logger.info("Scheduler stopped")
    else:
        logger.info("Scheduler was not running")
