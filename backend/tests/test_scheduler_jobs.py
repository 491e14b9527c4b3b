"""Tests for the APScheduler payout jobs."""
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from app.services import scheduler as scheduler_module
from app.services.exceptions import FxRateUnavailableError
from app.services.payout_scheduler import PayoutCycleSummary, PayoutRunSummary


def make_services():
    services = MagicMock()
    services.scheduler.run_cycle = AsyncMock(
        return_value=PayoutCycleSummary(month=3, year=2026, payouts=PayoutRunSummary(eligible=1, paid=1))
    )
    services.fx_cache.refresh = AsyncMock(return_value=1.3)
    return services


@pytest.mark.asyncio
async def test_process_campaign_payouts_runs_cycle_under_lock():
    services = make_services()

    with patch.object(scheduler_module, "acquire_lock", AsyncMock(return_value="token-1")) as mock_acquire, \
         patch.object(scheduler_module, "release_lock", AsyncMock()) as mock_release:
        await scheduler_module.process_campaign_payouts(services)

    services.scheduler.run_cycle.assert_awaited_once()
    mock_acquire.assert_awaited_once()
    mock_release.assert_awaited_once_with("process_campaign_payouts", "token-1")


@pytest.mark.asyncio
async def test_process_campaign_payouts_skips_when_locked():
    services = make_services()

    with patch.object(scheduler_module, "acquire_lock", AsyncMock(return_value=None)), \
         patch.object(scheduler_module, "release_lock", AsyncMock()) as mock_release:
        await scheduler_module.process_campaign_payouts(services)

    services.scheduler.run_cycle.assert_not_awaited()
    mock_release.assert_not_awaited()


@pytest.mark.asyncio
async def test_failed_cycle_releases_lock():
    services = make_services()
    services.scheduler.run_cycle.side_effect = RuntimeError("database down")

    with patch.object(scheduler_module, "acquire_lock", AsyncMock(return_value="token-1")), \
         patch.object(scheduler_module, "release_lock", AsyncMock()) as mock_release:
        await scheduler_module.process_campaign_payouts(services)

    mock_release.assert_awaited_once()


@pytest.mark.asyncio
async def test_refresh_fx_rates_tolerates_failures(monkeypatch):
    services = make_services()
    monkeypatch.setattr(scheduler_module.settings, "SUPPORTED_CURRENCIES", "USD,CAD")

    async def refresh(from_currency, to_currency):
        if from_currency == "CAD":
            raise FxRateUnavailableError("upstream down")
        return 1.3

    services.fx_cache.refresh.side_effect = refresh

    with patch.object(scheduler_module, "acquire_lock", AsyncMock(return_value="token-1")), \
         patch.object(scheduler_module, "release_lock", AsyncMock()) as mock_release:
        await scheduler_module.refresh_fx_rates(services)

    assert services.fx_cache.refresh.await_count == 2
    mock_release.assert_awaited_once_with("refresh_fx_rates", "token-1")


@pytest.mark.asyncio
async def test_acquire_lock_stores_owner_token():
    client = MagicMock()
    client.set = AsyncMock(return_value=True)

    with patch.object(scheduler_module, "get_redis_client", AsyncMock(return_value=client)):
        token = await scheduler_module.acquire_lock("job", timeout=60)

    assert token
    client.set.assert_awaited_once_with("payouts:lock:job", token, nx=True, ex=60)

    client.set.return_value = None
    with patch.object(scheduler_module, "get_redis_client", AsyncMock(return_value=client)):
        assert await scheduler_module.acquire_lock("job") is None


@pytest.mark.asyncio
async def test_acquire_lock_skips_when_redis_is_down():
    with patch.object(scheduler_module, "get_redis_client", AsyncMock(side_effect=ConnectionError("refused"))):
        assert await scheduler_module.acquire_lock("job") is None


@pytest.mark.asyncio
async def test_release_lock_only_deletes_own_token():
    """A run that outlived its TTL must not free the lock a later run now holds."""
    store = {}

    async def fake_set(key, value, nx=False, ex=None):
        if nx and key in store:
            return None
        store[key] = value
        return True

    async def fake_eval(script, numkeys, key, token):
        if store.get(key) == token:
            del store[key]
            return 1
        return 0

    client = MagicMock()
    client.set = AsyncMock(side_effect=fake_set)
    client.eval = AsyncMock(side_effect=fake_eval)

    with patch.object(scheduler_module, "get_redis_client", AsyncMock(return_value=client)):
        slow_token = await scheduler_module.acquire_lock("job", timeout=60)
        # The slow run's lock expires and another instance takes it
        store.clear()
        current_token = await scheduler_module.acquire_lock("job", timeout=60)
        assert current_token is not None

        await scheduler_module.release_lock("job", slow_token)
        assert store == {"payouts:lock:job": current_token}

        await scheduler_module.release_lock("job", current_token)
        assert store == {}

    client.eval.assert_awaited_with(scheduler_module._RELEASE_SCRIPT, 1, "payouts:lock:job", current_token)
