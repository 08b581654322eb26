"""Tests for the token maintenance job runner and its schedule."""
import asyncio
from datetime import datetime, timedelta

import pytest

from app.core.exceptions import MaintenanceAlreadyRunningError
from app.core.token_maintenance import MaintenanceConfig, TokenMaintenanceScheduler
from app.core.token_store import PushTokenStore
from app.core.token_validator import TokenValidator
from app.cron.token_maintenance import run_scheduled_token_maintenance
from app.models.enums import MaintenanceJobType


class Clock:
    def __init__(self):
        self.now = datetime(2026, 5, 4, 3, 0, 0)

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def store(session_maker):
    return PushTokenStore(session_maker, TokenValidator())


@pytest.fixture
def scheduler(store, clock):
    return TokenMaintenanceScheduler(store, MaintenanceConfig(), clock=clock)


class TestRunJob:
    async def test_full_job_runs_every_phase(self, scheduler, factories, clock):
        await factories.push_token("u1", "ExponentPushToken[valid0000001]", device_id="d1", device_name="Pixel")

        result = await scheduler.run_job()

        assert result.success
        assert result.job_type == MaintenanceJobType.full
        assert all(op.executed and op.error is None for op in result.operations.values())
        assert result.summary["healthy_tokens"] == 1
        assert result.operations["analytics"].result["overview"]["total_tokens"] == 1
        assert scheduler.last_run == clock.now
        assert scheduler.is_running is False
        assert scheduler.history() == [result]

    async def test_single_phase_job(self, scheduler):
        result = await scheduler.run_job(MaintenanceJobType.cleanup, max_age_days=7)
        assert result.operations["cleanup"].executed
        assert not result.operations["health_refresh"].executed
        assert not result.operations["analytics"].executed

    async def test_failing_phase_does_not_stop_the_rest(self, scheduler, store, monkeypatch):
        async def broken_cleanup(*args, **kwargs):
            raise RuntimeError("disk full")

        monkeypatch.setattr(store, "cleanup_tokens", broken_cleanup)

        result = await scheduler.run_job()

        assert not result.success
        assert result.operations["cleanup"].error == "Cleanup failed: disk full"
        assert result.operations["health_refresh"].executed
        assert result.operations["analytics"].error is None
        assert "Maintenance job had 1 errors" in result.alerts

    async def test_concurrent_run_is_rejected(self, scheduler, store, monkeypatch):
        started = asyncio.Event()
        release = asyncio.Event()
        original = store.cleanup_tokens

        async def slow_cleanup(*args, **kwargs):
            started.set()
            await release.wait()
            return await original(*args, **kwargs)

        monkeypatch.setattr(store, "cleanup_tokens", slow_cleanup)
        first = asyncio.create_task(scheduler.run_job(MaintenanceJobType.cleanup))
        await started.wait()

        with pytest.raises(MaintenanceAlreadyRunningError):
            await scheduler.run_job()

        release.set()
        assert (await first).success

    async def test_history_is_newest_first_and_bounded(self, store, clock):
        scheduler = TokenMaintenanceScheduler(store, history_size=2, clock=clock)
        jobs = [await scheduler.run_job(MaintenanceJobType.analytics) for _ in range(3)]
        assert scheduler.history() == [jobs[2], jobs[1]]
        assert scheduler.history(limit=1) == [jobs[2]]


class TestAlerts:
    async def test_unhealthy_percentage_alert(self, scheduler, factories):
        await factories.push_token("u1", "ExponentPushToken[valid0000001]")
        await factories.push_token("u2", "bad!token!one")
        await factories.push_token("u3", "bad!token!two")

        result = await scheduler.run_job(MaintenanceJobType.health)

        assert "67% of tokens are unhealthy (threshold: 25.0%)" in result.alerts

    async def test_repeated_failures_alert(self, scheduler, store, monkeypatch):
        async def broken_refresh():
            raise RuntimeError("timeout")

        monkeypatch.setattr(store, "refresh_token_health", broken_refresh)
        for _ in range(3):
            result = await scheduler.run_job(MaintenanceJobType.health)

        assert "3 of last 3 maintenance jobs failed (threshold: 3)" in result.alerts

    def test_system_alerts(self, scheduler, clock):
        assert scheduler.system_alerts() == ["Maintenance has never been run"]

        scheduler.last_run = clock.now - timedelta(hours=72)
        assert scheduler.system_alerts() == ["Maintenance is overdue by 72 hours"]

        scheduler.update_config(enabled=False)
        assert scheduler.system_alerts() == ["Maintenance is disabled"]


class TestSchedule:
    async def test_should_run_follows_interval(self, scheduler, clock):
        assert scheduler.should_run()
        await scheduler.run_job(MaintenanceJobType.analytics)
        assert not scheduler.should_run()
        assert scheduler.next_scheduled_run() == clock.now + timedelta(hours=24)

        clock.now += timedelta(hours=24)
        assert scheduler.should_run()

    def test_disabled_never_runs(self, store, clock):
        scheduler = TokenMaintenanceScheduler(store, MaintenanceConfig(enabled=False), clock=clock)
        assert not scheduler.should_run()

    def test_update_config_merges_thresholds(self, scheduler):
        config = scheduler.update_config(cleanup_interval_hours=6, alert_thresholds={"failed_jobs_count": 5})
        assert config.cleanup_interval_hours == 6
        assert config.alert_thresholds.failed_jobs_count == 5
        assert config.alert_thresholds.unhealthy_token_percentage == 25.0
        assert scheduler.get_status()["config"]["alert_thresholds"]["failed_jobs_count"] == 5

    def test_update_config_rejects_unknown_fields(self, scheduler):
        with pytest.raises(ValueError):
            scheduler.update_config(interval=3)


class TestCronJob:
    async def test_runs_full_job_when_due(self, scheduler):
        result = await run_scheduled_token_maintenance(scheduler)
        assert result is not None
        assert result.job_type == MaintenanceJobType.full
        assert scheduler.last_run is not None

    async def test_skips_when_not_due(self, scheduler):
        await run_scheduled_token_maintenance(scheduler)
        assert await run_scheduled_token_maintenance(scheduler) is None
        assert len(scheduler.history()) == 1

    async def test_skips_when_run_in_flight(self, scheduler):
        scheduler.is_running = True
        assert await run_scheduled_token_maintenance(scheduler) is None
        assert scheduler.history() == []
