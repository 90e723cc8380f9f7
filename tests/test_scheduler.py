"""Tests for the daily sanction bot schedule."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import pytest

import scheduler
from scheduler import DailySchedule, parse_daily_cron, run_daily, start_scheduler, stop_scheduler


class TestParseDailyCron:

    def test_five_fields(self):
        assert parse_daily_cron("0 22 * * *") == DailySchedule(hour=22, minute=0)

    def test_six_fields_with_seconds(self):
        assert parse_daily_cron("30 15 22 * * *") == DailySchedule(hour=22, minute=15, second=30)

    def test_legacy_default(self):
        assert parse_daily_cron("0 0 22 * * *") == DailySchedule(hour=22, minute=0, second=0)

    def test_rejects_non_daily(self):
        with pytest.raises(ValueError, match="daily"):
            parse_daily_cron("0 22 * * 1")

    def test_rejects_wrong_field_count(self):
        with pytest.raises(ValueError, match="5 or 6"):
            parse_daily_cron("0 22 *")

    def test_rejects_steps(self):
        with pytest.raises(ValueError, match="number"):
            parse_daily_cron("*/5 22 * * *")

    def test_rejects_out_of_range(self):
        with pytest.raises(ValueError, match="out of range"):
            parse_daily_cron("0 24 * * *")


class TestNextAfter:

    def test_later_today(self):
        schedule = DailySchedule(hour=22, minute=0)
        now = datetime(2026, 3, 1, 8, 30, tzinfo=timezone.utc)
        assert schedule.next_after(now) == datetime(2026, 3, 1, 22, 0, tzinfo=timezone.utc)

    def test_tomorrow_when_passed(self):
        schedule = DailySchedule(hour=22, minute=0)
        now = datetime(2026, 3, 1, 23, 0, tzinfo=timezone.utc)
        assert schedule.next_after(now) == datetime(2026, 3, 2, 22, 0, tzinfo=timezone.utc)

    def test_exactly_at_fire_time_moves_to_next_day(self):
        schedule = DailySchedule(hour=22, minute=0)
        now = datetime(2026, 3, 1, 22, 0, tzinfo=timezone.utc)
        assert schedule.next_after(now) == datetime(2026, 3, 2, 22, 0, tzinfo=timezone.utc)


class TestRunDaily:

    @pytest.mark.asyncio
    async def test_sleeps_until_fire_time_then_runs(self):
        job = AsyncMock()
        sleep = AsyncMock()
        now = datetime(2026, 3, 1, 21, 0, tzinfo=timezone.utc)

        await run_daily(DailySchedule(hour=22, minute=0), job, now=lambda: now, sleep=sleep, max_runs=2)

        assert job.await_count == 2
        assert sleep.await_args_list[0].args == (3600.0,)

    @pytest.mark.asyncio
    async def test_job_error_does_not_stop_loop(self):
        job = AsyncMock(side_effect=[RuntimeError("boom"), None])
        now = datetime(2026, 3, 1, 21, 0, tzinfo=timezone.utc)

        await run_daily(DailySchedule(hour=22, minute=0), job, now=lambda: now, sleep=AsyncMock(), max_runs=2)

        assert job.await_count == 2

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self):
        job = AsyncMock(side_effect=asyncio.CancelledError())
        now = datetime(2026, 3, 1, 21, 0, tzinfo=timezone.utc)

        with pytest.raises(asyncio.CancelledError):
            await run_daily(DailySchedule(hour=22, minute=0), job, now=lambda: now, sleep=AsyncMock(), max_runs=3)
        assert job.await_count == 1


class TestStartScheduler:

    @pytest.mark.asyncio
    async def test_disabled_by_default(self):
        with patch.object(scheduler, "SANCTION_BOT_ENABLED", False):
            assert start_scheduler() is None

    @pytest.mark.asyncio
    async def test_start_and_stop(self):
        with patch.object(scheduler, "SANCTION_BOT_ENABLED", True):
            task = start_scheduler("0 22 * * *")
            assert task is not None
            assert start_scheduler("0 22 * * *") is task

            await stop_scheduler()

        assert task.cancelled()
        assert scheduler._scheduler_task is None

    @pytest.mark.asyncio
    async def test_bad_expression_raises(self):
        with patch.object(scheduler, "SANCTION_BOT_ENABLED", True):
            with pytest.raises(ValueError):
                start_scheduler("every night")
