"""Daily trigger for the sanction bot.

SANCTION_BOT_CRON takes a cron-style daily expression in UTC, either five
fields ("0 22 * * *") or six with leading seconds ("0 0 22 * * *").  Only
fixed minute/hour (and second) values are supported; day, month and weekday
fields must be "*".

The loop runs as a detached asyncio task started from the server's startup
hook.  A failed or refused run is logged and the loop keeps going.
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable

from dotenv import load_dotenv

load_dotenv()

log = logging.getLogger(__name__)

SANCTION_BOT_CRON = os.getenv("SANCTION_BOT_CRON", "0 22 * * *")
SANCTION_BOT_ENABLED = os.getenv("SANCTION_BOT_ENABLED", "false").lower() in ("1", "true", "yes")


@dataclass(frozen=True)
class DailySchedule:
    hour: int
    minute: int
    second: int = 0

    def next_after(self, now: datetime) -> datetime:
        """Next fire time strictly after `now` (UTC)."""
        now = now.astimezone(timezone.utc)
        candidate = now.replace(hour=self.hour, minute=self.minute, second=self.second, microsecond=0)
        if candidate <= now:
            candidate += timedelta(days=1)
        return candidate


def _field(value: str, name: str, upper: int) -> int:
    try:
        number = int(value)
    except ValueError:
        raise ValueError(f"Cron {name} field must be a number, got {value!r}") from None
    if not 0 <= number <= upper:
        raise ValueError(f"Cron {name} field out of range: {number}")
    return number


def parse_daily_cron(expression: str) -> DailySchedule:
    """Parse a daily cron expression into a DailySchedule."""
    fields = expression.split()
    if len(fields) == 5:
        second = 0
        minute, hour, *rest = fields
    elif len(fields) == 6:
        sec, minute, hour, *rest = fields
        second = _field(sec, "second", 59)
    else:
        raise ValueError(f"Expected 5 or 6 cron fields, got {len(fields)}: {expression!r}")

    if any(f != "*" for f in rest):
        raise ValueError(f"Only daily schedules are supported: {expression!r}")

    return DailySchedule(
        hour=_field(hour, "hour", 23),
        minute=_field(minute, "minute", 59),
        second=second,
    )


# ---------------------------------------------------------------------------
# Loop
# ---------------------------------------------------------------------------

_scheduler_task: asyncio.Task | None = None


async def run_daily(
    schedule: DailySchedule,
    job: Callable[[], Awaitable[object]],
    now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    max_runs: int | None = None,
) -> None:
    """Sleep until each fire time and run `job`; never lets an error escape."""
    runs = 0
    while max_runs is None or runs < max_runs:
        current = now()
        next_run = schedule.next_after(current)
        log.info("Next sanction bot run at %s", next_run.isoformat())
        await sleep((next_run - current).total_seconds())

        runs += 1
        log.info("Sanction bot job triggered by schedule")
        try:
            await job()
            log.info("Scheduled sanction bot run finished")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            log.error("Scheduled sanction bot run failed: %s", e)


async def _scheduled_sanction_bot() -> None:
    from sanction_bot import run_sanction_bot

    await run_sanction_bot(trigger="schedule")


def start_scheduler(expression: str | None = None) -> asyncio.Task | None:
    """Start the daily loop if enabled.  Returns the task (or None when disabled)."""
    global _scheduler_task

    if not SANCTION_BOT_ENABLED:
        log.info("Sanction bot schedule disabled (SANCTION_BOT_ENABLED is not set)")
        return None
    if _scheduler_task and not _scheduler_task.done():
        return _scheduler_task

    schedule = parse_daily_cron(expression or SANCTION_BOT_CRON)

    from nominatim_client import is_configured
    if not is_configured():
        log.warning("NOMINATIM_USER_AGENT not set; using the default client identifier")

    _scheduler_task = asyncio.create_task(run_daily(schedule, _scheduled_sanction_bot))
    log.info(
        "Sanction bot scheduled daily at %02d:%02d:%02d UTC",
        schedule.hour, schedule.minute, schedule.second,
    )
    return _scheduler_task


async def stop_scheduler() -> None:
    global _scheduler_task
    if _scheduler_task:
        _scheduler_task.cancel()
        try:
            await _scheduler_task
        except asyncio.CancelledError:
            pass
        _scheduler_task = None
