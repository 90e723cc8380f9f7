"""Sanction bot run registry.

Every pass of the sanction bot (scheduled, admin-triggered, or from the CLI)
gets a SanctionRun record kept in memory so the admin API can report what the
most recent runs did.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from schemas import ReconciliationSummary, RunOutcome

log = logging.getLogger(__name__)


class RunStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETE = "complete"
    ABORTED = "aborted"
    ERROR = "error"


_OUTCOME_STATUS = {
    RunOutcome.COMPLETE: RunStatus.COMPLETE,
    RunOutcome.ABORTED: RunStatus.ABORTED,
    RunOutcome.ERROR: RunStatus.ERROR,
}


@dataclass
class SanctionRun:
    """Tracks a single sanction bot pass."""

    run_id: str
    trigger: str
    status: RunStatus = RunStatus.PENDING
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: datetime | None = None
    summary: ReconciliationSummary | None = None

    def start(self) -> None:
        self.status = RunStatus.RUNNING

    def finish(self, summary: ReconciliationSummary) -> None:
        self.summary = summary
        self.status = _OUTCOME_STATUS[summary.outcome]
        self.finished_at = summary.finished_at or datetime.now(timezone.utc)

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "trigger": self.trigger,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "summary": self.summary.model_dump(mode="json") if self.summary else None,
        }


# ---------------------------------------------------------------------------
# Global run registry
# ---------------------------------------------------------------------------

_runs: dict[str, SanctionRun] = {}


def create_run(trigger: str) -> SanctionRun:
    """Register a new run (does not start it)."""
    run = SanctionRun(run_id=uuid.uuid4().hex[:12], trigger=trigger)
    _runs[run.run_id] = run
    cleanup_old_runs()
    return run


def get_run(run_id: str) -> SanctionRun | None:
    return _runs.get(run_id)


def get_active_run() -> SanctionRun | None:
    """The pending/running pass, if any."""
    for run in _runs.values():
        if run.status in (RunStatus.PENDING, RunStatus.RUNNING):
            return run
    return None


def list_runs(limit: int = 20) -> list[dict[str, Any]]:
    """Most recent runs first."""
    runs = sorted(_runs.values(), key=lambda r: r.created_at, reverse=True)
    return [r.to_dict() for r in runs[:limit]]


def cleanup_old_runs(max_finished: int = 30) -> None:
    """Remove old finished runs to prevent unbounded memory growth."""
    finished = [
        r for r in _runs.values()
        if r.status not in (RunStatus.PENDING, RunStatus.RUNNING)
    ]
    finished.sort(key=lambda r: r.created_at)
    while len(finished) > max_finished:
        old = finished.pop(0)
        del _runs[old.run_id]


def clear_runs() -> None:
    _runs.clear()
