"""Sanction bot: the nightly reconciliation pass.

One pass:
  1. Reset is_pre_restricted and clear stale backups
  2. Fetch the region catalog (abort on failure or empty catalog)
  3. Geospatial filter -> candidates -> Phase A (mark + back up)
  4. Geocode-verify every candidate (failures isolated per seller)
  5. Partition -> Phase B (restrict / restore)
  6. Notify sellers whose type changed, log a summary

Usage:
    from sanction_bot import run_sanction_bot
    summary = await run_sanction_bot(trigger="manual")
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone

import task_manager
from geo_filter import build_candidate_query, find_candidates
from geocode_verifier import ReverseGeocoder, verify_sellers
from nominatim_client import NominatimClient
from notifications import Notifier, notify_restriction_changes, restriction_changes
from region_catalog import CatalogUnavailableError, list_regions
from restriction_state import (
    apply_bulk,
    build_outcome_ops,
    build_pre_restriction_ops,
    reset_pre_restriction_flags,
)
from schemas import BulkPhase, ReconciliationSummary, RunOutcome, VerifyMode

log = logging.getLogger(__name__)


class SanctionBotBusyError(Exception):
    """A pass is already running in this process."""


_run_lock = asyncio.Lock()


def is_running() -> bool:
    return _run_lock.locked()


async def run_sanction_bot(
    geocoder: ReverseGeocoder | None = None,
    trigger: str = "manual",
    mode: VerifyMode | None = None,
    notifier: Notifier | None = None,
) -> ReconciliationSummary:
    """Run one reconciliation pass.

    Overlapping passes are refused with SanctionBotBusyError.  Any other
    failure is logged and reported through the summary's outcome.
    """
    if _run_lock.locked():
        active = task_manager.get_active_run()
        raise SanctionBotBusyError(
            f"Sanction bot already running (run {active.run_id if active else 'unknown'})"
        )

    async with _run_lock:
        run = task_manager.create_run(trigger)
        run.start()
        log.info("Sanction bot started (run %s, trigger=%s)", run.run_id, trigger)

        own_geocoder = geocoder is None
        if own_geocoder:
            geocoder = NominatimClient()

        summary = ReconciliationSummary()
        try:
            await _run_pass(summary, geocoder, mode, notifier)
        except Exception as e:
            log.exception("Error in sanction bot run %s", run.run_id)
            summary.outcome = RunOutcome.ERROR
            summary.notes = f"{type(e).__name__}: {e}"
        finally:
            if own_geocoder:
                await geocoder.aclose()

        summary.finished_at = datetime.now(timezone.utc)
        run.finish(summary)
        _log_summary(run.run_id, summary)
        return summary


async def _run_pass(
    summary: ReconciliationSummary,
    geocoder: ReverseGeocoder,
    mode: VerifyMode | None,
    notifier: Notifier | None = None,
) -> None:
    # Step 1: clear last pass's candidate flags and leftover backups
    reset = await reset_pre_restriction_flags()
    summary.writes.append(reset)
    if not reset.ok:
        _abort(summary, "Could not reset pre-restriction flags")
        return

    # Step 2: region catalog
    try:
        regions = await list_regions()
    except CatalogUnavailableError as e:
        _abort(summary, f"Region catalog unavailable: {e}")
        return
    summary.region_count = len(regions)
    if not regions:
        _abort(summary, "No sanctioned regions found")
        return

    # Step 3: coarse filter + Phase A
    candidates = await find_candidates(build_candidate_query(regions))
    summary.candidate_count = len(candidates)

    marked = await apply_bulk(build_pre_restriction_ops(candidates), BulkPhase.PRE_RESTRICTION)
    summary.writes.append(marked)
    if not marked.ok:
        _abort(summary, "Pre-restriction bulk write failed")
        return
    log.info("Marked %d sellers as pre-restricted", len(candidates))

    # Step 4: authoritative verification
    verdicts = await verify_sellers(candidates, regions, geocoder, mode)

    # Step 5: partition + Phase B
    for verdict in verdicts:
        summary.geocode_failures.extend(verdict.failures)
        if verdict.is_sanctioned is None:
            summary.unresolved_ids.append(verdict.seller_id)
        elif verdict.is_sanctioned:
            summary.sanctioned_ids.append(verdict.seller_id)
        else:
            summary.unsanctioned_ids.append(verdict.seller_id)

    applied = await apply_bulk(build_outcome_ops(verdicts), BulkPhase.OUTCOME)
    summary.writes.append(applied)
    if not applied.ok:
        _abort(summary, "Outcome bulk write failed; restrictions not applied this pass")
        return

    # Step 6: tell sellers whose type actually changed
    changes = [
        change for change in restriction_changes(candidates, verdicts)
        if change[0] not in applied.failed_seller_ids
    ]
    summary.notified_ids, summary.notification_failed_ids = await notify_restriction_changes(changes, notifier)


def _abort(summary: ReconciliationSummary, reason: str) -> None:
    log.warning("Sanction bot pass aborted: %s", reason)
    summary.outcome = RunOutcome.ABORTED
    summary.notes = reason


def _log_summary(run_id: str, summary: ReconciliationSummary) -> None:
    log.info(
        "Sanction bot run %s %s: regions=%d candidates=%d sanctioned=%d unsanctioned=%d unresolved=%d",
        run_id,
        summary.outcome.value,
        summary.region_count,
        summary.candidate_count,
        summary.sanctioned_count,
        summary.unsanctioned_count,
        summary.unresolved_count,
    )
    if summary.unresolved_ids:
        log.warning("Sellers left unresolved this pass: %s", ", ".join(summary.unresolved_ids))
    if summary.notification_failed_ids:
        log.warning("Sellers not notified: %s", ", ".join(summary.notification_failed_ids))
    for failure in summary.geocode_failures:
        log.warning(
            "Geocode failure | %s | %s | %s",
            failure.seller_id, failure.location.value, failure.error,
        )
