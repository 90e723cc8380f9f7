"""Seller restriction state machine.

States: activeSeller, testSeller, inactiveSeller <-> restrictedSeller.
The type a seller had before restriction lives in pre_restriction_seller_type
and is the only thing a restoration ever reads.

Transitions are applied in two bulk phases per sanction bot pass:

  Phase A (pre-restriction): mark candidates, back up non-restricted types.
          A restricted candidate's backup is never overwritten.
  Phase B (outcome):         sanctioned   -> restricted, backup reasserted
                             unsanctioned -> backup restored, backup cleared

Each phase is one unordered bulk_write so the round-trip count does not grow
with the number of sellers.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from pymongo import UpdateOne
from pymongo.errors import BulkWriteError, PyMongoError

from db import seller_collection
from sanction_models import Seller
from schemas import BulkOutcome, BulkPhase, SellerType, SellerVerdict

log = logging.getLogger(__name__)


def restriction_of(seller: Seller) -> tuple[Optional[SellerType], bool]:
    """Tagged view of the two stored fields: (visible_type, is_restricted).

    For a restricted seller the visible type is the one it will be restored
    to; otherwise it is the current type.
    """
    if seller.seller_type == SellerType.RESTRICTED:
        return seller.pre_restriction_seller_type, True
    return seller.seller_type, False


# ---------------------------------------------------------------------------
# Phase A: mark pre-restricted
# ---------------------------------------------------------------------------


def build_pre_restriction_ops(candidates: list[Seller]) -> list[UpdateOne]:
    """One update per candidate: set the flag, back up the type if not restricted."""
    ops = []
    for seller in candidates:
        set_fields: dict[str, Any] = {"is_pre_restricted": True}
        if seller.seller_type != SellerType.RESTRICTED:
            set_fields["pre_restriction_seller_type"] = seller.seller_type.value
        ops.append(UpdateOne({"seller_id": seller.seller_id}, {"$set": set_fields}))
    return ops


# ---------------------------------------------------------------------------
# Phase B: apply verified outcome
# ---------------------------------------------------------------------------


def _sanctioned_ops(verdict: SellerVerdict, now: datetime) -> list[UpdateOne]:
    backup = verdict.backup_type.value
    restricted = SellerType.RESTRICTED.value
    return [
        UpdateOne(
            {"seller_id": verdict.seller_id, "seller_type": {"$ne": restricted}},
            {"$set": {
                "seller_type": restricted,
                "pre_restriction_seller_type": backup,
                "sanction_last_updated": now,
            }},
        ),
        UpdateOne(
            {"seller_id": verdict.seller_id, "seller_type": restricted},
            {"$set": {"pre_restriction_seller_type": backup}},
        ),
    ]


def _unsanctioned_ops(verdict: SellerVerdict, now: datetime) -> list[UpdateOne]:
    backup = verdict.backup_type.value
    return [
        UpdateOne(
            {"seller_id": verdict.seller_id, "seller_type": {"$ne": backup}},
            {"$set": {
                "seller_type": backup,
                "pre_restriction_seller_type": None,
                "sanction_last_updated": now,
            }},
        ),
        UpdateOne(
            {"seller_id": verdict.seller_id, "seller_type": backup},
            {"$set": {"pre_restriction_seller_type": None}},
        ),
    ]


def build_outcome_ops(
    verdicts: list[SellerVerdict],
    now: datetime | None = None,
) -> list[UpdateOne]:
    """Phase B specs for every resolved verdict; unresolved sellers are skipped.

    Each seller gets a "type must change" spec and a "type already correct"
    spec with mutually exclusive filters, so exactly one of them applies and
    sanction_last_updated only moves on a real transition.
    """
    now = now or datetime.now(timezone.utc)
    ops: list[UpdateOne] = []
    for verdict in verdicts:
        if not verdict.is_resolved or verdict.backup_type is None:
            continue
        if verdict.backup_type == SellerType.RESTRICTED:
            log.error("Refusing to use restricted as a backup type for seller %s", verdict.seller_id)
            continue
        if verdict.is_sanctioned:
            ops.extend(_sanctioned_ops(verdict, now))
        else:
            ops.extend(_unsanctioned_ops(verdict, now))
    return ops


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


async def apply_bulk(
    ops: list[UpdateOne],
    phase: BulkPhase,
    collection=None,
) -> BulkOutcome:
    """Execute one unordered bulk write and report what happened.

    Failing specs inside an otherwise successful write are logged and listed
    in `errors`; the rest still apply (ok stays True).  A write that fails as
    a whole comes back with ok=False.  Never raises for store errors.
    """
    outcome = BulkOutcome(phase=phase, attempted=len(ops))
    if not ops:
        return outcome

    collection = collection if collection is not None else seller_collection()
    try:
        result = await collection.bulk_write(ops, ordered=False)
    except BulkWriteError as e:
        details = e.details or {}
        outcome.matched = details.get("nMatched", 0)
        outcome.modified = details.get("nModified", 0)
        for err in details.get("writeErrors", []):
            index = err.get("index")
            message = f"spec {index}: {err.get('errmsg')}"
            outcome.errors.append(message)
            if isinstance(index, int) and 0 <= index < len(ops):
                outcome.failed_seller_ids.append(ops[index]._filter.get("seller_id"))
            log.error("Bulk %s write error: %s", phase.value, message)
        log.warning(
            "Bulk %s write partially failed: %d/%d specs errored",
            phase.value, len(outcome.errors), len(ops),
        )
        return outcome
    except PyMongoError as e:
        log.error("Bulk %s write failed: %s", phase.value, e)
        outcome.errors.append(str(e))
        outcome.ok = False
        return outcome

    outcome.matched = result.matched_count
    outcome.modified = result.modified_count
    log.info(
        "Bulk %s write: %d specs, %d matched, %d modified",
        phase.value, len(ops), outcome.matched, outcome.modified,
    )
    return outcome


async def reset_pre_restriction_flags(collection=None) -> BulkOutcome:
    """Start-of-pass reset.

    Sets is_pre_restricted = false on every seller and clears any backup left
    on a seller that is not restricted.  An unresolved seller, or one whose
    outcome write failed, keeps its Phase A backup until this point.
    """
    outcome = BulkOutcome(phase=BulkPhase.RESET)
    collection = collection if collection is not None else seller_collection()
    try:
        flags = await collection.update_many({}, {"$set": {"is_pre_restricted": False}})
        stale = await collection.update_many(
            {
                "seller_type": {"$ne": SellerType.RESTRICTED.value},
                "pre_restriction_seller_type": {"$ne": None},
            },
            {"$set": {"pre_restriction_seller_type": None}},
        )
    except PyMongoError as e:
        log.error("Failed to reset pre-restriction state: %s", e)
        outcome.errors.append(str(e))
        outcome.ok = False
        return outcome

    outcome.matched = flags.matched_count
    outcome.modified = flags.modified_count + stale.modified_count
    log.info(
        "Reset is_pre_restricted for all sellers (%d modified); cleared %d stale backups",
        flags.modified_count, stale.modified_count,
    )
    return outcome
