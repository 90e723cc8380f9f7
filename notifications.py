"""Seller notifications for restriction changes.

A seller is notified once per real transition: when they become restricted
and when a restriction is lifted.  A pass that re-confirms the current state
sends nothing.  Notification failures are logged per seller and never undo
the restriction write that preceded them.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable

from sanction_models import Notification, Seller
from schemas import SellerType, SellerVerdict

log = logging.getLogger(__name__)

RESTRICTED_MESSAGE = (
    "Your Sell Center is in a sanctioned area, so your map marker will no longer appear in searches."
)
UNRESTRICTED_MESSAGE = (
    "Your Sell Center is no longer in a sanctioned area, so your map marker will now be visible in searches."
)

Notifier = Callable[[str, str], Awaitable[object]]


async def add_notification(seller_id: str, reason: str) -> Notification:
    """Store an uncleared notification for the seller."""
    notification = Notification(seller_id=seller_id, reason=reason)
    await notification.insert()
    return notification


def restriction_changes(
    candidates: list[Seller],
    verdicts: list[SellerVerdict],
) -> list[tuple[str, bool]]:
    """(seller_id, now_restricted) for every resolved verdict that flips the seller's type.

    Mirrors the outcome write: unresolved verdicts and verdicts without a
    usable backup produce no transition.
    """
    by_id = {seller.seller_id: seller for seller in candidates}
    changes = []
    for verdict in verdicts:
        seller = by_id.get(verdict.seller_id)
        if seller is None or not verdict.is_resolved:
            continue
        if verdict.backup_type in (None, SellerType.RESTRICTED):
            continue
        was_restricted = seller.seller_type == SellerType.RESTRICTED
        if verdict.is_sanctioned != was_restricted:
            changes.append((verdict.seller_id, bool(verdict.is_sanctioned)))
    return changes


async def notify_restriction_changes(
    changes: list[tuple[str, bool]],
    notifier: Notifier | None = None,
) -> tuple[list[str], list[str]]:
    """Send one notification per change.  Returns (notified_ids, failed_ids)."""
    notifier = notifier or add_notification
    notified: list[str] = []
    failed: list[str] = []
    for seller_id, now_restricted in changes:
        try:
            await notifier(seller_id, RESTRICTED_MESSAGE if now_restricted else UNRESTRICTED_MESSAGE)
            notified.append(seller_id)
        except Exception as e:
            log.error("Failed to notify seller %s: %s", seller_id, e)
            failed.append(seller_id)

    if changes:
        log.info("Sent %d restriction notifications (%d failed)", len(notified), len(failed))
    return notified, failed
