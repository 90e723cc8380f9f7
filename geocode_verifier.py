"""Geocode verifier, the authoritative stage of sanction detection.

For every candidate seller the verifier reverse-geocodes the sell map center
once per jurisdiction and checks whether the returned place name contains one
of that jurisdiction's known names.  Jurisdictions are visited in catalog
order and the first match wins, so attribution is deterministic when
boundaries overlap.

Outcomes:
  - match found                          -> sanctioned
  - every pair geocoded, no match        -> unsanctioned
  - no match, at least one pair failed   -> unresolved (left for next pass)
"""

from __future__ import annotations

import logging
import os
from typing import Protocol

from dotenv import load_dotenv

from geo_filter import regions_containing
from nominatim_client import GeocodeError
from region_catalog import name_variants
from sanction_models import SanctionedRegion, Seller
from schemas import (
    GeocodeFailure,
    RestrictedArea,
    SellerType,
    SellerVerdict,
    VerifyMode,
)

load_dotenv()

log = logging.getLogger(__name__)

SANCTION_VERIFY_MODE = VerifyMode(os.getenv("SANCTION_VERIFY_MODE", VerifyMode.CATALOG.value))

# Registration default; used when a restricted seller has lost its backup
MISSING_BACKUP_FALLBACK = SellerType.TEST


class ReverseGeocoder(Protocol):
    async def reverse_geocode(self, latitude: float, longitude: float) -> str: ...


def matches_location(place_name: str, location: RestrictedArea) -> bool:
    """Case-insensitive substring match against the jurisdiction's names."""
    haystack = place_name.casefold()
    return any(variant.casefold() in haystack for variant in name_variants(location))


def backup_type_for(seller: Seller) -> SellerType:
    """The visible type to restore or re-confirm; never recomputed.

    Restricted sellers keep the backup recorded when they were restricted;
    everyone else backs up their current type.  A restricted seller with no
    backup falls back to the registration default, which the outcome write
    then stores.
    """
    if seller.seller_type != SellerType.RESTRICTED:
        return seller.seller_type
    if seller.pre_restriction_seller_type is None:
        log.warning(
            "Seller %s is restricted without a pre-restriction type; using %s",
            seller.seller_id, MISSING_BACKUP_FALLBACK.value,
        )
        return MISSING_BACKUP_FALLBACK
    return seller.pre_restriction_seller_type


def _jurisdictions(
    seller: Seller,
    regions: list[SanctionedRegion],
    mode: VerifyMode,
) -> list[RestrictedArea]:
    scoped = regions_containing(seller, regions) if mode == VerifyMode.MEMBERSHIP else regions
    # One geocode per jurisdiction even if it has several boundary documents
    seen: list[RestrictedArea] = []
    for region in scoped:
        if region.location not in seen:
            seen.append(region.location)
    return seen


async def classify(
    seller: Seller,
    regions: list[SanctionedRegion],
    geocoder: ReverseGeocoder,
    mode: VerifyMode | None = None,
) -> SellerVerdict:
    """Confirm or refute sanction membership for one seller."""
    mode = mode or SANCTION_VERIFY_MODE
    backup = backup_type_for(seller)
    verdict = SellerVerdict(seller_id=seller.seller_id, backup_type=backup)

    longitude = seller.sell_map_center.longitude
    latitude = seller.sell_map_center.latitude

    for location in _jurisdictions(seller, regions, mode):
        try:
            place_name = await geocoder.reverse_geocode(latitude, longitude)
        except GeocodeError as e:
            log.error(
                "Geocoding error for seller %s against %s at [%s, %s]: %s",
                seller.seller_id, location.value, latitude, longitude, e,
            )
            verdict.failures.append(GeocodeFailure(
                seller_id=seller.seller_id,
                location=location,
                error=f"{type(e).__name__}: {e}",
            ))
            continue

        if matches_location(place_name, location):
            log.warning(
                "Seller is selling in a sanctioned area | %s | %s | %s | %s | %s",
                seller.seller_id, seller.name, latitude, longitude, place_name,
            )
            verdict.is_sanctioned = True
            verdict.matched_location = location
            verdict.place_name = place_name
            return verdict

    if verdict.failures:
        log.info(
            "Seller %s unresolved: no match and %d failed geocode(s)",
            seller.seller_id, len(verdict.failures),
        )
        return verdict

    verdict.is_sanctioned = False
    return verdict


async def verify_sellers(
    sellers: list[Seller],
    regions: list[SanctionedRegion],
    geocoder: ReverseGeocoder,
    mode: VerifyMode | None = None,
) -> list[SellerVerdict]:
    """Classify every seller; one seller's failure never stops the others.

    Calls are issued sequentially; the geocoder's rate limiter is the
    throughput bound anyway.
    """
    verdicts: list[SellerVerdict] = []
    for seller in sellers:
        try:
            verdicts.append(await classify(seller, regions, geocoder, mode))
        except Exception as e:
            log.error("Verification failed for seller %s: %s", seller.seller_id, e)
            verdicts.append(SellerVerdict(
                seller_id=seller.seller_id,
                backup_type=backup_type_for(seller),
            ))
    return verdicts
