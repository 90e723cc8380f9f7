"""Geospatial candidate filter for the sanction bot.

The coarse stage of verification: any seller whose sell map center lies
inside a cataloged boundary, plus every seller that is currently restricted
(so restrictions can be lifted), becomes a candidate for geocode
confirmation.
"""

from __future__ import annotations

import logging
from typing import Any

from shapely.geometry import Point

from region_catalog import boundary_shape
from sanction_models import SanctionedRegion, Seller
from schemas import SellerType

log = logging.getLogger(__name__)


def build_candidate_query(regions: list[SanctionedRegion]) -> dict[str, Any]:
    """Mongo filter: inside any region boundary OR currently restricted.

    An empty region list still matches restricted sellers.
    """
    clauses: list[dict[str, Any]] = [
        {"sell_map_center": {"$geoWithin": {"$geometry": region.boundary.model_dump()}}}
        for region in regions
    ]
    clauses.append({"seller_type": SellerType.RESTRICTED.value})
    return {"$or": clauses}


async def find_candidates(query: dict[str, Any]) -> list[Seller]:
    """Run the candidate query.  Pure read; result order is unspecified."""
    sellers = await Seller.find(query).to_list()
    log.info("Found %d candidate sellers (in a sanctioned boundary or currently restricted)", len(sellers))
    return sellers


def regions_containing(seller: Seller, regions: list[SanctionedRegion]) -> list[SanctionedRegion]:
    """Regions whose boundary covers the seller's point, in catalog order.

    Local shapely check used to bound the verifier to the jurisdictions the
    coarse filter actually matched.  Points on a boundary edge count as inside,
    as they do for $geoWithin.
    """
    point = Point(seller.sell_map_center.longitude, seller.sell_map_center.latitude)
    matched = []
    for region in regions:
        try:
            if boundary_shape(region.boundary).covers(point):
                matched.append(region)
        except Exception as e:
            log.warning("Skipping unreadable boundary for %s: %s", region.location.value, e)
    return matched
