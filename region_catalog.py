"""Sanctioned-region catalog.

Source of truth for geofencing: one GeoJSON boundary per sanctioned
jurisdiction, stored in the `sanctioned_regions` collection.  The engine only
reads it; seed_regions() is the administrative write path used by the CLI.

Also hosts the fast-path status check (is_sanctioned_location), a single
$geoIntersects query that answers "is this point inside any cataloged
boundary" without geocoding.  It is a coarse check and is not equivalent to
the sanction bot's geocode-confirmed outcome.
"""

from __future__ import annotations

import logging
import os
import time
from typing import Any

from dotenv import load_dotenv
from shapely.geometry import shape
from shapely.validation import explain_validity

from sanction_models import GeoBoundary, SanctionedRegion
from schemas import RestrictedArea

load_dotenv()

log = logging.getLogger(__name__)

REGION_CACHE_TTL = float(os.getenv("REGION_CACHE_TTL", "3600"))  # seconds


class CatalogUnavailableError(Exception):
    """The region catalog could not be read."""


# ---------------------------------------------------------------------------
# Known place-name variants
# ---------------------------------------------------------------------------
# Matched case-insensitively as substrings of the geocoder's display name.

NAME_VARIANTS: dict[RestrictedArea, tuple[str, ...]] = {
    RestrictedArea.CUBA: ("Cuba",),
    RestrictedArea.IRAN: ("Iran",),
    RestrictedArea.NORTH_KOREA: (
        "North Korea",
        "Democratic People's Republic of Korea",
        "DPRK",
    ),
    RestrictedArea.SYRIA: ("Syria", "Syrian Arab Republic"),
    RestrictedArea.REPUBLIC_OF_CRIMEA: (
        "Republic of Crimea",
        "Autonomous Republic of Crimea",
        "Crimea",
        "Sevastopol",
    ),
    RestrictedArea.DONETSK_OBLAST: (
        "Donetsk Oblast",
        "Donetsk People's Republic",
    ),
    RestrictedArea.LUHANSK_OBLAST: (
        "Luhansk Oblast",
        "Luhansk People's Republic",
        "Lugansk",
    ),
}


def name_variants(location: RestrictedArea) -> tuple[str, ...]:
    """Return the known names for a jurisdiction (falls back to the enum value)."""
    return NAME_VARIANTS.get(location, (location.value,))


# ---------------------------------------------------------------------------
# Seed boundaries
# ---------------------------------------------------------------------------
# Coarse bounding shapes, (longitude, latitude).  They intentionally overshoot
# borders; the geocoder pass confirms membership.

SEED_BOUNDARIES: dict[RestrictedArea, dict[str, Any]] = {
    RestrictedArea.CUBA: {
        "type": "Polygon",
        "coordinates": [[
            [-84.957, 19.825],
            [-74.131, 19.825],
            [-74.131, 23.317],
            [-84.957, 23.317],
            [-84.957, 19.825],
        ]],
    },
    RestrictedArea.IRAN: {
        "type": "Polygon",
        "coordinates": [[
            [44.0, 24.0],
            [63.5, 24.0],
            [63.5, 39.7],
            [44.0, 39.7],
            [44.0, 24.0],
        ]],
    },
    RestrictedArea.NORTH_KOREA: {
        "type": "Polygon",
        "coordinates": [[
            [123.0, 37.0],
            [130.7, 37.0],
            [130.7, 43.0],
            [123.0, 43.0],
            [123.0, 37.0],
        ]],
    },
    RestrictedArea.SYRIA: {
        "type": "Polygon",
        "coordinates": [[
            [35.5, 32.0],
            [42.0, 32.0],
            [42.0, 37.5],
            [35.5, 37.5],
            [35.5, 32.0],
        ]],
    },
    RestrictedArea.REPUBLIC_OF_CRIMEA: {
        "type": "Polygon",
        "coordinates": [[
            [33.8, 44.4],
            [38.3, 44.4],
            [38.3, 45.6],
            [35.6, 46.4],
            [33.8, 44.4],
        ]],
    },
    RestrictedArea.DONETSK_OBLAST: {
        "type": "Polygon",
        "coordinates": [[
            [36.0, 47.0],
            [40.5, 47.0],
            [40.5, 48.5],
            [37.0, 49.0],
            [36.0, 47.0],
        ]],
    },
    RestrictedArea.LUHANSK_OBLAST: {
        "type": "Polygon",
        "coordinates": [[
            [37.5, 47.0],
            [40.5, 47.0],
            [40.5, 49.5],
            [37.5, 50.5],
            [37.5, 47.0],
        ]],
    },
}


# ---------------------------------------------------------------------------
# Boundary normalization
# ---------------------------------------------------------------------------


def _close_ring(ring: list[list[float]]) -> list[list[float]]:
    first, last = ring[0], ring[-1]
    if first[0] != last[0] or first[1] != last[1]:
        return [*ring, first]
    return ring


def _normalize_polygon(rings: list[list[list[float]]]) -> list[list[list[float]]] | None:
    closed = [_close_ring(ring) for ring in rings if ring]
    if not closed or len(closed[0]) < 4:
        log.warning("Skipping polygon: too few coordinates")
        return None
    # Holes that degenerate are dropped; the shell is what matters
    return [closed[0], *(r for r in closed[1:] if len(r) >= 4)]


def normalize_boundary(geometry: dict[str, Any]) -> dict[str, Any]:
    """Close open rings, drop degenerate parts and validate with shapely.

    Returns a GeoJSON dict of the same type.  Raises ValueError when the
    geometry type is unknown, nothing usable remains, or the result is not a
    valid simple polygon.
    """
    gtype = geometry.get("type")
    coords = geometry.get("coordinates") or []

    if gtype == "Polygon":
        polygon = _normalize_polygon(coords)
        if polygon is None:
            raise ValueError("Polygon has fewer than 4 coordinates")
        normalized = {"type": "Polygon", "coordinates": polygon}
    elif gtype == "MultiPolygon":
        parts = [p for p in (_normalize_polygon(c) for c in coords) if p is not None]
        if not parts:
            raise ValueError("MultiPolygon has no usable parts")
        normalized = {"type": "MultiPolygon", "coordinates": parts}
    else:
        raise ValueError(f"Unsupported geometry type: {gtype}")

    geom = shape(normalized)
    if not geom.is_valid:
        raise ValueError(f"Invalid boundary: {explain_validity(geom)}")
    return normalized


def boundary_shape(boundary: GeoBoundary):
    """Shapely geometry for a stored boundary."""
    return shape(boundary.model_dump())


# ---------------------------------------------------------------------------
# Catalog reads (with TTL cache)
# ---------------------------------------------------------------------------

_region_cache: list[SanctionedRegion] = []
_region_fetched_at: float = 0

_CATALOG_ORDER = {area: idx for idx, area in enumerate(RestrictedArea)}


def clear_region_cache() -> None:
    global _region_cache, _region_fetched_at
    _region_cache = []
    _region_fetched_at = 0


async def list_regions(use_cache: bool = True) -> list[SanctionedRegion]:
    """Return every cataloged region in deterministic catalog order.

    Order is RestrictedArea declaration order, then document id, so the
    verifier's first-match attribution never depends on storage order.

    Raises:
        CatalogUnavailableError: if the store cannot be read.
    """
    global _region_cache, _region_fetched_at

    if use_cache and _region_cache and (time.time() - _region_fetched_at < REGION_CACHE_TTL):
        return list(_region_cache)

    try:
        regions = await SanctionedRegion.find_all().to_list()
    except Exception as e:
        log.error("Failed to fetch sanctioned regions: %s", e)
        raise CatalogUnavailableError(str(e)) from e

    regions.sort(key=lambda r: (_CATALOG_ORDER.get(r.location, len(_CATALOG_ORDER)), str(r.id)))
    log.info("Fetched %d sanctioned regions", len(regions))

    if regions:
        _region_cache = regions
        _region_fetched_at = time.time()
    return list(regions)


# ---------------------------------------------------------------------------
# Fast-path status check
# ---------------------------------------------------------------------------


def point_geometry(latitude: float, longitude: float) -> dict[str, Any]:
    """GeoJSON point for a (lat, lon) pair, in (lon, lat) order."""
    return {"type": "Point", "coordinates": [longitude, latitude]}


async def is_sanctioned_location(latitude: float, longitude: float) -> bool:
    """True if the point intersects any cataloged boundary.

    One $geoIntersects query; no geocoding and no state changes.  Storage
    errors propagate to the caller.
    """
    region = await SanctionedRegion.find_one(
        {"boundary": {"$geoIntersects": {"$geometry": point_geometry(latitude, longitude)}}}
    )
    is_sanctioned = region is not None
    log.info(
        "Point [%s, %s] is %sin a sanctioned zone%s",
        latitude,
        longitude,
        "" if is_sanctioned else "not ",
        f" ({region.location.value})" if region else "",
    )
    return is_sanctioned


# ---------------------------------------------------------------------------
# Administrative seeding
# ---------------------------------------------------------------------------


async def seed_regions(
    boundaries: dict[RestrictedArea, dict[str, Any]] | None = None,
    replace: bool = True,
) -> list[SanctionedRegion]:
    """Write the region catalog.

    Every boundary is normalized first so an invalid shape never reaches the
    2dsphere index.  With replace=True the existing catalog is cleared.
    """
    source = boundaries if boundaries is not None else SEED_BOUNDARIES

    regions = [
        SanctionedRegion(location=area, boundary=GeoBoundary(**normalize_boundary(geometry)))
        for area, geometry in source.items()
    ]

    if replace:
        await SanctionedRegion.find_all().delete()
        log.info("Cleared existing sanctioned regions")

    if regions:
        await SanctionedRegion.insert_many(regions)
    clear_region_cache()
    log.info("Seeded %d sanctioned regions", len(regions))
    return regions
