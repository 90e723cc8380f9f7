"""Shared fixtures for the sanction engine test suite."""

from __future__ import annotations

import copy
from types import SimpleNamespace
from typing import Any

import pytest
from bson import ObjectId
from shapely.geometry import Point, shape

from region_catalog import SEED_BOUNDARIES, clear_region_cache
from sanction_models import GeoBoundary, GeoPoint, SanctionedRegion, Seller
from schemas import RestrictedArea, SellerType
import task_manager


# ---------------------------------------------------------------------------
# Coordinates (lat, lon)
# ---------------------------------------------------------------------------

TEHRAN = (35.6892, 51.3890)
PYONGYANG = (39.0392, 125.7625)
SEOUL = (37.5665, 126.9780)  # inside the coarse North Korea box
HAVANA = (23.1136, -82.3666)
PARIS = (48.8566, 2.3522)


# ---------------------------------------------------------------------------
# Factory functions
# ---------------------------------------------------------------------------


def make_seller(**overrides) -> Seller:
    """Factory for a Seller document (defaults to an active seller in Paris)."""
    lat, lon = overrides.pop("at", PARIS)
    defaults = {
        "id": ObjectId(),
        "seller_id": "seller-1",
        "name": "Test Seller",
        "seller_type": SellerType.ACTIVE,
        "pre_restriction_seller_type": None,
        "is_pre_restricted": False,
        "sell_map_center": GeoPoint(coordinates=[lon, lat]),
        "sanction_last_updated": None,
    }
    defaults.update(overrides)
    return Seller.model_construct(**defaults)


def make_region(location: RestrictedArea, geometry: dict | None = None) -> SanctionedRegion:
    """Factory for a SanctionedRegion using the seed boundary by default."""
    geometry = geometry or SEED_BOUNDARIES[location]
    return SanctionedRegion.model_construct(
        id=ObjectId(),
        location=location,
        boundary=GeoBoundary(**copy.deepcopy(geometry)),
    )


def make_catalog() -> list[SanctionedRegion]:
    """Every seed region, in catalog order."""
    return [make_region(area) for area in RestrictedArea]


def seller_doc(seller_id: str, at: tuple[float, float], seller_type: SellerType = SellerType.ACTIVE,
               backup: SellerType | None = None, name: str = "") -> dict[str, Any]:
    """Raw Mongo-shaped seller document for FakeSellerStore."""
    lat, lon = at
    return {
        "seller_id": seller_id,
        "name": name or seller_id,
        "seller_type": seller_type.value,
        "pre_restriction_seller_type": backup.value if backup else None,
        "is_pre_restricted": False,
        "sell_map_center": {"type": "Point", "coordinates": [lon, lat]},
        "sanction_last_updated": None,
    }


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


def _matches(doc: dict[str, Any], flt: dict[str, Any]) -> bool:
    for key, cond in flt.items():
        value = doc.get(key)
        if isinstance(cond, dict) and "$ne" in cond:
            if value == cond["$ne"]:
                return False
        elif value != cond:
            return False
    return True


class FakeSellerStore:
    """In-memory seller collection that understands the specs the engine emits.

    Supports update_many / bulk_write with equality and $ne filters and $set
    updates, plus evaluation of the candidate query ($or of $geoWithin and
    seller_type clauses).  `fail_on_bulk` maps a 1-based bulk_write call index
    to an exception to raise on that call.
    """

    def __init__(self, docs: list[dict[str, Any]]):
        self.docs: dict[str, dict[str, Any]] = {d["seller_id"]: dict(d) for d in docs}
        self.bulk_calls: list[list[Any]] = []
        self.fail_on_bulk: dict[int, Exception] = {}
        self.fail_update_many: Exception | None = None

    # -- pymongo collection surface ----------------------------------------

    def _apply(self, flt: dict[str, Any], update: dict[str, Any], many: bool) -> tuple[int, int]:
        matched = modified = 0
        for doc in self.docs.values():
            if not _matches(doc, flt):
                continue
            matched += 1
            changed = False
            for key, value in update["$set"].items():
                if doc.get(key) != value:
                    doc[key] = value
                    changed = True
            modified += int(changed)
            if not many:
                break
        return matched, modified

    async def update_many(self, flt, update):
        if self.fail_update_many:
            raise self.fail_update_many
        matched, modified = self._apply(flt, update, many=True)
        return SimpleNamespace(matched_count=matched, modified_count=modified)

    async def bulk_write(self, ops, ordered=True):
        self.bulk_calls.append(list(ops))
        error = self.fail_on_bulk.get(len(self.bulk_calls))
        if error:
            raise error
        matched = modified = 0
        for op in ops:
            m, n = self._apply(op._filter, op._doc, many=False)
            matched += m
            modified += n
        return SimpleNamespace(matched_count=matched, modified_count=modified)

    # -- query evaluation --------------------------------------------------

    def _to_seller(self, doc: dict[str, Any]) -> Seller:
        backup = doc.get("pre_restriction_seller_type")
        return Seller.model_construct(
            seller_id=doc["seller_id"],
            name=doc.get("name", ""),
            seller_type=SellerType(doc["seller_type"]),
            pre_restriction_seller_type=SellerType(backup) if backup else None,
            is_pre_restricted=doc.get("is_pre_restricted", False),
            sell_map_center=GeoPoint(coordinates=list(doc["sell_map_center"]["coordinates"])),
            sanction_last_updated=doc.get("sanction_last_updated"),
        )

    async def find_candidates(self, query: dict[str, Any]) -> list[Seller]:
        found = []
        for doc in self.docs.values():
            point = Point(*doc["sell_map_center"]["coordinates"])
            for clause in query["$or"]:
                if "sell_map_center" in clause:
                    geometry = clause["sell_map_center"]["$geoWithin"]["$geometry"]
                    if shape(geometry).covers(point):
                        found.append(self._to_seller(doc))
                        break
                elif _matches(doc, clause):
                    found.append(self._to_seller(doc))
                    break
        return found

    # -- assertions helpers ------------------------------------------------

    def snapshot(self) -> dict[str, dict[str, Any]]:
        return copy.deepcopy(self.docs)

    def __getitem__(self, seller_id: str) -> dict[str, Any]:
        return self.docs[seller_id]


class FakeGeocoder:
    """Reverse geocoder keyed by (lat, lon).

    A value may be a place name, an exception to raise, or a list consumed
    one item per call (for fail-then-succeed sequences).
    """

    def __init__(self, places: dict[tuple[float, float], Any] | None = None, default: str = "Atlantic Ocean"):
        self.places = dict(places or {})
        self.default = default
        self.calls: list[tuple[float, float]] = []

    async def reverse_geocode(self, latitude: float, longitude: float) -> str:
        key = (latitude, longitude)
        self.calls.append(key)
        result = self.places.get(key, self.default)
        if isinstance(result, list):
            result = result.pop(0) if len(result) > 1 else result[0]
        if isinstance(result, Exception):
            raise result
        return result


class FakeNotifier:
    """Records (seller_id, reason) pairs; raises for sellers listed in `failing`."""

    def __init__(self, failing: tuple[str, ...] = ()):
        self.sent: list[tuple[str, str]] = []
        self.failing = set(failing)

    async def __call__(self, seller_id: str, reason: str) -> None:
        if seller_id in self.failing:
            raise RuntimeError(f"notification store down for {seller_id}")
        self.sent.append((seller_id, reason))

    @property
    def seller_ids(self) -> list[str]:
        return sorted(seller_id for seller_id, _ in self.sent)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_module_state():
    """Region cache and run registry are process-wide; isolate every test."""
    clear_region_cache()
    task_manager.clear_runs()
    yield
    clear_region_cache()
    task_manager.clear_runs()


@pytest.fixture
def catalog() -> list[SanctionedRegion]:
    return make_catalog()


@pytest.fixture
def geocoder() -> FakeGeocoder:
    return FakeGeocoder({
        TEHRAN: "Tehran, Tehran Province, Iran",
        PYONGYANG: "Pyongyang, North Korea",
        SEOUL: "Seoul, South Korea",
        HAVANA: "La Habana, Cuba",
        PARIS: "Paris, Ile-de-France, Metropolitan France, France",
    })


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()
