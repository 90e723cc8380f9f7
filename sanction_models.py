"""Beanie document models for sellers and the sanctioned-region catalog.

Seller lives in the `sellers` collection and carries the three fields the
sanction bot owns: seller_type, pre_restriction_seller_type and
is_pre_restricted.  SanctionedRegion lives in `sanctioned_regions`; each
document holds one jurisdiction's GeoJSON boundary.

Coordinates are GeoJSON order everywhere: [longitude, latitude].
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, List, Literal, Optional

import pymongo
from beanie import Document
from pydantic import BaseModel, Field

from schemas import RestrictedArea, SellerType


# ---------------------------------------------------------------------------
# Embedded GeoJSON sub-documents
# ---------------------------------------------------------------------------


class GeoPoint(BaseModel):
    """GeoJSON Point, a seller's sell map center."""

    type: Literal["Point"] = "Point"
    coordinates: List[float] = Field(
        default_factory=lambda: [0.0, 0.0],
        min_length=2,
        max_length=2,
        description="[longitude, latitude]",
    )

    @property
    def longitude(self) -> float:
        return self.coordinates[0]

    @property
    def latitude(self) -> float:
        return self.coordinates[1]


class GeoBoundary(BaseModel):
    """GeoJSON Polygon or MultiPolygon."""

    type: Literal["Polygon", "MultiPolygon"]
    coordinates: List[Any] = Field(description="Rings of [lon, lat] pairs")

    def polygons(self) -> list[list[list[list[float]]]]:
        """Return the boundary as a list of polygons (each a list of rings)."""
        if self.type == "Polygon":
            return [self.coordinates]
        return list(self.coordinates)


# ---------------------------------------------------------------------------
# Top-level collection documents
# ---------------------------------------------------------------------------


class SanctionedRegion(Document):
    """Boundary of one sanctioned jurisdiction."""

    location: RestrictedArea
    boundary: GeoBoundary

    class Settings:
        name = "sanctioned_regions"
        indexes = [
            [("boundary", pymongo.GEOSPHERE)],
            [("location", 1)],
        ]


class Seller(Document):
    """A marketplace seller (only the attributes the sanction engine touches)."""

    seller_id: str
    name: str = ""
    seller_type: SellerType = SellerType.TEST
    pre_restriction_seller_type: Optional[SellerType] = Field(
        default=None,
        description="seller_type in effect before the seller was restricted",
    )
    is_pre_restricted: bool = Field(
        default=False,
        description="Candidate flag for the current sanction bot pass",
    )
    sell_map_center: GeoPoint = Field(default_factory=GeoPoint)
    sanction_last_updated: Optional[datetime] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    class Settings:
        name = "sellers"
        indexes = [
            pymongo.IndexModel([("seller_id", 1)], unique=True),
            [("sell_map_center", pymongo.GEOSPHERE)],
            [("seller_type", 1)],
        ]


class Notification(Document):
    """A message shown to a seller, e.g. when their restriction changes."""

    seller_id: str
    reason: str
    is_cleared: bool = False
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    class Settings:
        name = "notifications"
        indexes = [
            [("seller_id", 1), ("created_at", -1)],
        ]
