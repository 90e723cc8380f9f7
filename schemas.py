"""Pydantic models and enums for the sanctioned-region compliance engine."""

from pydantic import BaseModel, Field, computed_field
from typing import Optional, List
from enum import Enum
from datetime import datetime, timezone


# =============================================================================
# Enums
# =============================================================================

class SellerType(str, Enum):
    ACTIVE = "activeSeller"
    TEST = "testSeller"
    INACTIVE = "inactiveSeller"
    RESTRICTED = "restrictedSeller"


# Types a restricted seller can be restored to
VISIBLE_SELLER_TYPES = (SellerType.ACTIVE, SellerType.TEST, SellerType.INACTIVE)


class RestrictedArea(str, Enum):
    """Jurisdictions under trade sanctions. Declaration order is catalog order."""
    CUBA = "Cuba"
    IRAN = "Iran"
    NORTH_KOREA = "North Korea"
    SYRIA = "Syria"
    REPUBLIC_OF_CRIMEA = "Republic of Crimea"
    DONETSK_OBLAST = "Donetsk Oblast"
    LUHANSK_OBLAST = "Luhansk Oblast"


class VerifyMode(str, Enum):
    CATALOG = "catalog"        # geocode against every cataloged jurisdiction
    MEMBERSHIP = "membership"  # only jurisdictions whose boundary holds the point


class BulkPhase(str, Enum):
    RESET = "reset"
    PRE_RESTRICTION = "pre_restriction"
    OUTCOME = "outcome"


class RunOutcome(str, Enum):
    COMPLETE = "complete"
    ABORTED = "aborted"
    ERROR = "error"


# =============================================================================
# Verification results
# =============================================================================

class GeocodeFailure(BaseModel):
    """A reverse-geocode call that failed for one (seller, jurisdiction) pair."""
    seller_id: str
    location: RestrictedArea
    error: str = Field(description="Error class and message")


class SellerVerdict(BaseModel):
    """Outcome of geocode verification for one candidate seller.

    is_sanctioned is None when the seller could not be resolved this pass
    (no match found and at least one geocode call failed).
    """
    seller_id: str
    backup_type: Optional[SellerType] = None
    is_sanctioned: Optional[bool] = None
    matched_location: Optional[RestrictedArea] = None
    place_name: Optional[str] = Field(default=None, description="Geocoded name that matched")
    failures: List[GeocodeFailure] = Field(default_factory=list)

    @computed_field
    @property
    def is_resolved(self) -> bool:
        return self.is_sanctioned is not None


class BulkOutcome(BaseModel):
    """Result of one bulk write against the seller collection."""
    phase: BulkPhase
    attempted: int = 0
    matched: int = 0
    modified: int = 0
    errors: List[str] = Field(default_factory=list)
    failed_seller_ids: List[str] = Field(default_factory=list, description="Sellers whose update errored")
    ok: bool = True


class ReconciliationSummary(BaseModel):
    """Everything one sanction bot pass did, for logging and the admin API."""
    outcome: RunOutcome = RunOutcome.COMPLETE
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None
    region_count: int = 0
    candidate_count: int = 0
    sanctioned_ids: List[str] = Field(default_factory=list)
    unsanctioned_ids: List[str] = Field(default_factory=list)
    unresolved_ids: List[str] = Field(default_factory=list)
    geocode_failures: List[GeocodeFailure] = Field(default_factory=list)
    writes: List[BulkOutcome] = Field(default_factory=list)
    notified_ids: List[str] = Field(default_factory=list)
    notification_failed_ids: List[str] = Field(default_factory=list)
    notes: Optional[str] = None

    @computed_field
    @property
    def sanctioned_count(self) -> int:
        return len(self.sanctioned_ids)

    @computed_field
    @property
    def unsanctioned_count(self) -> int:
        return len(self.unsanctioned_ids)

    @computed_field
    @property
    def unresolved_count(self) -> int:
        return len(self.unresolved_ids)


# =============================================================================
# API models
# =============================================================================

class SanctionStatusResponse(BaseModel):
    """Body of POST /restrictions/check-sanction-status."""
    isSanctioned: bool
    message: str


class RegionInfo(BaseModel):
    location: RestrictedArea
    geometry_type: str
    polygon_count: int


class RestrictedSellerInfo(BaseModel):
    seller_id: str
    name: str
    pre_restriction_seller_type: Optional[SellerType] = None
    longitude: float
    latitude: float
    sanction_last_updated: Optional[datetime] = None
