"""Tests for the geospatial candidate filter."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from geo_filter import build_candidate_query, find_candidates, regions_containing
from sanction_models import GeoBoundary, SanctionedRegion, Seller
from schemas import RestrictedArea, SellerType

from tests.conftest import PARIS, TEHRAN, make_catalog, make_region, make_seller


class TestBuildCandidateQuery:

    def test_one_clause_per_region_plus_restricted(self):
        regions = make_catalog()
        query = build_candidate_query(regions)

        clauses = query["$or"]
        assert len(clauses) == len(regions) + 1
        assert clauses[-1] == {"seller_type": SellerType.RESTRICTED.value}

    def test_geo_clause_uses_region_boundary(self):
        region = make_region(RestrictedArea.IRAN)
        clause = build_candidate_query([region])["$or"][0]
        geometry = clause["sell_map_center"]["$geoWithin"]["$geometry"]
        assert geometry["type"] == "Polygon"
        assert geometry["coordinates"] == region.boundary.coordinates

    def test_empty_catalog_still_matches_restricted(self):
        assert build_candidate_query([]) == {"$or": [{"seller_type": "restrictedSeller"}]}


class TestFindCandidates:

    @pytest.mark.asyncio
    async def test_runs_query(self):
        sellers = [make_seller(seller_id="a"), make_seller(seller_id="b")]
        cursor = MagicMock()
        cursor.to_list = AsyncMock(return_value=sellers)
        query = build_candidate_query([make_region(RestrictedArea.CUBA)])

        with patch.object(Seller, "find", return_value=cursor) as find:
            result = await find_candidates(query)

        find.assert_called_once_with(query)
        assert result == sellers


class TestRegionsContaining:

    def test_north_korea_point(self):
        seller = make_seller(at=(37.5, 123.5))
        matched = regions_containing(seller, make_catalog())
        assert [r.location for r in matched] == [RestrictedArea.NORTH_KOREA]

    def test_origin_is_outside_everything(self):
        seller = make_seller(at=(0, 0))
        assert regions_containing(seller, make_catalog()) == []

    def test_tehran_in_iran(self):
        matched = regions_containing(make_seller(at=TEHRAN), make_catalog())
        assert [r.location for r in matched] == [RestrictedArea.IRAN]

    def test_paris_outside(self):
        assert regions_containing(make_seller(at=PARIS), make_catalog()) == []

    def test_edge_point_counts_as_inside(self):
        # Western edge of the Iran box
        matched = regions_containing(make_seller(at=(30.0, 44.0)), [make_region(RestrictedArea.IRAN)])
        assert len(matched) == 1

    def test_overlap_keeps_catalog_order(self):
        # Donetsk and Luhansk boxes overlap around 48.0N 39.0E
        matched = regions_containing(make_seller(at=(48.0, 39.0)), make_catalog())
        assert [r.location for r in matched] == [
            RestrictedArea.DONETSK_OBLAST,
            RestrictedArea.LUHANSK_OBLAST,
        ]

    def test_unreadable_boundary_skipped(self):
        broken = SanctionedRegion.model_construct(
            location=RestrictedArea.CUBA,
            boundary=GeoBoundary.model_construct(type="Polygon", coordinates=[[[0, 0]]]),
        )
        matched = regions_containing(make_seller(at=TEHRAN), [broken, make_region(RestrictedArea.IRAN)])
        assert [r.location for r in matched] == [RestrictedArea.IRAN]
