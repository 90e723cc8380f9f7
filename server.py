#!/usr/bin/env python3
"""FastAPI server for the sanctioned-region compliance engine.

Public:
  POST /restrictions/check-sanction-status   fast-path geofence check
  GET  /restrictions/regions                 cataloged jurisdictions

Admin (Bearer SANCTION_ADMIN_TOKEN when configured):
  POST /cron/sanction-bot                    run the sanction bot now
  GET  /cron/sanction-bot/runs               recent runs
  GET  /reports/restricted-sellers           sellers currently restricted

The fast-path check is a coarse boundary test.  It is not equivalent to the
sanction bot's geocode-confirmed result: a point can pass one and fail the
other near borders.
"""

import logging
import math
import os
from typing import Any

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from auth import require_admin
from db import init_db, close_db
from region_catalog import CatalogUnavailableError, is_sanctioned_location, list_regions
from sanction_bot import SanctionBotBusyError, run_sanction_bot
from sanction_models import Seller
from scheduler import start_scheduler, stop_scheduler
from schemas import RegionInfo, RestrictedSellerInfo, SanctionStatusResponse, SellerType
import task_manager

log = logging.getLogger(__name__)

load_dotenv()

app = FastAPI(title="Sanction Engine API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def startup():
    await init_db()
    start_scheduler()


@app.on_event("shutdown")
async def shutdown():
    await stop_scheduler()
    await close_db()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _is_number(value: Any) -> bool:
    """JSON number check; booleans and numeric strings are rejected."""
    return (
        isinstance(value, (int, float))
        and not isinstance(value, bool)
        and math.isfinite(value)
    )


def _parse_coordinates(body: Any) -> tuple[float, float]:
    """Validate a {latitude, longitude} body or raise 400."""
    if not isinstance(body, dict):
        raise HTTPException(status_code=400, detail="Unexpected coordinates provided")

    latitude = body.get("latitude")
    longitude = body.get("longitude")
    if not _is_number(latitude) or not _is_number(longitude):
        log.error("Invalid coordinates provided as %r, %r", latitude, longitude)
        raise HTTPException(status_code=400, detail="Unexpected coordinates provided")
    if not -90 <= latitude <= 90 or not -180 <= longitude <= 180:
        raise HTTPException(status_code=400, detail="Coordinates out of range")
    return float(latitude), float(longitude)


# ---------------------------------------------------------------------------
# Restriction endpoints
# ---------------------------------------------------------------------------

@app.post("/restrictions/check-sanction-status", response_model=SanctionStatusResponse)
async def check_sanction_status(request: Request):
    """Is this sell center inside a sanctioned boundary?

    Single geospatial query against the region catalog; no geocoding and no
    seller state changes.
    """
    try:
        body = await request.json()
    except ValueError:
        raise HTTPException(status_code=400, detail="Unexpected coordinates provided")

    latitude, longitude = _parse_coordinates(body)

    try:
        is_sanctioned = await is_sanctioned_location(latitude, longitude)
    except Exception as e:
        log.error("Failed to get sanctioned status: %s", e)
        return JSONResponse(
            status_code=500,
            content={"message": "An error occurred while checking sanction status; please try again later"},
        )

    zone = "sanctioned" if is_sanctioned else "unsanctioned"
    return SanctionStatusResponse(
        isSanctioned=is_sanctioned,
        message=f"Sell center is set within a {zone} zone",
    )


@app.get("/restrictions/regions")
async def list_sanctioned_regions() -> list[RegionInfo]:
    """Cataloged jurisdictions in catalog order."""
    try:
        regions = await list_regions()
    except CatalogUnavailableError as e:
        raise HTTPException(status_code=500, detail=str(e))

    return [
        RegionInfo(
            location=r.location,
            geometry_type=r.boundary.type,
            polygon_count=len(r.boundary.polygons()),
        )
        for r in regions
    ]


# ---------------------------------------------------------------------------
# Admin endpoints
# ---------------------------------------------------------------------------

@app.post("/cron/sanction-bot", dependencies=[Depends(require_admin)])
async def trigger_sanction_bot():
    """Run the sanction bot immediately and return its summary."""
    try:
        summary = await run_sanction_bot(trigger="manual")
    except SanctionBotBusyError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except Exception as e:
        log.error("Sanction bot execution failed: %s", e)
        raise HTTPException(status_code=500, detail="Sanction bot execution failed")

    return {
        "success": summary.outcome.value == "complete",
        "message": f"Sanction bot run {summary.outcome.value}",
        "data": summary.model_dump(mode="json"),
    }


@app.get("/cron/sanction-bot/runs", dependencies=[Depends(require_admin)])
async def list_sanction_bot_runs(limit: int = Query(20, ge=1, le=100)):
    """Recent sanction bot runs, newest first."""
    return task_manager.list_runs(limit)


@app.get("/reports/restricted-sellers", dependencies=[Depends(require_admin)])
async def restricted_sellers_report(limit: int = Query(500, ge=1, le=5000)) -> list[RestrictedSellerInfo]:
    """Sellers currently restricted, with the type they will be restored to."""
    sellers = await Seller.find(
        {"seller_type": SellerType.RESTRICTED.value}
    ).sort("seller_id").limit(limit).to_list()

    return [
        RestrictedSellerInfo(
            seller_id=s.seller_id,
            name=s.name,
            pre_restriction_seller_type=s.pre_restriction_seller_type,
            longitude=s.sell_map_center.longitude,
            latitude=s.sell_map_center.latitude,
            sanction_last_updated=s.sanction_last_updated,
        )
        for s in sellers
    ]


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(app, host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
