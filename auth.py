"""Admin token guard for the sanction engine's admin endpoints.

If SANCTION_ADMIN_TOKEN is not set, auth is disabled and admin endpoints work
without a token (local development).
"""

from __future__ import annotations

import hmac
import logging
import os
from typing import Optional

from dotenv import load_dotenv
from fastapi import HTTPException, Request

load_dotenv()

log = logging.getLogger(__name__)


def _admin_token() -> str:
    return os.getenv("SANCTION_ADMIN_TOKEN", "")


def auth_enabled() -> bool:
    return bool(_admin_token())


def _extract_bearer(request: Request) -> Optional[str]:
    """Extract Bearer token from Authorization header."""
    auth = request.headers.get("Authorization", "")
    if auth.startswith("Bearer "):
        return auth[7:]
    return None


async def require_admin(request: Request) -> None:
    """FastAPI dependency: raises 401 unless the admin token matches."""
    if not auth_enabled():
        return
    expected = _admin_token()

    token = _extract_bearer(request)
    if not token:
        raise HTTPException(status_code=401, detail="Authentication required")

    if not hmac.compare_digest(token.encode(), expected.encode()):
        log.warning("Rejected admin request to %s: bad token", request.url.path)
        raise HTTPException(status_code=401, detail="Invalid token")
