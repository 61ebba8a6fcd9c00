"""Auth dependencies — JWT validation, RBAC enforcement.

Tokens are issued by the organization's identity provider; this service only
verifies them. Claims used: ``sub`` (staff member id) and ``roles``.
"""

from __future__ import annotations

import logging
import uuid
from typing import Callable

from fastapi import Depends, Request
from fastapi.exceptions import HTTPException
from jose import ExpiredSignatureError, JWTError, jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from leave_portal.auth.roles import normalize_roles
from leave_portal.auth.schemas import Principal
from leave_portal.common.constants import OrgRole
from leave_portal.common.exceptions import ForbiddenException
from leave_portal.config import settings
from leave_portal.database import get_db
from leave_portal.org.models import StaffMember

logger = logging.getLogger(__name__)


def _extract_bearer(request: Request) -> str:
    """Extract Bearer token from Authorization header."""
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing or invalid Authorization header.")
    return auth_header[7:]


# ── Core dependency ─────────────────────────────────────────────────

async def get_current_principal(
    request: Request,
    db: AsyncSession = Depends(get_db),
) -> Principal:
    """Validate JWT, load the active staff member, normalize the role claims."""
    token = _extract_bearer(request)

    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
        )
    except ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token has expired.")
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token.")

    try:
        staff_id = uuid.UUID(str(payload.get("sub")))
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid token subject.")

    result = await db.execute(
        select(StaffMember).where(
            StaffMember.id == staff_id, StaffMember.is_active.is_(True),
        )
    )
    staff = result.scalars().first()
    if staff is None:
        raise HTTPException(status_code=401, detail="User account is inactive or not found.")

    raw_roles = payload.get("roles") or []
    if isinstance(raw_roles, str):
        raw_roles = [raw_roles]
    roles = normalize_roles(raw_roles) | {OrgRole.staff}

    principal = Principal(staff_id=staff.id, full_name=staff.full_name, roles=roles)
    request.state.principal = principal
    return principal


# ── Role-based dependency ───────────────────────────────────────────

def require_role(*allowed_roles: OrgRole) -> Callable:
    """Return a FastAPI dependency that enforces role membership."""

    async def _check(principal: Principal = Depends(get_current_principal)) -> Principal:
        if not principal.has_any(allowed_roles):
            logger.warning(
                "Staff %s denied; requires one of %s",
                principal.staff_id, [r.value for r in allowed_roles],
            )
            raise ForbiddenException(
                detail=f"Required role: one of {sorted(r.value for r in allowed_roles)}.",
            )
        return principal

    return _check
