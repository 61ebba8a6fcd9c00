"""Ledger routers — balances, HR adjustments and the year-end rollover trigger."""


import uuid
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from leave_portal.auth.dependencies import get_current_principal, require_role
from leave_portal.auth.schemas import Principal
from leave_portal.common.constants import LEDGER_ADMIN_ROLES, LeaveType
from leave_portal.common.exceptions import NotAuthorized
from leave_portal.common.rate_limit import limiter
from leave_portal.database import get_db, get_session_factory
from leave_portal.ledger.rollover import run_year_end_rollover
from leave_portal.ledger.schemas import (
    AvailableBalanceOut,
    BalanceCreditRequest,
    LeaveBalanceOut,
    OpenPeriodRequest,
    RolloverReport,
    RolloverRequest,
)
from leave_portal.ledger.service import BalanceLedger
from leave_portal.org.service import OrgService

balances_router = APIRouter(prefix="", tags=["balances"])
rollover_router = APIRouter(prefix="", tags=["rollover"])


def _ensure_can_view(principal: Principal, staff_id: uuid.UUID) -> None:
    if staff_id != principal.staff_id and not principal.has_any(LEDGER_ADMIN_ROLES):
        raise NotAuthorized("Only HR may view another staff member's balances.")


# ── GET /me ─────────────────────────────────────────────────────────

@balances_router.get("/me", response_model=list[LeaveBalanceOut])
async def my_balances(
    period: Optional[int] = Query(None),
    as_of: Optional[date] = Query(None),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    return await BalanceLedger.get_balances(
        db, principal.staff_id, period=period, as_of=as_of,
    )


# ── GET /{staff_id} ─────────────────────────────────────────────────

@balances_router.get("/{staff_id}", response_model=list[LeaveBalanceOut])
async def staff_balances(
    staff_id: uuid.UUID,
    period: Optional[int] = Query(None),
    as_of: Optional[date] = Query(None),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    _ensure_can_view(principal, staff_id)
    return await BalanceLedger.get_balances(db, staff_id, period=period, as_of=as_of)


# ── GET /{staff_id}/{leave_type}/available ──────────────────────────

@balances_router.get(
    "/{staff_id}/{leave_type}/available", response_model=AvailableBalanceOut,
)
async def available_balance(
    staff_id: uuid.UUID,
    leave_type: LeaveType,
    as_of: Optional[date] = Query(None),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    _ensure_can_view(principal, staff_id)
    return await BalanceLedger.describe_available(db, staff_id, leave_type, as_of=as_of)


# ── POST /{staff_id}/credit ─────────────────────────────────────────

@balances_router.post("/{staff_id}/credit", response_model=list[LeaveBalanceOut])
async def credit_balance(
    staff_id: uuid.UUID,
    body: BalanceCreditRequest,
    principal: Principal = Depends(require_role(*LEDGER_ADMIN_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    """Restore days to a balance (e.g. leave recalled after approval)."""
    await BalanceLedger.credit(
        db,
        staff_id,
        body.leave_type,
        body.amount,
        actor_id=principal.staff_id,
        reason=body.reason,
    )
    return await BalanceLedger.get_balances(db, staff_id)


# ── POST /{staff_id}/open-period ────────────────────────────────────

@balances_router.post(
    "/{staff_id}/open-period", response_model=list[LeaveBalanceOut], status_code=201,
)
async def open_period(
    staff_id: uuid.UUID,
    body: OpenPeriodRequest,
    principal: Principal = Depends(require_role(*LEDGER_ADMIN_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    """Open a period for a staff member, pro-rated from their joining date."""
    staff = await OrgService.get_staff(db, staff_id)
    await BalanceLedger.open_period(
        db,
        staff_id,
        body.period,
        join_date=staff.date_of_joining,
        actor_id=principal.staff_id,
    )
    return await BalanceLedger.get_balances(db, staff_id, period=body.period)


# ── POST /rollover/{period} ─────────────────────────────────────────

@rollover_router.post("/{period}", response_model=RolloverReport)
@limiter.limit("2/minute")
async def trigger_rollover(
    request: Request,
    period: int,
    body: Optional[RolloverRequest] = None,
    principal: Principal = Depends(require_role(*LEDGER_ADMIN_ROLES)),
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    """Close *period* and open the next one for every active staff member."""
    body = body or RolloverRequest()
    return await run_year_end_rollover(
        period,
        session_factory=session_factory,
        staff_ids=body.staff_ids,
        actor_id=principal.staff_id,
        as_of=body.as_of,
    )
