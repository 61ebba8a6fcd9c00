"""Leave router — submit, approver actions, cancel, queries.

All endpoints require authentication. Approver entitlement is checked in the
workflow engine against the requester's org position, not by role alone.
"""


import uuid
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from leave_portal.auth.dependencies import get_current_principal
from leave_portal.auth.schemas import Principal
from leave_portal.common.constants import LeaveStatus, LeaveType, OrgRole
from leave_portal.common.exceptions import NotAuthorized
from leave_portal.common.pagination import PaginatedResponse, PaginationParams
from leave_portal.database import get_db
from leave_portal.leave.schemas import (
    ApprovalActionRequest,
    LeaveCancelRequest,
    LeaveRequestCreate,
    LeaveRequestOut,
)
from leave_portal.leave.service import LeaveService
from leave_portal.org.service import OrgService
from leave_portal.workflow.service import ApprovalWorkflow

router = APIRouter(prefix="", tags=["leave"])


# ── POST / ──────────────────────────────────────────────────────────

@router.post("", response_model=LeaveRequestOut, status_code=201)
async def submit_leave(
    body: LeaveRequestCreate,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """Submit a leave request. Validates dates, declaration, overlap and balance."""
    return await LeaveService.submit(db, principal.staff_id, body)


# ── GET / ───────────────────────────────────────────────────────────

@router.get("", response_model=PaginatedResponse[LeaveRequestOut])
async def list_leave_requests(
    staff_id: Optional[uuid.UUID] = Query(None),
    status: Optional[LeaveStatus] = Query(None),
    leave_type: Optional[LeaveType] = Query(None),
    from_date: Optional[date] = Query(None),
    to_date: Optional[date] = Query(None),
    params: PaginationParams = Depends(PaginationParams),
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """Own requests by default; HR may list anyone's."""
    if staff_id is None:
        staff_id = None if principal.is_hr else principal.staff_id
    elif staff_id != principal.staff_id and not principal.is_hr:
        raise NotAuthorized("Only HR may list another staff member's requests.")

    return await LeaveService.list_requests(
        db,
        params,
        staff_id=staff_id,
        status=status,
        leave_type=leave_type,
        from_date=from_date,
        to_date=to_date,
    )


# ── GET /{request_id} ───────────────────────────────────────────────

@router.get("/{request_id}", response_model=LeaveRequestOut)
async def get_leave_request(
    request_id: uuid.UUID,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveService.get_request(db, request_id, principal)


# ── POST /{request_id}/actions ──────────────────────────────────────

@router.post("/{request_id}/actions", response_model=LeaveRequestOut)
async def act_on_leave_request(
    request_id: uuid.UUID,
    body: ApprovalActionRequest,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    """Approve or reject the current approval step in the given role."""
    # Supervisor and acting authority come from org records, not from a token claim
    if (
        body.acting_role != OrgRole.supervisor
        and body.acting_role not in principal.roles
        and not await OrgService.acting_appointments(
            db, staff_id=principal.staff_id, role=body.acting_role, as_of=date.today(),
        )
    ):
        raise NotAuthorized(f"Your token does not grant the '{body.acting_role.value}' role.")
    return await ApprovalWorkflow.act(
        db,
        request_id,
        body.acting_role,
        principal.staff_id,
        body.decision,
        body.comment,
    )


# ── POST /{request_id}/cancel ───────────────────────────────────────

@router.post("/{request_id}/cancel", response_model=LeaveRequestOut)
async def cancel_leave_request(
    request_id: uuid.UUID,
    body: Optional[LeaveCancelRequest] = None,
    principal: Principal = Depends(get_current_principal),
    db: AsyncSession = Depends(get_db),
):
    return await LeaveService.cancel(
        db, request_id, principal, reason=body.reason if body else None,
    )
