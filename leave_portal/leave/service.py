"""Leave service — submit, cancel and query leave requests.

Approver decisions live in ``leave_portal.workflow.service``; both sides move
requests through the guarded transitions in ``leave_portal.leave.state``.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from leave_portal.auth.schemas import Principal
from leave_portal.common.audit import create_audit_entry
from leave_portal.common.constants import LeaveStatus, LeaveType, policy_for
from leave_portal.common.exceptions import (
    InvalidRange,
    NotAuthorized,
    OverlappingRequest,
    ValidationException,
)
from leave_portal.common.pagination import (
    PaginatedResponse,
    PaginationParams,
    paginate,
)
from leave_portal.config import settings
from leave_portal.ledger.service import BalanceLedger
from leave_portal.leave.models import ApprovalStep, LeaveRequest
from leave_portal.leave.schemas import LeaveRequestCreate, LeaveRequestOut
from leave_portal.leave.state import claim_pending, ensure_pending, finalize, load_request
from leave_portal.org.service import OrgService
from leave_portal.workcalendar.service import HolidayService, working_days
from leave_portal.workflow.service import build_steps

logger = logging.getLogger(__name__)


def completed_months(since: Optional[date], until: date) -> int:
    """Whole calendar months from *since* to *until*; 0 when *since* is unknown."""
    if since is None or until < since:
        return 0
    months = (until.year - since.year) * 12 + (until.month - since.month)
    if until.day < since.day:
        months -= 1
    return months


class LeaveService:
    """Static methods over ``leave_requests``."""

    # ─────────────────────────────────────────────────────────────────
    # Submit
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def submit(
        db: AsyncSession,
        staff_id: uuid.UUID,
        data: LeaveRequestCreate,
        *,
        exclude_holidays: Optional[bool] = None,
        as_of: Optional[date] = None,
    ) -> LeaveRequest:
        """Create a pending leave request with its planned approval ladder.

        Validates:
          - start_date on or before end_date
          - the leave declaration is accepted
          - the staff member has served long enough for the leave type
          - at least one working day in the range
          - no overlapping pending/approved request
          - enough balance (nothing is reserved; the debit happens on approval)
        """
        if data.start_date > data.end_date:
            raise InvalidRange(data.start_date, data.end_date)
        if not data.declaration_accepted:
            raise ValidationException(
                {"declaration_accepted": ["The leave declaration must be accepted."]}
            )

        staff = await OrgService.get_staff(db, staff_id)
        position = OrgService.position_of(staff)

        min_months = policy_for(data.leave_type).min_service_months
        if completed_months(staff.date_of_joining, data.start_date) < min_months:
            raise ValidationException(
                {"leave_type": [
                    f"{data.leave_type.value.replace('_', ' ').capitalize()} leave "
                    f"requires at least {min_months} months of service."
                ]}
            )

        if exclude_holidays is None:
            exclude_holidays = settings.EXCLUDE_HOLIDAYS
        holidays: set[date] = set()
        if exclude_holidays:
            holidays = await HolidayService.get_holiday_dates(
                db, data.start_date, data.end_date,
            )
        days = working_days(data.start_date, data.end_date, exclude_holidays, holidays)
        if days <= 0:
            raise ValidationException(
                {"dates": ["No working days found in the selected range "
                           "(all days may be weekends or holidays)."]}
            )

        # Held until commit, so a concurrent submit for the same staff member
        # waits here and then sees this request in its overlap check
        await OrgService.lock_staff(db, staff_id)

        # ── Check overlapping leaves ────────────────────────────────
        overlap_result = await db.execute(
            select(func.count()).select_from(LeaveRequest).where(
                LeaveRequest.staff_id == staff_id,
                LeaveRequest.status.in_([LeaveStatus.pending, LeaveStatus.approved]),
                LeaveRequest.start_date <= data.end_date,
                LeaveRequest.end_date >= data.start_date,
            )
        )
        if overlap_result.scalar_one() > 0:
            raise OverlappingRequest(data.start_date, data.end_date)

        day_count = Decimal(days)
        await BalanceLedger.reserve_check(
            db, staff_id, data.leave_type, day_count,
            as_of=as_of, leave_date=data.start_date,
        )

        request = LeaveRequest(
            staff_id=staff_id,
            leave_type=data.leave_type,
            start_date=data.start_date,
            end_date=data.end_date,
            day_count=day_count,
            reason=data.reason,
            declaration_accepted=True,
            hr_validated=False,
            status=LeaveStatus.pending,
            version=1,
            steps=[
                ApprovalStep(
                    level=planned.level,
                    approver_role=planned.approver_role,
                    status=planned.status,
                )
                for planned in build_steps(position, data.leave_type)
            ],
        )
        db.add(request)
        await db.flush()
        await create_audit_entry(
            db,
            action="submit",
            entity_type="leave_request",
            entity_id=request.id,
            actor_id=staff_id,
            detail={
                "leave_type": data.leave_type.value,
                "start_date": data.start_date.isoformat(),
                "end_date": data.end_date.isoformat(),
                "day_count": str(day_count),
            },
        )
        await db.refresh(request)
        logger.info(
            "Staff %s submitted %s leave %s (%s day(s))",
            staff_id, data.leave_type.value, request.id, day_count,
        )
        return request

    # ─────────────────────────────────────────────────────────────────
    # Cancel
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def cancel(
        db: AsyncSession,
        request_id: uuid.UUID,
        principal: Principal,
        *,
        reason: Optional[str] = None,
    ) -> LeaveRequest:
        """Cancel a pending request. Only the owner or HR may cancel; no balance effect."""
        request = await load_request(db, request_id)
        ensure_pending(request)

        if request.staff_id != principal.staff_id and not principal.is_hr:
            raise NotAuthorized("Only the requester or HR may cancel this leave request.")

        await claim_pending(db, request)
        finalize(request, LeaveStatus.cancelled, cancelled_by=principal.staff_id)
        await db.flush()
        await create_audit_entry(
            db,
            action="cancel",
            entity_type="leave_request",
            entity_id=request.id,
            actor_id=principal.staff_id,
            detail={"reason": reason},
        )
        logger.info("Leave request %s cancelled by %s", request.id, principal.staff_id)
        return request

    # ─────────────────────────────────────────────────────────────────
    # Queries
    # ─────────────────────────────────────────────────────────────────

    @staticmethod
    async def get_request(
        db: AsyncSession,
        request_id: uuid.UUID,
        principal: Principal,
    ) -> LeaveRequest:
        """Owner, HR, or anyone entitled to a step of the ladder may view a request."""
        request = await load_request(db, request_id)
        if request.staff_id == principal.staff_id or principal.is_hr:
            return request

        position = await OrgService.get_position(db, request.staff_id)
        for step in request.steps:
            if await OrgService.is_entitled(
                db, principal.staff_id, step.approver_role, position,
            ):
                return request
        raise NotAuthorized("You may not view this leave request.")

    @staticmethod
    async def list_requests(
        db: AsyncSession,
        params: PaginationParams,
        *,
        staff_id: Optional[uuid.UUID] = None,
        status: Optional[LeaveStatus] = None,
        leave_type: Optional[LeaveType] = None,
        from_date: Optional[date] = None,
        to_date: Optional[date] = None,
    ) -> PaginatedResponse[LeaveRequestOut]:
        query = select(LeaveRequest).order_by(LeaveRequest.created_at.desc())

        if staff_id:
            query = query.where(LeaveRequest.staff_id == staff_id)
        if status:
            query = query.where(LeaveRequest.status == status)
        if leave_type:
            query = query.where(LeaveRequest.leave_type == leave_type)
        if from_date:
            query = query.where(LeaveRequest.end_date >= from_date)
        if to_date:
            query = query.where(LeaveRequest.start_date <= to_date)

        rows, meta = await paginate(db, query, params, model=LeaveRequest)
        return PaginatedResponse[LeaveRequestOut](
            data=[LeaveRequestOut.model_validate(r) for r in rows],
            meta=meta,
        )
