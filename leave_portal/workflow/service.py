"""Approval workflow — builds the step ladder and applies approver decisions.

Ladder (fixed, dense levels):
    1  supervisor
    2  head_of_department | head_of_independent_unit  (by branch)
    3  hr_officer
    4  chief_director

Skipped steps stay in the ladder so the levels never renumber.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timezone
from typing import Optional, Sequence, Union

from sqlalchemy.ext.asyncio import AsyncSession

from leave_portal.common.audit import create_audit_entry
from leave_portal.common.constants import (
    LeaveStatus,
    LeaveType,
    OrgRole,
    RejectionReason,
    StepDecision,
    StepStatus,
    policy_for,
)
from leave_portal.common.exceptions import (
    ConcurrentModification,
    InsufficientBalance,
    NotAuthorized,
    OutOfOrder,
)
from leave_portal.ledger.service import BalanceLedger
from leave_portal.leave.models import ApprovalStep, LeaveRequest
from leave_portal.leave.state import claim_pending, ensure_pending, finalize, load_request
from leave_portal.org.schemas import StaffPosition
from leave_portal.org.service import OrgService
from leave_portal.workflow.schemas import PlannedStep

logger = logging.getLogger(__name__)

HR_VALIDATION_LEVEL = 3


def build_steps(position: StaffPosition, leave_type: LeaveType) -> list[PlannedStep]:
    """Plan the approval ladder for a request from *position*."""
    policy = policy_for(leave_type)

    def _status(skip: bool) -> StepStatus:
        return StepStatus.skipped if skip else StepStatus.pending

    steps = [
        PlannedStep(
            level=1,
            approver_role=OrgRole.supervisor,
            status=_status(position.supervisor_id is None),
        ),
        PlannedStep(
            level=2,
            approver_role=position.branch.head_role,
            status=_status(position.heads_own_branch or position.is_chief_director),
        ),
        PlannedStep(
            level=HR_VALIDATION_LEVEL,
            approver_role=OrgRole.hr_officer,
            status=_status(not policy.requires_hr_validation),
        ),
        PlannedStep(
            level=4,
            approver_role=OrgRole.chief_director,
            status=_status(position.is_chief_director),
        ),
    ]

    # Someone always has to sign off; HR takes requests nobody else can approve
    if not any(step.is_actionable for step in steps):
        steps[HR_VALIDATION_LEVEL - 1] = PlannedStep(
            level=HR_VALIDATION_LEVEL, approver_role=OrgRole.hr_officer,
        )
    return steps


Step = Union[PlannedStep, ApprovalStep]


def current_step(steps: Sequence[Step]) -> Optional[Step]:
    """Lowest-level step still waiting for a decision."""
    pending = [s for s in steps if s.status == StepStatus.pending]
    return min(pending, key=lambda s: s.level) if pending else None


class ApprovalWorkflow:
    """Applies one approver decision to a pending request."""

    @staticmethod
    async def act(
        db: AsyncSession,
        request_id: uuid.UUID,
        acting_role: OrgRole,
        acting_staff_id: uuid.UUID,
        decision: StepDecision,
        comment: Optional[str] = None,
        *,
        as_of: Optional[date] = None,
    ) -> LeaveRequest:
        """Approve or reject the current step of *request_id*.

        The final approval debits the ledger. If the balance no longer covers
        the request at that point, the request is committed as rejected with
        ``balance_exhausted`` rather than raising.

        Raises:
            RequestAlreadyFinalized: the request is no longer pending.
            OutOfOrder: *acting_role* is not the role the current step waits for.
            NotAuthorized: the actor holds no authority over the requester.
            ConcurrentModification: another transition claimed the request first.
        """
        request = await load_request(db, request_id)
        ensure_pending(request)

        step = current_step(request.steps)
        if step is None:
            logger.error("Pending leave request %s has no pending step", request.id)
            raise ConcurrentModification("LeaveRequest", request.id)
        if step.approver_role != acting_role:
            raise OutOfOrder(step.approver_role, acting_role)

        position = await OrgService.get_position(db, request.staff_id)
        if not await OrgService.is_entitled(
            db, acting_staff_id, acting_role, position, as_of=as_of,
        ):
            raise NotAuthorized()

        await claim_pending(db, request)

        step.decided_by = acting_staff_id
        step.decided_at = datetime.now(timezone.utc)
        step.comment = comment

        if decision == StepDecision.rejected:
            step.status = StepStatus.rejected
            finalize(request, LeaveStatus.rejected, reason=RejectionReason.declined)
        else:
            step.status = StepStatus.approved
            if acting_role == OrgRole.hr_officer:
                request.hr_validated = True
            if current_step(request.steps) is None:
                try:
                    await BalanceLedger.debit(
                        db,
                        request.staff_id,
                        request.leave_type,
                        request.day_count,
                        actor_id=acting_staff_id,
                        reference_id=request.id,
                        as_of=as_of,
                        leave_date=request.start_date,
                    )
                except InsufficientBalance as exc:
                    logger.info(
                        "Leave request %s rejected at final approval: %s", request.id, exc.detail,
                    )
                    finalize(
                        request,
                        LeaveStatus.rejected,
                        reason=RejectionReason.balance_exhausted,
                    )
                else:
                    finalize(request, LeaveStatus.approved)

        await db.flush()
        await create_audit_entry(
            db,
            action="approve_step" if decision == StepDecision.approved else "reject_step",
            entity_type="leave_request",
            entity_id=request.id,
            actor_id=acting_staff_id,
            detail={
                "level": step.level,
                "role": acting_role.value,
                "status": request.status.value,
                "rejection_reason": (
                    request.rejection_reason.value if request.rejection_reason else None
                ),
            },
        )
        logger.info(
            "Leave request %s level %d %s by %s; request is %s",
            request.id, step.level, decision.value, acting_staff_id, request.status.value,
        )
        return request
