"""Leave ORM models: LeaveRequest, ApprovalStep, and the guards that freeze finalized requests."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

import sqlalchemy as sa
from sqlalchemy import event, inspect
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, object_session, relationship

from leave_portal.common.constants import (
    TERMINAL_STATUSES,
    LeaveStatus,
    LeaveType,
    OrgRole,
    RejectionReason,
    StepStatus,
)
from leave_portal.database import Base

if TYPE_CHECKING:
    from leave_portal.org.models import StaffMember


class FinalizedRequestImmutable(RuntimeError):
    """Raised on any ORM flush that would change a finalized request."""


class LeaveRequest(Base):
    __tablename__ = "leave_requests"
    __table_args__ = (
        sa.CheckConstraint("start_date <= end_date", name="ck_leave_request_dates"),
        sa.Index("ix_leave_requests_staff_dates", "staff_id", "start_date", "end_date"),
        sa.Index("ix_leave_requests_status", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    staff_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("staff_members.id"), nullable=False
    )
    leave_type: Mapped[LeaveType] = mapped_column(
        sa.Enum(LeaveType, name="leave_type"), nullable=False
    )
    start_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    end_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    day_count: Mapped[Decimal] = mapped_column(sa.Numeric(5, 1), nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(sa.Text)
    declaration_accepted: Mapped[bool] = mapped_column(
        sa.Boolean, nullable=False, default=False
    )
    hr_validated: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    status: Mapped[LeaveStatus] = mapped_column(
        sa.Enum(LeaveStatus, name="leave_status"),
        nullable=False,
        default=LeaveStatus.pending,
        active_history=True,
    )
    rejection_reason: Mapped[Optional[RejectionReason]] = mapped_column(
        sa.Enum(RejectionReason, name="rejection_reason")
    )
    cancelled_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("staff_members.id")
    )
    finalized_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    version: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now()
    )

    # Relationships
    staff: Mapped[StaffMember] = relationship(
        back_populates="leave_requests", foreign_keys=[staff_id]
    )
    steps: Mapped[list[ApprovalStep]] = relationship(
        back_populates="request",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="ApprovalStep.level",
    )

    @property
    def is_final(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def __repr__(self) -> str:
        return f"<LeaveRequest {self.id} {self.status.value}>"


class ApprovalStep(Base):
    __tablename__ = "approval_steps"
    __table_args__ = (
        sa.UniqueConstraint("request_id", "level", name="uq_approval_step_level"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    request_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("leave_requests.id", ondelete="CASCADE"),
        nullable=False,
    )
    level: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    approver_role: Mapped[OrgRole] = mapped_column(
        sa.Enum(OrgRole, name="org_role"), nullable=False
    )
    status: Mapped[StepStatus] = mapped_column(
        sa.Enum(StepStatus, name="step_status"),
        nullable=False,
        default=StepStatus.pending,
    )
    decided_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("staff_members.id")
    )
    decided_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    comment: Mapped[Optional[str]] = mapped_column(sa.Text)

    request: Mapped[LeaveRequest] = relationship(back_populates="steps")


@event.listens_for(LeaveRequest, "before_update")
def _refuse_finalized_update(mapper, connection, target: LeaveRequest) -> None:
    history = inspect(target).attrs.status.history
    previous = history.deleted[0] if history.deleted else target.status
    if previous in TERMINAL_STATUSES:
        raise FinalizedRequestImmutable(
            f"Leave request {target.id} is {previous.value} and cannot change."
        )


@event.listens_for(ApprovalStep, "before_update")
def _refuse_finalized_step_update(mapper, connection, target: ApprovalStep) -> None:
    # Judge by the status the request had before this flush, so a step decided
    # in the same flush that finalizes the request still goes through
    session = object_session(target)
    key = inspect(LeaveRequest).identity_key_from_primary_key((target.request_id,))
    request = session.identity_map.get(key) if session is not None else None
    if request is not None:
        history = inspect(request).attrs.status.history
        previous = history.deleted[0] if history.deleted else request.status
    else:
        previous = connection.execute(
            sa.select(LeaveRequest.status).where(LeaveRequest.id == target.request_id)
        ).scalar()
    if previous in TERMINAL_STATUSES:
        raise FinalizedRequestImmutable(
            f"Approval step {target.id} belongs to a {previous.value} request "
            "and cannot change."
        )
