"""Ledger ORM models: LeaveBalance, PeriodClosure."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from leave_portal.common.constants import LeaveType
from leave_portal.database import Base

if TYPE_CHECKING:
    from leave_portal.org.models import StaffMember


class LeaveBalance(Base):
    """One accrual period of one leave type for one staff member.

    ``version`` is bumped by every ledger write; writers compare-and-swap on it.
    """

    __tablename__ = "leave_balances"
    __table_args__ = (
        sa.UniqueConstraint(
            "staff_id", "leave_type", "period", name="uq_leave_balance"
        ),
        sa.CheckConstraint(
            "consumed <= entitlement + carried_forward_in",
            name="ck_leave_balance_consumed",
        ),
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
        sa.Enum(LeaveType, name="leave_type"), nullable=False,
    )
    period: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    entitlement: Mapped[Decimal] = mapped_column(
        sa.Numeric(5, 1), nullable=False, default=Decimal("0")
    )
    consumed: Mapped[Decimal] = mapped_column(
        sa.Numeric(5, 1), nullable=False, default=Decimal("0")
    )
    carried_forward_in: Mapped[Decimal] = mapped_column(
        sa.Numeric(5, 1), nullable=False, default=Decimal("0")
    )
    # Portion of ``consumed`` drawn from the carried-forward days
    carry_forward_consumed: Mapped[Decimal] = mapped_column(
        sa.Numeric(5, 1), nullable=False, default=Decimal("0")
    )
    carry_forward_cap: Mapped[Decimal] = mapped_column(
        sa.Numeric(5, 1), nullable=False, default=Decimal("0")
    )
    carry_forward_expires_on: Mapped[Optional[date]] = mapped_column(sa.Date)
    version: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=1)
    closed_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now()
    )

    # Relationships
    staff: Mapped[StaffMember] = relationship(
        back_populates="leave_balances"
    )

    def __repr__(self) -> str:
        return (
            f"<LeaveBalance {self.leave_type.value} {self.period} "
            f"staff={self.staff_id} v{self.version}>"
        )


class PeriodClosure(Base):
    """Marks (staff, period) as rolled over; its presence makes rollover idempotent."""

    __tablename__ = "leave_period_closures"
    __table_args__ = (
        sa.UniqueConstraint("staff_id", "period", name="uq_period_closure"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    staff_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("staff_members.id"), nullable=False
    )
    period: Mapped[int] = mapped_column(sa.Integer, nullable=False)
    processed_by: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("staff_members.id")
    )
    summary: Mapped[Optional[dict]] = mapped_column(JSONB)
    processed_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now()
    )
