"""Organization ORM models: StaffMember, RoleAssignment, ActingAppointment.

Staff records are maintained by an external HR import; this core only
reads them to resolve approval routing.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import TYPE_CHECKING, Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from leave_portal.common.constants import OrgRole
from leave_portal.database import Base

if TYPE_CHECKING:
    from leave_portal.ledger.models import LeaveBalance
    from leave_portal.leave.models import LeaveRequest


# ═════════════════════════════════════════════════════════════════════
# StaffMember
# ═════════════════════════════════════════════════════════════════════


class StaffMember(Base):
    """A civil servant's position in the directorate / unit hierarchy."""

    __tablename__ = "staff_members"
    __table_args__ = (
        # Exactly one branch: a directorate, or an independent unit.
        sa.CheckConstraint(
            "(is_independent_unit AND directorate IS NULL AND unit IS NOT NULL) "
            "OR (NOT is_independent_unit AND directorate IS NOT NULL)",
            name="ck_staff_single_branch",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    staff_code: Mapped[str] = mapped_column(sa.String(30), unique=True, nullable=False)
    full_name: Mapped[str] = mapped_column(sa.String(200), nullable=False)
    directorate: Mapped[Optional[str]] = mapped_column(sa.String(150))
    unit: Mapped[Optional[str]] = mapped_column(sa.String(150))
    is_independent_unit: Mapped[bool] = mapped_column(
        sa.Boolean, nullable=False, default=False,
    )
    supervisor_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("staff_members.id"),
    )
    date_of_joining: Mapped[Optional[date]] = mapped_column(sa.Date)
    is_active: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(),
    )

    # ── Relationships ───────────────────────────────────────────────
    supervisor: Mapped[Optional[StaffMember]] = relationship(
        remote_side=[id], foreign_keys=[supervisor_id],
    )
    role_assignments: Mapped[list[RoleAssignment]] = relationship(
        back_populates="staff", cascade="all, delete-orphan",
    )
    acting_appointments: Mapped[list[ActingAppointment]] = relationship(
        back_populates="staff",
        cascade="all, delete-orphan",
        foreign_keys="ActingAppointment.staff_id",
    )
    leave_balances: Mapped[list[LeaveBalance]] = relationship(back_populates="staff")
    leave_requests: Mapped[list[LeaveRequest]] = relationship(
        back_populates="staff", foreign_keys="LeaveRequest.staff_id",
    )

    def __repr__(self) -> str:
        return f"<StaffMember {self.staff_code!r}>"


# ═════════════════════════════════════════════════════════════════════
# RoleAssignment
# ═════════════════════════════════════════════════════════════════════


class RoleAssignment(Base):
    """A role held by a staff member, scoped to a directorate, a unit, or the whole org.

    ``directorate`` and ``unit`` both NULL means organization-wide scope.
    """

    __tablename__ = "role_assignments"
    __table_args__ = (
        sa.Index("ix_role_assignments_staff_role", "staff_id", "role"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    staff_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("staff_members.id", ondelete="CASCADE"),
        nullable=False,
    )
    role: Mapped[OrgRole] = mapped_column(
        sa.Enum(OrgRole, name="org_role"), nullable=False,
    )
    directorate: Mapped[Optional[str]] = mapped_column(sa.String(150))
    unit: Mapped[Optional[str]] = mapped_column(sa.String(150))
    is_active: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)
    assigned_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(),
    )

    staff: Mapped[StaffMember] = relationship(back_populates="role_assignments")


# ═════════════════════════════════════════════════════════════════════
# ActingAppointment
# ═════════════════════════════════════════════════════════════════════


class ActingAppointment(Base):
    """A time-bounded grant of *role* to a staff member covering for an absent holder.

    Scoped like a ``RoleAssignment``. An acting supervisor stands in for one
    particular supervisor, named by ``on_behalf_of_id``.
    """

    __tablename__ = "acting_appointments"
    __table_args__ = (
        sa.CheckConstraint("starts_on <= ends_on", name="ck_acting_window"),
        sa.CheckConstraint(
            "role <> 'supervisor' OR on_behalf_of_id IS NOT NULL",
            name="ck_acting_supervisor_principal",
        ),
        sa.Index("ix_acting_appointments_staff_role", "staff_id", "role"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    staff_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("staff_members.id", ondelete="CASCADE"),
        nullable=False,
    )
    role: Mapped[OrgRole] = mapped_column(
        sa.Enum(OrgRole, name="org_role"), nullable=False,
    )
    directorate: Mapped[Optional[str]] = mapped_column(sa.String(150))
    unit: Mapped[Optional[str]] = mapped_column(sa.String(150))
    on_behalf_of_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("staff_members.id"),
    )
    starts_on: Mapped[date] = mapped_column(sa.Date, nullable=False)
    ends_on: Mapped[date] = mapped_column(sa.Date, nullable=False)
    is_active: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)
    appointed_by: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(),
    )

    staff: Mapped[StaffMember] = relationship(
        back_populates="acting_appointments", foreign_keys=[staff_id],
    )
