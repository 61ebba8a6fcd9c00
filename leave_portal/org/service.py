"""Org service — resolves staff positions and approver entitlement.

Entitlement is always checked against the requester's directorate / unit /
supervisor linkage, never by role title alone: two people can both be
"Head of Department" in different directorates.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from leave_portal.common.audit import create_audit_entry
from leave_portal.common.constants import OrgRole
from leave_portal.common.exceptions import NotFoundException, ValidationException
from leave_portal.org.models import ActingAppointment, RoleAssignment, StaffMember
from leave_portal.org.schemas import (
    ActingAppointmentCreate,
    IndependentUnit,
    StaffPosition,
    StandardDirectorate,
)

logger = logging.getLogger(__name__)

# Roles whose scope is the whole organization unless narrowed to a directorate
_ORG_WIDE_ROLES = frozenset({
    OrgRole.hr_officer,
    OrgRole.hr_director,
    OrgRole.chief_director,
    OrgRole.system_admin,
})


class OrgService:
    """Read-only lookups over the org hierarchy."""

    @staticmethod
    async def get_staff(db: AsyncSession, staff_id: uuid.UUID) -> StaffMember:
        result = await db.execute(
            select(StaffMember)
            .where(StaffMember.id == staff_id, StaffMember.is_active.is_(True))
            .options(selectinload(StaffMember.role_assignments))
        )
        staff = result.scalars().first()
        if staff is None:
            raise NotFoundException("StaffMember", str(staff_id))
        return staff

    @staticmethod
    async def lock_staff(db: AsyncSession, staff_id: uuid.UUID) -> None:
        """Row-lock *staff_id* until the transaction ends, serializing their writes."""
        await db.execute(
            select(StaffMember.id).where(StaffMember.id == staff_id).with_for_update()
        )

    @staticmethod
    def _scope_matches(assignment, branch) -> bool:
        """*assignment* is a ``RoleAssignment`` or an ``ActingAppointment``."""
        if assignment.role == OrgRole.head_of_department:
            return (
                isinstance(branch, StandardDirectorate)
                and assignment.directorate == branch.directorate
            )
        if assignment.role == OrgRole.head_of_independent_unit:
            return isinstance(branch, IndependentUnit) and assignment.unit == branch.unit
        if assignment.role in _ORG_WIDE_ROLES:
            if assignment.directorate is None and assignment.unit is None:
                return True
            if isinstance(branch, StandardDirectorate):
                return assignment.directorate == branch.directorate
            return assignment.unit == branch.unit
        return False

    @staticmethod
    def position_of(
        staff: StaffMember,
        assignments: Optional[Iterable[RoleAssignment]] = None,
    ) -> StaffPosition:
        """Build the tagged position value for *staff*."""
        if staff.is_independent_unit:
            branch = IndependentUnit(unit=staff.unit)
        else:
            branch = StandardDirectorate(directorate=staff.directorate, unit=staff.unit)

        if assignments is None:
            assignments = staff.role_assignments
        authorities = frozenset(
            ra.role
            for ra in assignments
            if ra.is_active and OrgService._scope_matches(ra, branch)
        )
        return StaffPosition(
            staff_id=staff.id,
            branch=branch,
            supervisor_id=staff.supervisor_id,
            authorities=authorities,
        )

    @staticmethod
    async def get_position(db: AsyncSession, staff_id: uuid.UUID) -> StaffPosition:
        staff = await OrgService.get_staff(db, staff_id)
        return OrgService.position_of(staff)

    @staticmethod
    async def is_entitled(
        db: AsyncSession,
        actor_id: uuid.UUID,
        role: OrgRole,
        position: StaffPosition,
        *,
        as_of: Optional[date] = None,
    ) -> bool:
        """Whether *actor_id* may act as *role* on a request from *position*.

        Authority comes from the substantive supervisor link or role assignment,
        or from an acting appointment whose window covers *as_of* (default today).
        """

        # No one approves, validates or finalizes their own leave
        if actor_id == position.staff_id:
            return False

        actor_result = await db.execute(
            select(StaffMember.id).where(
                StaffMember.id == actor_id, StaffMember.is_active.is_(True),
            )
        )
        if actor_result.scalar() is None:
            return False

        if role == OrgRole.supervisor:
            if position.supervisor_id == actor_id:
                return True
        else:
            result = await db.execute(
                select(RoleAssignment).where(
                    RoleAssignment.staff_id == actor_id,
                    RoleAssignment.role == role,
                    RoleAssignment.is_active.is_(True),
                )
            )
            if any(
                OrgService._scope_matches(ra, position.branch)
                for ra in result.scalars().all()
            ):
                return True

        on = as_of or date.today()
        acting = await OrgService.acting_appointments(
            db, staff_id=actor_id, role=role, as_of=on,
        )
        for appointment in acting:
            if role == OrgRole.supervisor:
                if (
                    position.supervisor_id is not None
                    and appointment.on_behalf_of_id == position.supervisor_id
                ):
                    return True
            elif OrgService._scope_matches(appointment, position.branch):
                return True
        return False

    # ── acting appointments ─────────────────────────────────────────

    @staticmethod
    async def acting_appointments(
        db: AsyncSession,
        *,
        staff_id: Optional[uuid.UUID] = None,
        role: Optional[OrgRole] = None,
        as_of: Optional[date] = None,
    ) -> list[ActingAppointment]:
        """Active appointments, optionally narrowed to one actor, role or day."""
        query = select(ActingAppointment).where(ActingAppointment.is_active.is_(True))
        if staff_id is not None:
            query = query.where(ActingAppointment.staff_id == staff_id)
        if role is not None:
            query = query.where(ActingAppointment.role == role)
        if as_of is not None:
            query = query.where(
                ActingAppointment.starts_on <= as_of,
                ActingAppointment.ends_on >= as_of,
            )
        result = await db.execute(
            query.order_by(ActingAppointment.starts_on.desc())
        )
        return list(result.scalars().all())

    @staticmethod
    async def appoint_acting(
        db: AsyncSession,
        data: ActingAppointmentCreate,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> ActingAppointment:
        """Record an acting appointment for an active staff member."""
        await OrgService.get_staff(db, data.staff_id)
        if data.on_behalf_of_id is not None:
            if data.on_behalf_of_id == data.staff_id:
                raise ValidationException(
                    {"on_behalf_of_id": ["A staff member cannot act for themselves."]}
                )
            await OrgService.get_staff(db, data.on_behalf_of_id)

        appointment = ActingAppointment(
            staff_id=data.staff_id,
            role=data.role,
            directorate=data.directorate,
            unit=data.unit,
            on_behalf_of_id=data.on_behalf_of_id,
            starts_on=data.starts_on,
            ends_on=data.ends_on,
            is_active=True,
            appointed_by=actor_id,
        )
        db.add(appointment)
        await db.flush()
        await create_audit_entry(
            db,
            action="appoint_acting",
            entity_type="acting_appointment",
            entity_id=appointment.id,
            actor_id=actor_id,
            detail={
                "staff_id": str(data.staff_id),
                "role": data.role.value,
                "starts_on": data.starts_on.isoformat(),
                "ends_on": data.ends_on.isoformat(),
            },
        )
        await db.refresh(appointment)
        logger.info(
            "Staff %s appointed acting %s from %s to %s",
            data.staff_id, data.role.value, data.starts_on, data.ends_on,
        )
        return appointment

    @staticmethod
    async def revoke_acting(
        db: AsyncSession,
        appointment_id: uuid.UUID,
        *,
        actor_id: Optional[uuid.UUID] = None,
    ) -> ActingAppointment:
        appointment = await db.get(ActingAppointment, appointment_id)
        if appointment is None:
            raise NotFoundException("ActingAppointment", str(appointment_id))
        if appointment.is_active:
            appointment.is_active = False
            await db.flush()
            await create_audit_entry(
                db,
                action="revoke_acting",
                entity_type="acting_appointment",
                entity_id=appointment.id,
                actor_id=actor_id,
            )
            logger.info("Acting appointment %s revoked", appointment.id)
        return appointment
