"""Org module — staff positions, role assignments and acting appointments used for approval routing."""

from leave_portal.org.models import ActingAppointment, RoleAssignment, StaffMember

__all__ = ["StaffMember", "RoleAssignment", "ActingAppointment"]
