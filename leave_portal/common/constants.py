"""Enums, leave policies and constants — matching PostgreSQL ENUM types."""

from __future__ import annotations

import enum
from dataclasses import dataclass
from decimal import Decimal


# ── Organization / Roles ────────────────────────────────────────────

class OrgRole(str, enum.Enum):
    """The one canonical role type; raw role strings never reach the core."""

    staff = "staff"
    supervisor = "supervisor"
    head_of_department = "head_of_department"
    head_of_independent_unit = "head_of_independent_unit"
    hr_officer = "hr_officer"
    hr_director = "hr_director"
    chief_director = "chief_director"
    system_admin = "system_admin"


HR_ROLES: frozenset[OrgRole] = frozenset({OrgRole.hr_officer, OrgRole.hr_director})

# Roles that may trigger batch ledger operations (rollover, period opening, credits)
LEDGER_ADMIN_ROLES: frozenset[OrgRole] = frozenset(
    {OrgRole.hr_officer, OrgRole.hr_director, OrgRole.system_admin}
)


# ── Leave ───────────────────────────────────────────────────────────

class LeaveType(str, enum.Enum):
    annual = "annual"
    sick = "sick"
    unpaid = "unpaid"
    special_service = "special_service"
    training = "training"
    study = "study"
    maternity = "maternity"
    paternity = "paternity"
    compassionate = "compassionate"


class LeaveStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    cancelled = "cancelled"


TERMINAL_STATUSES: frozenset[LeaveStatus] = frozenset(
    {LeaveStatus.approved, LeaveStatus.rejected, LeaveStatus.cancelled}
)


class RejectionReason(str, enum.Enum):
    declined = "declined"
    balance_exhausted = "balance_exhausted"


class StepStatus(str, enum.Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"
    skipped = "skipped"


class StepDecision(str, enum.Enum):
    approved = "approved"
    rejected = "rejected"


# ── Leave policies ──────────────────────────────────────────────────

@dataclass(frozen=True)
class LeavePolicy:
    accrues: bool
    carries_forward: bool
    expires: bool
    requires_hr_validation: bool
    base_entitlement: Decimal = Decimal("0")
    carry_forward_cap: Decimal = Decimal("0")
    # Completed months of service required on the first day of leave
    min_service_months: int = 0


LEAVE_POLICIES: dict[LeaveType, LeavePolicy] = {
    LeaveType.annual: LeavePolicy(
        accrues=True, carries_forward=True, expires=True, requires_hr_validation=True,
        base_entitlement=Decimal("30"), carry_forward_cap=Decimal("10"),
    ),
    LeaveType.sick: LeavePolicy(
        accrues=True, carries_forward=True, expires=True, requires_hr_validation=False,
        base_entitlement=Decimal("15"), carry_forward_cap=Decimal("5"),
    ),
    LeaveType.unpaid: LeavePolicy(
        accrues=False, carries_forward=False, expires=False, requires_hr_validation=True,
    ),
    LeaveType.special_service: LeavePolicy(
        accrues=True, carries_forward=False, expires=False, requires_hr_validation=True,
        base_entitlement=Decimal("10"),
    ),
    LeaveType.training: LeavePolicy(
        accrues=True, carries_forward=False, expires=False, requires_hr_validation=False,
        base_entitlement=Decimal("5"),
    ),
    LeaveType.study: LeavePolicy(
        accrues=True, carries_forward=False, expires=False, requires_hr_validation=True,
        base_entitlement=Decimal("10"), min_service_months=12,
    ),
    LeaveType.maternity: LeavePolicy(
        accrues=True, carries_forward=False, expires=False, requires_hr_validation=True,
        base_entitlement=Decimal("90"),
    ),
    LeaveType.paternity: LeavePolicy(
        accrues=True, carries_forward=False, expires=False, requires_hr_validation=False,
        base_entitlement=Decimal("7"),
    ),
    LeaveType.compassionate: LeavePolicy(
        accrues=True, carries_forward=False, expires=False, requires_hr_validation=False,
        base_entitlement=Decimal("5"),
    ),
}


def policy_for(leave_type: LeaveType) -> LeavePolicy:
    return LEAVE_POLICIES[leave_type]


# ── Misc constants ──────────────────────────────────────────────────

MAX_PAGE_SIZE = 100
DEFAULT_PAGE_SIZE = 50
WEEKEND_DAYS: frozenset[int] = frozenset({5, 6})  # Saturday, Sunday
