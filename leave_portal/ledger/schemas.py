"""Ledger Pydantic v2 schemas — balances, ledger adjustments, rollover reports."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from leave_portal.common.constants import LeaveType


# ═════════════════════════════════════════════════════════════════════
# Balance
# ═════════════════════════════════════════════════════════════════════


class LeaveBalanceOut(BaseModel):
    """Balance for a single leave type with the computed availability."""

    model_config = ConfigDict(from_attributes=True)

    id: Optional[uuid.UUID] = None
    staff_id: uuid.UUID
    leave_type: LeaveType
    period: Optional[int] = None
    entitlement: Decimal = Decimal("0")
    consumed: Decimal = Decimal("0")
    carried_forward_in: Decimal = Decimal("0")
    carry_forward_consumed: Decimal = Decimal("0")
    carry_forward_cap: Decimal = Decimal("0")
    carry_forward_expires_on: Optional[date] = None
    closed_at: Optional[datetime] = None

    # Computed fields, filled by the ledger service rather than the ORM
    unlimited: bool = False
    carry_forward_expired: bool = False
    available: Optional[Decimal] = None


class AvailableBalanceOut(BaseModel):
    staff_id: uuid.UUID
    leave_type: LeaveType
    as_of: date
    unlimited: bool = False
    available: Optional[Decimal] = None


class BalanceCreditRequest(BaseModel):
    """HR restoration of a previously debited amount."""

    leave_type: LeaveType
    amount: Decimal = Field(..., gt=0, description="Days to restore")
    reason: str = Field(..., min_length=5, max_length=500)


class OpenPeriodRequest(BaseModel):
    period: int = Field(..., ge=2000, le=2100)


# ═════════════════════════════════════════════════════════════════════
# Year-end rollover
# ═════════════════════════════════════════════════════════════════════


class RolloverTypeResult(BaseModel):
    leave_type: LeaveType
    available_at_close: Decimal
    carried_forward: Decimal
    forfeited: Decimal
    expired: Decimal
    new_entitlement: Decimal
    carry_forward_expires_on: Optional[date] = None


class RolloverStaffResult(BaseModel):
    staff_id: uuid.UUID
    period: int
    types: list[RolloverTypeResult] = Field(default_factory=list)


class RolloverFailure(BaseModel):
    staff_id: uuid.UUID
    error_type: str
    detail: str


class RolloverReport(BaseModel):
    """Outcome of one batch; failures are reported, never raised."""

    period: int
    processed: list[RolloverStaffResult] = Field(default_factory=list)
    already_processed: list[uuid.UUID] = Field(default_factory=list)
    failures: list[RolloverFailure] = Field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return not self.failures


class RolloverRequest(BaseModel):
    """Optional narrowing of a rollover run; an empty body rolls over everyone."""

    staff_ids: Optional[list[uuid.UUID]] = None
    as_of: Optional[date] = None
