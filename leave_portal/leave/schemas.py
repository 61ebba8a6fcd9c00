"""Leave Pydantic v2 schemas — request / response validation.

Naming conventions:
  - *Create / *Request  → request bodies (write)
  - *Out                → response bodies (read)
"""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from leave_portal.auth.roles import normalize_role
from leave_portal.common.constants import (
    LeaveStatus,
    LeaveType,
    OrgRole,
    RejectionReason,
    StepDecision,
    StepStatus,
)


# ═════════════════════════════════════════════════════════════════════
# Leave Request — Create
# ═════════════════════════════════════════════════════════════════════


class LeaveRequestCreate(BaseModel):
    """Payload for submitting a leave request."""

    leave_type: LeaveType
    start_date: date = Field(..., description="Leave start date (inclusive)")
    end_date: date = Field(..., description="Leave end date (inclusive)")
    reason: Optional[str] = Field(
        None, min_length=5, max_length=1000, description="Reason for leave"
    )
    declaration_accepted: bool = Field(
        False, description="Applicant confirms the leave declaration"
    )


# ═════════════════════════════════════════════════════════════════════
# Leave Request — Response
# ═════════════════════════════════════════════════════════════════════


class ApprovalStepOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    level: int
    approver_role: OrgRole
    status: StepStatus
    decided_by: Optional[uuid.UUID] = None
    decided_at: Optional[datetime] = None
    comment: Optional[str] = None


class LeaveRequestOut(BaseModel):
    """Full leave request response, steps ordered by level."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    staff_id: uuid.UUID
    leave_type: LeaveType
    start_date: date
    end_date: date
    day_count: Decimal
    reason: Optional[str] = None
    declaration_accepted: bool
    hr_validated: bool
    status: LeaveStatus
    rejection_reason: Optional[RejectionReason] = None
    cancelled_by: Optional[uuid.UUID] = None
    finalized_at: Optional[datetime] = None
    version: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    steps: list[ApprovalStepOut] = Field(default_factory=list)


# ═════════════════════════════════════════════════════════════════════
# Approve / Reject / Cancel
# ═════════════════════════════════════════════════════════════════════


class ApprovalActionRequest(BaseModel):
    """Payload for deciding the current approval step.

    ``acting_role`` accepts the canonical role names as well as the
    legacy aliases understood by the auth layer.
    """

    acting_role: OrgRole
    decision: StepDecision
    comment: Optional[str] = Field(None, max_length=500)

    @field_validator("acting_role", mode="before")
    @classmethod
    def _normalize_role(cls, value):
        return normalize_role(value)


class LeaveCancelRequest(BaseModel):
    """Payload for cancelling a leave request."""

    reason: Optional[str] = Field(None, min_length=5, max_length=500)
