"""Approval ladder value types."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

from leave_portal.common.constants import OrgRole, StepStatus


class PlannedStep(BaseModel):
    model_config = ConfigDict(frozen=True)

    level: int
    approver_role: OrgRole
    status: StepStatus = StepStatus.pending

    @property
    def is_actionable(self) -> bool:
        return self.status == StepStatus.pending
