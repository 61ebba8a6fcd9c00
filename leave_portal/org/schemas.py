"""Organization value types — the staff position as a tagged branch variant."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from leave_portal.common.constants import OrgRole


class StandardDirectorate(BaseModel):
    """Staff member inside a directorate (optionally within one of its units)."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["directorate"] = "directorate"
    directorate: str
    unit: Optional[str] = None

    @property
    def head_role(self) -> OrgRole:
        return OrgRole.head_of_department


class IndependentUnit(BaseModel):
    """Staff member inside a unit that reports straight to the chief director."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["independent_unit"] = "independent_unit"
    unit: str

    @property
    def head_role(self) -> OrgRole:
        return OrgRole.head_of_independent_unit


Branch = Annotated[
    Union[StandardDirectorate, IndependentUnit],
    Field(discriminator="kind"),
]


class StaffPosition(BaseModel):
    """Where a staff member sits, and which authorities they hold over their own branch."""

    model_config = ConfigDict(frozen=True)

    staff_id: uuid.UUID
    branch: Branch
    supervisor_id: Optional[uuid.UUID] = None
    authorities: frozenset[OrgRole] = frozenset()

    @property
    def heads_own_branch(self) -> bool:
        return self.branch.head_role in self.authorities

    @property
    def is_chief_director(self) -> bool:
        return OrgRole.chief_director in self.authorities


# ═════════════════════════════════════════════════════════════════════
# Acting appointments
# ═════════════════════════════════════════════════════════════════════


class ActingAppointmentCreate(BaseModel):
    staff_id: uuid.UUID = Field(..., description="Staff member who will act")
    role: OrgRole
    directorate: Optional[str] = Field(None, max_length=150)
    unit: Optional[str] = Field(None, max_length=150)
    on_behalf_of_id: Optional[uuid.UUID] = Field(
        None, description="Holder being covered; required for an acting supervisor",
    )
    starts_on: date
    ends_on: date

    @model_validator(mode="after")
    def _check_window(self) -> "ActingAppointmentCreate":
        if self.starts_on > self.ends_on:
            raise ValueError("starts_on must be on or before ends_on")
        if self.role == OrgRole.supervisor and self.on_behalf_of_id is None:
            raise ValueError("An acting supervisor must name the supervisor being covered")
        if self.role == OrgRole.staff:
            raise ValueError("staff is not an approver role")
        return self


class ActingAppointmentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    staff_id: uuid.UUID
    role: OrgRole
    directorate: Optional[str] = None
    unit: Optional[str] = None
    on_behalf_of_id: Optional[uuid.UUID] = None
    starts_on: date
    ends_on: date
    is_active: bool
    appointed_by: Optional[uuid.UUID] = None
    created_at: Optional[datetime] = None
