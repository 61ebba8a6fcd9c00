"""Auth Pydantic v2 schemas."""

from __future__ import annotations

import uuid

from pydantic import BaseModel, ConfigDict

from leave_portal.common.constants import HR_ROLES, OrgRole


class Principal(BaseModel):
    """The authenticated caller: a staff member and the roles their token grants."""

    model_config = ConfigDict(frozen=True)

    staff_id: uuid.UUID
    full_name: str
    roles: frozenset[OrgRole] = frozenset({OrgRole.staff})

    def has_any(self, roles) -> bool:
        return bool(self.roles & frozenset(roles))

    @property
    def is_hr(self) -> bool:
        return self.has_any(HR_ROLES)
