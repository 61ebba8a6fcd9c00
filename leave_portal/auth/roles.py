"""Role-name normalization — the only place raw role strings are interpreted."""

from __future__ import annotations

from typing import Iterable, Union

from leave_portal.common.constants import OrgRole

# Legacy / display names still issued by older identity providers
_ROLE_ALIASES: dict[str, OrgRole] = {
    "employee": OrgRole.staff,
    "manager": OrgRole.supervisor,
    "hod": OrgRole.head_of_department,
    "director": OrgRole.head_of_department,
    "directorate_head": OrgRole.head_of_department,
    "deputy_director": OrgRole.head_of_department,
    "hoiu": OrgRole.head_of_independent_unit,
    "hr": OrgRole.hr_officer,
    "hr_assistant": OrgRole.hr_officer,
    "admin": OrgRole.system_admin,
    "sys_admin": OrgRole.system_admin,
}


class UnknownRole(ValueError):
    """Raised for a role string that maps to no ``OrgRole``."""


def normalize_role(raw: Union[str, OrgRole]) -> OrgRole:
    """Map *raw* (any case, ``-`` or ``_`` separated, or an alias) onto ``OrgRole``."""
    if isinstance(raw, OrgRole):
        return raw
    if not isinstance(raw, str):
        raise UnknownRole(f"Unknown role: {raw!r}")
    key = raw.strip().lower().replace("-", "_").replace(" ", "_")
    if key in _ROLE_ALIASES:
        return _ROLE_ALIASES[key]
    try:
        return OrgRole(key)
    except ValueError:
        raise UnknownRole(f"Unknown role: {raw!r}") from None


def normalize_roles(raw_roles: Iterable[Union[str, OrgRole]]) -> frozenset[OrgRole]:
    """Normalize a claim list, dropping names that map to no role."""
    roles = set()
    for raw in raw_roles:
        try:
            roles.add(normalize_role(raw))
        except UnknownRole:
            continue
    return frozenset(roles)
