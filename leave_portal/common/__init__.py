"""Common module — shared utilities for the leave portal."""

from leave_portal.common.audit import AuditTrail, AuditTrailImmutable, create_audit_entry
from leave_portal.common.constants import (
    DEFAULT_PAGE_SIZE,
    HR_ROLES,
    LEAVE_POLICIES,
    LEDGER_ADMIN_ROLES,
    MAX_PAGE_SIZE,
    TERMINAL_STATUSES,
    LeavePolicy,
    LeaveStatus,
    LeaveType,
    OrgRole,
    RejectionReason,
    StepDecision,
    StepStatus,
    policy_for,
)
from leave_portal.common.exceptions import (
    AlreadyProcessed,
    AppException,
    ConcurrentModification,
    CorruptBalance,
    ForbiddenException,
    InsufficientBalance,
    InvalidRange,
    NotAuthorized,
    NotFoundException,
    OutOfOrder,
    OverlappingRequest,
    RequestAlreadyFinalized,
    ValidationException,
    register_exception_handlers,
)
from leave_portal.common.pagination import (
    PaginatedResponse,
    PaginationMeta,
    PaginationParams,
    paginate,
)

__all__ = [
    # Audit
    "AuditTrail",
    "AuditTrailImmutable",
    "create_audit_entry",
    # Constants
    "DEFAULT_PAGE_SIZE",
    "HR_ROLES",
    "LEAVE_POLICIES",
    "LEDGER_ADMIN_ROLES",
    "MAX_PAGE_SIZE",
    "TERMINAL_STATUSES",
    "LeavePolicy",
    "LeaveStatus",
    "LeaveType",
    "OrgRole",
    "RejectionReason",
    "StepDecision",
    "StepStatus",
    "policy_for",
    # Exceptions
    "AlreadyProcessed",
    "AppException",
    "ConcurrentModification",
    "CorruptBalance",
    "ForbiddenException",
    "InsufficientBalance",
    "InvalidRange",
    "NotAuthorized",
    "NotFoundException",
    "OutOfOrder",
    "OverlappingRequest",
    "RequestAlreadyFinalized",
    "ValidationException",
    "register_exception_handlers",
    # Pagination
    "PaginatedResponse",
    "PaginationMeta",
    "PaginationParams",
    "paginate",
]
