"""Leave request state transitions shared by submit/cancel and the approval workflow.

A transition first claims the request with a version-guarded UPDATE that only
matches while the request is still pending; losing the claim means somebody
else moved the request first.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from leave_portal.common.constants import (
    TERMINAL_STATUSES,
    LeaveStatus,
    RejectionReason,
)
from leave_portal.common.exceptions import (
    ConcurrentModification,
    NotFoundException,
    RequestAlreadyFinalized,
)
from leave_portal.leave.models import LeaveRequest


async def load_request(db: AsyncSession, request_id: uuid.UUID) -> LeaveRequest:
    result = await db.execute(
        select(LeaveRequest)
        .where(LeaveRequest.id == request_id)
        .execution_options(populate_existing=True)
    )
    request = result.scalars().first()
    if request is None:
        raise NotFoundException("LeaveRequest", str(request_id))
    return request


def ensure_pending(request: LeaveRequest) -> None:
    if request.status in TERMINAL_STATUSES:
        raise RequestAlreadyFinalized(request.id, request.status)


async def claim_pending(db: AsyncSession, request: LeaveRequest) -> None:
    """Bump ``version`` if the request is still pending at the version we read.

    Raises:
        RequestAlreadyFinalized: a concurrent transition finished the request.
        ConcurrentModification: a concurrent transition moved it but it is still pending.
    """
    result = await db.execute(
        update(LeaveRequest)
        .where(
            LeaveRequest.id == request.id,
            LeaveRequest.version == request.version,
            LeaveRequest.status == LeaveStatus.pending,
        )
        .values(
            version=LeaveRequest.version + 1,
            updated_at=datetime.now(timezone.utc),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 1:
        await db.refresh(request, attribute_names=["version", "updated_at"])
        return

    current = await db.execute(
        select(LeaveRequest.status).where(LeaveRequest.id == request.id)
    )
    status = current.scalar()
    if status in TERMINAL_STATUSES:
        raise RequestAlreadyFinalized(request.id, status)
    raise ConcurrentModification("LeaveRequest", request.id)


def finalize(
    request: LeaveRequest,
    status: LeaveStatus,
    *,
    reason: Optional[RejectionReason] = None,
    cancelled_by: Optional[uuid.UUID] = None,
) -> None:
    """Move a claimed request into a terminal status."""
    now = datetime.now(timezone.utc)
    request.status = status
    request.rejection_reason = reason
    request.cancelled_by = cancelled_by
    request.finalized_at = now
    request.updated_at = now
