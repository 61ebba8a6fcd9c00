"""Year-end rollover — closes one period and opens the next, per staff member.

Each staff member is processed in its own session and transaction, so a
failure for one never blocks or rolls back another. A ``PeriodClosure``
row makes the job idempotent.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from leave_portal.common.audit import create_audit_entry
from leave_portal.common.constants import LEAVE_POLICIES
from leave_portal.common.exceptions import (
    AlreadyProcessed,
    AppException,
    ConcurrentModification,
    CorruptBalance,
)
from leave_portal.config import settings
from leave_portal.ledger.models import LeaveBalance, PeriodClosure
from leave_portal.ledger.schemas import (
    RolloverFailure,
    RolloverReport,
    RolloverStaffResult,
    RolloverTypeResult,
)
from leave_portal.ledger.service import BalanceLedger
from leave_portal.org.models import StaffMember

logger = logging.getLogger(__name__)

_ZERO = Decimal("0")


async def _is_closed(db: AsyncSession, staff_id: uuid.UUID, period: int) -> bool:
    result = await db.execute(
        select(PeriodClosure.id).where(
            PeriodClosure.staff_id == staff_id,
            PeriodClosure.period == period,
        )
    )
    return result.scalar() is not None


async def rollover_staff(
    db: AsyncSession,
    staff_id: uuid.UUID,
    period: int,
    *,
    as_of: Optional[date] = None,
    actor_id: Optional[uuid.UUID] = None,
) -> RolloverStaffResult:
    """Close *period* for one staff member inside the caller's transaction.

    Raises:
        AlreadyProcessed: a closure for (staff, period) already exists.
        CorruptBalance: a balance of the closing period is inconsistent.
    """
    if await _is_closed(db, staff_id, period):
        raise AlreadyProcessed(staff_id, period)

    next_period = period + 1
    # Carry-forward expiring on the last day of the period is gone once it closes
    as_of = as_of or date(next_period, 1, 1)
    now = datetime.now(timezone.utc)

    result = await db.execute(
        select(LeaveBalance).where(
            LeaveBalance.staff_id == staff_id,
            LeaveBalance.period.in_([period, next_period]),
        )
    )
    rows = {(b.leave_type, b.period): b for b in result.scalars().all()}

    staff_result = RolloverStaffResult(staff_id=staff_id, period=period)
    for leave_type, policy in LEAVE_POLICIES.items():
        if not policy.accrues:
            continue

        closing = rows.get((leave_type, period))
        available = expired = _ZERO
        if closing is not None:
            available = BalanceLedger.compute_available(closing, as_of)
            if BalanceLedger.carry_forward_expired(closing, as_of):
                expired = closing.carried_forward_in - closing.carry_forward_consumed
            if closing.closed_at is None:
                if not await BalanceLedger._swap(db, closing, closed_at=now):
                    raise ConcurrentModification("LeaveBalance", closing.id)

        carried = min(available, policy.carry_forward_cap) if policy.carries_forward else _ZERO
        expires_on = date(next_period, 12, 31) if policy.expires and carried > 0 else None

        opening = rows.get((leave_type, next_period))
        if opening is None:
            opening = LeaveBalance(
                staff_id=staff_id,
                leave_type=leave_type,
                period=next_period,
                entitlement=policy.base_entitlement,
                consumed=_ZERO,
                carried_forward_in=carried,
                carry_forward_consumed=_ZERO,
                carry_forward_cap=policy.carry_forward_cap,
                carry_forward_expires_on=expires_on,
                version=1,
            )
            db.add(opening)
        elif not await BalanceLedger._swap(
            db,
            opening,
            carried_forward_in=carried,
            carry_forward_cap=policy.carry_forward_cap,
            carry_forward_expires_on=expires_on,
        ):
            raise ConcurrentModification("LeaveBalance", opening.id)

        staff_result.types.append(RolloverTypeResult(
            leave_type=leave_type,
            available_at_close=available,
            carried_forward=carried,
            forfeited=available - carried,
            expired=expired,
            new_entitlement=opening.entitlement,
            carry_forward_expires_on=expires_on,
        ))

    summary = staff_result.model_dump(mode="json")
    db.add(PeriodClosure(
        staff_id=staff_id,
        period=period,
        processed_by=actor_id,
        summary=summary,
    ))
    await db.flush()
    await create_audit_entry(
        db,
        action="rollover",
        entity_type="staff_member",
        entity_id=staff_id,
        actor_id=actor_id,
        detail=summary,
    )
    return staff_result


async def _active_staff_ids(
    session_factory: async_sessionmaker,
    staff_ids: Optional[Iterable[uuid.UUID]],
) -> list[uuid.UUID]:
    async with session_factory() as db:
        query = select(StaffMember.id).where(StaffMember.is_active.is_(True))
        if staff_ids is not None:
            query = query.where(StaffMember.id.in_(list(staff_ids)))
        result = await db.execute(query.order_by(StaffMember.staff_code))
        return list(result.scalars().all())


async def run_year_end_rollover(
    period: int,
    *,
    session_factory: Optional[async_sessionmaker] = None,
    staff_ids: Optional[Iterable[uuid.UUID]] = None,
    actor_id: Optional[uuid.UUID] = None,
    as_of: Optional[date] = None,
    concurrency: Optional[int] = None,
) -> RolloverReport:
    """Roll *period* over into ``period + 1`` for every active staff member.

    Failures are collected in the report; the batch itself never raises
    for a single staff member's problem.
    """
    if session_factory is None:
        from leave_portal.database import async_session_factory

        session_factory = async_session_factory

    ids = await _active_staff_ids(session_factory, staff_ids)
    report = RolloverReport(period=period)
    semaphore = asyncio.Semaphore(concurrency or settings.ROLLOVER_CONCURRENCY)
    logger.info("Starting rollover of period %d for %d staff", period, len(ids))

    def _fail(staff_id: uuid.UUID, exc: Exception) -> None:
        report.failures.append(RolloverFailure(
            staff_id=staff_id,
            error_type=getattr(exc, "error_type", type(exc).__name__),
            detail=str(exc),
        ))

    async def _process(staff_id: uuid.UUID) -> None:
        async with semaphore:
            try:
                async with session_factory() as db:
                    async with db.begin():
                        outcome = await rollover_staff(
                            db, staff_id, period, as_of=as_of, actor_id=actor_id,
                        )
                report.processed.append(outcome)
            except AlreadyProcessed:
                logger.info("Period %d already closed for staff %s", period, staff_id)
                report.already_processed.append(staff_id)
            except IntegrityError as exc:
                # A concurrent run may have written the closure first
                async with session_factory() as db:
                    closed = await _is_closed(db, staff_id, period)
                if closed:
                    report.already_processed.append(staff_id)
                else:
                    logger.exception("Rollover integrity error for staff %s", staff_id)
                    _fail(staff_id, exc)
            except CorruptBalance as exc:
                logger.error("Corrupt balance during rollover for staff %s: %s", staff_id, exc)
                _fail(staff_id, exc)
            except (AppException, SQLAlchemyError) as exc:
                logger.exception("Rollover failed for staff %s", staff_id)
                _fail(staff_id, exc)
            except Exception as exc:
                logger.exception("Unexpected error rolling over staff %s", staff_id)
                _fail(staff_id, exc)

    await asyncio.gather(*(_process(staff_id) for staff_id in ids))

    report.processed.sort(key=lambda r: str(r.staff_id))
    report.already_processed.sort(key=str)
    report.failures.sort(key=lambda f: str(f.staff_id))
    logger.info(
        "Rollover of period %d done: %d processed, %d already closed, %d failed",
        period, len(report.processed), len(report.already_processed), len(report.failures),
    )
    return report
