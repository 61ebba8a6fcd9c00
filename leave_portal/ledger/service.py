"""Balance ledger — availability, debit / credit and period opening.

Every write is a compare-and-swap on ``LeaveBalance.version``; a lost race
reloads the row and retries up to ``BALANCE_CAS_MAX_RETRIES`` times.
"""

from __future__ import annotations

import logging
import uuid
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from leave_portal.common.audit import create_audit_entry
from leave_portal.common.constants import LEAVE_POLICIES, LeaveType, policy_for
from leave_portal.common.exceptions import (
    ConcurrentModification,
    CorruptBalance,
    InsufficientBalance,
    NotFoundException,
    ValidationException,
)
from leave_portal.config import settings
from leave_portal.ledger.models import LeaveBalance
from leave_portal.ledger.schemas import AvailableBalanceOut, LeaveBalanceOut

logger = logging.getLogger(__name__)

# Availability reported for leave types that do not accrue (unpaid)
UNLIMITED = Decimal("Infinity")

_ZERO = Decimal("0")
_HALF_DAY = Decimal("0.5")


def _today() -> date:
    return datetime.now(timezone.utc).date()


def pro_rata_entitlement(base: Decimal, join_date: Optional[date], period: int) -> Decimal:
    """Entitlement for a staff member who joined during *period*.

    Whole months remaining (including the joining month) over twelve,
    rounded to the nearest half day.
    """
    if join_date is None or join_date.year < period:
        return base
    if join_date.year > period:
        return _ZERO
    months_remaining = 12 - join_date.month + 1
    raw = base * months_remaining / 12
    return (raw / _HALF_DAY).quantize(Decimal("1"), rounding=ROUND_HALF_UP) * _HALF_DAY


class BalanceLedger:
    """All reads and writes of ``leave_balances`` go through here."""

    # ── pure arithmetic ─────────────────────────────────────────────

    @staticmethod
    def carry_forward_expired(balance: LeaveBalance, as_of: date) -> bool:
        expires_on = balance.carry_forward_expires_on
        return expires_on is not None and as_of > expires_on

    @staticmethod
    def compute_available(balance: LeaveBalance, as_of: date) -> Decimal:
        """Days still spendable on *balance* as of *as_of*.

        Carried-forward days count only up to their expiry date. Days already
        drawn from the carry-forward are never charged against the entitlement.

        Raises:
            CorruptBalance: any component of the balance is negative.
        """
        consumed_from_entitlement = balance.consumed - balance.carry_forward_consumed
        entitlement_left = balance.entitlement - consumed_from_entitlement
        carry_forward_left = balance.carried_forward_in - balance.carry_forward_consumed

        if balance.carry_forward_consumed < 0 or consumed_from_entitlement < 0:
            raise CorruptBalance(balance.id, "negative consumption recorded")
        if entitlement_left < 0:
            raise CorruptBalance(balance.id, "consumed exceeds entitlement")
        if carry_forward_left < 0:
            raise CorruptBalance(balance.id, "carry-forward overdrawn")

        if BalanceLedger.carry_forward_expired(balance, as_of):
            carry_forward_left = _ZERO
        return entitlement_left + carry_forward_left

    @staticmethod
    def _spendable_carry_forward(balance: LeaveBalance, as_of: date) -> Decimal:
        if BalanceLedger.carry_forward_expired(balance, as_of):
            return _ZERO
        return balance.carried_forward_in - balance.carry_forward_consumed

    # ── loading ─────────────────────────────────────────────────────

    @staticmethod
    async def _open_balance(
        db: AsyncSession,
        staff_id: uuid.UUID,
        leave_type: LeaveType,
        on: date,
        *,
        fresh: bool = False,
    ) -> LeaveBalance:
        """Open (not yet rolled over) balance row that leave taken *on* is charged to.

        That is the open period covering ``on.year``, else the latest open
        period before it. A period opened ahead of time is only used once its
        year has started, unless no earlier period is still open.
        """
        query = (
            select(LeaveBalance)
            .where(
                LeaveBalance.staff_id == staff_id,
                LeaveBalance.leave_type == leave_type,
                LeaveBalance.closed_at.is_(None),
            )
            .order_by(LeaveBalance.period)
        )
        if fresh:
            query = query.execution_options(populate_existing=True)
        result = await db.execute(query)
        open_rows = result.scalars().all()
        if not open_rows:
            raise NotFoundException("LeaveBalance", f"{staff_id}/{leave_type.value}")

        current = [b for b in open_rows if b.period <= on.year]
        return current[-1] if current else open_rows[0]

    @staticmethod
    async def _swap(db: AsyncSession, balance: LeaveBalance, **values) -> bool:
        """Write *values* only if nobody bumped ``version`` since *balance* was read."""
        result = await db.execute(
            update(LeaveBalance)
            .where(
                LeaveBalance.id == balance.id,
                LeaveBalance.version == balance.version,
            )
            .values(
                **values,
                version=LeaveBalance.version + 1,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False
        await db.refresh(balance)
        return True

    # ── reads ───────────────────────────────────────────────────────

    @staticmethod
    async def available_balance(
        db: AsyncSession,
        staff_id: uuid.UUID,
        leave_type: LeaveType,
        *,
        as_of: Optional[date] = None,
        leave_date: Optional[date] = None,
    ) -> Decimal:
        if not policy_for(leave_type).accrues:
            return UNLIMITED
        as_of = as_of or _today()
        balance = await BalanceLedger._open_balance(
            db, staff_id, leave_type, leave_date or as_of,
        )
        return BalanceLedger.compute_available(balance, as_of)

    @staticmethod
    async def reserve_check(
        db: AsyncSession,
        staff_id: uuid.UUID,
        leave_type: LeaveType,
        amount: Decimal,
        *,
        as_of: Optional[date] = None,
        leave_date: Optional[date] = None,
    ) -> Decimal:
        """Raise ``InsufficientBalance`` unless *amount* fits; nothing is written."""
        available = await BalanceLedger.available_balance(
            db, staff_id, leave_type, as_of=as_of, leave_date=leave_date,
        )
        if amount > available:
            raise InsufficientBalance(leave_type, available, amount)
        return available

    @staticmethod
    async def get_balances(
        db: AsyncSession,
        staff_id: uuid.UUID,
        *,
        period: Optional[int] = None,
        as_of: Optional[date] = None,
    ) -> list[LeaveBalanceOut]:
        """Open balances (or those of *period*) plus an unlimited row per non-accruing type."""
        as_of = as_of or _today()
        query = select(LeaveBalance).where(LeaveBalance.staff_id == staff_id)
        if period is not None:
            query = query.where(LeaveBalance.period == period)
        else:
            query = query.where(LeaveBalance.closed_at.is_(None))
        query = query.order_by(LeaveBalance.leave_type, LeaveBalance.period)
        result = await db.execute(query)

        out: list[LeaveBalanceOut] = []
        for balance in result.scalars().all():
            item = LeaveBalanceOut.model_validate(balance)
            item.available = BalanceLedger.compute_available(balance, as_of)
            item.carry_forward_expired = BalanceLedger.carry_forward_expired(balance, as_of)
            out.append(item)

        for leave_type, policy in LEAVE_POLICIES.items():
            if not policy.accrues:
                out.append(LeaveBalanceOut(
                    staff_id=staff_id, leave_type=leave_type, unlimited=True,
                ))
        return out

    @staticmethod
    async def describe_available(
        db: AsyncSession,
        staff_id: uuid.UUID,
        leave_type: LeaveType,
        *,
        as_of: Optional[date] = None,
    ) -> AvailableBalanceOut:
        as_of = as_of or _today()
        available = await BalanceLedger.available_balance(
            db, staff_id, leave_type, as_of=as_of,
        )
        if available == UNLIMITED:
            return AvailableBalanceOut(
                staff_id=staff_id, leave_type=leave_type, as_of=as_of, unlimited=True,
            )
        return AvailableBalanceOut(
            staff_id=staff_id, leave_type=leave_type, as_of=as_of, available=available,
        )

    # ── writes ──────────────────────────────────────────────────────

    @staticmethod
    async def debit(
        db: AsyncSession,
        staff_id: uuid.UUID,
        leave_type: LeaveType,
        amount: Decimal,
        *,
        actor_id: Optional[uuid.UUID] = None,
        reference_id: Optional[uuid.UUID] = None,
        as_of: Optional[date] = None,
        leave_date: Optional[date] = None,
    ) -> Optional[LeaveBalance]:
        """Consume *amount* days, drawing unexpired carry-forward first.

        Returns ``None`` for non-accruing leave types, which keep no balance.

        Raises:
            InsufficientBalance: *amount* exceeds what is available.
            ConcurrentModification: every retry lost the version race.
        """
        if amount <= 0:
            raise ValidationException({"amount": ["Debit amount must be positive."]})
        if not policy_for(leave_type).accrues:
            return None

        as_of = as_of or _today()
        balance: Optional[LeaveBalance] = None
        for attempt in range(settings.BALANCE_CAS_MAX_RETRIES + 1):
            balance = await BalanceLedger._open_balance(
                db, staff_id, leave_type, leave_date or as_of, fresh=True,
            )
            available = BalanceLedger.compute_available(balance, as_of)
            if amount > available:
                raise InsufficientBalance(leave_type, available, amount)

            from_carry_forward = min(
                amount, BalanceLedger._spendable_carry_forward(balance, as_of),
            )
            before = str(available)
            swapped = await BalanceLedger._swap(
                db,
                balance,
                consumed=balance.consumed + amount,
                carry_forward_consumed=balance.carry_forward_consumed + from_carry_forward,
            )
            if swapped:
                await create_audit_entry(
                    db,
                    action="debit",
                    entity_type="leave_balance",
                    entity_id=balance.id,
                    actor_id=actor_id,
                    detail={
                        "leave_type": leave_type.value,
                        "amount": str(amount),
                        "from_carry_forward": str(from_carry_forward),
                        "available_before": before,
                        "reference_id": str(reference_id) if reference_id else None,
                    },
                )
                logger.info(
                    "Debited %s %s day(s) from balance %s", amount, leave_type.value, balance.id,
                )
                return balance
            logger.warning(
                "Version conflict debiting balance %s (attempt %d)", balance.id, attempt + 1,
            )

        raise ConcurrentModification("LeaveBalance", balance.id if balance else staff_id)

    @staticmethod
    async def credit(
        db: AsyncSession,
        staff_id: uuid.UUID,
        leave_type: LeaveType,
        amount: Decimal,
        *,
        actor_id: Optional[uuid.UUID] = None,
        reason: Optional[str] = None,
        as_of: Optional[date] = None,
        leave_date: Optional[date] = None,
    ) -> Optional[LeaveBalance]:
        """Restore *amount* previously debited days, entitlement portion first.

        Raises:
            CorruptBalance: the credit would take ``consumed`` below zero.
            ConcurrentModification: every retry lost the version race.
        """
        if amount <= 0:
            raise ValidationException({"amount": ["Credit amount must be positive."]})
        if not policy_for(leave_type).accrues:
            return None

        as_of = as_of or _today()
        balance: Optional[LeaveBalance] = None
        for attempt in range(settings.BALANCE_CAS_MAX_RETRIES + 1):
            balance = await BalanceLedger._open_balance(
                db, staff_id, leave_type, leave_date or as_of, fresh=True,
            )
            if amount > balance.consumed:
                raise CorruptBalance(
                    balance.id,
                    f"credit of {amount} exceeds consumed {balance.consumed}",
                )
            from_entitlement = min(
                amount, balance.consumed - balance.carry_forward_consumed,
            )
            to_carry_forward = amount - from_entitlement
            swapped = await BalanceLedger._swap(
                db,
                balance,
                consumed=balance.consumed - amount,
                carry_forward_consumed=balance.carry_forward_consumed - to_carry_forward,
            )
            if swapped:
                await create_audit_entry(
                    db,
                    action="credit",
                    entity_type="leave_balance",
                    entity_id=balance.id,
                    actor_id=actor_id,
                    detail={
                        "leave_type": leave_type.value,
                        "amount": str(amount),
                        "to_carry_forward": str(to_carry_forward),
                        "reason": reason,
                    },
                )
                logger.info(
                    "Credited %s %s day(s) to balance %s", amount, leave_type.value, balance.id,
                )
                return balance
            logger.warning(
                "Version conflict crediting balance %s (attempt %d)", balance.id, attempt + 1,
            )

        raise ConcurrentModification("LeaveBalance", balance.id if balance else staff_id)

    @staticmethod
    async def open_period(
        db: AsyncSession,
        staff_id: uuid.UUID,
        period: int,
        *,
        join_date: Optional[date] = None,
        actor_id: Optional[uuid.UUID] = None,
    ) -> list[LeaveBalance]:
        """Create the *period* balance row for every accruing leave type.

        Rows that already exist are left untouched, so the call is safe to repeat.
        """
        result = await db.execute(
            select(LeaveBalance).where(
                LeaveBalance.staff_id == staff_id,
                LeaveBalance.period == period,
            )
        )
        existing = {b.leave_type: b for b in result.scalars().all()}

        balances: list[LeaveBalance] = []
        created: list[str] = []
        for leave_type, policy in LEAVE_POLICIES.items():
            if not policy.accrues:
                continue
            if leave_type in existing:
                balances.append(existing[leave_type])
                continue
            balance = LeaveBalance(
                staff_id=staff_id,
                leave_type=leave_type,
                period=period,
                entitlement=pro_rata_entitlement(policy.base_entitlement, join_date, period),
                consumed=_ZERO,
                carried_forward_in=_ZERO,
                carry_forward_consumed=_ZERO,
                carry_forward_cap=policy.carry_forward_cap,
                version=1,
            )
            db.add(balance)
            balances.append(balance)
            created.append(leave_type.value)

        if created:
            await db.flush()
            await create_audit_entry(
                db,
                action="open_period",
                entity_type="staff_member",
                entity_id=staff_id,
                actor_id=actor_id,
                detail={"period": period, "leave_types": created},
            )
            logger.info("Opened period %d for staff %s (%d types)", period, staff_id, len(created))
        return balances
