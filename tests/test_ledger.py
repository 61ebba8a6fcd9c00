"""Balance ledger tests — availability, debit/credit CAS, period opening."""

from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from leave_portal.common.audit import AuditTrail
from leave_portal.common.constants import LeaveType
from leave_portal.common.exceptions import (
    ConcurrentModification,
    CorruptBalance,
    InsufficientBalance,
    NotFoundException,
    ValidationException,
)
from leave_portal.config import settings
from leave_portal.ledger.models import LeaveBalance
from leave_portal.ledger.service import UNLIMITED, BalanceLedger, pro_rata_entitlement
from tests.conftest import _seed_balance, _seed_staff


def _balance(**kwargs) -> LeaveBalance:
    values = dict(
        id=uuid.uuid4(),
        staff_id=uuid.uuid4(),
        leave_type=LeaveType.annual,
        period=2025,
        entitlement=Decimal("30"),
        consumed=Decimal("0"),
        carried_forward_in=Decimal("0"),
        carry_forward_consumed=Decimal("0"),
        carry_forward_cap=Decimal("10"),
        carry_forward_expires_on=None,
        version=1,
    )
    values.update(kwargs)
    return LeaveBalance(**values)


# ═════════════════════════════════════════════════════════════════════
# 1. compute_available — pure
# ═════════════════════════════════════════════════════════════════════


class TestComputeAvailable:

    def test_entitlement_plus_unexpired_carry_forward(self):
        bal = _balance(
            consumed=Decimal("5"),
            carried_forward_in=Decimal("4"),
            carry_forward_consumed=Decimal("2"),
            carry_forward_expires_on=date(2025, 12, 31),
        )
        assert BalanceLedger.compute_available(bal, date(2025, 6, 1)) == Decimal("29")

    def test_expired_carry_forward_excluded(self):
        bal = _balance(
            consumed=Decimal("5"),
            carried_forward_in=Decimal("4"),
            carry_forward_consumed=Decimal("2"),
            carry_forward_expires_on=date(2025, 12, 31),
        )
        # 30 - 3 drawn from entitlement; the 2 unspent carried days are gone
        assert BalanceLedger.compute_available(bal, date(2026, 1, 1)) == Decimal("27")

    def test_expiry_date_itself_still_counts(self):
        bal = _balance(
            carried_forward_in=Decimal("4"),
            carry_forward_expires_on=date(2025, 12, 31),
        )
        assert BalanceLedger.compute_available(bal, date(2025, 12, 31)) == Decimal("34")

    def test_carry_forward_without_expiry_never_lapses(self):
        bal = _balance(carried_forward_in=Decimal("3"))
        assert BalanceLedger.compute_available(bal, date(2030, 1, 1)) == Decimal("33")

    def test_overconsumed_balance_is_corrupt(self):
        bal = _balance(consumed=Decimal("31"))
        with pytest.raises(CorruptBalance):
            BalanceLedger.compute_available(bal, date(2025, 6, 1))

    def test_overdrawn_carry_forward_is_corrupt(self):
        bal = _balance(
            consumed=Decimal("6"),
            carried_forward_in=Decimal("2"),
            carry_forward_consumed=Decimal("3"),
        )
        with pytest.raises(CorruptBalance):
            BalanceLedger.compute_available(bal, date(2025, 6, 1))


class TestProRataEntitlement:

    def test_joined_before_period_gets_full_entitlement(self):
        assert pro_rata_entitlement(Decimal("30"), date(2019, 5, 2), 2025) == Decimal("30")

    def test_unknown_join_date_gets_full_entitlement(self):
        assert pro_rata_entitlement(Decimal("30"), None, 2025) == Decimal("30")

    def test_joined_mid_year(self):
        # July..December = 6 months
        assert pro_rata_entitlement(Decimal("30"), date(2025, 7, 15), 2025) == Decimal("15")

    def test_rounds_to_nearest_half_day(self):
        # 7 * 3 / 12 = 1.75 → 2.0
        assert pro_rata_entitlement(Decimal("7"), date(2025, 10, 1), 2025) == Decimal("2.0")
        # 15 * 2 / 12 = 2.5
        assert pro_rata_entitlement(Decimal("15"), date(2025, 11, 20), 2025) == Decimal("2.5")

    def test_joined_after_period_gets_nothing(self):
        assert pro_rata_entitlement(Decimal("30"), date(2026, 1, 5), 2025) == Decimal("0")


# ═════════════════════════════════════════════════════════════════════
# 2. Reads
# ═════════════════════════════════════════════════════════════════════


class TestAvailableBalance:

    async def test_non_accruing_type_is_unlimited(self, db: AsyncSession):
        staff = await _seed_staff(db)
        available = await BalanceLedger.available_balance(db, staff.id, LeaveType.unpaid)
        assert available == UNLIMITED

    async def test_missing_balance_row(self, db: AsyncSession):
        staff = await _seed_staff(db)
        with pytest.raises(NotFoundException):
            await BalanceLedger.available_balance(db, staff.id, LeaveType.annual)

    async def test_reads_latest_open_period(self, db: AsyncSession):
        staff = await _seed_staff(db)
        await _seed_balance(db, staff.id, period=2024, consumed=Decimal("30"))
        await _seed_balance(db, staff.id, period=2025, consumed=Decimal("4"))

        available = await BalanceLedger.available_balance(
            db, staff.id, LeaveType.annual, as_of=date(2025, 3, 1),
        )
        assert available == Decimal("26")

    async def test_period_opened_early_does_not_shadow_current_year(self, db: AsyncSession):
        staff = await _seed_staff(db)
        await _seed_balance(db, staff.id, period=2025, consumed=Decimal("28"))
        await BalanceLedger.open_period(db, staff.id, 2026)

        current = await BalanceLedger.available_balance(
            db, staff.id, LeaveType.annual, as_of=date(2025, 11, 3),
        )
        upcoming = await BalanceLedger.available_balance(
            db, staff.id, LeaveType.annual,
            as_of=date(2025, 11, 3), leave_date=date(2026, 1, 12),
        )
        assert current == Decimal("2")
        assert upcoming == Decimal("30")

    async def test_reserve_check_insufficient(self, db: AsyncSession):
        staff = await _seed_staff(db)
        bal = await _seed_balance(db, staff.id, LeaveType.sick, consumed=Decimal("13"))

        with pytest.raises(InsufficientBalance) as exc_info:
            await BalanceLedger.reserve_check(
                db, staff.id, LeaveType.sick, Decimal("3"), as_of=date(2025, 4, 1),
            )
        assert exc_info.value.available == Decimal("2")

        await db.refresh(bal)
        assert bal.consumed == Decimal("13")
        assert bal.version == 1

    async def test_get_balances_lists_unlimited_types(self, db: AsyncSession):
        staff = await _seed_staff(db)
        await _seed_balance(db, staff.id, LeaveType.annual, consumed=Decimal("2"))

        balances = await BalanceLedger.get_balances(db, staff.id, as_of=date(2025, 5, 1))

        by_type = {b.leave_type: b for b in balances}
        assert by_type[LeaveType.annual].available == Decimal("28")
        assert by_type[LeaveType.unpaid].unlimited is True
        assert by_type[LeaveType.unpaid].available is None


# ═════════════════════════════════════════════════════════════════════
# 3. Debit / credit
# ═════════════════════════════════════════════════════════════════════


class TestDebit:

    async def test_debit_draws_carry_forward_first(self, db: AsyncSession):
        staff = await _seed_staff(db)
        bal = await _seed_balance(
            db, staff.id,
            carried_forward_in=Decimal("5"),
            carry_forward_expires_on=date(2025, 12, 31),
        )

        result = await BalanceLedger.debit(
            db, staff.id, LeaveType.annual, Decimal("7"), as_of=date(2025, 3, 1),
        )

        assert result.id == bal.id
        assert result.consumed == Decimal("7")
        assert result.carry_forward_consumed == Decimal("5")
        assert result.version == 2

    async def test_debit_charges_period_of_leave_date(self, db: AsyncSession):
        staff = await _seed_staff(db)
        bal_2025 = await _seed_balance(db, staff.id, period=2025)
        opened = await BalanceLedger.open_period(db, staff.id, 2026)
        bal_2026 = next(b for b in opened if b.leave_type == LeaveType.annual)

        result = await BalanceLedger.debit(
            db, staff.id, LeaveType.annual, Decimal("3"), as_of=date(2025, 6, 2),
        )

        assert result.id == bal_2025.id
        assert result.consumed == Decimal("3")
        await db.refresh(bal_2026)
        assert bal_2026.consumed == Decimal("0")
        assert bal_2026.version == 1

        result = await BalanceLedger.debit(
            db, staff.id, LeaveType.annual, Decimal("2"),
            as_of=date(2025, 12, 1), leave_date=date(2026, 1, 5),
        )
        assert result.id == bal_2026.id
        assert result.consumed == Decimal("2")

    async def test_debit_after_expiry_uses_entitlement_only(self, db: AsyncSession):
        staff = await _seed_staff(db)
        await _seed_balance(
            db, staff.id,
            carried_forward_in=Decimal("5"),
            carry_forward_expires_on=date(2024, 12, 31),
        )

        result = await BalanceLedger.debit(
            db, staff.id, LeaveType.annual, Decimal("3"), as_of=date(2025, 3, 1),
        )

        assert result.consumed == Decimal("3")
        assert result.carry_forward_consumed == Decimal("0")

    async def test_debit_writes_audit_entry(self, db: AsyncSession):
        staff = await _seed_staff(db)
        bal = await _seed_balance(db, staff.id)
        ref = uuid.uuid4()

        await BalanceLedger.debit(
            db, staff.id, LeaveType.annual, Decimal("2"), reference_id=ref,
        )

        entries = (await db.execute(
            select(AuditTrail).where(AuditTrail.entity_id == bal.id)
        )).scalars().all()
        assert [e.action for e in entries] == ["debit"]
        assert entries[0].detail["reference_id"] == str(ref)

    async def test_overdraw_raises_and_leaves_consumed(self, db: AsyncSession):
        staff = await _seed_staff(db)
        bal = await _seed_balance(db, staff.id, consumed=Decimal("28"))

        with pytest.raises(InsufficientBalance):
            await BalanceLedger.debit(db, staff.id, LeaveType.annual, Decimal("3"))

        await db.refresh(bal)
        assert bal.consumed == Decimal("28")
        assert bal.version == 1

    async def test_debit_of_non_accruing_type_is_noop(self, db: AsyncSession):
        staff = await _seed_staff(db)
        assert await BalanceLedger.debit(
            db, staff.id, LeaveType.unpaid, Decimal("10"),
        ) is None

    async def test_non_positive_amount_rejected(self, db: AsyncSession):
        staff = await _seed_staff(db)
        await _seed_balance(db, staff.id)
        with pytest.raises(ValidationException):
            await BalanceLedger.debit(db, staff.id, LeaveType.annual, Decimal("0"))


class TestCredit:

    async def test_credit_restores_entitlement_first(self, db: AsyncSession):
        staff = await _seed_staff(db)
        await _seed_balance(
            db, staff.id,
            consumed=Decimal("7"),
            carried_forward_in=Decimal("5"),
            carry_forward_consumed=Decimal("5"),
        )

        result = await BalanceLedger.credit(db, staff.id, LeaveType.annual, Decimal("3"))

        # 2 days back to the entitlement, 1 back to the carry-forward
        assert result.consumed == Decimal("4")
        assert result.carry_forward_consumed == Decimal("4")

    async def test_credit_larger_than_consumed_is_corrupt(self, db: AsyncSession):
        staff = await _seed_staff(db)
        bal = await _seed_balance(db, staff.id, consumed=Decimal("2"))

        with pytest.raises(CorruptBalance):
            await BalanceLedger.credit(db, staff.id, LeaveType.annual, Decimal("3"))

        await db.refresh(bal)
        assert bal.consumed == Decimal("2")

    async def test_interleaved_debits_and_credits_keep_invariant(self, db: AsyncSession):
        staff = await _seed_staff(db)
        await _seed_balance(
            db, staff.id,
            carried_forward_in=Decimal("4"),
            carry_forward_expires_on=date(2025, 12, 31),
        )
        as_of = date(2025, 6, 1)
        operations = [
            ("debit", "5"), ("credit", "2"), ("debit", "10"), ("debit", "0.5"),
            ("credit", "6"), ("debit", "20"), ("credit", "1.5"),
        ]
        expected_consumed = Decimal("0")

        for op, amount in operations:
            amount = Decimal(amount)
            if op == "debit":
                bal = await BalanceLedger.debit(
                    db, staff.id, LeaveType.annual, amount, as_of=as_of,
                )
                expected_consumed += amount
            else:
                bal = await BalanceLedger.credit(db, staff.id, LeaveType.annual, amount)
                expected_consumed -= amount

            assert bal.consumed == expected_consumed
            assert bal.consumed <= bal.entitlement + bal.carried_forward_in
            assert Decimal("0") <= bal.carry_forward_consumed <= bal.carried_forward_in
            assert BalanceLedger.compute_available(bal, as_of) == (
                Decimal("34") - expected_consumed
            )

        with pytest.raises(InsufficientBalance):
            await BalanceLedger.debit(
                db, staff.id, LeaveType.annual, Decimal("100"), as_of=as_of,
            )


class TestCompareAndSwap:

    async def test_stale_version_does_not_write(self, db: AsyncSession):
        staff = await _seed_staff(db)
        bal = await _seed_balance(db, staff.id)

        # Another writer bumps the version behind our back
        await db.execute(
            update(LeaveBalance)
            .where(LeaveBalance.id == bal.id)
            .values(version=LeaveBalance.version + 1)
            .execution_options(synchronize_session=False)
        )

        assert await BalanceLedger._swap(db, bal, consumed=Decimal("1")) is False
        await db.refresh(bal)
        assert bal.consumed == Decimal("0")
        assert bal.version == 2

    async def test_debit_retries_after_lost_race(self, db: AsyncSession, monkeypatch):
        staff = await _seed_staff(db)
        await _seed_balance(db, staff.id)
        original = BalanceLedger._swap
        attempts = []

        async def _lose_once(session, balance, **values):
            attempts.append(balance.version)
            if len(attempts) == 1:
                return False
            return await original(session, balance, **values)

        monkeypatch.setattr(BalanceLedger, "_swap", staticmethod(_lose_once))

        result = await BalanceLedger.debit(db, staff.id, LeaveType.annual, Decimal("4"))

        assert len(attempts) == 2
        assert result.consumed == Decimal("4")

    async def test_debit_gives_up_after_max_retries(self, db: AsyncSession, monkeypatch):
        staff = await _seed_staff(db)
        bal = await _seed_balance(db, staff.id)
        attempts = []

        async def _always_lose(session, balance, **values):
            attempts.append(1)
            return False

        monkeypatch.setattr(BalanceLedger, "_swap", staticmethod(_always_lose))

        with pytest.raises(ConcurrentModification):
            await BalanceLedger.debit(db, staff.id, LeaveType.annual, Decimal("4"))

        assert len(attempts) == settings.BALANCE_CAS_MAX_RETRIES + 1
        await db.refresh(bal)
        assert bal.consumed == Decimal("0")


# ═════════════════════════════════════════════════════════════════════
# 4. Period opening
# ═════════════════════════════════════════════════════════════════════


class TestOpenPeriod:

    async def test_opens_every_accruing_type(self, db: AsyncSession):
        staff = await _seed_staff(db, date_of_joining=date(2019, 1, 7))

        balances = await BalanceLedger.open_period(
            db, staff.id, 2025, join_date=staff.date_of_joining,
        )

        by_type = {b.leave_type: b for b in balances}
        assert LeaveType.unpaid not in by_type
        assert len(by_type) == 8
        assert by_type[LeaveType.annual].entitlement == Decimal("30")
        assert by_type[LeaveType.annual].carry_forward_cap == Decimal("10")
        assert by_type[LeaveType.maternity].entitlement == Decimal("90")

    async def test_new_joiner_is_pro_rated(self, db: AsyncSession):
        staff = await _seed_staff(db, date_of_joining=date(2025, 7, 15))

        balances = await BalanceLedger.open_period(
            db, staff.id, 2025, join_date=staff.date_of_joining,
        )

        by_type = {b.leave_type: b for b in balances}
        assert by_type[LeaveType.annual].entitlement == Decimal("15")
        assert by_type[LeaveType.sick].entitlement == Decimal("7.5")
        assert by_type[LeaveType.paternity].entitlement == Decimal("3.5")

    async def test_reopening_is_idempotent(self, db: AsyncSession):
        staff = await _seed_staff(db)
        first = await BalanceLedger.open_period(db, staff.id, 2025)
        second = await BalanceLedger.open_period(db, staff.id, 2025)

        assert {b.id for b in first} == {b.id for b in second}
        rows = (await db.execute(
            select(LeaveBalance).where(LeaveBalance.staff_id == staff.id)
        )).scalars().all()
        assert len(rows) == 8
