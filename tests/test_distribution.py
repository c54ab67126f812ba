from datetime import datetime, timezone
from decimal import Decimal
from types import SimpleNamespace

from fiado.infra.models import ReceivableStatus
from fiado.services.distribution import (
    apply_updates,
    distribute,
    outstanding_total,
    receivable_status_for,
    reset_receivables,
)

PAID_AT = datetime(2024, 2, 1, 10, 0, tzinfo=timezone.utc)


def rec(installment, amount, paid="0", status=ReceivableStatus.PENDING):
    return SimpleNamespace(
        id=installment,
        installment=installment,
        amount=Decimal(amount),
        paid_amount=Decimal(paid),
        status=status,
        paid_at=None,
    )


def test_fills_oldest_installment_first():
    rows = [rec(2, "100"), rec(1, "100")]

    dist = distribute(Decimal("150"), rows, paid_at=PAID_AT)

    assert [(u.installment, u.paid_amount, u.status) for u in dist.updates] == [
        (1, Decimal("100.00"), ReceivableStatus.PAID),
        (2, Decimal("50.00"), ReceivableStatus.PARTIAL),
    ]
    assert dist.remainder == Decimal("0.00")
    assert dist.applied == Decimal("150.00")


def test_paid_at_only_on_paid_installments():
    rows = [rec(1, "100"), rec(2, "100")]

    dist = distribute(Decimal("150"), rows, paid_at=PAID_AT)

    assert dist.updates[0].paid_at == PAID_AT
    assert dist.updates[1].paid_at is None


def test_skips_paid_and_cancelled():
    rows = [
        rec(1, "100", "100", ReceivableStatus.PAID),
        rec(2, "100", status=ReceivableStatus.CANCELLED),
        rec(3, "100", "40", ReceivableStatus.PARTIAL),
    ]

    dist = distribute(Decimal("30"), rows, paid_at=PAID_AT)

    assert len(dist.updates) == 1
    assert dist.updates[0].installment == 3
    assert dist.updates[0].paid_amount == Decimal("70.00")


def test_returns_remainder_instead_of_raising():
    rows = [rec(1, "100"), rec(2, "100")]

    dist = distribute(Decimal("250"), rows, paid_at=PAID_AT)

    assert dist.remainder == Decimal("50.00")
    assert all(u.status == ReceivableStatus.PAID for u in dist.updates)


def test_distribute_does_not_touch_rows():
    rows = [rec(1, "100")]

    distribute(Decimal("100"), rows, paid_at=PAID_AT)

    assert rows[0].paid_amount == Decimal("0")
    assert rows[0].status == ReceivableStatus.PENDING


def test_apply_then_reset():
    rows = [rec(1, "100"), rec(2, "100"), rec(3, "100", status=ReceivableStatus.CANCELLED)]

    apply_updates(rows, distribute(Decimal("150"), rows, paid_at=PAID_AT).updates)
    assert outstanding_total(rows) == Decimal("50.00")

    reset_receivables(rows)

    assert [r.status for r in rows] == [
        ReceivableStatus.PENDING,
        ReceivableStatus.PENDING,
        ReceivableStatus.CANCELLED,
    ]
    assert rows[0].paid_at is None
    assert outstanding_total(rows) == Decimal("200.00")


def test_status_threshold_has_one_cent_tolerance():
    assert receivable_status_for(Decimal("99.99"), Decimal("100")) == ReceivableStatus.PAID
    assert receivable_status_for(Decimal("99.98"), Decimal("100")) == ReceivableStatus.PARTIAL
    assert receivable_status_for(Decimal("0"), Decimal("100")) == ReceivableStatus.PENDING
