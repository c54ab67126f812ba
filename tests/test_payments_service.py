from datetime import datetime, timezone
from decimal import Decimal

import pytest

from fiado.infra.models import FeeAbsorber, PaymentMethod, ReceivableStatus, SaleStatus
from fiado.services import errors
from fiado.services.clock import as_utc
from fiado.services.money import money_sum
from fiado.services.payments_service import (
    build_payment,
    delete_payment,
    list_payments,
    register_payment,
    register_payment_with_distribution,
    update_payment,
)
from fiado.services.reconcile import load_payments, load_receivables, receivables_consistent
from fiado.services.sales_service import cancel_sale, create_sale

P, PA, PD = ReceivableStatus.PENDING, ReceivableStatus.PARTIAL, ReceivableStatus.PAID


@pytest.fixture()
def sale(db, client_row, clock):
    # 3 parcelas de 100, vencendo 10/02, 10/03 e 10/04
    s = create_sale(
        db,
        total=Decimal("300"),
        client_id=client_row.id,
        installment_plan=3,
        payment_day=10,
        clock=clock,
    )
    db.commit()
    return s


def state(db, sale_id):
    return [(r.paid_amount, r.status) for r in load_receivables(db, sale_id, lock=False)]


def test_payment_fills_installments_fifo(db, sale, clock):
    sale_after, _ = register_payment_with_distribution(db, sale.id, Decimal("150"), clock=clock)

    assert state(db, sale.id) == [
        (Decimal("100.00"), PD),
        (Decimal("50.00"), PA),
        (Decimal("0.00"), P),
    ]
    assert sale_after.paid_amount == Decimal("150.00")
    assert sale_after.status == SaleStatus.PENDING


def test_amount_above_outstanding_changes_nothing(db, sale, clock):
    register_payment_with_distribution(db, sale.id, Decimal("100"), clock=clock)
    db.commit()

    with pytest.raises(errors.ValidationError) as exc:
        register_payment_with_distribution(db, sale.id, Decimal("200.02"), clock=clock)
    db.rollback()

    assert exc.value.code == errors.AMOUNT_EXCEEDS
    assert "R$ 200,00" in exc.value.message
    assert len(load_payments(db, sale.id)) == 1
    assert state(db, sale.id)[1] == (Decimal("0.00"), P)


def test_non_positive_amount_rejected(db, sale, clock):
    with pytest.raises(errors.ValidationError) as exc:
        register_payment_with_distribution(db, sale.id, Decimal("0"), clock=clock)

    assert exc.value.code == errors.INVALID_AMOUNT


def test_full_payment_completes_sale_and_blocks_more(db, sale, clock):
    sale_after, _ = register_payment_with_distribution(db, sale.id, Decimal("300"), clock=clock)

    assert sale_after.status == SaleStatus.COMPLETED
    assert all(st == PD for _, st in state(db, sale.id))

    with pytest.raises(errors.ValidationError) as exc:
        register_payment_with_distribution(db, sale.id, Decimal("1"), clock=clock)
    assert exc.value.code == errors.SALE_COMPLETED


def test_delete_payment_replays_remaining(db, sale, clock):
    register_payment_with_distribution(db, sale.id, Decimal("150"), clock=clock)
    payment = load_payments(db, sale.id)[0]

    sale_after = delete_payment(db, payment.id)

    assert state(db, sale.id) == [(Decimal("0.00"), P)] * 3
    assert sale_after.paid_amount == Decimal("0.00")
    assert sale_after.status == SaleStatus.PENDING
    assert all(r.paid_at is None for r in load_receivables(db, sale.id, lock=False))


def test_delete_first_of_two_payments(db, sale, clock):
    register_payment_with_distribution(db, sale.id, Decimal("100"), clock=clock)
    clock.advance(days=1)
    register_payment_with_distribution(db, sale.id, Decimal("50"), clock=clock)

    first = load_payments(db, sale.id)[0]
    delete_payment(db, first.id)

    assert state(db, sale.id) == [
        (Decimal("50.00"), PA),
        (Decimal("0.00"), P),
        (Decimal("0.00"), P),
    ]


def test_update_payment_amount_replays(db, sale, clock):
    register_payment_with_distribution(db, sale.id, Decimal("150"), clock=clock)
    payment = load_payments(db, sale.id)[0]

    update_payment(db, payment.id, amount=Decimal("250"), method=PaymentMethod.PIX)

    assert state(db, sale.id) == [
        (Decimal("100.00"), PD),
        (Decimal("100.00"), PD),
        (Decimal("50.00"), PA),
    ]
    assert payment.method == PaymentMethod.PIX
    assert sale.paid_amount == Decimal("250.00")


def test_update_payment_above_total(db, sale, clock):
    register_payment_with_distribution(db, sale.id, Decimal("150"), clock=clock)
    payment = load_payments(db, sale.id)[0]

    with pytest.raises(errors.ValidationError) as exc:
        update_payment(db, payment.id, amount=Decimal("300.02"))

    assert exc.value.code == errors.AMOUNT_EXCEEDS


def test_backdated_payment_is_replayed_in_date_order(db, sale, clock):
    register_payment_with_distribution(db, sale.id, Decimal("100"), clock=clock)
    later = clock.now()

    register_payment_with_distribution(
        db,
        sale.id,
        Decimal("50"),
        paid_at=datetime(2024, 1, 10, 9, 0, tzinfo=timezone.utc),
        clock=clock,
    )

    rows = load_receivables(db, sale.id, lock=False)
    assert state(db, sale.id) == [
        (Decimal("100.00"), PD),
        (Decimal("50.00"), PA),
        (Decimal("0.00"), P),
    ]
    # a parcela 1 só fechou com o pagamento de 15/01
    assert as_utc(rows[0].paid_at) == later
    assert [p.amount for p in list_payments(db, sale.id)] == [Decimal("50.00"), Decimal("100.00")]


def test_seller_fee_reduces_net_total(db, sale, clock):
    sale_after, _ = register_payment_with_distribution(
        db,
        sale.id,
        Decimal("100"),
        PaymentMethod.CREDIT,
        fee_percent=Decimal("5"),
        fee_absorber=FeeAbsorber.SELLER,
        installments=2,
        clock=clock,
    )

    payment = load_payments(db, sale.id)[0]
    assert payment.fee_amount == Decimal("5.00")
    assert sale_after.total_fees == Decimal("5.00")
    assert sale_after.net_total == Decimal("295.00")


def test_client_fee_does_not_count(db, sale, clock):
    sale_after, _ = register_payment_with_distribution(
        db,
        sale.id,
        Decimal("100"),
        PaymentMethod.CREDIT,
        fee_percent=Decimal("5"),
        fee_absorber=FeeAbsorber.CLIENT,
        clock=clock,
    )

    assert sale_after.total_fees == Decimal("0.00")
    assert sale_after.net_total == Decimal("300.00")


def test_upfront_is_consumed_first_on_replay(db, client_row, clock):
    s = create_sale(
        db,
        total=Decimal("300"),
        client_id=client_row.id,
        payments=[{"amount": Decimal("60"), "method": PaymentMethod.PIX}],
        installment_plan=3,
        payment_day=10,
        clock=clock,
    )
    clock.advance(days=1)
    register_payment_with_distribution(db, s.id, Decimal("80"), clock=clock)
    assert state(db, s.id)[0] == (Decimal("80.00"), PD)

    upfront = load_payments(db, s.id)[0]
    delete_payment(db, upfront.id)

    # sem a entrada, os 80 cobrem primeiro a parte não parcelada (60)
    assert state(db, s.id) == [
        (Decimal("20.00"), PA),
        (Decimal("0.00"), P),
        (Decimal("0.00"), P),
    ]
    assert s.paid_amount == Decimal("80.00")


def test_pay_specific_receivable(db, sale, clock):
    second = load_receivables(db, sale.id, lock=False)[1]

    sale_after, rec = register_payment(db, second.id, Decimal("100"), PaymentMethod.PIX, clock=clock)

    assert rec.status == PD
    assert as_utc(rec.paid_at) == clock.now()
    assert state(db, sale.id)[0] == (Decimal("0.00"), P)
    assert sale_after.paid_amount == Decimal("100.00")

    with pytest.raises(errors.ValidationError) as exc:
        register_payment(db, second.id, Decimal("1"), clock=clock)
    assert exc.value.code == errors.INVALID_STATUS


def test_pay_specific_receivable_above_remaining(db, sale, clock):
    first = load_receivables(db, sale.id, lock=False)[0]

    with pytest.raises(errors.ValidationError) as exc:
        register_payment(db, first.id, Decimal("100.02"), clock=clock)

    assert exc.value.code == errors.AMOUNT_EXCEEDS


def test_pay_missing_receivable(db, sale, clock):
    with pytest.raises(errors.NotFoundError):
        register_payment(db, 9999, Decimal("10"), clock=clock)


def test_cancelled_sale_rejects_payments(db, sale, clock):
    cancel_sale(db, sale.id)

    assert all(st == ReceivableStatus.CANCELLED for _, st in state(db, sale.id))
    with pytest.raises(errors.ValidationError) as exc:
        register_payment_with_distribution(db, sale.id, Decimal("10"), clock=clock)
    assert exc.value.code == errors.SALE_CANCELLED

    with pytest.raises(errors.ValidationError) as exc:
        cancel_sale(db, sale.id)
    assert exc.value.code == errors.ALREADY_CANCELLED


def test_missing_sale(db, clock):
    with pytest.raises(errors.NotFoundError) as exc:
        register_payment_with_distribution(db, 9999, Decimal("10"), clock=clock)

    assert exc.value.status_code == 404


def test_credit_sale_requires_client(db, clock):
    with pytest.raises(errors.ValidationError) as exc:
        create_sale(db, total=Decimal("100"), payments=[{"amount": Decimal("40")}], clock=clock)

    assert exc.value.code == errors.CLIENT_REQUIRED


def test_cash_sale_is_completed_without_plan(db, clock):
    s = create_sale(
        db,
        total=Decimal("100"),
        payments=[{"amount": Decimal("60")}, {"amount": Decimal("40"), "method": PaymentMethod.DEBIT}],
        clock=clock,
    )

    assert s.status == SaleStatus.COMPLETED
    assert s.paid_amount == Decimal("100.00")
    assert load_receivables(db, s.id, lock=False) == []


def test_upfront_above_total(db, client_row, clock):
    with pytest.raises(errors.ValidationError) as exc:
        create_sale(db, total=Decimal("100"), client_id=client_row.id, payments=[{"amount": Decimal("150")}], clock=clock)

    assert exc.value.code == errors.AMOUNT_EXCEEDS


@pytest.fixture()
def sale_with_upfront(db, client_row, clock):
    # entrada de 50 + 5 parcelas de 50
    s = create_sale(
        db,
        total=Decimal("300"),
        client_id=client_row.id,
        payments=[{"amount": Decimal("50")}],
        installment_plan=5,
        payment_day=10,
        clock=clock,
    )
    db.commit()
    clock.advance(days=1)
    return s


def assert_in_sync(db, s):
    rows = load_receivables(db, s.id, lock=False)
    paid_total = money_sum(p.amount for p in load_payments(db, s.id))
    assert receivables_consistent(s, rows, paid_total)
    assert s.paid_amount == paid_total
    assert s.paid_amount <= s.total


def test_payment_after_deleting_upfront_covers_upfront_first(db, sale_with_upfront, clock):
    s = sale_with_upfront
    delete_payment(db, load_payments(db, s.id)[0].id)

    register_payment_with_distribution(db, s.id, Decimal("100"), clock=clock)

    assert state(db, s.id) == [(Decimal("50.00"), PD)] + [(Decimal("0.00"), P)] * 4
    assert s.status == SaleStatus.PENDING
    assert_in_sync(db, s)


def test_whole_sale_can_be_paid_after_deleting_upfront(db, sale_with_upfront, clock):
    s = sale_with_upfront
    delete_payment(db, load_payments(db, s.id)[0].id)

    with pytest.raises(errors.ValidationError) as exc:
        register_payment_with_distribution(db, s.id, Decimal("300.02"), clock=clock)
    assert exc.value.code == errors.AMOUNT_EXCEEDS
    assert "R$ 300,00" in exc.value.message

    register_payment_with_distribution(db, s.id, Decimal("300"), clock=clock)

    assert all(st == PD for _, st in state(db, s.id))
    assert s.status == SaleStatus.COMPLETED
    assert_in_sync(db, s)


def test_payment_after_reducing_upfront(db, sale_with_upfront, clock):
    s = sale_with_upfront
    update_payment(db, load_payments(db, s.id)[0].id, amount=Decimal("20"))

    register_payment_with_distribution(db, s.id, Decimal("100"), clock=clock)

    # 30 completam a entrada, 70 vão pras parcelas
    assert state(db, s.id) == [
        (Decimal("50.00"), PD),
        (Decimal("20.00"), PA),
        (Decimal("0.00"), P),
        (Decimal("0.00"), P),
        (Decimal("0.00"), P),
    ]
    assert s.paid_amount == Decimal("120.00")
    assert_in_sync(db, s)


def test_direct_payment_covers_pending_upfront_first(db, sale_with_upfront, clock):
    s = sale_with_upfront
    delete_payment(db, load_payments(db, s.id)[0].id)
    second = load_receivables(db, s.id, lock=False)[1]

    _, rec = register_payment(db, second.id, Decimal("80"), clock=clock)

    assert rec.paid_amount == Decimal("30.00")
    assert rec.status == PA
    assert state(db, s.id)[0] == (Decimal("0.00"), P)
    assert_in_sync(db, s)


def test_direct_payment_limit_includes_pending_upfront(db, sale_with_upfront, clock):
    s = sale_with_upfront
    delete_payment(db, load_payments(db, s.id)[0].id)
    first = load_receivables(db, s.id, lock=False)[0]

    with pytest.raises(errors.ValidationError) as exc:
        register_payment(db, first.id, Decimal("100.02"), clock=clock)

    assert exc.value.code == errors.AMOUNT_EXCEEDS
    assert "R$ 100,00" in exc.value.message


def test_payment_edits_keep_receivables_in_sync(db, client_row, clock):
    s = create_sale(
        db,
        total=Decimal("300"),
        client_id=client_row.id,
        payments=[{"amount": Decimal("60")}],
        installment_plan=3,
        payment_day=10,
        clock=clock,
    )
    upfront_id = load_payments(db, s.id)[0].id
    clock.advance(days=1)

    register_payment_with_distribution(db, s.id, Decimal("50"), clock=clock)
    assert state(db, s.id)[0] == (Decimal("50.00"), PA)
    assert_in_sync(db, s)

    register_payment_with_distribution(
        db,
        s.id,
        Decimal("30"),
        paid_at=datetime(2024, 1, 10, 9, 0, tzinfo=timezone.utc),
        clock=clock,
    )
    assert state(db, s.id)[0] == (Decimal("80.00"), PD)
    assert_in_sync(db, s)

    fifty = next(p for p in load_payments(db, s.id) if p.amount == Decimal("50.00"))
    update_payment(db, fifty.id, paid_at=datetime(2024, 1, 9, 9, 0, tzinfo=timezone.utc))
    assert state(db, s.id)[0] == (Decimal("80.00"), PD)
    assert_in_sync(db, s)

    delete_payment(db, upfront_id)
    assert state(db, s.id) == [
        (Decimal("20.00"), PA),
        (Decimal("0.00"), P),
        (Decimal("0.00"), P),
    ]
    assert s.paid_amount == Decimal("80.00")
    assert_in_sync(db, s)


def test_negative_fee_rejected(clock):
    with pytest.raises(errors.ValidationError) as exc:
        build_payment(sale_id=1, amount=Decimal("10"), paid_at=clock.now(), fee_percent=-1)

    assert exc.value.code == errors.INVALID_AMOUNT
