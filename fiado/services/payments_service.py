from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from fiado.infra.models import (
    SaleORM,
    ReceivableORM,
    PaymentORM,
    SaleStatus,
    ReceivableStatus,
    PaymentMethod,
    FeeAbsorber,
    OPEN_RECEIVABLE_STATUSES,
)
from fiado.services.clock import Clock, as_utc, system_clock
from fiado.services.distribution import (
    apply_updates,
    distribute,
    receivable_status_for,
)
from fiado.services.errors import (
    InvariantViolation,
    NotFoundError,
    ValidationError,
    AMOUNT_EXCEEDS,
    INVALID_AMOUNT,
    INVALID_STATUS,
    SALE_CANCELLED,
    SALE_COMPLETED,
)
from fiado.services.money import TOLERANCE, ZERO, format_brl, money_sum, to_money
from fiado.services.receivables_service import get_receivable
from fiado.services.reconcile import (
    load_payments,
    load_receivables,
    lock_sale,
    reconcile_sale,
    recalculate_after_payment_change,
    receivables_consistent,
    replay_payments,
    upfront_portion,
)

logger = logging.getLogger(__name__)


def _positive_amount(amount) -> Decimal:
    amount = to_money(amount)
    if amount <= 0:
        raise ValidationError("Valor deve ser positivo.", code=INVALID_AMOUNT)
    return amount


def compute_fee(amount: Decimal, fee_percent) -> Decimal:
    return to_money(to_money(amount) * Decimal(str(fee_percent or 0)) / Decimal(100))


def build_payment(
    *,
    sale_id: int,
    amount: Decimal,
    method: PaymentMethod | str = PaymentMethod.CASH,
    paid_at: datetime,
    fee_percent: Decimal | float | int = 0,
    fee_absorber: FeeAbsorber | str = FeeAbsorber.SELLER,
    installments: int = 1,
) -> PaymentORM:
    fee_percent = Decimal(str(fee_percent or 0))
    if fee_percent < 0:
        raise ValidationError("Taxa não pode ser negativa.", code=INVALID_AMOUNT)

    return PaymentORM(
        sale_id=sale_id,
        method=PaymentMethod(method),
        amount=amount,
        fee_percent=fee_percent,
        fee_amount=compute_fee(amount, fee_percent),
        fee_absorber=FeeAbsorber(fee_absorber),
        installments=max(1, int(installments or 1)),
        paid_at=paid_at,
    )


def _is_backdated(payments: list[PaymentORM], paid_at: datetime) -> bool:
    latest = max((as_utc(p.paid_at) for p in payments), default=None)
    return latest is not None and as_utc(paid_at) < latest


def register_payment_with_distribution(
    db: Session,
    sale_id: int,
    amount,
    method: PaymentMethod | str = PaymentMethod.CASH,
    paid_at: Optional[datetime] = None,
    *,
    fee_percent: Decimal | float | int = 0,
    fee_absorber: FeeAbsorber | str = FeeAbsorber.SELLER,
    installments: int = 1,
    clock: Clock = system_clock,
) -> Tuple[SaleORM, list[ReceivableORM]]:
    """
    Recebe um valor da venda e distribui nas parcelas em aberto (FIFO).

    Tudo é validado antes de gravar: valor acima do saldo devedor é recusado
    com AMOUNT_EXCEEDS e nada muda.
    """
    amount = _positive_amount(amount)
    paid_at = paid_at or clock.now()

    sale = lock_sale(db, sale_id)
    if sale.status == SaleStatus.CANCELLED:
        raise ValidationError(
            "Não é possível adicionar pagamento a uma venda cancelada.", code=SALE_CANCELLED
        )
    if sale.status == SaleStatus.COMPLETED:
        raise ValidationError("Esta venda já está totalmente paga.", code=SALE_COMPLETED)

    receivables = load_receivables(db, sale_id)
    payments = load_payments(db, sale_id)
    paid_before = money_sum(p.amount for p in payments)

    # saldo da venda inteira: entrada ainda não coberta + parcelas em aberto
    outstanding = max(ZERO, to_money(sale.total) - paid_before)

    if amount > outstanding + TOLERANCE:
        raise ValidationError(
            f"Valor excede o saldo devedor total. Máximo: {format_brl(outstanding)}",
            code=AMOUNT_EXCEEDS,
        )

    open_receivables = [r for r in receivables if r.status in OPEN_RECEIVABLE_STATUSES]
    backdated = _is_backdated(payments, paid_at)
    healthy = receivables_consistent(sale, receivables, paid_before)
    upfront_pending = paid_before < upfront_portion(sale, receivables)

    payment = build_payment(
        sale_id=sale.id,
        amount=amount,
        method=method,
        paid_at=paid_at,
        fee_percent=fee_percent,
        fee_absorber=fee_absorber,
        installments=installments,
    )
    db.add(payment)
    db.flush()

    payments = load_payments(db, sale_id)

    if receivables and (backdated or upfront_pending or not healthy):
        # retroativo, entrada ainda em aberto ou parcelas fora de sincronia:
        # refaz tudo na ordem de paid_at
        if not healthy:
            logger.warning("sale=%s receivables out of sync with payments, replaying", sale.id)
        replay_payments(sale, receivables, payments)
    elif receivables:
        dist = distribute(amount, open_receivables, paid_at=paid_at)
        if dist.remainder > TOLERANCE:
            logger.error(
                "sale=%s distribution left remainder=%s after validation (amount=%s outstanding=%s)",
                sale.id, dist.remainder, amount, outstanding,
            )
            raise InvariantViolation(
                f"Sobrou {dist.remainder} sem parcela na venda {sale.id}.", sale_id=sale.id
            )
        apply_updates(receivables, dist.updates)

    reconcile_sale(db, sale, receivables=receivables, payments=payments)

    logger.info(
        "sale=%s payment registered: amount=%s method=%s status=%s",
        sale.id, amount, payment.method.value, sale.status.value,
    )
    return sale, receivables


def register_payment(
    db: Session,
    receivable_id: int,
    amount,
    method: PaymentMethod | str = PaymentMethod.CASH,
    paid_at: Optional[datetime] = None,
    *,
    clock: Clock = system_clock,
) -> Tuple[SaleORM, ReceivableORM]:
    """Pagamento direto de uma parcela específica."""
    amount = _positive_amount(amount)
    paid_at = paid_at or clock.now()

    rec = get_receivable(db, receivable_id)

    sale = lock_sale(db, rec.sale_id)
    if sale.status == SaleStatus.CANCELLED:
        raise ValidationError("Venda cancelada.", code=SALE_CANCELLED)

    receivables = load_receivables(db, sale.id)
    rec = next(r for r in receivables if r.id == receivable_id)

    if rec.status == ReceivableStatus.CANCELLED:
        raise ValidationError(
            "Não é possível registrar pagamento em parcela cancelada.", code=INVALID_STATUS
        )
    if rec.status == ReceivableStatus.PAID:
        raise ValidationError("Parcela já foi paga.", code=INVALID_STATUS)

    paid_before = money_sum(p.amount for p in load_payments(db, sale.id))
    sale_outstanding = max(ZERO, to_money(sale.total) - paid_before)
    if amount > sale_outstanding + TOLERANCE:
        raise ValidationError(
            f"Valor excede o saldo devedor total. Máximo: {format_brl(sale_outstanding)}",
            code=AMOUNT_EXCEEDS,
        )

    # entrada ainda não coberta é quitada antes da parcela escolhida
    pending_upfront = max(ZERO, upfront_portion(sale, receivables) - paid_before)
    to_installment = max(ZERO, amount - pending_upfront)

    remaining = to_money(rec.amount) - to_money(rec.paid_amount)
    if to_installment > remaining + TOLERANCE:
        raise ValidationError(
            f"Valor excede o saldo da parcela. Máximo: {format_brl(remaining + pending_upfront)}",
            code=AMOUNT_EXCEEDS,
        )

    if to_installment > 0:
        new_paid = to_money(rec.paid_amount) + min(to_installment, remaining)
        new_status = receivable_status_for(new_paid, rec.amount)

        rec.paid_amount = new_paid
        rec.status = new_status
        rec.paid_at = paid_at if new_status == ReceivableStatus.PAID else None

    db.add(build_payment(sale_id=sale.id, amount=amount, method=method, paid_at=paid_at))
    db.flush()

    reconcile_sale(db, sale, receivables=receivables, payments=load_payments(db, sale.id))

    logger.info(
        "receivable=%s (sale=%s) paid directly: amount=%s status=%s",
        rec.id, sale.id, amount, rec.status.value,
    )
    return sale, rec


def get_payment(db: Session, payment_id: int) -> PaymentORM:
    payment = db.get(PaymentORM, payment_id)
    if not payment:
        raise NotFoundError("Pagamento não encontrado.")
    return payment


def list_payments(db: Session, sale_id: int) -> list[PaymentORM]:
    if not db.get(SaleORM, sale_id):
        raise NotFoundError("Venda não encontrada.")
    return load_payments(db, sale_id)


def update_payment(
    db: Session,
    payment_id: int,
    *,
    amount=None,
    method: PaymentMethod | str | None = None,
    paid_at: Optional[datetime] = None,
) -> PaymentORM:
    payment = get_payment(db, payment_id)
    sale = lock_sale(db, payment.sale_id)
    if sale.status == SaleStatus.CANCELLED:
        raise ValidationError("Venda cancelada.", code=SALE_CANCELLED)

    if amount is not None:
        amount = _positive_amount(amount)
        others = db.execute(
            select(PaymentORM.amount).where(
                PaymentORM.sale_id == sale.id,
                PaymentORM.id != payment.id,
            )
        ).scalars().all()
        if money_sum(others) + amount > to_money(sale.total) + TOLERANCE:
            raise ValidationError("Valor excede o total da venda.", code=AMOUNT_EXCEEDS)

        payment.amount = amount
        # taxa acompanha o valor novo, mantendo o percentual gravado
        payment.fee_amount = compute_fee(amount, payment.fee_percent)

    if method is not None:
        payment.method = PaymentMethod(method)
    if paid_at is not None:
        payment.paid_at = paid_at

    db.flush()
    recalculate_after_payment_change(db, sale.id)

    logger.info("payment=%s (sale=%s) updated", payment.id, sale.id)
    return payment


def delete_payment(db: Session, payment_id: int) -> SaleORM:
    payment = get_payment(db, payment_id)
    sale = lock_sale(db, payment.sale_id)
    if sale.status == SaleStatus.CANCELLED:
        raise ValidationError("Venda cancelada.", code=SALE_CANCELLED)

    db.delete(payment)
    db.flush()

    sale = recalculate_after_payment_change(db, sale.id)
    logger.info("payment=%s (sale=%s) deleted", payment_id, sale.id)
    return sale
