"""
Reconciliação da venda com as suas parcelas e pagamentos.

Não existe ligação gravada entre Payment e Receivable: quem pagou qual parcela
é sempre deduzido. Depois de editar/excluir um pagamento, as parcelas são
zeradas e todos os pagamentos restantes são redistribuídos em ordem de
`paid_at` (replay). Os agregados da venda (paid_amount, total_fees, net_total,
status) são recalculados do zero a partir das linhas de payments.

A parte da venda paga na hora (entrada) não vira parcela: o plano cobre
`total - entrada`. No replay essa diferença é consumida primeiro, como uma
"parcela zero" implícita.
"""
from __future__ import annotations

import logging
from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from fiado.infra.models import (
    SaleORM,
    ReceivableORM,
    PaymentORM,
    SaleStatus,
    ReceivableStatus,
    FeeAbsorber,
    OPEN_RECEIVABLE_STATUSES,
)
from fiado.services.distribution import apply_updates, distribute, reset_receivables
from fiado.services.errors import InvariantViolation, NotFoundError, ValidationError, SALE_CANCELLED
from fiado.services.money import TOLERANCE, ZERO, money_sum, to_money

logger = logging.getLogger(__name__)


def lock_sale(db: Session, sale_id: int) -> SaleORM:
    # FOR UPDATE serializa pagamentos concorrentes da mesma venda (ignorado no SQLite)
    stmt = select(SaleORM).where(SaleORM.id == sale_id).with_for_update()
    sale = db.execute(stmt).scalar_one_or_none()
    if not sale:
        raise NotFoundError("Venda não encontrada.")
    return sale


def load_receivables(
    db: Session,
    sale_id: int,
    *,
    open_only: bool = False,
    lock: bool = True,
) -> list[ReceivableORM]:
    stmt = (
        select(ReceivableORM)
        .where(ReceivableORM.sale_id == sale_id)
        .order_by(ReceivableORM.installment.asc())
    )
    if open_only:
        stmt = stmt.where(ReceivableORM.status.in_(OPEN_RECEIVABLE_STATUSES))
    if lock:
        stmt = stmt.with_for_update()
    return list(db.execute(stmt).scalars().all())


def load_payments(db: Session, sale_id: int) -> list[PaymentORM]:
    stmt = (
        select(PaymentORM)
        .where(PaymentORM.sale_id == sale_id)
        .order_by(PaymentORM.paid_at.asc(), PaymentORM.id.asc())
    )
    return list(db.execute(stmt).scalars().all())


def _active(receivables: Sequence[ReceivableORM]) -> list[ReceivableORM]:
    return [r for r in receivables if r.status != ReceivableStatus.CANCELLED]


def upfront_portion(sale: SaleORM, receivables: Sequence[ReceivableORM]) -> Decimal:
    """Quanto da venda não foi parcelado (entrada paga na criação)."""
    active = _active(receivables)
    if not active:
        return ZERO
    planned = money_sum(r.amount for r in active)
    return max(ZERO, to_money(sale.total) - planned)


def receivable_paid_target(
    sale: SaleORM,
    receivables: Sequence[ReceivableORM],
    paid_total: Decimal,
) -> Decimal:
    """Quanto as parcelas deveriam ter recebido dado o total pago na venda."""
    active = _active(receivables)
    if not active:
        return ZERO
    planned = money_sum(r.amount for r in active)
    covered = max(ZERO, to_money(paid_total) - upfront_portion(sale, active))
    return min(planned, covered)


def receivables_consistent(
    sale: SaleORM,
    receivables: Sequence[ReceivableORM],
    paid_total: Decimal,
) -> bool:
    actual = money_sum(r.paid_amount for r in _active(receivables))
    target = receivable_paid_target(sale, receivables, paid_total)
    return abs(actual - target) <= TOLERANCE


def replay_payments(
    sale: SaleORM,
    receivables: Sequence[ReceivableORM],
    payments: Sequence[PaymentORM],
) -> Decimal:
    """
    Zera as parcelas e redistribui todos os pagamentos em ordem de paid_at.

    Retorna o que sobrou sem parcela para receber (0 numa venda consistente).
    """
    reset_receivables(receivables)

    skip = upfront_portion(sale, receivables)
    leftover = ZERO

    for p in payments:
        amount = to_money(p.amount)

        if skip > 0:
            absorbed = min(skip, amount)
            skip -= absorbed
            amount -= absorbed

        if amount <= 0:
            continue

        dist = distribute(amount, receivables, paid_at=p.paid_at)
        apply_updates(receivables, dist.updates)
        leftover += dist.remainder

    return leftover


def reconcile_sale(
    db: Session,
    sale: SaleORM,
    *,
    receivables: Optional[Sequence[ReceivableORM]] = None,
    payments: Optional[Sequence[PaymentORM]] = None,
) -> SaleORM:
    if receivables is None:
        receivables = load_receivables(db, sale.id)
    if payments is None:
        payments = load_payments(db, sale.id)

    total = to_money(sale.total)
    paid_total = money_sum(p.amount for p in payments)
    total_fees = money_sum(p.fee_amount for p in payments if p.fee_absorber == FeeAbsorber.SELLER)

    sale.paid_amount = paid_total
    sale.total_fees = total_fees
    sale.net_total = total - total_fees

    active = _active(receivables)
    is_fully_paid = paid_total >= total - TOLERANCE
    if active:
        all_paid = all(r.status == ReceivableStatus.PAID for r in active)
    else:
        # venda sem parcelas (à vista) depende só da soma dos pagamentos
        all_paid = is_fully_paid

    # CANCELLED é terminal
    if sale.status != SaleStatus.CANCELLED:
        sale.status = SaleStatus.COMPLETED if (is_fully_paid or all_paid) else SaleStatus.PENDING

    if active and not receivables_consistent(sale, active, paid_total):
        actual = money_sum(r.paid_amount for r in active)
        target = receivable_paid_target(sale, active, paid_total)
        logger.error(
            "invariant violated: sale=%s receivables_paid=%s expected=%s payments=%s",
            sale.id, actual, target, paid_total,
        )
        raise InvariantViolation(
            f"Parcelas da venda {sale.id} somam {actual} pagos, esperado {target}.",
            sale_id=sale.id,
        )

    db.flush()
    return sale


def recalculate_after_payment_change(db: Session, sale_id: int) -> SaleORM:
    """Replay completo + agregados. Seguro de chamar quantas vezes quiser."""
    sale = lock_sale(db, sale_id)
    if sale.status == SaleStatus.CANCELLED:
        raise ValidationError("Venda cancelada.", code=SALE_CANCELLED)

    db.flush()
    receivables = load_receivables(db, sale_id)
    payments = load_payments(db, sale_id)

    leftover = replay_payments(sale, receivables, payments)
    if _active(receivables) and leftover > TOLERANCE:
        logger.warning("sale=%s replay left %s without receivable", sale_id, leftover)

    reconcile_sale(db, sale, receivables=receivables, payments=payments)
    logger.info(
        "sale=%s recalculated: paid=%s status=%s",
        sale.id, sale.paid_amount, sale.status.value,
    )
    return sale
