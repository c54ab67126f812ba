"""
Correção de vendas importadas com parcelas fora de sincronia.

Importações antigas gravavam `sales.paid_amount` sem distribuir o valor nas
parcelas (e às vezes sem gravar o Payment). Aqui a diferença é detectada
(`preview_repairs`) e corrigida venda a venda (`apply_repairs`). Rodar de novo
não muda nada: venda já consistente é pulada.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field, asdict
from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from fiado.infra.models import (
    SaleORM,
    ReceivableORM,
    ReceivableStatus,
    SaleStatus,
    PaymentMethod,
)
from fiado.services.clock import Clock, system_clock
from fiado.services.distribution import apply_updates, distribute, reset_receivables
from fiado.services.money import TOLERANCE, ZERO, almost_equal, money_sum, to_money
from fiado.services.payments_service import build_payment
from fiado.services.reconcile import (
    load_payments,
    load_receivables,
    lock_sale,
    reconcile_sale,
    receivable_paid_target,
)

logger = logging.getLogger(__name__)

NO_CLIENT = "Sem cliente"


@dataclass
class RepairCandidate:
    sale_id: int
    public_id: str
    client_name: str
    sale_total: Decimal
    sale_paid_amount: Decimal
    receivables_total: Decimal
    receivables_paid_total: Decimal
    expected_receivables_paid: Decimal
    receivables_count: int
    needs_fix: bool
    difference: Decimal

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class RepairDetail:
    sale_id: int
    client_name: str
    sale_paid_amount: Decimal
    receivables_paid_before: Decimal
    receivables_paid_after: Decimal
    backfilled_payment: Decimal
    status_before: str
    status_after: str


@dataclass
class RepairError:
    sale_id: int
    client_name: str
    error: str


@dataclass
class RepairResult:
    total_sales: int = 0
    fixed: int = 0
    skipped: int = 0
    errors: list[RepairError] = field(default_factory=list)
    details: list[RepairDetail] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


def _client_name(sale: SaleORM) -> str:
    return sale.client.name if sale.client else NO_CLIENT


def _candidate_sales(db: Session) -> list[SaleORM]:
    stmt = (
        select(SaleORM)
        .options(selectinload(SaleORM.client), selectinload(SaleORM.receivables))
        .where(SaleORM.status == SaleStatus.PENDING, SaleORM.paid_amount > 0)
        .order_by(SaleORM.id.asc())
    )
    return list(db.execute(stmt).scalars().all())


def diagnose(sale: SaleORM, receivables: Sequence[ReceivableORM]) -> RepairCandidate:
    active = [r for r in receivables if r.status != ReceivableStatus.CANCELLED]
    sale_paid = to_money(sale.paid_amount)
    paid_total = money_sum(r.paid_amount for r in active)
    expected = receivable_paid_target(sale, active, sale_paid)

    return RepairCandidate(
        sale_id=sale.id,
        public_id=sale.public_id,
        client_name=_client_name(sale),
        sale_total=to_money(sale.total),
        sale_paid_amount=sale_paid,
        receivables_total=money_sum(r.amount for r in active),
        receivables_paid_total=paid_total,
        expected_receivables_paid=expected,
        receivables_count=len(active),
        needs_fix=not almost_equal(paid_total, expected),
        difference=expected - paid_total,
    )


def preview_repairs(db: Session) -> list[RepairCandidate]:
    """Só leitura: lista as vendas que `apply_repairs` mudaria."""
    preview = [diagnose(s, s.receivables) for s in _candidate_sales(db)]
    return [c for c in preview if c.needs_fix]


def _repair_sale(db: Session, sale_id: int) -> Optional[RepairDetail]:
    sale = lock_sale(db, sale_id)
    receivables = load_receivables(db, sale_id)
    payments = load_payments(db, sale_id)

    diag = diagnose(sale, receivables)
    if not diag.needs_fix:
        return None

    status_before = sale.status.value
    sale_paid = to_money(sale.paid_amount)
    payments_total = money_sum(p.amount for p in payments)

    # legado sem Payment: grava a diferença pra que o replay futuro chegue no mesmo lugar
    backfill = ZERO
    if sale_paid - payments_total >= TOLERANCE:
        backfill = sale_paid - payments_total
        db.add(
            build_payment(
                sale_id=sale.id,
                amount=backfill,
                method=PaymentMethod.CASH,
                paid_at=sale.created_at,
            )
        )
        db.flush()
        payments = load_payments(db, sale_id)

    basis = max(sale_paid, payments_total)
    target = receivable_paid_target(sale, receivables, basis)

    reset_receivables(receivables)
    # data original de cada pagamento não é recuperável: usa a criação da venda
    dist = distribute(target, receivables, paid_at=sale.created_at)
    apply_updates(receivables, dist.updates)

    reconcile_sale(db, sale, receivables=receivables, payments=payments)

    return RepairDetail(
        sale_id=sale.id,
        client_name=diag.client_name,
        sale_paid_amount=to_money(sale.paid_amount),
        receivables_paid_before=diag.receivables_paid_total,
        receivables_paid_after=money_sum(
            r.paid_amount for r in receivables if r.status != ReceivableStatus.CANCELLED
        ),
        backfilled_payment=backfill,
        status_before=status_before,
        status_after=sale.status.value,
    )


def apply_repairs(db: Session, *, clock: Clock = system_clock) -> RepairResult:
    """
    Corrige todas as vendas candidatas, cada uma na sua própria transação.

    Erro numa venda é registrado e o lote continua.
    """
    started = clock.now()
    candidates = [(s.id, _client_name(s)) for s in _candidate_sales(db)]
    result = RepairResult(total_sales=len(candidates))

    for sale_id, client_name in candidates:
        try:
            detail = _repair_sale(db, sale_id)
            if detail is None:
                result.skipped += 1
                db.commit()
                continue

            db.commit()
            result.fixed += 1
            result.details.append(detail)

        except Exception as e:
            db.rollback()
            logger.exception("repair failed for sale=%s", sale_id)
            result.errors.append(RepairError(sale_id=sale_id, client_name=client_name, error=str(e)))

    logger.info(
        "repair finished: total=%s fixed=%s skipped=%s errors=%s elapsed=%ss",
        result.total_sales, result.fixed, result.skipped, len(result.errors),
        int((clock.now() - started).total_seconds()),
    )
    return result
