from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional

from dateutil.relativedelta import relativedelta
from sqlalchemy.orm import Session

from fiado.config import settings
from fiado.infra.models import ReceivableORM, ReceivableStatus, SaleORM, SaleStatus
from fiado.services.clock import Clock, system_clock
from fiado.services.errors import (
    ValidationError,
    INVALID_AMOUNT,
    INVALID_PAYMENT_DAY,
    INVALID_STATUS,
    NO_RECEIVABLES,
    PLAN_EXISTS,
    SALE_CANCELLED,
)
from fiado.services.money import CENT, ZERO, floor_money, to_money
from fiado.services.reconcile import (
    load_payments,
    load_receivables,
    lock_sale,
    reconcile_sale,
    replay_payments,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlannedInstallment:
    installment: int
    amount: Decimal
    due_date: date


def _check_payment_day(payment_day: int) -> int:
    payment_day = int(payment_day)
    if payment_day < 1 or payment_day > 31:
        raise ValidationError("Dia de pagamento deve estar entre 1 e 31.", code=INVALID_PAYMENT_DAY)
    return payment_day


def due_date_for(start: date, index: int, payment_day: int) -> date:
    """
    Vencimento da parcela `index` (0 = primeira).

    Se o dia de pagamento já chegou no mês de `start`, o carnê começa no mês
    seguinte. Dia maior que o fim do mês cai no último dia (31 -> 28/29/30).
    """
    skip = 1 if start.day >= payment_day else 0
    # relativedelta aplica os meses e depois limita o dia ao fim do mês
    return start + relativedelta(months=index + skip, day=payment_day)


def generate_plan(
    total: Decimal,
    paid: Decimal,
    num_installments: int,
    payment_day: int,
    start_date: date,
    fixed_installment_amount: Optional[Decimal] = None,
) -> list[PlannedInstallment]:
    outstanding = to_money(total) - to_money(paid)
    if outstanding <= 0:
        return []

    n = max(1, int(num_installments or 1))
    payment_day = _check_payment_day(payment_day)

    if fixed_installment_amount is not None and to_money(fixed_installment_amount) > 0:
        base = to_money(fixed_installment_amount)
        if base * (n - 1) >= outstanding:
            # a última parcela ficaria zerada ou negativa
            raise ValidationError(
                f"Valor fixo da parcela excede o saldo a parcelar ({outstanding}).",
                code=INVALID_AMOUNT,
            )
    else:
        # trunca nos centavos pra nunca passar do saldo
        base = floor_money(outstanding / Decimal(n))

    # última parcela absorve a sobra do arredondamento
    last = max(CENT, outstanding - base * (n - 1))

    plan: list[PlannedInstallment] = []
    for i in range(n):
        plan.append(
            PlannedInstallment(
                installment=i + 1,
                amount=last if i == n - 1 else base,
                due_date=due_date_for(start_date, i, payment_day),
            )
        )
    return plan


def create_installment_plan(
    db: Session,
    sale_id: int,
    total: Decimal,
    paid_upfront: Decimal,
    num_installments: int,
    payment_day: Optional[int],
    fixed_amount: Optional[Decimal] = None,
    *,
    clock: Clock = system_clock,
) -> list[ReceivableORM]:
    sale = lock_sale(db, sale_id)
    if sale.status == SaleStatus.CANCELLED:
        raise ValidationError("Venda cancelada não pode receber parcelas.", code=SALE_CANCELLED)

    if load_receivables(db, sale_id):
        raise ValidationError("Esta venda já possui parcelas.", code=PLAN_EXISTS)

    n = max(1, int(num_installments or 1))
    day = _check_payment_day(
        payment_day if payment_day is not None else settings.DEFAULT_PAYMENT_DAY
    )

    plan = generate_plan(
        total,
        paid_upfront,
        n,
        day,
        clock.today(),
        fixed_installment_amount=fixed_amount,
    )

    sale.installment_plan = n
    sale.payment_day = day
    sale.fixed_installment_amount = to_money(fixed_amount) if fixed_amount is not None else None

    for p in plan:
        db.add(
            ReceivableORM(
                sale_id=sale.id,
                installment=p.installment,
                amount=p.amount,
                paid_amount=ZERO,
                due_date=p.due_date,
                status=ReceivableStatus.PENDING,
            )
        )
    db.flush()

    # pagamentos que já existirem entram nas parcelas novas na mesma transação
    receivables = load_receivables(db, sale_id)
    payments = load_payments(db, sale_id)
    if receivables:
        replay_payments(sale, receivables, payments)
    reconcile_sale(db, sale, receivables=receivables, payments=payments)

    logger.info(
        "sale=%s plan created: installments=%s payment_day=%s first_due=%s",
        sale.id, len(plan), day, plan[0].due_date if plan else None,
    )
    return receivables


def reschedule(
    db: Session,
    sale_id: int,
    new_payment_day: Optional[int] = None,
    new_start_date: Optional[date] = None,
    *,
    clock: Clock = system_clock,
) -> tuple[SaleORM, int]:
    """
    Redefine os vencimentos das parcelas em aberto (PENDING/PARTIAL).

    Valor e valor pago não mudam; parcelas pagas/canceladas ficam como estão.
    A primeira parcela em aberto recebe o primeiro vencimento, a segunda o
    mês seguinte e assim por diante, independente do número original.
    """
    sale = lock_sale(db, sale_id)
    if sale.status == SaleStatus.CANCELLED:
        raise ValidationError("Não é possível reagendar venda cancelada.", code=INVALID_STATUS)

    open_receivables = load_receivables(db, sale_id, open_only=True)
    if not open_receivables:
        raise ValidationError("Não há parcelas pendentes para reagendar.", code=NO_RECEIVABLES)

    if new_payment_day is None:
        new_payment_day = sale.payment_day or settings.DEFAULT_PAYMENT_DAY
    day = _check_payment_day(new_payment_day)
    start = new_start_date or clock.today()

    for offset, rec in enumerate(open_receivables):
        rec.due_date = due_date_for(start, offset, day)

    sale.payment_day = day
    db.flush()

    logger.info("sale=%s rescheduled: count=%s payment_day=%s", sale.id, len(open_receivables), day)
    return sale, len(open_receivables)
