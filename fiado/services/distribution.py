"""
Distribuição de pagamentos entre as parcelas de uma venda.

Regra: FIFO estrito por número da parcela. O pagamento enche a parcela mais
antiga em aberto antes de tocar na próxima; parcelas PAID/CANCELLED ficam de
fora. Nada aqui acessa o banco: recebe as parcelas, devolve o que mudaria.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional, Sequence

from fiado.infra.models import ReceivableORM, ReceivableStatus, OPEN_RECEIVABLE_STATUSES
from fiado.services.money import TOLERANCE, ZERO, to_money


@dataclass(frozen=True)
class ReceivableUpdate:
    receivable_id: Optional[int]
    installment: int
    paid_amount: Decimal
    status: ReceivableStatus
    paid_at: Optional[datetime]
    applied: Decimal


@dataclass
class Distribution:
    updates: list[ReceivableUpdate] = field(default_factory=list)
    remainder: Decimal = ZERO

    @property
    def applied(self) -> Decimal:
        return sum((u.applied for u in self.updates), ZERO)


def receivable_status_for(paid_amount: Decimal, amount: Decimal) -> ReceivableStatus:
    paid_amount = to_money(paid_amount)
    amount = to_money(amount)

    if paid_amount >= amount - TOLERANCE:
        return ReceivableStatus.PAID
    if paid_amount > 0:
        return ReceivableStatus.PARTIAL
    return ReceivableStatus.PENDING


def distribute(
    payment_amount: Decimal,
    outstanding: Sequence[ReceivableORM],
    *,
    paid_at: Optional[datetime],
) -> Distribution:
    """
    Aloca `payment_amount` nas parcelas em aberto, da menor para a maior.

    Nunca passa do valor da parcela e nunca levanta erro: o que sobrar volta
    em `remainder` (quem chama valida o saldo antes).
    """
    remaining = to_money(payment_amount)
    result = Distribution()

    for rec in sorted(outstanding, key=lambda r: r.installment):
        if remaining <= 0:
            break
        if rec.status not in OPEN_RECEIVABLE_STATUSES:
            continue

        current_paid = to_money(rec.paid_amount)
        rec_remaining = to_money(rec.amount) - current_paid
        if rec_remaining <= 0:
            continue

        applied = min(remaining, rec_remaining)
        new_paid = current_paid + applied
        new_status = receivable_status_for(new_paid, rec.amount)

        result.updates.append(
            ReceivableUpdate(
                receivable_id=rec.id,
                installment=rec.installment,
                paid_amount=new_paid,
                status=new_status,
                paid_at=paid_at if new_status == ReceivableStatus.PAID else None,
                applied=applied,
            )
        )
        remaining -= applied

    result.remainder = remaining
    return result


def apply_updates(receivables: Iterable[ReceivableORM], updates: Iterable[ReceivableUpdate]) -> list[ReceivableORM]:
    by_installment = {r.installment: r for r in receivables}
    touched: list[ReceivableORM] = []

    for u in updates:
        rec = by_installment[u.installment]
        rec.paid_amount = u.paid_amount
        rec.status = u.status
        rec.paid_at = u.paid_at
        touched.append(rec)

    return touched


def reset_receivables(receivables: Iterable[ReceivableORM]) -> None:
    """Zera pagamento/status das parcelas não canceladas (antes de redistribuir)."""
    for rec in receivables:
        if rec.status == ReceivableStatus.CANCELLED:
            continue
        rec.paid_amount = ZERO
        rec.status = ReceivableStatus.PENDING
        rec.paid_at = None


def outstanding_total(receivables: Iterable[ReceivableORM]) -> Decimal:
    return sum(
        (to_money(r.amount) - to_money(r.paid_amount)
         for r in receivables if r.status in OPEN_RECEIVABLE_STATUSES),
        ZERO,
    )
