from __future__ import annotations

import logging
import secrets
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable, Mapping, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from fiado.infra.models import (
    ClientORM,
    SaleORM,
    ReceivableStatus,
    SaleStatus,
    PaymentMethod,
    FeeAbsorber,
    OPEN_RECEIVABLE_STATUSES,
)
from fiado.services.clock import Clock, system_clock
from fiado.services.errors import (
    NotFoundError,
    ValidationError,
    ALREADY_CANCELLED,
    AMOUNT_EXCEEDS,
    CLIENT_REQUIRED,
    INVALID_AMOUNT,
)
from fiado.services.installment_plan import create_installment_plan
from fiado.services.money import TOLERANCE, ZERO, to_money
from fiado.services.payments_service import build_payment
from fiado.services.reconcile import load_receivables, lock_sale, reconcile_sale

logger = logging.getLogger(__name__)

ALPHABET = "23456789ABCDEFGHJKLMNPQRSTUVWXYZ"


# helpers
def generate_public_id(prefix: str, length: int = 8) -> str:
    token = "".join(secrets.choice(ALPHABET) for _ in range(length))
    return f"{prefix}-{token}"


def _unique_public_id(db: Session, model, prefix: str) -> str:
    for _ in range(30):
        pid = generate_public_id(prefix)
        exists = db.scalar(select(model.id).where(model.public_id == pid))
        if not exists:
            return pid
    raise RuntimeError(f"Falha ao gerar public_id único para prefix={prefix}.")


def get_sale(db: Session, sale_id: int) -> SaleORM:
    sale = db.get(SaleORM, sale_id)
    if not sale:
        raise NotFoundError("Venda não encontrada.")
    return sale


def create_sale(
    db: Session,
    *,
    total,
    client_id: Optional[int] = None,
    payments: Iterable[Mapping[str, Any]] = (),
    installment_plan: int = 1,
    payment_day: Optional[int] = None,
    fixed_installment_amount: Optional[Decimal] = None,
    notes: Optional[str] = None,
    clock: Clock = system_clock,
) -> SaleORM:
    """
    Cria a venda com os pagamentos feitos no balcão.

    Se sobrar saldo, a venda vira fiado: exige cliente e gera o carnê
    (`installment_plan` parcelas no `payment_day`).
    """
    total = to_money(total)
    if total <= 0:
        raise ValidationError("total deve ser maior que zero.", code=INVALID_AMOUNT)

    if client_id is not None and not db.get(ClientORM, client_id):
        raise NotFoundError("Cliente não encontrado.")

    payments = [dict(p) for p in payments]
    for p in payments:
        p["amount"] = to_money(p.get("amount"))
        if p["amount"] <= 0:
            raise ValidationError("Valor do pagamento deve ser positivo.", code=INVALID_AMOUNT)

    upfront = sum((p["amount"] for p in payments), ZERO)
    if upfront > total + TOLERANCE:
        raise ValidationError("Pagamentos excedem o total da venda.", code=AMOUNT_EXCEEDS)

    is_paid = upfront >= total - TOLERANCE
    if not is_paid and client_id is None:
        raise ValidationError("Vendas fiado precisam de um cliente vinculado.", code=CLIENT_REQUIRED)

    now = clock.now()
    sale = SaleORM(
        public_id=_unique_public_id(db, SaleORM, "VEN"),
        client_id=client_id,
        total=total,
        paid_amount=ZERO,
        total_fees=ZERO,
        net_total=total,
        status=SaleStatus.PENDING,
        installment_plan=max(1, int(installment_plan or 1)),
        payment_day=payment_day,
        fixed_installment_amount=to_money(fixed_installment_amount) if fixed_installment_amount else None,
        notes=notes,
        created_at=now,
    )
    db.add(sale)
    db.flush()

    for p in payments:
        db.add(
            build_payment(
                sale_id=sale.id,
                amount=p["amount"],
                method=p.get("method") or PaymentMethod.CASH,
                paid_at=now,
                fee_percent=p.get("fee_percent") or 0,
                fee_absorber=p.get("fee_absorber") or FeeAbsorber.SELLER,
                installments=p.get("installments") or 1,
            )
        )
    db.flush()

    if is_paid:
        reconcile_sale(db, sale)
    else:
        create_installment_plan(
            db,
            sale.id,
            total,
            upfront,
            sale.installment_plan,
            payment_day,
            fixed_installment_amount,
            clock=clock,
        )

    logger.info(
        "sale=%s created: total=%s upfront=%s status=%s",
        sale.id, total, upfront, sale.status.value,
    )
    return sale


def import_client_debt(
    db: Session,
    *,
    name: str,
    open_debt,
    paid=0,
    installments: Optional[int] = None,
    installment_amount: Optional[Decimal] = None,
    payment_day: Optional[int] = None,
    imported_at: Optional[datetime] = None,
    clock: Clock = system_clock,
) -> Tuple[ClientORM, Optional[SaleORM]]:
    """
    Importa um cliente da planilha antiga junto com a dívida em aberto.

    O que já foi pago vira um Payment em dinheiro na data da importação, e o
    restante vira carnê. Cliente sem saldo entra sem venda.
    """
    name = (name or "").strip()
    if not name:
        raise ValidationError("Nome do cliente é obrigatório.")

    open_debt = to_money(open_debt)
    paid = to_money(paid)
    if open_debt < 0 or paid < 0:
        raise ValidationError("Valores não podem ser negativos.", code=INVALID_AMOUNT)

    imported_at = imported_at or clock.now()

    client = ClientORM(name=name, imported_at=imported_at, created_at=imported_at)
    db.add(client)
    db.flush()

    if open_debt - paid <= 0:
        return client, None

    sale = SaleORM(
        public_id=_unique_public_id(db, SaleORM, "VEN"),
        client_id=client.id,
        total=open_debt,
        paid_amount=ZERO,
        total_fees=ZERO,
        net_total=open_debt,
        status=SaleStatus.PENDING,
        installment_plan=max(1, int(installments or 1)),
        payment_day=payment_day,
        notes=f"Importado em {imported_at:%d/%m/%Y}",
        created_at=imported_at,
    )
    db.add(sale)
    db.flush()

    if paid > 0:
        db.add(build_payment(sale_id=sale.id, amount=paid, method=PaymentMethod.CASH, paid_at=imported_at))
        db.flush()

    create_installment_plan(
        db,
        sale.id,
        open_debt,
        paid,
        sale.installment_plan,
        payment_day,
        installment_amount,
        clock=clock,
    )
    return client, sale


def cancel_sale(db: Session, sale_id: int) -> SaleORM:
    sale = lock_sale(db, sale_id)
    if sale.status == SaleStatus.CANCELLED:
        raise ValidationError("Venda já cancelada.", code=ALREADY_CANCELLED)

    sale.status = SaleStatus.CANCELLED

    for rec in load_receivables(db, sale_id):
        if rec.status in OPEN_RECEIVABLE_STATUSES:
            rec.status = ReceivableStatus.CANCELLED

    db.flush()
    logger.info("sale=%s cancelled", sale.id)
    return sale


def list_sales(
    db: Session,
    *,
    page: int = 1,
    page_size: int = 20,
    status: Optional[SaleStatus] = None,
    client_id: Optional[int] = None,
):
    if page < 1:
        raise ValueError("page deve ser >= 1")
    if page_size < 1 or page_size > 200:
        raise ValueError("page_size deve estar entre 1 e 200")

    q = db.query(SaleORM)

    if status is not None:
        q = q.filter(SaleORM.status == status)
    if client_id is not None:
        q = q.filter(SaleORM.client_id == client_id)

    total = q.with_entities(func.count(SaleORM.id)).scalar() or 0

    items = (
        q.order_by(SaleORM.created_at.desc(), SaleORM.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )

    return items, total
