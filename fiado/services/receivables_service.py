from __future__ import annotations

from datetime import date
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from fiado.infra.models import (
    ReceivableORM,
    ReceivableStatus,
    SaleORM,
    OPEN_RECEIVABLE_STATUSES,
    OVERDUE,
)
from fiado.services.clock import Clock, system_clock
from fiado.services.distribution import outstanding_total
from fiado.services.errors import NotFoundError


def display_status(rec: ReceivableORM, today: date) -> str:
    """Status mostrado pro cliente: parcela em aberto e vencida aparece como OVERDUE."""
    if rec.status in OPEN_RECEIVABLE_STATUSES and rec.due_date < today:
        return OVERDUE
    return rec.status.value


def get_receivable(db: Session, receivable_id: int) -> ReceivableORM:
    rec = db.get(ReceivableORM, receivable_id)
    if not rec:
        raise NotFoundError("Parcela não encontrada.")
    return rec


def list_receivables(
    db: Session,
    *,
    sale_id: Optional[int] = None,
    client_id: Optional[int] = None,
    status: Optional[str | Sequence[str]] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    limit: int = 50,
    clock: Clock = system_clock,
) -> list[ReceivableORM]:
    today = clock.today()

    stmt = (
        select(ReceivableORM)
        .options(selectinload(ReceivableORM.sale).selectinload(SaleORM.client))
        .order_by(ReceivableORM.due_date.asc(), ReceivableORM.id.asc())
    )

    if sale_id is not None:
        stmt = stmt.where(ReceivableORM.sale_id == sale_id)
    if client_id is not None:
        stmt = stmt.join(SaleORM, SaleORM.id == ReceivableORM.sale_id).where(SaleORM.client_id == client_id)

    statuses = [status] if isinstance(status, str) else list(status or [])
    statuses = [s.strip().upper() for s in statuses if s and s.strip()]

    if not statuses:
        # canceladas só aparecem se pedir explicitamente
        stmt = stmt.where(ReceivableORM.status != ReceivableStatus.CANCELLED)
    else:
        wants_overdue = OVERDUE in statuses
        stored = [ReceivableStatus(s) for s in statuses if s != OVERDUE]

        conds = []
        if stored:
            conds.append(ReceivableORM.status.in_(stored))
        if wants_overdue:
            conds.append(
                ReceivableORM.status.in_(OPEN_RECEIVABLE_STATUSES) & (ReceivableORM.due_date < today)
            )
        cond = conds[0]
        for c in conds[1:]:
            cond = cond | c
        stmt = stmt.where(cond)

    if start_date is not None and end_date is not None:
        stmt = stmt.where(ReceivableORM.due_date >= start_date, ReceivableORM.due_date <= end_date)

    stmt = stmt.limit(limit)
    return list(db.execute(stmt).scalars().all())


def list_overdue(db: Session, *, limit: int = 50, clock: Clock = system_clock) -> list[ReceivableORM]:
    return list_receivables(db, status=OVERDUE, limit=limit, clock=clock)


def summary_by_client(db: Session, client_id: int, *, clock: Clock = system_clock) -> dict:
    today = clock.today()

    stmt = (
        select(ReceivableORM)
        .join(SaleORM, SaleORM.id == ReceivableORM.sale_id)
        .where(
            SaleORM.client_id == client_id,
            ReceivableORM.status.in_(OPEN_RECEIVABLE_STATUSES),
        )
    )
    rows = db.execute(stmt).scalars().all()

    return {
        "client_id": client_id,
        "total_due": outstanding_total(rows),
        "pending_count": len(rows),
        "overdue_count": sum(1 for r in rows if r.due_date < today),
    }
