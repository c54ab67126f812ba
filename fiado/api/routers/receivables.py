from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, HTTPException, Query
from sqlalchemy.orm import Session

from fiado.api.deps import ClockDep, DBSession, api_error
from fiado.config import settings
from fiado.infra.cache import cache, invalidate_receivables, summary_key
from fiado.schemas.receivables import ReceivableOut, ReceivablePay, ReceivablesSummaryOut
from fiado.services.clock import Clock
from fiado.services.errors import ServiceError
from fiado.services.payments_service import register_payment
from fiado.services.receivables_service import list_overdue, list_receivables, summary_by_client

router = APIRouter()


@router.get("", response_model=list[ReceivableOut])
def list_receivables_endpoint(
    db: Session = DBSession,
    clock: Clock = ClockDep,
    sale_id: Optional[int] = Query(default=None),
    client_id: Optional[int] = Query(default=None),
    status: Optional[list[str]] = Query(default=None, description="PENDING|PARTIAL|PAID|CANCELLED|OVERDUE"),
    start_date: Optional[date] = Query(default=None),
    end_date: Optional[date] = Query(default=None),
    limit: int = Query(50, ge=1, le=500),
):
    try:
        rows = list_receivables(
            db,
            sale_id=sale_id,
            client_id=client_id,
            status=status,
            start_date=start_date,
            end_date=end_date,
            limit=limit,
            clock=clock,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    today = clock.today()
    return [ReceivableOut.build(r, today) for r in rows]


@router.get("/overdue", response_model=list[ReceivableOut])
def list_overdue_endpoint(
    db: Session = DBSession,
    clock: Clock = ClockDep,
    limit: int = Query(50, ge=1, le=500),
):
    today = clock.today()
    return [ReceivableOut.build(r, today) for r in list_overdue(db, limit=limit, clock=clock)]


@router.get("/summary/{client_id}", response_model=ReceivablesSummaryOut)
def summary_endpoint(client_id: int, db: Session = DBSession, clock: Clock = ClockDep):
    key = summary_key(client_id)
    cached = cache.get(key)
    if cached is not None:
        return cached

    data = summary_by_client(db, client_id, clock=clock)
    cache.set(key, data, settings.RECEIVABLES_CACHE_TTL_SECONDS)
    return data


@router.post("/{receivable_id}/pay", response_model=ReceivableOut)
def pay_receivable_endpoint(
    receivable_id: int,
    payload: ReceivablePay,
    db: Session = DBSession,
    clock: Clock = ClockDep,
):
    try:
        _, rec = register_payment(
            db,
            receivable_id,
            payload.amount,
            payload.payment_method,
            payload.paid_at,
            clock=clock,
        )
        db.commit()
    except ServiceError as e:
        raise api_error(db, e)
    except Exception:
        db.rollback()
        raise HTTPException(status_code=500, detail="Erro ao registrar pagamento da parcela.")

    invalidate_receivables()
    return ReceivableOut.build(rec, clock.today())
