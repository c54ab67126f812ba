from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, HTTPException, Query
from sqlalchemy.orm import Session

from fiado.api.deps import ClockDep, DBSession, api_error
from fiado.infra.cache import invalidate_receivables
from fiado.infra.models import SaleORM, SaleStatus
from fiado.schemas.payments import AddPayment, PaymentOut
from fiado.schemas.receivables import ReceivableOut
from fiado.schemas.sales import DebtImport, RescheduleIn, SaleCreate, SaleDetailOut, SaleOut
from fiado.services.clock import Clock
from fiado.services.errors import ServiceError
from fiado.services.installment_plan import reschedule
from fiado.services.payments_service import list_payments, register_payment_with_distribution
from fiado.services.reconcile import load_payments, load_receivables
from fiado.services.sales_service import (
    cancel_sale,
    create_sale,
    get_sale,
    import_client_debt,
    list_sales,
)

router = APIRouter()


def sale_detail(db: Session, sale: SaleORM, today: date) -> SaleDetailOut:
    base = SaleOut.model_validate(sale).model_dump()
    return SaleDetailOut(
        **base,
        receivables=[ReceivableOut.build(r, today) for r in load_receivables(db, sale.id, lock=False)],
        payments=[PaymentOut.model_validate(p) for p in load_payments(db, sale.id)],
    )


@router.post("", response_model=SaleDetailOut, status_code=201)
def create_sale_endpoint(payload: SaleCreate, db: Session = DBSession, clock: Clock = ClockDep):
    try:
        sale = create_sale(
            db,
            client_id=payload.client_id,
            total=payload.total,
            payments=[p.model_dump() for p in payload.payments],
            installment_plan=payload.installment_plan,
            payment_day=payload.payment_day,
            fixed_installment_amount=payload.fixed_installment_amount,
            notes=payload.notes,
            clock=clock,
        )
        db.commit()
    except ServiceError as e:
        raise api_error(db, e)
    except Exception:
        db.rollback()
        raise HTTPException(status_code=500, detail="Erro ao criar venda.")

    invalidate_receivables()
    return sale_detail(db, sale, clock.today())


@router.post("/import", response_model=dict, status_code=201)
def import_debt_endpoint(payload: DebtImport, db: Session = DBSession, clock: Clock = ClockDep):
    try:
        client, sale = import_client_debt(
            db,
            name=payload.name,
            open_debt=payload.open_debt,
            paid=payload.paid,
            installments=payload.installments,
            installment_amount=payload.installment_amount,
            payment_day=payload.payment_day,
            imported_at=payload.imported_at,
            clock=clock,
        )
        db.commit()
    except ServiceError as e:
        raise api_error(db, e)
    except Exception:
        db.rollback()
        raise HTTPException(status_code=500, detail="Erro ao importar cliente.")

    invalidate_receivables()
    return {
        "client_id": client.id,
        "sale": sale_detail(db, sale, clock.today()) if sale else None,
    }


@router.get("", response_model=dict)
def list_sales_endpoint(
    db: Session = DBSession,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=200),
    status: Optional[str] = Query(None, description="PENDING|COMPLETED|CANCELLED"),
    client_id: Optional[int] = Query(None),
):
    try:
        st = SaleStatus(status.strip().upper()) if status else None
        items, total = list_sales(db, page=page, page_size=page_size, status=st, client_id=client_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {
        "items": [SaleOut.model_validate(s) for s in items],
        "total": total,
        "page": page,
        "page_size": page_size,
    }


@router.get("/{sale_id}", response_model=SaleDetailOut)
def get_sale_endpoint(sale_id: int, db: Session = DBSession, clock: Clock = ClockDep):
    try:
        sale = get_sale(db, sale_id)
    except ServiceError as e:
        raise api_error(db, e)
    return sale_detail(db, sale, clock.today())


@router.post("/{sale_id}/cancel", response_model=SaleDetailOut)
def cancel_sale_endpoint(sale_id: int, db: Session = DBSession, clock: Clock = ClockDep):
    try:
        sale = cancel_sale(db, sale_id)
        db.commit()
    except ServiceError as e:
        raise api_error(db, e)
    except Exception:
        db.rollback()
        raise HTTPException(status_code=500, detail="Erro ao cancelar venda.")

    invalidate_receivables()
    return sale_detail(db, sale, clock.today())


@router.post("/{sale_id}/payments", response_model=SaleDetailOut)
def add_payment_endpoint(
    sale_id: int,
    payload: AddPayment,
    db: Session = DBSession,
    clock: Clock = ClockDep,
):
    try:
        sale, _ = register_payment_with_distribution(
            db,
            sale_id,
            payload.amount,
            payload.method,
            payload.paid_at,
            fee_percent=payload.fee_percent,
            fee_absorber=payload.fee_absorber,
            installments=payload.installments,
            clock=clock,
        )
        db.commit()
    except ServiceError as e:
        raise api_error(db, e)
    except Exception:
        db.rollback()
        raise HTTPException(status_code=500, detail="Erro ao adicionar pagamento.")

    invalidate_receivables()
    return sale_detail(db, sale, clock.today())


@router.get("/{sale_id}/payments", response_model=list[PaymentOut])
def list_payments_endpoint(sale_id: int, db: Session = DBSession):
    try:
        return [PaymentOut.model_validate(p) for p in list_payments(db, sale_id)]
    except ServiceError as e:
        raise api_error(db, e)


@router.patch("/{sale_id}/reschedule", response_model=dict)
def reschedule_endpoint(
    sale_id: int,
    payload: RescheduleIn,
    db: Session = DBSession,
    clock: Clock = ClockDep,
):
    try:
        sale, count = reschedule(
            db,
            sale_id,
            new_payment_day=payload.new_payment_day,
            new_start_date=payload.new_start_date,
            clock=clock,
        )
        db.commit()
    except ServiceError as e:
        raise api_error(db, e)
    except Exception:
        db.rollback()
        raise HTTPException(status_code=500, detail="Erro ao reagendar parcelas.")

    invalidate_receivables()
    return {"sale": sale_detail(db, sale, clock.today()), "rescheduled_count": count}
