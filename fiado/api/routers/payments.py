from __future__ import annotations

from fastapi import APIRouter, HTTPException
from sqlalchemy.orm import Session

from fiado.api.deps import DBSession, api_error
from fiado.infra.cache import invalidate_receivables
from fiado.schemas.payments import PaymentOut, PaymentUpdate
from fiado.schemas.sales import SaleOut
from fiado.services.errors import ServiceError
from fiado.services.payments_service import delete_payment, update_payment

router = APIRouter()


@router.put("/{payment_id}", response_model=PaymentOut)
def update_payment_endpoint(payment_id: int, payload: PaymentUpdate, db: Session = DBSession):
    try:
        payment = update_payment(
            db,
            payment_id,
            amount=payload.amount,
            method=payload.method,
            paid_at=payload.paid_at,
        )
        db.commit()
    except ServiceError as e:
        raise api_error(db, e)
    except Exception:
        db.rollback()
        raise HTTPException(status_code=500, detail="Erro ao atualizar pagamento.")

    invalidate_receivables()
    return payment


@router.delete("/{payment_id}", response_model=SaleOut)
def delete_payment_endpoint(payment_id: int, db: Session = DBSession):
    try:
        sale = delete_payment(db, payment_id)
        db.commit()
    except ServiceError as e:
        raise api_error(db, e)
    except Exception:
        db.rollback()
        raise HTTPException(status_code=500, detail="Erro ao excluir pagamento.")

    invalidate_receivables()
    return sale
