from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from fiado.infra.models import PaymentMethod, ReceivableORM
from fiado.services.receivables_service import display_status


class ReceivableOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    sale_id: int
    installment: int
    amount: Decimal
    paid_amount: Decimal
    due_date: date
    status: str  # PENDING | PARTIAL | PAID | CANCELLED | OVERDUE
    paid_at: Optional[datetime]

    @classmethod
    def build(cls, rec: ReceivableORM, today: date) -> "ReceivableOut":
        out = cls.model_validate(rec)
        out.status = display_status(rec, today)
        return out


class ReceivablePay(BaseModel):
    amount: Decimal = Field(gt=0)
    payment_method: PaymentMethod = PaymentMethod.CASH
    paid_at: Optional[datetime] = None


class ReceivablesSummaryOut(BaseModel):
    client_id: int
    total_due: Decimal
    pending_count: int
    overdue_count: int
