from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from fiado.schemas.payments import PaymentIn, PaymentOut
from fiado.schemas.receivables import ReceivableOut


class SaleCreate(BaseModel):
    client_id: Optional[int] = None

    total: Decimal = Field(gt=0)
    payments: list[PaymentIn] = Field(default_factory=list)

    installment_plan: int = Field(default=1, ge=1, le=60)
    payment_day: Optional[int] = Field(default=None, ge=1, le=31)
    fixed_installment_amount: Optional[Decimal] = Field(default=None, gt=0)

    notes: Optional[str] = None


class DebtImport(BaseModel):
    name: str = Field(min_length=1, max_length=140)
    open_debt: Decimal = Field(ge=0)
    paid: Decimal = Field(default=Decimal("0.00"), ge=0)
    installments: Optional[int] = Field(default=None, ge=1, le=60)
    installment_amount: Optional[Decimal] = Field(default=None, gt=0)
    payment_day: Optional[int] = Field(default=None, ge=1, le=31)
    imported_at: Optional[datetime] = None


class RescheduleIn(BaseModel):
    new_payment_day: Optional[int] = Field(default=None, ge=1, le=31)
    new_start_date: Optional[date] = None


class SaleOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    public_id: str
    status: str
    client_id: Optional[int]

    total: Decimal
    paid_amount: Decimal
    total_fees: Decimal
    net_total: Decimal

    installment_plan: int
    fixed_installment_amount: Optional[Decimal] = None
    payment_day: Optional[int] = None

    notes: Optional[str] = None
    created_at: datetime


class SaleDetailOut(SaleOut):
    receivables: list[ReceivableOut] = Field(default_factory=list)
    payments: list[PaymentOut] = Field(default_factory=list)
