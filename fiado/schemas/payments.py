from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from fiado.infra.models import PaymentMethod, FeeAbsorber


class PaymentIn(BaseModel):
    method: PaymentMethod = PaymentMethod.CASH
    amount: Decimal = Field(gt=0)
    fee_percent: Decimal = Field(default=Decimal("0"), ge=0)
    fee_absorber: FeeAbsorber = FeeAbsorber.SELLER
    # parcelas do cartão
    installments: int = Field(default=1, ge=1, le=12)


class AddPayment(PaymentIn):
    paid_at: Optional[datetime] = None  # se None, usa agora


class PaymentUpdate(BaseModel):
    amount: Optional[Decimal] = Field(default=None, gt=0)
    method: Optional[PaymentMethod] = None
    paid_at: Optional[datetime] = None


class PaymentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    sale_id: int
    method: str
    amount: Decimal
    fee_percent: Decimal
    fee_amount: Decimal
    fee_absorber: str
    installments: int
    paid_at: datetime
