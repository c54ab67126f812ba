from __future__ import annotations

import enum
from datetime import datetime, date
from decimal import Decimal
from typing import Optional, List

from sqlalchemy import (
    String, Integer, DateTime, Date, Numeric, ForeignKey, Text,
    Enum as SAEnum, UniqueConstraint, Index, CheckConstraint, func
)

from sqlalchemy.orm import (
    DeclarativeBase, Mapped, mapped_column, relationship
)


# base
class Base(DeclarativeBase):
    pass

# enums = status
class SaleStatus(str, enum.Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"

class ReceivableStatus(str, enum.Enum):
    PENDING = "PENDING"
    PARTIAL = "PARTIAL"
    PAID = "PAID"
    CANCELLED = "CANCELLED"

# status só de leitura (nunca gravado): parcela em aberto com vencimento passado
OVERDUE = "OVERDUE"

OPEN_RECEIVABLE_STATUSES = (ReceivableStatus.PENDING, ReceivableStatus.PARTIAL)

class PaymentMethod(str, enum.Enum):
    CASH = "CASH"
    PIX = "PIX"
    DEBIT = "DEBIT"
    CREDIT = "CREDIT"

class FeeAbsorber(str, enum.Enum):
    SELLER = "SELLER"
    CLIENT = "CLIENT"

# models
class ClientORM(Base):
    __tablename__ = "clients"
    __table_args__ = (
        Index("ix_clients_name", "name"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(140), nullable=False)
    phone: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # preenchido quando o cliente veio da planilha antiga
    imported_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    sales: Mapped[List["SaleORM"]] = relationship(back_populates="client")


class SaleORM(Base):
    __tablename__ = "sales"
    __table_args__ = (
        UniqueConstraint("public_id", name="uq_sales_public_id"),
        Index("ix_sales_status", "status"),
        Index("ix_sales_client_id", "client_id"),
        CheckConstraint("installment_plan >= 1", name="ck_sales_installment_plan"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)

    public_id: Mapped[str] = mapped_column(String(32), nullable=False)

    client_id: Mapped[Optional[int]] = mapped_column(ForeignKey("clients.id"), nullable=True)

    total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    # derivados: sempre recalculados a partir de payments
    paid_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    total_fees: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    net_total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))

    status: Mapped[SaleStatus] = mapped_column(
        SAEnum(SaleStatus, name="sale_status"),
        nullable=False,
        default=SaleStatus.PENDING,
    )

    # plano do fiado
    installment_plan: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    fixed_installment_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    payment_day: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    # relações
    client: Mapped[Optional["ClientORM"]] = relationship(back_populates="sales")

    receivables: Mapped[List["ReceivableORM"]] = relationship(
        back_populates="sale",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ReceivableORM.installment",
    )
    payments: Mapped[List["PaymentORM"]] = relationship(
        back_populates="sale",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="PaymentORM.paid_at",
    )


class ReceivableORM(Base):
    __tablename__ = "receivables"
    __table_args__ = (
        UniqueConstraint("sale_id", "installment", name="uq_receivables_sale_installment"),
        Index("ix_receivables_due", "due_date", "status"),
        CheckConstraint("installment >= 1", name="ck_receivables_installment"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    sale_id: Mapped[int] = mapped_column(ForeignKey("sales.id", ondelete="CASCADE"), nullable=False)

    installment: Mapped[int] = mapped_column(Integer, nullable=False)  # 1..N
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    paid_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    due_date: Mapped[date] = mapped_column(Date, nullable=False)

    status: Mapped[ReceivableStatus] = mapped_column(
        SAEnum(ReceivableStatus, name="receivable_status"),
        nullable=False,
        default=ReceivableStatus.PENDING,
    )

    # só preenchido enquanto PAID
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    sale: Mapped["SaleORM"] = relationship(back_populates="receivables")

    @property
    def remaining(self) -> Decimal:
        return Decimal(self.amount) - Decimal(self.paid_amount or 0)


class PaymentORM(Base):
    __tablename__ = "payments"
    __table_args__ = (
        Index("ix_payments_sale_paid_at", "sale_id", "paid_at"),
        CheckConstraint("amount > 0", name="ck_payments_amount_positive"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    sale_id: Mapped[int] = mapped_column(ForeignKey("sales.id", ondelete="CASCADE"), nullable=False)

    method: Mapped[PaymentMethod] = mapped_column(
        SAEnum(PaymentMethod, name="payment_method"),
        nullable=False,
        default=PaymentMethod.CASH,
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    # taxa da maquininha
    fee_percent: Mapped[Decimal] = mapped_column(Numeric(7, 4), nullable=False, default=Decimal("0"))
    fee_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    fee_absorber: Mapped[FeeAbsorber] = mapped_column(
        SAEnum(FeeAbsorber, name="fee_absorber"),
        nullable=False,
        default=FeeAbsorber.SELLER,
    )
    # parcelas do cartão (não tem relação com as parcelas do fiado)
    installments: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    paid_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    sale: Mapped["SaleORM"] = relationship(back_populates="payments")
