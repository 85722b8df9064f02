"""
Payroll Core - Pay Stub Models

A pay stub is an immutable snapshot of a completed payroll. Later edits to
the payroll never reach an issued stub. The only fields written after
issuance are the one-way signature fields and the rendered document URL.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Optional, List

from sqlalchemy import (
    Boolean, Date, DateTime, ForeignKey, Integer, Numeric, String, Text,
    Enum as SQLEnum, UniqueConstraint, CheckConstraint, Uuid
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payroll_core.database import Base
from payroll_core.models.base import BaseModel
from payroll_core.models.payroll import AdjustmentCategory, AdjustmentKind

if TYPE_CHECKING:
    from payroll_core.models.payroll import Payroll


# ===========================================
# PAY STUB
# ===========================================

class PayStub(BaseModel):
    """
    Numbered, signable snapshot of a completed payroll.

    Document numbers follow ``YYYYMM-NNNNN`` with a five-digit sequence
    scoped to the period.
    """

    __tablename__ = "pay_stubs"

    payroll_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("payrolls.id", ondelete="RESTRICT"),
        nullable=False,
        unique=True,
    )

    worker_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    worker_name: Mapped[str] = mapped_column(String(200), nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)

    document_number: Mapped[str] = mapped_column(String(20), nullable=False, unique=True)
    issue_date: Mapped[date] = mapped_column(Date, nullable=False)

    # Snapshot of the payroll at issuance
    base_gross_salary: Mapped[Decimal] = mapped_column(Numeric(precision=15, scale=2), nullable=False)
    total_deductions: Mapped[Decimal] = mapped_column(Numeric(precision=15, scale=2), nullable=False)
    total_benefits: Mapped[Decimal] = mapped_column(Numeric(precision=15, scale=2), nullable=False)
    total_additionals: Mapped[Decimal] = mapped_column(Numeric(precision=15, scale=2), nullable=False)
    net_salary: Mapped[Decimal] = mapped_column(Numeric(precision=15, scale=2), nullable=False)

    # Signature (written once)
    signed_by_employee: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    signature_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    signature_ip: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)
    signature_token: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    pdf_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Relationships
    items: Mapped[List["PayStubItem"]] = relationship(
        "PayStubItem",
        back_populates="pay_stub",
        cascade="all, delete-orphan",
        order_by="PayStubItem.sort_order",
        lazy="selectin",
    )
    payroll: Mapped["Payroll"] = relationship(
        "Payroll",
        back_populates="pay_stub",
    )

    __table_args__ = (
        UniqueConstraint('worker_id', 'month', 'year', name='uq_pay_stub_worker_period'),
        CheckConstraint('month >= 1 AND month <= 12', name='month_range'),
    )

    def items_for(self, category: AdjustmentCategory) -> List["PayStubItem"]:
        return [item for item in self.items if item.category == category]

    @property
    def deductions(self) -> List["PayStubItem"]:
        return self.items_for(AdjustmentCategory.DEDUCTION)

    @property
    def benefits(self) -> List["PayStubItem"]:
        return self.items_for(AdjustmentCategory.BENEFIT)

    @property
    def additionals(self) -> List["PayStubItem"]:
        return self.items_for(AdjustmentCategory.ADDITIONAL)

    @property
    def sequence(self) -> int:
        return int(self.document_number.split("-")[1])

    def __repr__(self) -> str:
        return f"<PayStub(id={self.id}, number={self.document_number}, signed={self.signed_by_employee})>"


class PayStubItem(BaseModel):
    """
    Snapshot of one payroll adjustment with its resolved amount.
    """

    __tablename__ = "pay_stub_items"

    pay_stub_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("pay_stubs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    category: Mapped[AdjustmentCategory] = mapped_column(
        SQLEnum(AdjustmentCategory),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    kind: Mapped[AdjustmentKind] = mapped_column(
        SQLEnum(AdjustmentKind),
        nullable=False,
    )
    value: Mapped[Decimal] = mapped_column(Numeric(precision=15, scale=4), nullable=False)
    calculated_value: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=2), nullable=False,
        comment="Resolved currency amount at issuance",
    )

    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    pay_stub: Mapped["PayStub"] = relationship(
        "PayStub",
        back_populates="items",
    )


# ===========================================
# DOCUMENT SEQUENCE
# ===========================================

class DocumentSequence(Base):
    """
    Last issued pay stub sequence number per period.

    Numbers are taken from here rather than counted from existing stubs, so
    a deleted stub never frees its number for reuse.
    """

    __tablename__ = "document_sequences"

    year: Mapped[int] = mapped_column(Integer, primary_key=True)
    month: Mapped[int] = mapped_column(Integer, primary_key=True)
    last_value: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    def __repr__(self) -> str:
        return f"<DocumentSequence({self.year:04d}-{self.month:02d}, last={self.last_value})>"
