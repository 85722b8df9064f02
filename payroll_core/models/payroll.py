"""
Payroll Core - Payroll Models

Monthly payroll for one worker and the batch runs that produce them.

- Payroll: the aggregate for (worker, month, year). Owns its adjustments and
  the four derived totals, which are only ever written by recalculation.
- PayrollAdjustment: a deduction, benefit or additional line item, either a
  percentage of the base salary or a fixed amount.
- PayrollRun / PayrollRunEntry: one batch pass over a worker roster and the
  per-worker rows it produced.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Optional, List

from sqlalchemy import (
    DateTime, ForeignKey, Integer, Numeric, String, Text,
    Enum as SQLEnum, UniqueConstraint, CheckConstraint, Uuid
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payroll_core.models.base import BaseModel

if TYPE_CHECKING:
    from payroll_core.models.pay_stub import PayStub


# ===========================================
# ENUMS
# ===========================================

class PayrollStatus(str, Enum):
    """Payroll processing status."""
    DRAFT = "draft"
    PROCESSING = "processing"
    COMPLETED = "completed"
    CANCELED = "canceled"


class AdjustmentCategory(str, Enum):
    """Which collection an adjustment belongs to."""
    DEDUCTION = "deduction"
    BENEFIT = "benefit"
    ADDITIONAL = "additional"


class AdjustmentKind(str, Enum):
    """How an adjustment value is interpreted."""
    PERCENTAGE = "percentage"
    FIXED = "fixed"


class AdjustmentSource(str, Enum):
    """Origin of an adjustment. Batch items are replaced on reprocessing."""
    MANUAL = "manual"
    BATCH = "batch"


class ContractType(str, Enum):
    """Worker contract type."""
    EMPLOYEE = "employee"        # CLT, statutory withholding applies
    CONTRACTOR = "contractor"    # CNPJ, no withholding at source


# ===========================================
# PAYROLL
# ===========================================

class Payroll(BaseModel):
    """
    Payroll aggregate for one worker in one month.

    Invariant after every mutation:
        net_salary = base_gross_salary + total_additionals + total_benefits - total_deductions
    """

    __tablename__ = "payrolls"

    worker_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    worker_name: Mapped[str] = mapped_column(String(200), nullable=False)
    contract_type: Mapped[Optional[ContractType]] = mapped_column(
        SQLEnum(ContractType), nullable=True,
    )

    month: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)

    status: Mapped[PayrollStatus] = mapped_column(
        SQLEnum(PayrollStatus),
        default=PayrollStatus.DRAFT,
        nullable=False,
        index=True,
    )

    base_gross_salary: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=2),
        default=Decimal("0.00"),
        nullable=False,
    )

    # Derived totals (written by recalculation only)
    total_deductions: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=2),
        default=Decimal("0.00"),
        nullable=False,
    )
    total_benefits: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=2),
        default=Decimal("0.00"),
        nullable=False,
    )
    total_additionals: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=2),
        default=Decimal("0.00"),
        nullable=False,
    )
    net_salary: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=2),
        default=Decimal("0.00"),
        nullable=False,
    )

    # Employer-side, informational
    employer_contribution: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=2),
        default=Decimal("0.00"),
        nullable=False,
        comment="FGTS deposit; not part of net salary",
    )

    processed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    payroll_run_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("payroll_runs.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    # Optimistic concurrency
    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    # Relationships
    adjustments: Mapped[List["PayrollAdjustment"]] = relationship(
        "PayrollAdjustment",
        back_populates="payroll",
        cascade="all, delete-orphan",
        order_by="PayrollAdjustment.position",
        lazy="selectin",
    )
    payroll_run: Mapped[Optional["PayrollRun"]] = relationship(
        "PayrollRun",
        back_populates="payrolls",
    )
    pay_stub: Mapped[Optional["PayStub"]] = relationship(
        "PayStub",
        back_populates="payroll",
        uselist=False,
        lazy="selectin",
    )

    __table_args__ = (
        UniqueConstraint('worker_id', 'month', 'year', name='uq_payroll_worker_period'),
        CheckConstraint('month >= 1 AND month <= 12', name='month_range'),
    )

    __mapper_args__ = {
        "version_id_col": version_id,
    }

    def items(self, category: AdjustmentCategory) -> List["PayrollAdjustment"]:
        return [a for a in self.adjustments if a.category == category]

    @property
    def deductions(self) -> List["PayrollAdjustment"]:
        return self.items(AdjustmentCategory.DEDUCTION)

    @property
    def benefits(self) -> List["PayrollAdjustment"]:
        return self.items(AdjustmentCategory.BENEFIT)

    @property
    def additionals(self) -> List["PayrollAdjustment"]:
        return self.items(AdjustmentCategory.ADDITIONAL)

    @property
    def period(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"

    def find_adjustment(self, adjustment_id: uuid.UUID) -> Optional["PayrollAdjustment"]:
        for adjustment in self.adjustments:
            if adjustment.id == adjustment_id:
                return adjustment
        return None

    def next_position(self) -> int:
        return max((a.position for a in self.adjustments), default=-1) + 1

    def __repr__(self) -> str:
        return f"<Payroll(id={self.id}, worker={self.worker_id}, period={self.period}, status={self.status})>"


class PayrollAdjustment(BaseModel):
    """
    Deduction, benefit or additional line item on a payroll.

    ``value`` is percentage points (0-100) for percentage items and a currency
    amount for fixed items.
    """

    __tablename__ = "payroll_adjustments"

    payroll_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("payrolls.id", ondelete="CASCADE"),
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
        default=AdjustmentKind.FIXED,
        nullable=False,
    )
    value: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=4),
        nullable=False,
    )

    source: Mapped[AdjustmentSource] = mapped_column(
        SQLEnum(AdjustmentSource),
        default=AdjustmentSource.MANUAL,
        nullable=False,
    )

    # Display order only; never used to address an item
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    payroll: Mapped["Payroll"] = relationship(
        "Payroll",
        back_populates="adjustments",
    )

    def __repr__(self) -> str:
        return f"<PayrollAdjustment(id={self.id}, {self.category}:{self.name}={self.value} {self.kind})>"


# ===========================================
# PAYROLL RUN
# ===========================================

class PayrollRun(BaseModel):
    """
    Batch run over a worker roster for one month.

    Totals are replaced on every run, never merged with a previous pass.
    """

    __tablename__ = "payroll_runs"

    month: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)

    status: Mapped[PayrollStatus] = mapped_column(
        SQLEnum(PayrollStatus),
        default=PayrollStatus.DRAFT,
        nullable=False,
    )

    # Summary (calculated)
    employee_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_gross_salary: Mapped[Decimal] = mapped_column(
        Numeric(precision=18, scale=2),
        default=Decimal("0.00"),
        nullable=False,
    )
    total_deductions: Mapped[Decimal] = mapped_column(
        Numeric(precision=18, scale=2),
        default=Decimal("0.00"),
        nullable=False,
    )
    total_benefits: Mapped[Decimal] = mapped_column(
        Numeric(precision=18, scale=2),
        default=Decimal("0.00"),
        nullable=False,
    )
    total_net_salary: Mapped[Decimal] = mapped_column(
        Numeric(precision=18, scale=2),
        default=Decimal("0.00"),
        nullable=False,
    )
    total_employer_contributions: Mapped[Decimal] = mapped_column(
        Numeric(precision=18, scale=2),
        default=Decimal("0.00"),
        nullable=False,
    )

    skipped_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    fallback_count: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False,
        comment="Non-finite values replaced during the last run",
    )

    started_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    processed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Relationships
    entries: Mapped[List["PayrollRunEntry"]] = relationship(
        "PayrollRunEntry",
        back_populates="payroll_run",
        cascade="all, delete-orphan",
        order_by="PayrollRunEntry.worker_name",
        lazy="selectin",
    )
    payrolls: Mapped[List["Payroll"]] = relationship(
        "Payroll",
        back_populates="payroll_run",
    )

    __table_args__ = (
        UniqueConstraint('month', 'year', name='uq_payroll_run_period'),
        CheckConstraint('month >= 1 AND month <= 12', name='month_range'),
    )

    @property
    def period(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"

    def __repr__(self) -> str:
        return f"<PayrollRun(id={self.id}, period={self.period}, status={self.status})>"


class PayrollRunEntry(BaseModel):
    """
    Per-worker result row of a payroll run.
    """

    __tablename__ = "payroll_run_entries"

    payroll_run_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("payroll_runs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    payroll_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("payrolls.id", ondelete="SET NULL"),
        nullable=True,
    )

    worker_id: Mapped[str] = mapped_column(String(100), nullable=False)
    worker_name: Mapped[str] = mapped_column(String(200), nullable=False)
    contract_type: Mapped[ContractType] = mapped_column(
        SQLEnum(ContractType), nullable=False,
    )

    base_salary: Mapped[Decimal] = mapped_column(Numeric(precision=15, scale=2), nullable=False)
    gross_salary: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=2), nullable=False,
        comment="Base salary plus benefits and additionals",
    )
    statutory_withholding: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=2), default=Decimal("0.00"), nullable=False,
    )
    income_tax: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=2), default=Decimal("0.00"), nullable=False,
    )
    total_deductions: Mapped[Decimal] = mapped_column(Numeric(precision=15, scale=2), nullable=False)
    total_benefits: Mapped[Decimal] = mapped_column(Numeric(precision=15, scale=2), nullable=False)
    total_additionals: Mapped[Decimal] = mapped_column(Numeric(precision=15, scale=2), nullable=False)
    net_salary: Mapped[Decimal] = mapped_column(Numeric(precision=15, scale=2), nullable=False)
    employer_contribution: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=2), default=Decimal("0.00"), nullable=False,
    )
    fallback_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    payroll_run: Mapped["PayrollRun"] = relationship(
        "PayrollRun",
        back_populates="entries",
    )
    payroll: Mapped[Optional["Payroll"]] = relationship("Payroll")

    def __repr__(self) -> str:
        return f"<PayrollRunEntry(worker={self.worker_id}, net={self.net_salary})>"
