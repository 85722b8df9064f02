"""
Payroll Core - SQLAlchemy Models Package

This package contains all database models for the application.
"""

from payroll_core.models.base import BaseModel, TimestampMixin
from payroll_core.models.payroll import (
    Payroll,
    PayrollAdjustment,
    PayrollRun,
    PayrollRunEntry,
    PayrollStatus,
    AdjustmentCategory,
    AdjustmentKind,
    AdjustmentSource,
    ContractType,
)
from payroll_core.models.pay_stub import PayStub, PayStubItem, DocumentSequence

__all__ = [
    "BaseModel",
    "TimestampMixin",
    "Payroll",
    "PayrollAdjustment",
    "PayrollRun",
    "PayrollRunEntry",
    "PayrollStatus",
    "AdjustmentCategory",
    "AdjustmentKind",
    "AdjustmentSource",
    "ContractType",
    "PayStub",
    "PayStubItem",
    "DocumentSequence",
]
