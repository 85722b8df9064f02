"""
Payroll Core - Services Package

Business logic services.
"""

from payroll_core.services.payroll_service import PayrollService
from payroll_core.services.batch_payroll_service import (
    BatchPayrollService,
    BatchResult,
    SkippedWorker,
)
from payroll_core.services.pay_stub_service import PayStubService
from payroll_core.services.salary_calculator import (
    SalaryCalculation,
    SalaryCalculator,
    calculate_salary,
)
from payroll_core.services.worker_directory import (
    HttpWorkerDirectory,
    StaticWorkerDirectory,
    WorkerDirectory,
    get_worker_directory,
)

# Tax Calculators
from payroll_core.services.tax_calculators import StatutoryCalculator


__all__ = [
    "PayrollService",
    "BatchPayrollService",
    "BatchResult",
    "SkippedWorker",
    "PayStubService",
    "SalaryCalculation",
    "SalaryCalculator",
    "calculate_salary",
    "HttpWorkerDirectory",
    "StaticWorkerDirectory",
    "WorkerDirectory",
    "get_worker_directory",
    "StatutoryCalculator",
]
