"""
Payroll Core - Payroll Lifecycle

draft -> processing -> completed, with canceled reachable from any
non-terminal state. Completed payrolls can be reopened by a batch rerun
(completed -> processing) and still accept corrections, each of which
triggers recalculation.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, FrozenSet, Optional, Union

from payroll_core.models.payroll import Payroll, PayrollRun, PayrollStatus
from payroll_core.utils.error_handling import (
    InvalidTransitionException,
    PayrollLockedException,
)


logger = logging.getLogger(__name__)


TRANSITIONS: Dict[PayrollStatus, FrozenSet[PayrollStatus]] = {
    PayrollStatus.DRAFT: frozenset({
        PayrollStatus.PROCESSING,
        PayrollStatus.COMPLETED,
        PayrollStatus.CANCELED,
    }),
    PayrollStatus.PROCESSING: frozenset({
        PayrollStatus.COMPLETED,
        PayrollStatus.CANCELED,
    }),
    PayrollStatus.COMPLETED: frozenset({
        PayrollStatus.PROCESSING,
        PayrollStatus.COMPLETED,
        PayrollStatus.CANCELED,
    }),
    PayrollStatus.CANCELED: frozenset(),
}

# Statuses in which line items and base salary may change
MUTABLE_STATUSES = frozenset({PayrollStatus.DRAFT, PayrollStatus.COMPLETED})

# Statuses a caller may request directly; the others are driven by batch runs
CALLER_TARGETS = (PayrollStatus.COMPLETED, PayrollStatus.CANCELED)


def can_transition(current: PayrollStatus, target: PayrollStatus) -> bool:
    return PayrollStatus(target) in TRANSITIONS[PayrollStatus(current)]


def can_mutate(status: PayrollStatus) -> bool:
    return PayrollStatus(status) in MUTABLE_STATUSES


def is_pay_stub_eligible(status: PayrollStatus) -> bool:
    return PayrollStatus(status) == PayrollStatus.COMPLETED


def ensure_mutable(payroll: Payroll) -> None:
    if not can_mutate(payroll.status):
        raise PayrollLockedException(payroll.id, payroll.status.value)


def transition(
    record: Union[Payroll, PayrollRun],
    target: PayrollStatus,
    now: Optional[datetime] = None,
) -> Union[Payroll, PayrollRun]:
    """
    Move a payroll or payroll run to ``target``.

    ``processed_at`` is stamped the first time the record reaches
    completed and is never overwritten afterwards.

    Raises:
        InvalidTransitionException: target not reachable from the current status
    """
    target = PayrollStatus(target)
    current = PayrollStatus(record.status)
    if not can_transition(current, target):
        raise InvalidTransitionException(type(record).__name__, current.value, target.value)

    record.status = target
    if target == PayrollStatus.COMPLETED and record.processed_at is None:
        record.processed_at = now or datetime.now(timezone.utc)

    if current != target:
        logger.info(f"{type(record).__name__} {record.id}: {current.value} -> {target.value}")
    return record
