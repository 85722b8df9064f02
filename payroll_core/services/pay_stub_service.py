"""
Payroll Core - Pay Stub Service

Issues numbered pay stubs for completed payrolls and records the employee's
signature.

- Generation is idempotent per payroll: asking again returns the stub that
  already exists, with the same document number.
- Document numbers are ``YYYYMM-NNNNN``. The sequence is per period, never
  reused and allocated under a per-period sequence lock.
- Signing is one-way. A second signature is rejected.
"""

import logging
import secrets
import uuid
from datetime import date, datetime, timezone
from typing import List, Optional

from sqlalchemy import select, update, and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_core.models.pay_stub import DocumentSequence, PayStub, PayStubItem
from payroll_core.models.payroll import AdjustmentCategory, Payroll, PayrollStatus
from payroll_core.services.adjustment_resolver import resolve
from payroll_core.services.payroll_lifecycle import is_pay_stub_eligible
from payroll_core.utils.error_handling import (
    CannotDeleteException,
    ConcurrencyException,
    PayrollNotFoundException,
    PayStubAlreadySignedException,
    PayStubNotEligibleException,
    PayStubNotFoundException,
    validate_period,
)
from payroll_core.utils.locks import (
    KeyedLockRegistry,
    pay_stub_key,
    payroll_key,
    payroll_locks,
    sequence_key,
)


logger = logging.getLogger(__name__)


def format_document_number(month: int, year: int, sequence: int) -> str:
    """``YYYYMM-NNNNN``"""
    return f"{year:04d}{month:02d}-{sequence:05d}"


class PayStubService:
    """Service for pay stub issuance and signature."""

    def __init__(self, db: AsyncSession, locks: KeyedLockRegistry = None):
        self.db = db
        self.locks = locks if locks is not None else payroll_locks

    # ===========================================
    # GENERATION
    # ===========================================

    async def generate(self, payroll_id: uuid.UUID, issue_date: Optional[date] = None) -> PayStub:
        """
        Issue the pay stub for a completed payroll.

        Returns the existing stub when one has already been issued.

        Raises:
            PayrollNotFoundException: payroll does not exist
            PayStubNotEligibleException: payroll is not completed
        """
        existing = await self._find_by_payroll(payroll_id)
        if existing:
            return existing

        async with self.locks.hold(payroll_key(payroll_id)):
            payroll = await self._get_payroll(payroll_id)
            if not is_pay_stub_eligible(payroll.status):
                raise PayStubNotEligibleException(payroll_id, payroll.status.value)

            async with self.locks.hold(sequence_key(payroll.month, payroll.year)):
                existing = await self._find_by_payroll(payroll_id)
                if existing:
                    return existing

                sequence = await self._next_sequence(payroll.month, payroll.year)
                pay_stub = self._snapshot(payroll, sequence, issue_date)
                self.db.add(pay_stub)

                try:
                    await self.db.commit()
                except IntegrityError as e:
                    await self.db.rollback()
                    # Issued by another process between the check and the insert
                    existing = await self._find_by_payroll(payroll_id)
                    if existing:
                        return existing
                    raise ConcurrencyException("PayStub", payroll_id) from e

        logger.info(
            f"Issued pay stub {pay_stub.document_number} for payroll {payroll_id} "
            f"(worker {payroll.worker_id})"
        )
        return pay_stub

    async def generate_for_month(self, month: int, year: int) -> List[PayStub]:
        """Issue (or return) the pay stub of every completed payroll in a period."""
        validate_period(month, year)
        result = await self.db.execute(
            select(Payroll.id)
            .where(
                and_(
                    Payroll.month == month,
                    Payroll.year == year,
                    Payroll.status == PayrollStatus.COMPLETED,
                )
            )
            .order_by(Payroll.worker_name)
        )
        payroll_ids = list(result.scalars().all())

        pay_stubs = []
        for payroll_id in payroll_ids:
            pay_stubs.append(await self.generate(payroll_id))
        return pay_stubs

    def _snapshot(self, payroll: Payroll, sequence: int, issue_date: Optional[date]) -> PayStub:
        items = []
        base = payroll.base_gross_salary
        for category in AdjustmentCategory:
            resolved, _ = resolve(payroll.items(category), base)
            for adjustment in resolved:
                items.append(PayStubItem(
                    id=uuid.uuid4(),
                    category=category,
                    name=adjustment.name,
                    description=adjustment.description,
                    kind=adjustment.kind,
                    value=adjustment.value,
                    calculated_value=adjustment.resolved_value,
                    sort_order=len(items),
                ))

        return PayStub(
            id=uuid.uuid4(),
            payroll_id=payroll.id,
            worker_id=payroll.worker_id,
            worker_name=payroll.worker_name,
            month=payroll.month,
            year=payroll.year,
            document_number=format_document_number(payroll.month, payroll.year, sequence),
            issue_date=issue_date or datetime.now(timezone.utc).date(),
            base_gross_salary=payroll.base_gross_salary,
            total_deductions=payroll.total_deductions,
            total_benefits=payroll.total_benefits,
            total_additionals=payroll.total_additionals,
            net_salary=payroll.net_salary,
            signed_by_employee=False,
            items=items,
        )

    async def _next_sequence(self, month: int, year: int) -> int:
        """Reserve the next document number of a period."""
        result = await self.db.execute(
            select(DocumentSequence)
            .where(and_(DocumentSequence.year == year, DocumentSequence.month == month))
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        counter = result.scalar_one_or_none()
        if counter is None:
            counter = DocumentSequence(year=year, month=month, last_value=0)
            self.db.add(counter)

        counter.last_value += 1
        return counter.last_value

    # ===========================================
    # QUERIES
    # ===========================================

    async def get_pay_stub(self, pay_stub_id: uuid.UUID) -> PayStub:
        result = await self.db.execute(
            select(PayStub)
            .where(PayStub.id == pay_stub_id)
            .execution_options(populate_existing=True)
        )
        pay_stub = result.scalar_one_or_none()
        if not pay_stub:
            raise PayStubNotFoundException(pay_stub_id)
        return pay_stub

    async def get_by_payroll(self, payroll_id: uuid.UUID) -> PayStub:
        pay_stub = await self._find_by_payroll(payroll_id)
        if not pay_stub:
            raise PayStubNotFoundException(f"payroll:{payroll_id}")
        return pay_stub

    async def get_by_document_number(self, document_number: str) -> PayStub:
        result = await self.db.execute(
            select(PayStub).where(PayStub.document_number == document_number)
        )
        pay_stub = result.scalar_one_or_none()
        if not pay_stub:
            raise PayStubNotFoundException(document_number)
        return pay_stub

    async def list_by_worker(self, worker_id: str, year: Optional[int] = None) -> List[PayStub]:
        query = select(PayStub).where(PayStub.worker_id == worker_id)
        if year:
            query = query.where(PayStub.year == year)
        query = query.order_by(PayStub.year.desc(), PayStub.month.desc())

        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def list_by_month(self, month: int, year: int) -> List[PayStub]:
        validate_period(month, year)
        result = await self.db.execute(
            select(PayStub)
            .where(and_(PayStub.month == month, PayStub.year == year))
            .order_by(PayStub.document_number)
        )
        return list(result.scalars().all())

    # ===========================================
    # SIGNATURE & DOCUMENT
    # ===========================================

    async def sign(self, pay_stub_id: uuid.UUID, client_ip: Optional[str] = None) -> PayStub:
        """
        Record the employee's signature.

        Raises:
            PayStubNotFoundException: pay stub does not exist
            PayStubAlreadySignedException: pay stub was signed before
        """
        async with self.locks.hold(pay_stub_key(pay_stub_id)):
            pay_stub = await self.get_pay_stub(pay_stub_id)
            if pay_stub.signed_by_employee:
                raise PayStubAlreadySignedException(pay_stub_id, pay_stub.signature_date)

            signed_at = datetime.now(timezone.utc)
            # Conditional on the row still being unsigned
            result = await self.db.execute(
                update(PayStub)
                .where(and_(PayStub.id == pay_stub_id, PayStub.signed_by_employee.is_(False)))
                .values(
                    signed_by_employee=True,
                    signature_date=signed_at,
                    signature_ip=client_ip,
                    signature_token=secrets.token_hex(32),
                    updated_at=signed_at,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await self.db.rollback()
                pay_stub = await self.get_pay_stub(pay_stub_id)
                raise PayStubAlreadySignedException(pay_stub_id, pay_stub.signature_date)

            await self.db.commit()

        logger.info(f"Pay stub {pay_stub.document_number} signed from {client_ip or 'unknown address'}")
        return await self.get_pay_stub(pay_stub_id)

    async def attach_pdf(self, pay_stub_id: uuid.UUID, pdf_url: str) -> PayStub:
        """Record where the rendered document is stored."""
        async with self.locks.hold(pay_stub_key(pay_stub_id)):
            pay_stub = await self.get_pay_stub(pay_stub_id)
            pay_stub.pdf_url = pdf_url
            await self.db.commit()
            return pay_stub

    async def delete_pay_stub(self, pay_stub_id: uuid.UUID) -> None:
        """Delete an unsigned pay stub. Its document number is not reused."""
        async with self.locks.hold(pay_stub_key(pay_stub_id)):
            pay_stub = await self.get_pay_stub(pay_stub_id)
            if pay_stub.signed_by_employee:
                raise CannotDeleteException("PayStub", pay_stub_id, "pay stub has been signed")

            await self.db.delete(pay_stub)
            await self.db.commit()
            logger.info(f"Deleted pay stub {pay_stub.document_number}")

    # ===========================================
    # HELPERS
    # ===========================================

    async def _find_by_payroll(self, payroll_id: uuid.UUID) -> Optional[PayStub]:
        result = await self.db.execute(
            select(PayStub)
            .where(PayStub.payroll_id == payroll_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _get_payroll(self, payroll_id: uuid.UUID) -> Payroll:
        result = await self.db.execute(
            select(Payroll)
            .where(Payroll.id == payroll_id)
            .execution_options(populate_existing=True)
        )
        payroll = result.scalar_one_or_none()
        if not payroll:
            raise PayrollNotFoundException(payroll_id)
        return payroll
