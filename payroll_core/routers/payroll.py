"""
Payroll Core - Payroll Router

API endpoints for payrolls, payroll runs and pay stubs.
"""

import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Path, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from payroll_core.database import get_async_session
from payroll_core.models.payroll import AdjustmentCategory, PayrollStatus
from payroll_core.schemas.payroll import (
    # Payroll schemas
    PayrollCreate,
    PayrollUpdate,
    PayrollStatusUpdate,
    PayrollResponse,
    PayrollListResponse,
    # Adjustment schemas
    AdjustmentCreate,
    AdjustmentUpdate,
    # Run schemas
    PayrollRunCreate,
    PayrollRunResponse,
    BatchProcessRequest,
    RunProcessRequest,
    BatchResultResponse,
    SkippedWorkerResponse,
    # Pay stub schemas
    PayStubResponse,
    PayStubPdfUpdate,
)
from payroll_core.services.batch_payroll_service import BatchPayrollService, BatchResult
from payroll_core.services.pay_stub_service import PayStubService
from payroll_core.services.payroll_service import PayrollService
from payroll_core.services.worker_directory import WorkerDirectory, get_worker_directory


router = APIRouter()


# Path segment -> adjustment collection
CATEGORY_SEGMENTS = {
    "deductions": AdjustmentCategory.DEDUCTION,
    "benefits": AdjustmentCategory.BENEFIT,
    "additionals": AdjustmentCategory.ADDITIONAL,
}


def get_category(
    category: str = Path(..., description="deductions, benefits or additionals"),
) -> AdjustmentCategory:
    try:
        return CATEGORY_SEGMENTS[category]
    except KeyError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown adjustment collection '{category}'",
        )


def _batch_response(result: BatchResult) -> BatchResultResponse:
    return BatchResultResponse(
        run=PayrollRunResponse.model_validate(result.run),
        succeeded=[PayrollResponse.model_validate(p) for p in result.succeeded],
        skipped=[
            SkippedWorkerResponse(worker_id=s.worker_id, name=s.name, reason=s.reason)
            for s in result.skipped
        ],
        fallbacks=[f.to_dict() for f in result.fallbacks],
    )


# ===========================================
# PAYROLL RUN ENDPOINTS
# ===========================================

@router.post(
    "/runs",
    response_model=PayrollRunResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a payroll run",
    description="Create the draft payroll run for a month. One run per period.",
)
async def create_payroll_run(
    data: PayrollRunCreate,
    db: AsyncSession = Depends(get_async_session),
):
    service = PayrollService(db)
    return await service.create_payroll_run(data.month, data.year, notes=data.notes)


@router.get(
    "/runs",
    response_model=dict,
    summary="List payroll runs",
)
async def list_payroll_runs(
    year: Optional[int] = Query(None, ge=1900, le=9999),
    run_status: Optional[PayrollStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    per_page: int = Query(10, ge=1, le=100),
    db: AsyncSession = Depends(get_async_session),
):
    service = PayrollService(db)
    runs, total = await service.list_payroll_runs(year=year, status=run_status, page=page, per_page=per_page)

    return {
        "items": [PayrollRunResponse.model_validate(r).model_dump(mode="json") for r in runs],
        "total": total,
        "page": page,
        "per_page": per_page,
        "pages": (total + per_page - 1) // per_page,
    }


@router.get("/runs/{run_id}", response_model=PayrollRunResponse, summary="Get payroll run")
async def get_payroll_run(
    run_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_session),
):
    service = PayrollService(db)
    return await service.get_payroll_run(run_id)


@router.get("/runs/{run_id}/summary", response_model=dict, summary="Payroll run summary by contract type")
async def get_payroll_run_summary(
    run_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_session),
):
    service = PayrollService(db)
    return await service.get_payroll_run_summary(run_id)


@router.post(
    "/runs/{run_id}/process",
    response_model=BatchResultResponse,
    summary="Process an existing run",
    description="Run payroll for the supplied roster against an existing run.",
)
async def process_payroll_run(
    run_id: uuid.UUID,
    data: RunProcessRequest,
    db: AsyncSession = Depends(get_async_session),
):
    service = BatchPayrollService(db)
    result = await service.process_run(run_id, data.workers)
    return _batch_response(result)


@router.post(
    "/batch",
    response_model=BatchResultResponse,
    summary="Process a month",
    description=(
        "Calculate and persist payroll for every worker of a month. Without a "
        "roster in the body the worker directory is queried."
    ),
)
async def process_batch(
    data: BatchProcessRequest,
    db: AsyncSession = Depends(get_async_session),
    directory: WorkerDirectory = Depends(get_worker_directory),
):
    service = BatchPayrollService(db, directory=directory)
    result = await service.process_batch(data.month, data.year, workers=data.workers)
    return _batch_response(result)


@router.post(
    "/workers/{worker_id}/calculate",
    response_model=PayrollResponse,
    summary="Calculate one worker's payroll",
)
async def process_worker(
    worker_id: str,
    month: int = Query(..., ge=1, le=12),
    year: int = Query(..., ge=1900, le=9999),
    db: AsyncSession = Depends(get_async_session),
    directory: WorkerDirectory = Depends(get_worker_directory),
):
    service = BatchPayrollService(db, directory=directory)
    return await service.process_worker(worker_id, month, year)


# ===========================================
# PAYROLL ENDPOINTS
# ===========================================

@router.post(
    "/payrolls",
    response_model=PayrollResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a payroll",
)
async def create_payroll(
    data: PayrollCreate,
    db: AsyncSession = Depends(get_async_session),
):
    service = PayrollService(db)
    return await service.create_payroll(
        worker_id=data.worker_id,
        worker_name=data.worker_name,
        month=data.month,
        year=data.year,
        base_gross_salary=data.base_gross_salary,
        contract_type=data.contract_type,
        notes=data.notes,
    )


@router.get("/payrolls", response_model=PayrollListResponse, summary="List payrolls")
async def list_payrolls(
    worker_id: Optional[str] = Query(None),
    month: Optional[int] = Query(None, ge=1, le=12),
    year: Optional[int] = Query(None, ge=1900, le=9999),
    payroll_status: Optional[PayrollStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: AsyncSession = Depends(get_async_session),
):
    service = PayrollService(db)
    payrolls, total = await service.list_payrolls(
        worker_id=worker_id,
        month=month,
        year=year,
        status=payroll_status,
        page=page,
        per_page=limit,
    )
    return PayrollListResponse(
        items=[PayrollResponse.model_validate(p) for p in payrolls],
        total=total,
        page=page,
        limit=limit,
    )


@router.get("/payrolls/{payroll_id}", response_model=PayrollResponse, summary="Get payroll")
async def get_payroll(
    payroll_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_session),
):
    service = PayrollService(db)
    return await service.get_payroll(payroll_id)


@router.patch("/payrolls/{payroll_id}", response_model=PayrollResponse, summary="Update payroll")
async def update_payroll(
    payroll_id: uuid.UUID,
    data: PayrollUpdate,
    db: AsyncSession = Depends(get_async_session),
):
    service = PayrollService(db)
    return await service.update_payroll(payroll_id, **data.model_dump(exclude_unset=True))


@router.delete(
    "/payrolls/{payroll_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete payroll",
)
async def delete_payroll(
    payroll_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_session),
):
    service = PayrollService(db)
    await service.delete_payroll(payroll_id)


@router.post(
    "/payrolls/{payroll_id}/recalculate",
    response_model=PayrollResponse,
    summary="Recalculate payroll totals",
)
async def recalculate_payroll(
    payroll_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_session),
):
    service = PayrollService(db)
    return await service.recalculate_payroll(payroll_id)


@router.put(
    "/payrolls/{payroll_id}/status",
    response_model=PayrollResponse,
    summary="Complete or cancel a payroll",
)
async def set_payroll_status(
    payroll_id: uuid.UUID,
    data: PayrollStatusUpdate,
    db: AsyncSession = Depends(get_async_session),
):
    service = PayrollService(db)
    return await service.set_status(payroll_id, data.status)


# ===========================================
# PAY STUB ENDPOINTS
# ===========================================

@router.post(
    "/payrolls/{payroll_id}/pay-stub",
    response_model=PayStubResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Issue pay stub",
    description="Issue the pay stub of a completed payroll. Returns the existing stub if already issued.",
)
async def generate_pay_stub(
    payroll_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_session),
):
    service = PayStubService(db)
    return await service.generate(payroll_id)


@router.get("/payrolls/{payroll_id}/pay-stub", response_model=PayStubResponse, summary="Get a payroll's pay stub")
async def get_payroll_pay_stub(
    payroll_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_session),
):
    service = PayStubService(db)
    return await service.get_by_payroll(payroll_id)


@router.post(
    "/pay-stubs/generate",
    response_model=List[PayStubResponse],
    summary="Issue pay stubs for a month",
)
async def generate_month_pay_stubs(
    month: int = Query(..., ge=1, le=12),
    year: int = Query(..., ge=1900, le=9999),
    db: AsyncSession = Depends(get_async_session),
):
    service = PayStubService(db)
    return await service.generate_for_month(month, year)


@router.get("/pay-stubs", response_model=List[PayStubResponse], summary="List pay stubs")
async def list_pay_stubs(
    worker_id: Optional[str] = Query(None),
    month: Optional[int] = Query(None, ge=1, le=12),
    year: Optional[int] = Query(None, ge=1900, le=9999),
    db: AsyncSession = Depends(get_async_session),
):
    service = PayStubService(db)
    if worker_id:
        return await service.list_by_worker(worker_id, year=year)
    if month and year:
        return await service.list_by_month(month, year)
    raise HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail="Filter by worker_id, or by month and year",
    )


@router.get(
    "/pay-stubs/by-number/{document_number}",
    response_model=PayStubResponse,
    summary="Get pay stub by document number",
)
async def get_pay_stub_by_number(
    document_number: str,
    db: AsyncSession = Depends(get_async_session),
):
    service = PayStubService(db)
    return await service.get_by_document_number(document_number)


@router.get("/pay-stubs/{pay_stub_id}", response_model=PayStubResponse, summary="Get pay stub")
async def get_pay_stub(
    pay_stub_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_session),
):
    service = PayStubService(db)
    return await service.get_pay_stub(pay_stub_id)


@router.post("/pay-stubs/{pay_stub_id}/sign", response_model=PayStubResponse, summary="Sign pay stub")
async def sign_pay_stub(
    pay_stub_id: uuid.UUID,
    request: Request,
    db: AsyncSession = Depends(get_async_session),
):
    """Record the employee's signature with the caller's address."""
    client_ip = request.client.host if request.client else None
    service = PayStubService(db)
    return await service.sign(pay_stub_id, client_ip=client_ip)


@router.put("/pay-stubs/{pay_stub_id}/pdf", response_model=PayStubResponse, summary="Attach rendered document")
async def attach_pay_stub_pdf(
    pay_stub_id: uuid.UUID,
    data: PayStubPdfUpdate,
    db: AsyncSession = Depends(get_async_session),
):
    service = PayStubService(db)
    return await service.attach_pdf(pay_stub_id, data.pdf_url)


@router.delete(
    "/pay-stubs/{pay_stub_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete an unsigned pay stub",
)
async def delete_pay_stub(
    pay_stub_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_session),
):
    service = PayStubService(db)
    await service.delete_pay_stub(pay_stub_id)


# ===========================================
# ADJUSTMENT ENDPOINTS
# ===========================================

@router.post(
    "/payrolls/{payroll_id}/{category}",
    response_model=PayrollResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add a deduction, benefit or additional",
)
async def add_adjustment(
    payroll_id: uuid.UUID,
    data: AdjustmentCreate,
    category: AdjustmentCategory = Depends(get_category),
    db: AsyncSession = Depends(get_async_session),
):
    service = PayrollService(db)
    return await service.add_adjustment(payroll_id, category, data)


@router.patch(
    "/payrolls/{payroll_id}/{category}/{adjustment_id}",
    response_model=PayrollResponse,
    summary="Update an adjustment",
)
async def update_adjustment(
    payroll_id: uuid.UUID,
    adjustment_id: uuid.UUID,
    data: AdjustmentUpdate,
    category: AdjustmentCategory = Depends(get_category),
    db: AsyncSession = Depends(get_async_session),
):
    service = PayrollService(db)
    return await service.update_adjustment(payroll_id, adjustment_id, data, category=category)


@router.delete(
    "/payrolls/{payroll_id}/{category}/{adjustment_id}",
    response_model=PayrollResponse,
    summary="Remove an adjustment",
)
async def remove_adjustment(
    payroll_id: uuid.UUID,
    adjustment_id: uuid.UUID,
    category: AdjustmentCategory = Depends(get_category),
    db: AsyncSession = Depends(get_async_session),
):
    service = PayrollService(db)
    return await service.remove_adjustment(payroll_id, adjustment_id, category=category)
