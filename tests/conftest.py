"""
Payroll Core - Test Configuration

Pytest fixtures and configuration.
"""

from decimal import Decimal
from typing import AsyncGenerator, Callable
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker

import payroll_core.models  # noqa: F401
from payroll_core.database import Base, get_async_session
from payroll_core.models.payroll import Payroll, PayrollStatus
from payroll_core.services.payroll_service import PayrollService
from payroll_core.services.worker_directory import StaticWorkerDirectory, get_worker_directory
from payroll_core.utils.locks import KeyedLockRegistry
from main import app


@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path):
    """File-backed SQLite engine so several sessions share one database."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'payroll_test.db'}",
        echo=False,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker:
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database session for each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def locks() -> KeyedLockRegistry:
    return KeyedLockRegistry()


@pytest.fixture
def payroll_service(db_session: AsyncSession, locks: KeyedLockRegistry) -> PayrollService:
    return PayrollService(db_session, locks=locks)


# ===========================================
# WORKER FIXTURES
# ===========================================

@pytest.fixture
def roster() -> list:
    """Worker directory payloads in the directory's own field names."""
    return [
        {"id": "w-001", "nome": "Ana Souza", "salario": 5000, "tipo_contrato": "CLT"},
        {"id": "w-002", "nome": "Bruno Lima", "salario": "R$ 3.000,00", "ajuda": 600, "tipo_contrato": "clt"},
        {"id": "w-003", "nome": "Carla Dias", "salario": 8000, "tipo_contrato": "CNPJ"},
    ]


@pytest.fixture
def worker_directory(roster) -> StaticWorkerDirectory:
    return StaticWorkerDirectory(roster)


@pytest.fixture
def make_payroll(payroll_service: PayrollService) -> Callable:
    """Factory for persisted payrolls."""

    async def _make(
        worker_id: str = None,
        base_gross_salary: Decimal = Decimal("5000.00"),
        month: int = 1,
        year: int = 2025,
        worker_name: str = "Test Worker",
    ) -> Payroll:
        return await payroll_service.create_payroll(
            worker_id=worker_id or f"w-{uuid4().hex[:8]}",
            worker_name=worker_name,
            month=month,
            year=year,
            base_gross_salary=base_gross_salary,
        )

    return _make


@pytest.fixture
def make_completed_payroll(make_payroll: Callable, payroll_service: PayrollService) -> Callable:

    async def _make(**kwargs) -> Payroll:
        payroll = await make_payroll(**kwargs)
        return await payroll_service.set_status(payroll.id, PayrollStatus.COMPLETED)

    return _make


# ===========================================
# HTTP CLIENT
# ===========================================

@pytest_asyncio.fixture(scope="function")
async def client(
    session_factory: async_sessionmaker,
    worker_directory: StaticWorkerDirectory,
) -> AsyncGenerator[AsyncClient, None]:
    """Create a test client with database and worker directory overrides."""

    async def override_get_session():
        async with session_factory() as session:
            yield session

    async def override_get_directory():
        yield worker_directory

    app.dependency_overrides[get_async_session] = override_get_session
    app.dependency_overrides[get_worker_directory] = override_get_directory

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
