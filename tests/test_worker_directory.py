"""
Payroll Core - Worker Directory Tests

The worker service is replaced by httpx.MockTransport.
"""

from decimal import Decimal

import httpx
import pytest

from payroll_core.models.payroll import ContractType
from payroll_core.services.worker_directory import (
    HttpWorkerDirectory,
    StaticWorkerDirectory,
    parse_worker,
)
from payroll_core.utils.error_handling import (
    ValidationException,
    WorkerNotFoundException,
    WorkerServiceException,
)


WORKERS = [
    {"_id": "64a1", "nome": "Ana Souza", "salario": "5000", "tipo_contrato": "CLT"},
    {"_id": "64a2", "nome": "Bruno Lima", "salario": 3000, "ajuda": 600},
]


def directory_for(handler) -> HttpWorkerDirectory:
    client = httpx.AsyncClient(
        transport=httpx.MockTransport(handler),
        base_url="http://workers.test",
    )
    return HttpWorkerDirectory(base_url="http://workers.test", client=client)


def worker_service(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/workers":
        return httpx.Response(200, json=WORKERS)
    for raw in WORKERS:
        if request.url.path == f"/workers/{raw['_id']}":
            return httpx.Response(200, json={"data": raw})
    return httpx.Response(404, json={"error": "not found"})


class TestHttpWorkerDirectory:

    @pytest.mark.asyncio
    async def test_fetch_roster(self):
        directory = directory_for(worker_service)
        roster = await directory.fetch_roster()

        assert [w["_id"] for w in roster] == ["64a1", "64a2"]

    @pytest.mark.asyncio
    async def test_fetch_wrapped_roster(self):
        directory = directory_for(lambda request: httpx.Response(200, json={"data": WORKERS, "total": 2}))
        roster = await directory.fetch_roster()
        assert len(roster) == 2

    @pytest.mark.asyncio
    async def test_get_worker(self):
        directory = directory_for(worker_service)
        worker = await directory.get_worker("64a2")

        assert worker.worker_id == "64a2"
        assert worker.name == "Bruno Lima"
        assert worker.base_salary == Decimal("3000")
        assert worker.meal_allowance == Decimal("600")
        assert worker.contract_type == ContractType.EMPLOYEE

    @pytest.mark.asyncio
    async def test_unknown_worker(self):
        directory = directory_for(worker_service)
        with pytest.raises(WorkerNotFoundException):
            await directory.get_worker("missing")

    @pytest.mark.asyncio
    async def test_server_error(self):
        directory = directory_for(lambda request: httpx.Response(503, text="unavailable"))
        with pytest.raises(WorkerServiceException) as exc_info:
            await directory.fetch_roster()
        assert exc_info.value.status_code == 502

    @pytest.mark.asyncio
    async def test_network_error(self):
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        directory = directory_for(refuse)
        with pytest.raises(WorkerServiceException):
            await directory.fetch_roster()

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        directory = directory_for(lambda request: httpx.Response(200, text="<html>"))
        with pytest.raises(WorkerServiceException):
            await directory.fetch_roster()

    @pytest.mark.asyncio
    async def test_injected_client_left_open(self):
        directory = directory_for(worker_service)
        await directory.close()
        assert not directory._client.is_closed


class TestStaticWorkerDirectory:

    @pytest.mark.asyncio
    async def test_lookup(self):
        directory = StaticWorkerDirectory(WORKERS)
        worker = await directory.get_worker("64a1")
        assert worker.name == "Ana Souza"

        with pytest.raises(WorkerNotFoundException):
            await directory.get_worker("nope")

    def test_parse_worker_rejects_garbage(self):
        with pytest.raises(ValidationException):
            parse_worker({"id": "w-1", "dependents": -2})
