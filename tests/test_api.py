"""
Payroll Core - API Integration Tests

Integration tests for REST API endpoints.
"""

import uuid

import pytest
from httpx import AsyncClient


API = "/api/v1/payroll"


async def create_payroll(client: AsyncClient, **overrides) -> dict:
    payload = {
        "worker_id": "w-100",
        "worker_name": "Ana Souza",
        "month": 5,
        "year": 2024,
        "base_gross_salary": "5000",
    }
    payload.update(overrides)
    response = await client.post(f"{API}/payrolls", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


class TestHealthEndpoint:
    """Test health check endpoint."""

    @pytest.mark.asyncio
    async def test_health_check(self, client: AsyncClient):
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestPayrollAPI:

    @pytest.mark.asyncio
    async def test_create_payroll(self, client: AsyncClient):
        data = await create_payroll(client)

        assert data["status"] == "draft"
        assert data["net_salary"] == "5000.00"
        assert data["deductions"] == []
        assert data["version_id"] == 1

    @pytest.mark.asyncio
    async def test_invalid_month(self, client: AsyncClient):
        response = await client.post(
            f"{API}/payrolls",
            json={"worker_id": "w-1", "worker_name": "A", "month": 13, "year": 2024},
        )

        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "VALIDATION_ERROR"

    @pytest.mark.asyncio
    async def test_duplicate_period(self, client: AsyncClient):
        await create_payroll(client)
        response = await client.post(
            f"{API}/payrolls",
            json={"worker_id": "w-100", "worker_name": "Ana Souza", "month": 5, "year": 2024},
        )

        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "DUPLICATE_PERIOD"

    @pytest.mark.asyncio
    async def test_unknown_payroll(self, client: AsyncClient):
        response = await client.get(f"{API}/payrolls/{uuid.uuid4()}")

        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "PAYROLL_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_totals_not_writable(self, client: AsyncClient):
        payroll = await create_payroll(client)
        response = await client.patch(f"{API}/payrolls/{payroll['id']}", json={"net_salary": "1"})

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_adjustment_lifecycle(self, client: AsyncClient):
        payroll = await create_payroll(client)
        base = f"{API}/payrolls/{payroll['id']}"

        response = await client.post(f"{base}/deductions", json={"name": "Union dues", "type": "fixed", "value": 200})
        assert response.status_code == 201
        assert response.json()["net_salary"] == "4800.00"

        response = await client.post(f"{base}/benefits", json={"name": "Health plan", "kind": "percentage", "value": 10})
        data = response.json()
        assert data["total_benefits"] == "500.00"
        assert data["net_salary"] == "5300.00"

        adjustment_id = data["benefits"][0]["id"]
        response = await client.patch(f"{base}/benefits/{adjustment_id}", json={"value": 20})
        assert response.json()["net_salary"] == "5800.00"

        response = await client.delete(f"{base}/benefits/{adjustment_id}")
        assert response.status_code == 200
        assert response.json()["net_salary"] == "4800.00"

    @pytest.mark.asyncio
    async def test_negative_adjustment_rejected(self, client: AsyncClient):
        payroll = await create_payroll(client)
        response = await client.post(
            f"{API}/payrolls/{payroll['id']}/deductions",
            json={"name": "Refund", "value": -50},
        )

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_percentage_above_hundred_rejected(self, client: AsyncClient):
        payroll = await create_payroll(client)
        response = await client.post(
            f"{API}/payrolls/{payroll['id']}/benefits",
            json={"name": "Commission", "kind": "percentage", "value": 150},
        )

        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_unknown_collection(self, client: AsyncClient):
        payroll = await create_payroll(client)
        response = await client.post(
            f"{API}/payrolls/{payroll['id']}/bonuses",
            json={"name": "X", "value": 1},
        )

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_status_endpoint(self, client: AsyncClient):
        payroll = await create_payroll(client)
        url = f"{API}/payrolls/{payroll['id']}/status"

        response = await client.put(url, json={"status": "processing"})
        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "INVALID_STATUS"

        response = await client.put(url, json={"status": "completed"})
        assert response.status_code == 200
        assert response.json()["processed_at"] is not None

    @pytest.mark.asyncio
    async def test_delete(self, client: AsyncClient):
        payroll = await create_payroll(client)

        response = await client.delete(f"{API}/payrolls/{payroll['id']}")
        assert response.status_code == 204

        response = await client.get(f"{API}/payrolls/{payroll['id']}")
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_list(self, client: AsyncClient):
        await create_payroll(client, worker_id="w-1")
        await create_payroll(client, worker_id="w-2")

        response = await client.get(f"{API}/payrolls", params={"month": 5, "year": 2024, "limit": 1})
        data = response.json()

        assert data["total"] == 2
        assert len(data["items"]) == 1


class TestPayStubAPI:

    @pytest.mark.asyncio
    async def test_issue_and_sign(self, client: AsyncClient):
        payroll = await create_payroll(client)
        await client.put(f"{API}/payrolls/{payroll['id']}/status", json={"status": "completed"})

        response = await client.post(f"{API}/payrolls/{payroll['id']}/pay-stub")
        assert response.status_code == 201
        pay_stub = response.json()
        assert pay_stub["document_number"] == "202405-00001"
        assert pay_stub["signed_by_employee"] is False

        again = await client.post(f"{API}/payrolls/{payroll['id']}/pay-stub")
        assert again.json()["document_number"] == "202405-00001"

        response = await client.post(f"{API}/pay-stubs/{pay_stub['id']}/sign")
        assert response.status_code == 200
        signed = response.json()
        assert signed["signed_by_employee"] is True
        assert signed["signature_ip"] == "127.0.0.1"
        assert len(signed["signature_token"]) == 64

        response = await client.post(f"{API}/pay-stubs/{pay_stub['id']}/sign")
        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "ALREADY_SIGNED"

    @pytest.mark.asyncio
    async def test_draft_not_eligible(self, client: AsyncClient):
        payroll = await create_payroll(client)

        response = await client.post(f"{API}/payrolls/{payroll['id']}/pay-stub")

        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "NOT_ELIGIBLE"

    @pytest.mark.asyncio
    async def test_delete_payroll_with_stub_blocked(self, client: AsyncClient):
        payroll = await create_payroll(client)
        await client.put(f"{API}/payrolls/{payroll['id']}/status", json={"status": "completed"})
        await client.post(f"{API}/payrolls/{payroll['id']}/pay-stub")

        response = await client.delete(f"{API}/payrolls/{payroll['id']}")

        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "CANNOT_DELETE"


class TestBatchAPI:

    @pytest.mark.asyncio
    async def test_batch_from_directory(self, client: AsyncClient):
        response = await client.post(f"{API}/batch", json={"month": 5, "year": 2024})

        assert response.status_code == 200, response.text
        data = response.json()
        assert data["run"]["status"] == "completed"
        assert data["run"]["employee_count"] == 3
        assert data["run"]["total_net_salary"] == "15638.76"
        assert len(data["succeeded"]) == 3
        assert data["skipped"] == []

    @pytest.mark.asyncio
    async def test_batch_with_roster(self, client: AsyncClient):
        response = await client.post(
            f"{API}/batch",
            json={
                "month": 5,
                "year": 2024,
                "employees": [
                    {"id": "w-1", "nome": "Ana", "salario": 5000},
                    {"nome": "Missing id", "salario": 1000},
                ],
            },
        )

        data = response.json()
        assert data["run"]["employee_count"] == 1
        assert data["skipped"] == [{"worker_id": None, "name": "Missing id", "reason": "missing worker id"}]

    @pytest.mark.asyncio
    async def test_batch_skips_unparseable_worker(self, client: AsyncClient):
        response = await client.post(
            f"{API}/batch",
            json={
                "month": 5,
                "year": 2024,
                "workers": [
                    {"id": "ok-1", "nome": "Ana", "salario": 5000, "tipo_contrato": "CLT"},
                    {"id": "bad-1", "nome": "Bad", "salario": 1000, "tipo_contrato": "MEI"},
                ],
            },
        )

        assert response.status_code == 200, response.text
        data = response.json()
        assert data["run"]["employee_count"] == 1
        assert data["run"]["total_net_salary"] == "4292.17"
        assert data["skipped"] == [{"worker_id": "bad-1", "name": "Bad", "reason": "Invalid worker record"}]

    @pytest.mark.asyncio
    async def test_run_endpoints(self, client: AsyncClient):
        response = await client.post(f"{API}/runs", json={"month": 6, "year": 2024})
        assert response.status_code == 201
        run_id = response.json()["id"]

        response = await client.post(f"{API}/runs", json={"month": 6, "year": 2024})
        assert response.status_code == 409

        response = await client.post(
            f"{API}/runs/{run_id}/process",
            json={"workers": [{"id": "w-1", "nome": "Ana", "salario": 5000, "tipo_contrato": "CNPJ"}]},
        )
        assert response.json()["run"]["total_net_salary"] == "5000.00"

        response = await client.get(f"{API}/runs/{run_id}/summary")
        assert response.json()["by_contract_type"]["contractor"]["employee_count"] == 1
