"""
Payroll Core - Worker Directory Client

Source of worker identity and compensation. The HTTP implementation talks
to the worker service (``GET /workers`` and ``GET /workers/{id}``); the
static one serves an in-memory roster.
"""

import logging
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional

import httpx
from pydantic import ValidationError

from payroll_core.config import settings
from payroll_core.schemas.payroll import WorkerCompensation
from payroll_core.utils.error_handling import (
    ValidationException,
    WorkerNotFoundException,
    WorkerServiceException,
)


logger = logging.getLogger(__name__)


def parse_worker(raw: Dict[str, Any]) -> WorkerCompensation:
    """Validate one raw worker record."""
    try:
        return WorkerCompensation.model_validate(raw)
    except ValidationError as e:
        raise ValidationException(
            "Invalid worker record",
            details={"errors": [err["msg"] for err in e.errors()]},
        ) from e


class WorkerDirectory:
    """Interface of a worker directory."""

    async def fetch_roster(self) -> List[Dict[str, Any]]:
        """Raw records of every worker; validation is left to the caller."""
        raise NotImplementedError

    async def get_worker(self, worker_id: str) -> WorkerCompensation:
        raise NotImplementedError

    async def close(self) -> None:
        return None


class StaticWorkerDirectory(WorkerDirectory):
    """In-memory directory."""

    def __init__(self, workers: Iterable[Dict[str, Any]] = ()):
        self._workers = [dict(w) for w in workers]

    async def fetch_roster(self) -> List[Dict[str, Any]]:
        return [dict(w) for w in self._workers]

    async def get_worker(self, worker_id: str) -> WorkerCompensation:
        for raw in self._workers:
            worker = parse_worker(raw)
            if worker.worker_id == worker_id:
                return worker
        raise WorkerNotFoundException(worker_id)


class HttpWorkerDirectory(WorkerDirectory):
    """
    Worker service client.

    A preconfigured ``httpx.AsyncClient`` can be passed in (tests use one
    backed by ``httpx.MockTransport``); otherwise one is created lazily from
    settings.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = (base_url or settings.worker_service_url).rstrip("/")
        self.timeout = timeout or settings.worker_service_timeout
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the worker service client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
        return self._client

    async def _get(self, path: str) -> httpx.Response:
        client = await self._get_client()
        try:
            return await client.get(path)
        except httpx.TimeoutException as e:
            logger.error(f"Worker service timed out on {path}")
            raise WorkerServiceException("request timed out", original_error=e) from e
        except httpx.RequestError as e:
            logger.error(f"Worker service request failed on {path}: {e}")
            raise WorkerServiceException(f"network error: {e}", original_error=e) from e

    @staticmethod
    def _json(response: httpx.Response) -> Any:
        try:
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            raise WorkerServiceException(
                f"unexpected status {response.status_code}", original_error=e,
            ) from e
        except ValueError as e:
            raise WorkerServiceException("response is not valid JSON", original_error=e) from e

    async def fetch_roster(self) -> List[Dict[str, Any]]:
        payload = self._json(await self._get("/workers"))

        if isinstance(payload, dict):
            # Paginated or wrapped responses
            payload = payload.get("data") or payload.get("workers") or payload.get("items") or []
        if not isinstance(payload, list):
            raise WorkerServiceException("worker list has an unexpected shape")

        logger.info(f"Fetched {len(payload)} workers from {self.base_url}")
        return [w if isinstance(w, dict) else {"raw": w} for w in payload]

    async def get_worker(self, worker_id: str) -> WorkerCompensation:
        response = await self._get(f"/workers/{worker_id}")
        if response.status_code == 404:
            raise WorkerNotFoundException(worker_id)

        payload = self._json(response)
        if isinstance(payload, dict) and isinstance(payload.get("data"), dict):
            payload = payload["data"]
        if not payload:
            raise WorkerNotFoundException(worker_id)

        worker = parse_worker(payload)
        if worker.worker_id is None:
            worker = worker.model_copy(update={"worker_id": worker_id})
        return worker

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


async def get_worker_directory() -> AsyncIterator[WorkerDirectory]:
    """
    Dependency for the configured worker directory.
    Use with FastAPI's Depends().
    """
    directory = HttpWorkerDirectory()
    try:
        yield directory
    finally:
        await directory.close()
