"""Render record reporter for the external persistence layer.

Mirrors render status transitions into a records endpoint. Every call is
best-effort: failures are logged and never reach the render job.
"""

import asyncio
from typing import Any, Dict, Optional, Set

import httpx
from loguru import logger


class RecordReporter:
    """
    Sends render record creates/updates to the persistence layer.

    Disabled when no base URL is configured.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or "").rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._pending: Set[asyncio.Task] = set()

    @property
    def enabled(self) -> bool:
        return bool(self.base_url)

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else None
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers=headers,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Wait for in-flight updates, then close the HTTP client."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        if self._client:
            await self._client.aclose()
            self._client = None

    async def create_record(
        self,
        job_id: str,
        user_id: Optional[str] = None,
        template_id: Optional[str] = None,
        project_id: Optional[str] = None,
        source: Optional[str] = None,
    ) -> Optional[str]:
        """Create a render record. Returns its id, or None on any failure."""
        if not self.enabled:
            return None

        payload = {
            "job_id": job_id,
            "user_id": user_id,
            "template_id": template_id,
            "project_id": project_id,
            "source": source or "ui",
            "status": "pending",
        }
        try:
            client = await self._get_client()
            response = await client.post(f"{self.base_url}/renders", json=payload)
            if response.status_code not in (200, 201):
                logger.error(f"Render record create failed for job {job_id}: status={response.status_code}")
                return None
            record_id = response.json().get("id")
            logger.debug(f"Created render record {record_id} for job {job_id}")
            return str(record_id) if record_id is not None else None
        except Exception as e:
            logger.error(f"Render record create error for job {job_id}: {e}")
            return None

    async def update_record(self, record_id: str, status: str, **fields: Any) -> bool:
        """Update a render record's status and extra fields."""
        if not self.enabled or not record_id:
            return False

        payload: Dict[str, Any] = {"status": status}
        payload.update({k: v for k, v in fields.items() if v is not None})
        try:
            client = await self._get_client()
            response = await client.patch(f"{self.base_url}/renders/{record_id}", json=payload)
            if response.status_code not in (200, 204):
                logger.error(f"Render record {record_id} update failed: status={response.status_code}")
                return False
            logger.debug(f"Render record {record_id} -> {status}")
            return True
        except Exception as e:
            logger.error(f"Render record {record_id} update error: {e}")
            return False

    def notify(self, record_id: Optional[str], status: str, **fields: Any) -> None:
        """Fire-and-forget status update; no-op without a record id."""
        if not self.enabled or not record_id:
            return
        task = asyncio.create_task(self.update_record(record_id, status, **fields))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
