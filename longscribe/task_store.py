"""Task persistence: the contract the pipeline writes progress and results to."""

import copy
import logging
import os
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import httpx

from .exceptions import ConfigurationError, TaskStoreError

logger = logging.getLogger(__name__)

DEFAULT_COLLECTION = "transcription_tasks"


class TaskStore(ABC):
    """Abstract base class for task stores.

    Records are plain dicts with the fields ``status``, ``error_message``
    (progress text while processing), ``result``, ``language``,
    ``speakers_count``, ``processed_at`` and ``progress``.
    """

    @abstractmethod
    async def create_task(self, fields: Dict[str, Any]) -> str:
        pass

    @abstractmethod
    async def update_task(self, task_id: str, fields: Dict[str, Any]) -> None:
        pass

    @abstractmethod
    async def get_task(self, task_id: str) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def list_tasks(self) -> List[Dict[str, Any]]:
        """Return all tasks, newest first."""
        pass

    @abstractmethod
    async def delete_task(self, task_id: str) -> None:
        pass


class InMemoryTaskStore(TaskStore):
    """Process-local store; every update is appended to ``history``."""

    def __init__(self):
        self._tasks: Dict[str, Dict[str, Any]] = {}
        self.history: List[Tuple[str, Dict[str, Any]]] = []

    async def create_task(self, fields: Dict[str, Any]) -> str:
        task_id = str(uuid.uuid4())
        record = copy.deepcopy(fields)
        record["id"] = task_id
        record.setdefault("date_created", datetime.now(timezone.utc).isoformat())
        self._tasks[task_id] = record
        return task_id

    async def update_task(self, task_id: str, fields: Dict[str, Any]) -> None:
        if task_id not in self._tasks:
            raise TaskStoreError(f"Task not found: {task_id}")
        snapshot = copy.deepcopy(fields)
        self._tasks[task_id].update(snapshot)
        self.history.append((task_id, snapshot))

    async def get_task(self, task_id: str) -> Dict[str, Any]:
        if task_id not in self._tasks:
            raise TaskStoreError(f"Task not found: {task_id}")
        return copy.deepcopy(self._tasks[task_id])

    async def list_tasks(self) -> List[Dict[str, Any]]:
        records = [copy.deepcopy(r) for r in self._tasks.values()]
        records.sort(key=lambda r: r.get("date_created") or "", reverse=True)
        return records

    async def delete_task(self, task_id: str) -> None:
        if self._tasks.pop(task_id, None) is None:
            raise TaskStoreError(f"Task not found: {task_id}")


class DirectusTaskStore(TaskStore):
    """Task store backed by a Directus collection over its REST API."""

    def __init__(
        self,
        base_url: str,
        token: str,
        collection: str = DEFAULT_COLLECTION,
        timeout_s: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.collection = collection
        self._headers = {"Authorization": f"Bearer {token}", "Content-Type": "application/json"}
        self._timeout = timeout_s
        self._transport = transport

    @classmethod
    def from_env(cls) -> "DirectusTaskStore":
        base_url = (os.environ.get("DIRECTUS_URL") or "").strip()
        token = (os.environ.get("DIRECTUS_TOKEN") or "").strip()
        if not base_url or not token:
            raise ConfigurationError("DIRECTUS_URL or DIRECTUS_TOKEN is not configured")
        return cls(base_url, token)

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        async with httpx.AsyncClient(
            base_url=self.base_url,
            headers=self._headers,
            timeout=self._timeout,
            transport=self._transport,
        ) as client:
            try:
                response = await client.request(method, path, **kwargs)
            except httpx.HTTPError as e:
                raise TaskStoreError(f"Directus request failed: {method} {path}: {e}") from e
        if response.is_error:
            raise TaskStoreError(f"Directus: {response.status_code} {response.text}")
        if response.status_code == 204 or not response.content:
            return None
        return response.json().get("data")

    async def create_task(self, fields: Dict[str, Any]) -> str:
        data = await self._request("POST", f"/items/{self.collection}", json=fields)
        return str(data["id"])

    async def update_task(self, task_id: str, fields: Dict[str, Any]) -> None:
        await self._request("PATCH", f"/items/{self.collection}/{task_id}", json=fields)

    async def get_task(self, task_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/items/{self.collection}/{task_id}", params={"fields": "*"})

    async def list_tasks(self) -> List[Dict[str, Any]]:
        data = await self._request(
            "GET", f"/items/{self.collection}", params={"sort": "-date_created", "fields": "*"}
        )
        return data or []

    async def delete_task(self, task_id: str) -> None:
        await self._request("DELETE", f"/items/{self.collection}/{task_id}")
