"""Handshake при старте: сообщить Laravel о готовности и забрать накопившиеся задачи."""
import asyncio
from collections.abc import Mapping
from typing import Any

import httpx
from loguru import logger

from localbrowser.config import WorkerIdentity
from localbrowser.exceptions import ConfigurationError, TaskQueueError
from localbrowser.models.task import TaskInput
from localbrowser.queue_service import TaskQueueService
from localbrowser.signing import signed_headers

REQUEST_WORK_PATH = "/internal/request-work"


class StartupHandshake:
    """
    POST /internal/request-work с HMAC-подписью.
    Полученные задачи ставятся в локальную очередь и проходят обычный цикл
    процессора. Ошибки не роняют старт воркера — в худшем случае пустой список.
    """

    def __init__(
        self,
        base_url: str,
        secret: str,
        identity: WorkerIdentity,
        queue: TaskQueueService,
        *,
        max_tasks: int = 10,
        max_retries: int = 5,
        retry_delay: float = 3.0,
        request_timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not base_url or not secret:
            raise ConfigurationError("LARAVEL_INTERNAL_URL and LOCALBROWSER_SECRET must be configured")
        self.endpoint = f"{base_url.rstrip('/')}{REQUEST_WORK_PATH}"
        self._secret = secret
        self.identity = identity
        self.queue = queue
        self.max_tasks = max_tasks
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self.request_timeout = request_timeout
        self._client = client

    async def execute(self) -> list[str]:
        """Забрать задачи и поставить их в очередь. Возвращает id поставленных."""
        tasks = await self.request_work()
        enqueued: list[str] = []
        for raw in tasks:
            task_id = await self._enqueue(raw)
            if task_id:
                enqueued.append(task_id)
        if tasks:
            logger.info(f"[handshake] Enqueued {len(enqueued)}/{len(tasks)} tasks from handshake")
        return enqueued

    async def request_work(self) -> list[dict[str, Any]]:
        logger.info(f"[handshake] Starting worker handshake (worker={self.identity.worker_id})")
        for attempt in range(1, self.max_retries + 1):
            try:
                data = await self._call()
            except (httpx.HTTPError, ValueError) as e:
                logger.warning(
                    f"[handshake] Attempt {attempt}/{self.max_retries} failed: {e!r}"
                )
                if attempt < self.max_retries:
                    await asyncio.sleep(self.retry_delay * attempt)
                continue

            tasks = data.get("tasks") if isinstance(data, Mapping) else None
            if not isinstance(tasks, list):
                tasks = []
            logger.info(f"[handshake] Handshake successful: {len(tasks)} tasks (attempt {attempt})")
            return [t for t in tasks if isinstance(t, dict)]

        logger.error(f"[handshake] Handshake failed after {self.max_retries} attempts")
        return []

    async def _call(self) -> Any:
        body = {
            "max_tasks": self.max_tasks,
            "worker_id": self.identity.worker_id,
            "processing_by": self.identity.processing_by,
        }
        headers = {**signed_headers(self._secret), "Content-Type": "application/json"}
        if self._client is not None:
            response = await self._client.post(
                self.endpoint, json=body, headers=headers, timeout=self.request_timeout
            )
        else:
            async with httpx.AsyncClient() as client:
                response = await client.post(
                    self.endpoint, json=body, headers=headers, timeout=self.request_timeout
                )
        response.raise_for_status()
        return response.json()

    async def _enqueue(self, raw: dict[str, Any]) -> str | None:
        task_id = raw.get("id")
        try:
            if task_id and await self.queue.get_task(str(task_id)) is not None:
                logger.debug(f"[handshake] Task {task_id} already queued, skipping")
                return None
            return await self.queue.enqueue_task(
                TaskInput(
                    id=str(task_id) if task_id else None,
                    type=str(raw.get("type") or ""),
                    url=str(raw.get("url") or ""),
                    payload=raw.get("payload") if isinstance(raw.get("payload"), dict) else None,
                )
            )
        except TaskQueueError as e:
            logger.error(f"[handshake] Failed to enqueue task {task_id}: {e}")
            return None
