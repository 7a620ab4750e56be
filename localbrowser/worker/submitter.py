"""Доставка результатов задач в Laravel: HMAC-подпись + retry с экспоненциальным backoff."""
import asyncio
from typing import Any

import httpx
from loguru import logger

from localbrowser.config import WorkerIdentity
from localbrowser.exceptions import (
    ConfigurationError,
    ResultSubmissionError,
    ResultSubmissionRedirectError,
)
from localbrowser.models.task import ExecutionResult
from localbrowser.signing import signed_headers

RESULT_PATH = "/internal/task-result"

# Сколько тела ответа класть в сообщение об ошибке
_BODY_PREVIEW = 500


class ResultSubmitter:
    """Подписывает и отправляет ExecutionResult на /internal/task-result.

    Задержка перед попыткой n (n ≥ 2) — retry_delay * 2^(n-2).
    Редирект (3xx) — ошибка конфигурации получателя, бросается сразу без ретраев.
    """

    def __init__(
        self,
        base_url: str,
        secret: str,
        identity: WorkerIdentity,
        *,
        max_retries: int = 3,
        retry_delay: float = 2.0,
        request_timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        if not base_url or not secret:
            raise ConfigurationError("LARAVEL_INTERNAL_URL and LOCALBROWSER_SECRET must be configured")
        self.base_url = base_url.rstrip("/")
        self.endpoint = f"{self.base_url}{RESULT_PATH}"
        self._secret = secret
        self.identity = identity
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self.request_timeout = request_timeout
        self._client = client

    def backoff_delay(self, attempt: int) -> float:
        """Задержка перед попыткой attempt (нумерация с 1)."""
        if attempt < 2:
            return 0.0
        return self.retry_delay * (2 ** (attempt - 2))

    def build_payload(self, result: ExecutionResult) -> dict[str, Any]:
        """Тело запроса; result/error включаются только если есть."""
        data = result.model_dump(mode="json")
        payload: dict[str, Any] = {
            "task_id": data["task_id"],
            "type": data["type"],
            "status": "completed" if result.success else "failed",
            "executed_at": data["executed_at"],
            "duration_ms": data["duration_ms"] or 0,
            "worker_id": self.identity.worker_id,
            "processing_by": self.identity.processing_by,
        }
        if result.result is not None:
            payload["result"] = data["result"]
        if result.error is not None:
            payload["error"] = result.error
        return payload

    async def submit(self, result: ExecutionResult) -> httpx.Response:
        """Доставить результат. Бросает ResultSubmissionError после max_retries неудач."""
        payload = self.build_payload(result)
        logger.info(
            f"[submitter] Submitting result for task {result.task_id} "
            f"(type={result.type}, status={payload['status']})"
        )

        last_error: Exception | None = None
        for attempt in range(1, self.max_retries + 1):
            if attempt > 1:
                delay = self.backoff_delay(attempt)
                logger.debug(f"[submitter] Retry {attempt}/{self.max_retries} in {delay}s")
                await asyncio.sleep(delay)

            try:
                response = await self._post(payload)
            except ResultSubmissionRedirectError:
                raise
            except (httpx.HTTPError, ResultSubmissionError) as e:
                last_error = e
                logger.warning(
                    f"[submitter] Submission attempt {attempt}/{self.max_retries} failed "
                    f"for task {result.task_id}: {e!r}"
                )
                continue

            logger.info(
                f"[submitter] Task {result.task_id} submitted "
                f"(HTTP {response.status_code}, attempt {attempt})"
            )
            return response

        raise ResultSubmissionError(
            f"Failed to submit task result after {self.max_retries} attempts: {last_error}"
        )

    async def _post(self, payload: dict[str, Any]) -> httpx.Response:
        """Одна подписанная попытка. Подпись считается заново — таймстемп должен быть свежим."""
        headers = {
            **signed_headers(self._secret),
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if self._client is not None:
            response = await self._client.post(
                self.endpoint, json=payload, headers=headers, timeout=self.request_timeout
            )
        else:
            async with httpx.AsyncClient(follow_redirects=False) as client:
                response = await client.post(
                    self.endpoint, json=payload, headers=headers, timeout=self.request_timeout
                )

        status = response.status_code
        if 300 <= status < 400:
            location = response.headers.get("location")
            logger.error(
                f"[submitter] Unexpected redirect ({status}) to {location}. "
                f"Check that {RESULT_PATH} exists on {self.base_url} and is not behind "
                "CSRF/auth middleware"
            )
            raise ResultSubmissionRedirectError(status, location)
        if 200 <= status < 300:
            return response
        raise ResultSubmissionError(f"Endpoint returned {status}: {response.text[:_BODY_PREVIEW]}")
