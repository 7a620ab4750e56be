"""Сервис очереди задач: постановка, выборка, статусы, статистика, обслуживание."""
import asyncio
import re
import secrets
from collections.abc import Mapping, Sequence
from datetime import datetime, timedelta
from typing import Any

from loguru import logger
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from localbrowser.exceptions import TaskStoreError, TaskValidationError
from localbrowser.models.task import (
    TASK_STATUSES,
    TASK_TYPES,
    TERMINAL_STATUSES,
    Task,
    TaskInput,
    TaskStatistics,
    parse_options,
    utc_now,
)
from localbrowser.store import TaskStore

TaskInputLike = TaskInput | Mapping[str, Any]

# Допустимые предыдущие статусы для каждого перехода
ALLOWED_PREDECESSORS: dict[str, tuple[str, ...]] = {
    "processing": ("pending",),
    "completed": ("pending", "processing"),
    "failed": ("pending", "processing"),
}


async def run_in_thread(func: Any, *args: Any, **kwargs: Any) -> Any:
    """Выполнить синхронный вызов хранилища в отдельном потоке."""
    return await asyncio.to_thread(func, *args, **kwargs)


def sanitize_error(error: str) -> str:
    """Убрать потенциальные креденшалы из сообщения об ошибке."""
    return re.sub(r"://[^@\s]+@", "://***:***@", error)


def generate_task_id() -> str:
    """Случайный 128-битный id в hex (32 символа)."""
    return secrets.token_hex(16)


def _coerce_input(task: TaskInputLike) -> TaskInput:
    if isinstance(task, TaskInput):
        return task
    try:
        return TaskInput.model_validate(dict(task))
    except (ValidationError, TypeError, ValueError) as e:
        raise TaskValidationError(f"Invalid task input: {e}") from e


def _build_row(task: TaskInputLike, now: datetime) -> dict[str, Any]:
    """Проверить вход и собрать строку для вставки. Хранилище не трогает."""
    data = _coerce_input(task)
    if not data.type.strip() or not data.url.strip():
        raise TaskValidationError("Task must have type and url")

    # Payload известных типов разбирается сразу, кривой в очередь не попадёт
    if data.type in TASK_TYPES:
        try:
            parse_options(data.type, data.payload)
        except ValidationError as e:
            raise TaskValidationError(f"Invalid payload for {data.type}: {e}") from e

    return {
        "id": data.id or generate_task_id(),
        "type": data.type,
        "url": data.url,
        "payload": data.payload,
        "status": "pending",
        "created_at": now,
    }


class TaskQueueService:
    """Единственный писатель статусов/результатов задач.

    Запись: ошибки хранилища логируются и пробрасываются как TaskStoreError.
    Чтение для планировщика (get_pending_tasks, get_statistics) деградирует
    до пустого результата, чтобы тик процессора не падал.
    """

    def __init__(self, store: TaskStore) -> None:
        self.store = store

    async def enqueue_task(self, task: TaskInputLike) -> str:
        """Поставить задачу в очередь (status=pending). Возвращает id."""
        row = _build_row(task, utc_now())
        try:
            await run_in_thread(self.store.insert_many, [row])
        except SQLAlchemyError as e:
            logger.error(f"[queue] Failed to enqueue task {row['id']}: {e}")
            raise TaskStoreError(f"Failed to enqueue task: {e}") from e

        logger.info(f"[queue] Task enqueued id={row['id']} type={row['type']} url={row['url']}")
        return row["id"]

    async def enqueue_batch(self, tasks: Sequence[TaskInputLike]) -> list[str]:
        """Поставить пачку задач атомарно: либо все, либо ни одной."""
        now = utc_now()
        # Валидация всех входов до первой записи
        rows = [_build_row(task, now) for task in tasks]
        try:
            await run_in_thread(self.store.insert_many, rows)
        except SQLAlchemyError as e:
            logger.error(f"[queue] Failed to enqueue batch of {len(rows)}: {e}")
            raise TaskStoreError(f"Failed to enqueue batch: {e}") from e

        logger.info(f"[queue] Batch enqueued count={len(rows)}")
        return [row["id"] for row in rows]

    async def get_pending_tasks(self, limit: int = 10) -> list[Task]:
        """До limit задач в статусе pending, старые первыми."""
        if limit <= 0:
            return []
        try:
            rows = await run_in_thread(self.store.list_by_status, "pending", limit)
            return [Task.model_validate(row) for row in rows]
        except Exception as e:
            logger.error(f"[queue] Failed to get pending tasks: {e}")
            return []

    async def get_task(self, task_id: str) -> Task | None:
        try:
            row = await run_in_thread(self.store.get, task_id)
        except SQLAlchemyError as e:
            logger.error(f"[queue] Failed to get task {task_id}: {e}")
            raise TaskStoreError(f"Failed to get task: {e}") from e
        if row is None:
            return None
        return Task.model_validate(row)

    async def update_task_status(
        self,
        task_id: str,
        status: str,
        *,
        worker_id: str | None = None,
        processing_by: str | None = None,
        result: dict[str, Any] | None = None,
        error: str | None = None,
        duration_ms: int | None = None,
    ) -> bool:
        """Единственный способ сменить статус задачи. Статус двигается только вперёд.

        processing → started_at=now (+ worker_id/processing_by, если переданы);
        completed/failed → completed_at=now (+ result/error/duration_ms).
        Возвращает False, если задачи нет или её текущий статус не допускает переход.
        """
        if status not in TASK_STATUSES:
            raise TaskValidationError(f"Invalid task status: {status}")
        allowed_from = ALLOWED_PREDECESSORS.get(status)
        if allowed_from is None:
            # В pending задачу возвращает только reset_stuck_tasks
            raise TaskValidationError(f"Status {status} cannot be set directly")

        now = utc_now()
        values: dict[str, Any] = {"status": status}
        if status == "processing":
            values["started_at"] = now
            if worker_id:
                values["worker_id"] = worker_id
            if processing_by:
                values["processing_by"] = processing_by
        else:
            values["completed_at"] = now
            if result is not None:
                values["result"] = result
            if error:
                values["error"] = sanitize_error(error)
            if duration_ms is not None:
                values["duration_ms"] = duration_ms

        try:
            updated = await run_in_thread(self.store.update, task_id, values, allowed_from)
        except SQLAlchemyError as e:
            logger.error(f"[queue] Failed to update task {task_id} → {status}: {e}")
            raise TaskStoreError(f"Failed to update task status: {e}") from e

        if not updated:
            logger.warning(
                f"[queue] Task {task_id} not updated → {status}: "
                f"missing or not in {', '.join(allowed_from)}"
            )
            return False
        logger.info(f"[queue] Task {task_id} status → {status}")
        return True

    async def get_statistics(self) -> TaskStatistics:
        """Счётчики по статусам одним агрегатным запросом."""
        try:
            counts: dict[str, int] = await run_in_thread(self.store.count_by_status)
        except Exception as e:
            logger.error(f"[queue] Failed to get statistics: {e}")
            return TaskStatistics()

        stats = TaskStatistics()
        for status, count in counts.items():
            if status in TASK_STATUSES:
                setattr(stats, status, count)
            stats.total += count
        return stats

    async def cleanup_old_tasks(self, older_than_days: int = 7) -> int:
        """Удалить completed/failed задачи старше older_than_days дней."""
        threshold = utc_now() - timedelta(days=older_than_days)
        try:
            deleted: int = await run_in_thread(
                self.store.delete_older_than, TERMINAL_STATUSES, threshold
            )
        except SQLAlchemyError as e:
            logger.error(f"[queue] Failed to cleanup old tasks: {e}")
            raise TaskStoreError(f"Failed to cleanup old tasks: {e}") from e

        return deleted

    async def reset_stuck_tasks(self, threshold_minutes: int = 30) -> int:
        """Вернуть в pending задачи, зависшие в processing дольше порога."""
        threshold = utc_now() - timedelta(minutes=threshold_minutes)
        try:
            reset: int = await run_in_thread(
                self.store.update_stale,
                "processing",
                threshold,
                {
                    "status": "pending",
                    "worker_id": None,
                    "processing_by": None,
                    "started_at": None,
                },
            )
        except SQLAlchemyError as e:
            logger.error(f"[queue] Failed to reset stuck tasks: {e}")
            raise TaskStoreError(f"Failed to reset stuck tasks: {e}") from e

        return reset

    async def get_recent_logs(self, limit: int = 20) -> list[dict[str, Any]]:
        """Последние записи error_logs, новые первыми."""
        try:
            return await run_in_thread(self.store.recent_logs, limit)
        except SQLAlchemyError as e:
            logger.error(f"[queue] Failed to read error logs: {e}")
            raise TaskStoreError(f"Failed to read error logs: {e}") from e

    async def is_available(self) -> bool:
        """Хранилище отвечает на запросы."""
        try:
            await run_in_thread(self.store.ping)
        except Exception as e:
            logger.error(f"[queue] Store unavailable: {e}")
            return False
        return True
