"""Pydantic-модели задачи браузерной автоматизации."""
from datetime import UTC, datetime
from typing import Any, Literal, get_args

from pydantic import BaseModel, ConfigDict, Field

TaskType = Literal["website_html", "lighthouse_html"]
TaskStatus = Literal["pending", "processing", "completed", "failed"]

TASK_TYPES: tuple[str, ...] = get_args(TaskType)
TASK_STATUSES: tuple[str, ...] = get_args(TaskStatus)
TERMINAL_STATUSES: tuple[str, ...] = ("completed", "failed")


def utc_now() -> datetime:
    return datetime.now(UTC)


class WebsiteHtmlOptions(BaseModel):
    """Опции website_html — ключи payload в camelCase (как шлёт Laravel)."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    wait_until: str = Field(default="domcontentloaded", alias="waitUntil")
    timeout: int = Field(default=60_000, gt=0)  # мс
    handle_cloudflare: bool = Field(default=True, alias="handleCloudflare")
    use_progressive_retry: bool = Field(default=True, alias="useProgressiveRetry")

    def to_visit_options(self) -> dict[str, Any]:
        """Опции для browser.visit(): страница всегда сохраняется в хранилище."""
        return {
            "waitUntil": self.wait_until,
            "timeout": self.timeout,
            "saveToFile": True,
            "returnHtml": False,
            "handleCloudflare": self.handle_cloudflare,
            "useProgressiveRetry": self.use_progressive_retry,
        }


class LighthouseHtmlOptions(BaseModel):
    """Опции lighthouse_html."""

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    timeout: int = Field(default=120_000, gt=0)  # мс
    lighthouse_options: dict[str, Any] = Field(default_factory=dict, alias="lighthouseOptions")


TaskOptions = WebsiteHtmlOptions | LighthouseHtmlOptions

_OPTIONS_BY_TYPE: dict[str, type[BaseModel]] = {
    "website_html": WebsiteHtmlOptions,
    "lighthouse_html": LighthouseHtmlOptions,
}


def parse_options(task_type: str, payload: dict[str, Any] | None) -> TaskOptions:
    """Разобрать payload в типизированные опции по task type.

    ValueError для неизвестного типа, pydantic.ValidationError для кривого payload.
    """
    model = _OPTIONS_BY_TYPE.get(task_type)
    if model is None:
        raise ValueError(f"Invalid task type: {task_type}")
    return model.model_validate(payload or {})  # type: ignore[return-value]


class TaskInput(BaseModel):
    """Входные данные для постановки задачи в очередь."""

    id: str | None = None
    type: str = ""
    url: str = ""
    payload: dict[str, Any] | None = None


class Task(BaseModel):
    """Задача из таблицы browser_tasks."""

    id: str
    type: str  # неизвестный тип отсекает executor
    url: str
    payload: dict[str, Any] | None = None
    status: TaskStatus = "pending"
    result: dict[str, Any] | None = None
    error: str | None = None
    worker_id: str | None = None
    processing_by: str | None = None
    created_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    duration_ms: int | None = None


class ExecutionResult(BaseModel):
    """Результат выполнения задачи (envelope для доставки)."""

    task_id: str
    type: str
    success: bool
    result: dict[str, Any] | None = None
    error: str | None = None
    executed_at: datetime = Field(default_factory=utc_now)
    duration_ms: int = 0


class TaskStatistics(BaseModel):
    """Количество задач по статусам."""

    total: int = 0
    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0


class ProcessorStatus(BaseModel):
    """Состояние процессора задач."""

    running: bool
    active_tasks: int
    max_concurrent: int
    interval: float
