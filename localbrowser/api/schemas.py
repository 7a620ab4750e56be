"""Pydantic-схемы для status API и внутренних маршрутов."""
from datetime import datetime

from pydantic import BaseModel, Field

from localbrowser.models.task import ProcessorStatus, TaskStatistics


class HealthResponse(BaseModel):
    """Ответ healthcheck."""

    status: str  # "ok" | "degraded"
    worker_id: str
    processor: ProcessorStatus
    tasks: TaskStatistics


class LogEntry(BaseModel):
    """Запись из error_logs."""

    id: int
    level: str
    module: str | None = None
    message: str
    created_at: datetime


class PingResponse(BaseModel):
    status: str = "ok"
    worker_id: str
    timestamp: datetime


class QueueStatsResponse(BaseModel):
    status: str = "ok"
    stats: TaskStatistics
    worker_id: str
    timestamp: datetime


class CleanupRequest(BaseModel):
    older_than_days: int = Field(default=7, ge=1)


class CleanupResponse(BaseModel):
    status: str = "ok"
    deleted: int
    timestamp: datetime


class ResetStuckRequest(BaseModel):
    stuck_after_minutes: int = Field(default=30, ge=1)


class ResetStuckResponse(BaseModel):
    status: str = "ok"
    reset: int
    timestamp: datetime
