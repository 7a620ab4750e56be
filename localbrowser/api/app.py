"""FastAPI-приложение: healthcheck, просмотр очереди, сохранённые страницы и внутренние маршруты."""
import hmac
import re
from pathlib import Path

from fastapi import APIRouter, Depends, FastAPI, Header, HTTPException, Query, Response
from fastapi.responses import FileResponse
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from loguru import logger

from localbrowser.api.schemas import (
    CleanupRequest,
    CleanupResponse,
    HealthResponse,
    LogEntry,
    PingResponse,
    QueueStatsResponse,
    ResetStuckRequest,
    ResetStuckResponse,
)
from localbrowser.config import Settings
from localbrowser.exceptions import TaskStoreError
from localbrowser.models.task import Task, TaskStatistics, utc_now
from localbrowser.queue_service import TaskQueueService
from localbrowser.signing import verify_signature
from localbrowser.worker.loop import TaskProcessor

security = HTTPBearer(auto_error=False)

# Имена файлов, которые пишет HttpPageVisitor
STORED_FILE_RE = re.compile(r"^[0-9a-f]{32}\.html$")


def create_app(queue: TaskQueueService, processor: TaskProcessor, settings: Settings) -> FastAPI:
    """Создать FastAPI-приложение с зависимостями."""
    app = FastAPI(title="LocalBrowser Worker API", version="0.1.0")

    app.state.queue = queue
    app.state.processor = processor
    app.state.settings = settings

    async def verify_api_key(
        credentials: HTTPAuthorizationCredentials | None = Depends(security),
    ) -> None:
        """Проверка API-ключа. Пустой ключ в настройках закрывает API целиком."""
        expected = settings.api_key.get_secret_value()
        if (
            not expected
            or credentials is None
            or not hmac.compare_digest(credentials.credentials, expected)
        ):
            raise HTTPException(status_code=401, detail="Invalid API key")

    async def verify_hmac(
        x_signature: str | None = Header(default=None),
        x_timestamp: str | None = Header(default=None),
    ) -> None:
        """HMAC-подпись Laravel: X-Signature от X-Timestamp, окно ±5 минут."""
        secret = settings.localbrowser_secret.get_secret_value()
        if not verify_signature(secret, x_signature, x_timestamp):
            logger.warning("[api] Rejected internal request with invalid signature")
            raise HTTPException(status_code=401, detail="Invalid signature")

    @app.get("/api/health", response_model=HealthResponse)
    async def health(response: Response) -> HealthResponse:
        """Healthcheck — без авторизации."""
        if await queue.is_available():
            status = "ok"
            tasks = await queue.get_statistics()
        else:
            response.status_code = 503
            status = "degraded"
            tasks = TaskStatistics()

        return HealthResponse(
            status=status,
            worker_id=processor.identity.worker_id,
            processor=processor.get_status(),
            tasks=tasks,
        )

    @app.get(
        "/api/tasks/stats",
        response_model=TaskStatistics,
        dependencies=[Depends(verify_api_key)],
    )
    async def task_stats() -> TaskStatistics:
        return await queue.get_statistics()

    @app.get(
        "/api/tasks/{task_id}",
        response_model=Task,
        dependencies=[Depends(verify_api_key)],
    )
    async def get_task(task_id: str) -> Task:
        """Задача по id (включая result/error)."""
        try:
            task = await queue.get_task(task_id)
        except TaskStoreError:
            raise HTTPException(status_code=503, detail="Task store unavailable")
        if task is None:
            raise HTTPException(status_code=404, detail="Task not found")
        return task

    @app.get(
        "/api/logs",
        response_model=list[LogEntry],
        dependencies=[Depends(verify_api_key)],
    )
    async def recent_logs(limit: int = Query(default=20, ge=1, le=100)) -> list[LogEntry]:
        """Последние WARNING+ записи из error_logs."""
        try:
            rows = await queue.get_recent_logs(limit)
        except TaskStoreError:
            raise HTTPException(status_code=503, detail="Task store unavailable")
        return [LogEntry.model_validate(row) for row in rows]

    @app.get("/files/{filename}")
    async def stored_file(filename: str, view: bool = False) -> FileResponse:
        """Страница, сохранённая website_html/website_visit. ?view=1 открывает в браузере."""
        if not STORED_FILE_RE.match(filename):
            raise HTTPException(status_code=404, detail="File not found")
        path = Path(settings.storage_dir) / filename
        if not path.is_file():
            raise HTTPException(status_code=404, detail="File not found")
        if view:
            return FileResponse(path, media_type="text/html")
        return FileResponse(path, media_type="text/html", filename=filename)

    internal = APIRouter(prefix="/internal", dependencies=[Depends(verify_hmac)])

    @internal.post("/ping", response_model=PingResponse)
    async def ping() -> PingResponse:
        return PingResponse(worker_id=processor.identity.worker_id, timestamp=utc_now())

    @internal.get("/queue/stats", response_model=QueueStatsResponse)
    async def queue_stats() -> QueueStatsResponse:
        return QueueStatsResponse(
            stats=await queue.get_statistics(),
            worker_id=processor.identity.worker_id,
            timestamp=utc_now(),
        )

    @internal.post("/queue/cleanup", response_model=CleanupResponse)
    async def queue_cleanup(body: CleanupRequest | None = None) -> CleanupResponse:
        """Удалить завершённые задачи старше older_than_days."""
        body = body or CleanupRequest()
        try:
            deleted = await queue.cleanup_old_tasks(body.older_than_days)
        except TaskStoreError as e:
            raise HTTPException(status_code=500, detail=str(e))
        logger.info(f"[api] Cleanup requested: {deleted} tasks deleted")
        return CleanupResponse(deleted=deleted, timestamp=utc_now())

    @internal.post("/queue/reset-stuck", response_model=ResetStuckResponse)
    async def queue_reset_stuck(body: ResetStuckRequest | None = None) -> ResetStuckResponse:
        body = body or ResetStuckRequest()
        try:
            reset = await queue.reset_stuck_tasks(body.stuck_after_minutes)
        except TaskStoreError as e:
            raise HTTPException(status_code=500, detail=str(e))
        logger.info(f"[api] Reset-stuck requested: {reset} tasks returned to pending")
        return ResetStuckResponse(reset=reset, timestamp=utc_now())

    app.include_router(internal)

    return app
