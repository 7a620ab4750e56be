"""Общие фикстуры и хелперы для тестов API."""
from unittest.mock import AsyncMock, MagicMock

from localbrowser.config import WorkerIdentity
from localbrowser.models.task import TaskStatistics
from localbrowser.worker.executor import TaskExecutor
from localbrowser.worker.loop import TaskProcessor

TEST_SECRET = "test-secret"


def make_settings(
    api_key: str = "sk-test-key",
    secret: str = TEST_SECRET,
    storage_dir: str = "storage",
):
    """Создать мок Settings с API-ключом, HMAC-секретом и каталогом страниц."""
    settings = MagicMock()
    settings.api_key.get_secret_value.return_value = api_key
    settings.localbrowser_secret.get_secret_value.return_value = secret
    settings.storage_dir = storage_dir
    return settings


def make_processor(queue) -> TaskProcessor:
    return TaskProcessor(
        queue,
        TaskExecutor(AsyncMock()),
        WorkerIdentity(worker_id="worker-api", processing_by="api-host:1"),
        interval=5.0,
        max_concurrent=3,
    )


def make_broken_queue():
    """Мок очереди с недоступным хранилищем."""
    queue = MagicMock()
    queue.is_available = AsyncMock(return_value=False)
    queue.get_statistics = AsyncMock(return_value=TaskStatistics())
    return queue


def make_app(queue, settings=None):
    """Создать FastAPI app с зависимостями."""
    from localbrowser.api.app import create_app

    return create_app(
        queue=queue,
        processor=make_processor(queue),
        settings=settings or make_settings(),
    )


# Общий заголовок авторизации
AUTH_HEADERS = {"Authorization": "Bearer sk-test-key"}
