"""Конфигурация воркера из переменных окружения."""
import os
import socket
from dataclasses import dataclass

from pydantic import AliasChoices, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


@dataclass(frozen=True)
class WorkerIdentity:
    """Идентификация процесса-исполнителя (worker_id / processing_by)."""

    worker_id: str
    processing_by: str


def default_identity(worker_id: str = "") -> WorkerIdentity:
    """WORKER_ID из env или worker-<pid>; processing_by = hostname:pid."""
    pid = os.getpid()
    return WorkerIdentity(
        worker_id=worker_id or f"worker-{pid}",
        processing_by=f"{socket.gethostname()}:{pid}",
    )


class Settings(BaseSettings):
    """Настройки воркера — парсятся из env или .env файла."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Хранилище задач (SQLite)
    database_path: str = "data/tasks.sqlite3"

    worker_id: str = ""

    # Процессор задач
    task_processor_enabled: bool = True
    task_processor_interval: float = 5.0   # секунды между тиками
    max_concurrent_tasks: int = 3

    # Обслуживание очереди
    stuck_task_check_interval: float = 300.0
    stuck_task_threshold_minutes: int = 30
    task_cleanup_interval: float = 3600.0
    task_cleanup_days: int = 7

    # Доставка результатов
    laravel_internal_url: str = ""
    localbrowser_secret: SecretStr = SecretStr("")
    result_max_retries: int = 3
    result_retry_delay: float = 2.0
    result_request_timeout: float = 30.0

    # Handshake при старте
    handshake_enabled: bool = True
    handshake_max_tasks: int = 10

    # Локальное хранилище страниц
    storage_dir: str = "storage"
    public_base_url: str = "http://localhost:3000"

    # Lighthouse
    lighthouse_bin: str = "lighthouse"
    chrome_port: int | None = None

    # API
    api_key: SecretStr = SecretStr("")
    api_port: int = Field(
        default=3000,
        validation_alias=AliasChoices("API_PORT", "PORT"),
    )

    log_level: str = "INFO"
    shutdown_timeout: float = 30.0

    @property
    def delivery_configured(self) -> bool:
        """Доставка результатов возможна только при URL и секрете."""
        return bool(self.laravel_internal_url and self.localbrowser_secret.get_secret_value())

    def identity(self) -> WorkerIdentity:
        return default_identity(self.worker_id)


def load_settings() -> Settings:
    """Создать Settings из переменных окружения (.env файла).

    Фабричная функция — единая точка создания настроек для main.py.
    """
    return Settings.model_validate({})
