"""Тесты конфигурации воркера."""
import os
import re

import pytest

from localbrowser.config import Settings, WorkerIdentity, default_identity


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    """Без .env и посторонних переменных окружения."""
    monkeypatch.chdir(tmp_path)
    for name in (
        "PORT", "API_PORT", "WORKER_ID", "LARAVEL_INTERNAL_URL", "LOCALBROWSER_SECRET",
        "MAX_CONCURRENT_TASKS", "TASK_PROCESSOR_INTERVAL", "LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)


class TestDefaultIdentity:
    """Тесты идентификации воркера."""

    def test_generated_worker_id(self) -> None:
        identity = default_identity()
        assert identity.worker_id == f"worker-{os.getpid()}"
        assert identity.processing_by.endswith(f":{os.getpid()}")

    def test_explicit_worker_id(self) -> None:
        identity = default_identity("worker-main")
        assert identity == WorkerIdentity(
            worker_id="worker-main", processing_by=identity.processing_by
        )


class TestSettings:
    """Тесты парсинга Settings из env."""

    def test_defaults(self) -> None:
        s = Settings()
        assert s.max_concurrent_tasks == 3
        assert s.task_processor_interval == 5.0
        assert s.stuck_task_threshold_minutes == 30
        assert s.task_cleanup_days == 7
        assert s.result_max_retries == 3
        assert s.result_retry_delay == 2.0
        assert s.api_port == 3000
        assert s.delivery_configured is False

    def test_env_overrides(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("MAX_CONCURRENT_TASKS", "5")
        monkeypatch.setenv("TASK_PROCESSOR_INTERVAL", "0.5")
        monkeypatch.setenv("WORKER_ID", "worker-env")

        s = Settings()
        assert s.max_concurrent_tasks == 5
        assert s.task_processor_interval == 0.5
        assert s.identity().worker_id == "worker-env"

    def test_delivery_configured(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("LARAVEL_INTERNAL_URL", "http://laravel.local")
        monkeypatch.setenv("LOCALBROWSER_SECRET", "s3cret")

        s = Settings()
        assert s.delivery_configured is True
        assert s.localbrowser_secret.get_secret_value() == "s3cret"
        # SecretStr не светится в repr
        assert "s3cret" not in repr(s)

    def test_port_alias(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("PORT", "8080")
        assert Settings().api_port == 8080

    def test_env_file(self, tmp_path) -> None:
        (tmp_path / ".env").write_text("MAX_CONCURRENT_TASKS=7\nUNKNOWN_SETTING=1\n")
        assert Settings().max_concurrent_tasks == 7

    def test_generated_identity_format(self) -> None:
        assert re.fullmatch(r"worker-\d+", Settings().identity().worker_id)
