"""Общие фикстуры: временная SQLite-база и сервис очереди поверх неё."""
from collections.abc import Iterator

import pytest

from localbrowser.config import WorkerIdentity
from localbrowser.queue_service import TaskQueueService
from localbrowser.store import TaskStore


@pytest.fixture
def store(tmp_path) -> Iterator[TaskStore]:
    s = TaskStore(tmp_path / "tasks.sqlite3")
    s.init_schema()
    yield s
    s.close()


@pytest.fixture
def queue(store: TaskStore) -> TaskQueueService:
    return TaskQueueService(store)


@pytest.fixture
def identity() -> WorkerIdentity:
    return WorkerIdentity(worker_id="worker-test", processing_by="test-host:1234")
