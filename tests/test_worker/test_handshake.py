"""Тесты handshake при старте воркера."""
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from localbrowser.config import WorkerIdentity
from localbrowser.exceptions import ConfigurationError
from localbrowser.queue_service import TaskQueueService
from localbrowser.signing import verify_signature
from localbrowser.worker.handshake import StartupHandshake

BASE_URL = "http://laravel.local"
SECRET = "test-secret"
ENDPOINT = f"{BASE_URL}/internal/request-work"


def _response(status: int, **kwargs) -> httpx.Response:
    return httpx.Response(status, request=httpx.Request("POST", ENDPOINT), **kwargs)


def _client(*responses: httpx.Response | Exception) -> AsyncMock:
    client = AsyncMock(spec=httpx.AsyncClient)
    client.post.side_effect = list(responses)
    return client


def _handshake(
    queue: TaskQueueService, identity: WorkerIdentity, client: AsyncMock, **kwargs
) -> StartupHandshake:
    return StartupHandshake(BASE_URL, SECRET, identity, queue, client=client, **kwargs)


class TestRequestWork:
    """Тесты запроса задач у Laravel."""

    async def test_signed_request_body(
        self, queue: TaskQueueService, identity: WorkerIdentity
    ) -> None:
        client = _client(_response(200, json={"tasks": []}))

        assert await _handshake(queue, identity, client, max_tasks=5).request_work() == []

        call = client.post.call_args
        assert call.args[0] == ENDPOINT
        assert call.kwargs["json"] == {
            "max_tasks": 5,
            "worker_id": "worker-test",
            "processing_by": "test-host:1234",
        }
        headers = call.kwargs["headers"]
        assert verify_signature(SECRET, headers["X-Signature"], headers["X-Timestamp"])

    async def test_retries_with_linear_delay(
        self, queue: TaskQueueService, identity: WorkerIdentity
    ) -> None:
        client = _client(
            httpx.ConnectError("connection refused"),
            _response(500),
            _response(200, json={"tasks": [{"id": "t1", "type": "website_html", "url": "https://a.example"}]}),
        )

        with patch("localbrowser.worker.handshake.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
            tasks = await _handshake(queue, identity, client, retry_delay=3.0).request_work()

        assert [t["id"] for t in tasks] == ["t1"]
        assert [c.args[0] for c in mock_sleep.call_args_list] == [3.0, 6.0]

    async def test_exhaustion_returns_empty(
        self, queue: TaskQueueService, identity: WorkerIdentity
    ) -> None:
        client = _client(*[httpx.ConnectError("connection refused")] * 5)

        with patch("localbrowser.worker.handshake.asyncio.sleep", new_callable=AsyncMock):
            tasks = await _handshake(queue, identity, client).request_work()

        assert tasks == []
        assert client.post.call_count == 5

    async def test_malformed_body(self, queue: TaskQueueService, identity: WorkerIdentity) -> None:
        client = _client(_response(200, json={"tasks": "nope"}))
        assert await _handshake(queue, identity, client).request_work() == []

    def test_requires_configuration(self, queue: TaskQueueService, identity: WorkerIdentity) -> None:
        with pytest.raises(ConfigurationError):
            StartupHandshake("", SECRET, identity, queue)


class TestExecute:
    """Тесты постановки полученных задач в очередь."""

    async def test_enqueues_tasks(self, queue: TaskQueueService, identity: WorkerIdentity) -> None:
        client = _client(_response(200, json={"tasks": [
            {"id": "laravel-1", "type": "website_html", "url": "https://a.example",
             "payload": {"timeout": 5000}},
            {"id": "laravel-2", "type": "lighthouse_html", "url": "https://b.example"},
        ]}))

        enqueued = await _handshake(queue, identity, client).execute()

        assert enqueued == ["laravel-1", "laravel-2"]
        task = await queue.get_task("laravel-1")
        assert task.status == "pending"
        assert task.payload == {"timeout": 5000}

    async def test_skips_existing_and_invalid(
        self, queue: TaskQueueService, identity: WorkerIdentity
    ) -> None:
        await queue.enqueue_task({"id": "laravel-1", "type": "website_html", "url": "https://a.example"})
        client = _client(_response(200, json={"tasks": [
            {"id": "laravel-1", "type": "website_html", "url": "https://a.example"},
            {"id": "laravel-2", "type": "website_html", "url": ""},
            {"id": "laravel-3", "type": "website_html", "url": "https://c.example"},
        ]}))

        enqueued = await _handshake(queue, identity, client).execute()

        assert enqueued == ["laravel-3"]
        assert await queue.get_task("laravel-2") is None
        assert (await queue.get_task("laravel-1")).url == "https://a.example"
