"""Тесты ожидания остановки воркера."""
import asyncio

from localbrowser.main import wait_for_shutdown


def _pending_waiters() -> list[asyncio.Task]:
    return [
        t for t in asyncio.all_tasks()
        if t.get_name() == "shutdown-waiter" and not t.done()
    ]


class TestWaitForShutdown:
    """Тесты wait_for_shutdown."""

    async def test_server_exit_cancels_signal_waiter(self) -> None:
        """Сервер завершился сам: задача ожидания сигнала не остаётся висеть."""
        server_task = asyncio.create_task(asyncio.sleep(0))

        await wait_for_shutdown(server_task, asyncio.Event())
        await asyncio.sleep(0)

        assert server_task.done()
        assert _pending_waiters() == []

    async def test_shutdown_event_returns_while_server_runs(self) -> None:
        server_task = asyncio.create_task(asyncio.sleep(60))
        event = asyncio.Event()
        event.set()

        await wait_for_shutdown(server_task, event)

        assert not server_task.done()
        assert _pending_waiters() == []
        server_task.cancel()
