"""Точка входа воркера — инициализация и запуск API, процессора и обслуживания очереди."""
import asyncio
import signal
import sys

import uvicorn
from loguru import logger

from localbrowser.api.app import create_app
from localbrowser.config import Settings, WorkerIdentity, load_settings
from localbrowser.log_sink import create_store_sink
from localbrowser.platforms.http_visitor import HttpPageVisitor
from localbrowser.platforms.lighthouse import detect_lighthouse
from localbrowser.queue_service import TaskQueueService
from localbrowser.store import TaskStore
from localbrowser.worker.executor import TaskExecutor
from localbrowser.worker.handshake import StartupHandshake
from localbrowser.worker.loop import TaskProcessor
from localbrowser.worker.scheduler import TaskMaintenanceWorker
from localbrowser.worker.submitter import ResultSubmitter


def build_submitter(settings: Settings, identity: WorkerIdentity) -> ResultSubmitter | None:
    """Без URL/секрета результаты только сохраняются локально."""
    if not settings.delivery_configured:
        logger.warning(
            "LARAVEL_INTERNAL_URL or LOCALBROWSER_SECRET not set, results will not be delivered"
        )
        return None
    return ResultSubmitter(
        settings.laravel_internal_url,
        settings.localbrowser_secret.get_secret_value(),
        identity,
        max_retries=settings.result_max_retries,
        retry_delay=settings.result_retry_delay,
        request_timeout=settings.result_request_timeout,
    )


async def run_handshake(settings: Settings, identity: WorkerIdentity, queue: TaskQueueService) -> None:
    if not settings.handshake_enabled or not settings.delivery_configured:
        return
    handshake = StartupHandshake(
        settings.laravel_internal_url,
        settings.localbrowser_secret.get_secret_value(),
        identity,
        queue,
        max_tasks=settings.handshake_max_tasks,
    )
    await handshake.execute()


async def wait_for_shutdown(server_task: asyncio.Task, shutdown_event: asyncio.Event) -> None:
    """Ждать сигнала остановки или завершения API-сервера; ожидание сигнала отменяется на выходе."""
    waiter = asyncio.create_task(shutdown_event.wait(), name="shutdown-waiter")
    try:
        await asyncio.wait({server_task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        waiter.cancel()


async def main() -> None:
    """Инициализация и запуск API + процессора задач."""
    settings = load_settings()

    # Логирование
    logger.remove()
    logger.add(sys.stderr, level=settings.log_level)
    if settings.log_level == "DEBUG":
        logger.add("logs/localbrowser.log", rotation="100 MB", retention="7 days")

    identity = settings.identity()
    logger.info(f"Starting localbrowser worker {identity.worker_id} ({identity.processing_by})")

    # Хранилище задач
    store = TaskStore(settings.database_path)
    store.init_schema()

    # Персистить WARNING+ логи в error_logs
    logger.add(
        create_store_sink(store),
        level="WARNING",
        enqueue=True,
        serialize=False,
    )

    queue = TaskQueueService(store)
    executor = TaskExecutor(
        HttpPageVisitor(settings.storage_dir, settings.public_base_url),
        detect_lighthouse(settings.lighthouse_bin, settings.chrome_port),
    )
    processor = TaskProcessor(
        queue,
        executor,
        identity,
        submitter=build_submitter(settings, identity),
        interval=settings.task_processor_interval,
        max_concurrent=settings.max_concurrent_tasks,
    )
    maintenance = TaskMaintenanceWorker(
        queue,
        stuck_check_interval=settings.stuck_task_check_interval,
        stuck_threshold_minutes=settings.stuck_task_threshold_minutes,
        cleanup_interval=settings.task_cleanup_interval,
        cleanup_older_than_days=settings.task_cleanup_days,
    )

    # FastAPI
    app = create_app(queue, processor, settings)
    config = uvicorn.Config(app, host="0.0.0.0", port=settings.api_port, log_level="warning")
    server = uvicorn.Server(config)

    # Graceful shutdown
    shutdown_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, shutdown_event.set)

    await run_handshake(settings, identity, queue)

    maintenance.start()
    if settings.task_processor_enabled:
        processor.start()
    else:
        logger.warning("Task processor disabled (TASK_PROCESSOR_ENABLED=false)")

    logger.info(f"API server starting on port {settings.api_port}")
    server_task = asyncio.create_task(server.serve(), name="api-server")
    try:
        await wait_for_shutdown(server_task, shutdown_event)
    finally:
        logger.info("Shutting down...")
        if processor.is_running:
            await processor.stop()
        await processor.drain(settings.shutdown_timeout)
        maintenance.stop()
        server.should_exit = True
        await server_task
        await logger.complete()
        store.close()
        logger.info("Worker stopped gracefully")


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
