"""Процессор задач — polling-цикл с ограничением параллелизма."""
import asyncio
import time

from loguru import logger

from localbrowser.config import WorkerIdentity
from localbrowser.models.task import ExecutionResult, ProcessorStatus, Task
from localbrowser.queue_service import TaskQueueService
from localbrowser.worker.executor import TaskExecutor
from localbrowser.worker.submitter import ResultSubmitter


class TaskProcessor:
    """
    Каждый тик берёт не больше свободных слотов pending-задач и запускает их
    через asyncio.create_task, не дожидаясь завершения.
    In-flight множество — только локальный счётчик параллелизма; после падения
    процесса зависшие processing-задачи возвращает TaskMaintenanceWorker.
    """

    def __init__(
        self,
        queue: TaskQueueService,
        executor: TaskExecutor,
        identity: WorkerIdentity,
        *,
        submitter: ResultSubmitter | None = None,
        interval: float = 5.0,
        max_concurrent: int = 3,
    ) -> None:
        self.queue = queue
        self.executor = executor
        self.identity = identity
        self.submitter = submitter
        self.interval = interval
        self.max_concurrent = max(1, max_concurrent)

        # id задач в обработке: не берём повторно при следующем poll
        self._processing_ids: set[str] = set()
        self._active_tasks: set[asyncio.Task[None]] = set()
        self._stop_event: asyncio.Event | None = None
        self._loop_task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def in_flight(self) -> int:
        return len(self._processing_ids)

    def start(self) -> None:
        """Запустить цикл: первый тик сразу, дальше каждые interval секунд."""
        if self.is_running:
            logger.warning("[processor] Already running")
            return

        self._stop_event = asyncio.Event()
        self._loop_task = asyncio.create_task(self._run(self._stop_event), name="task-processor")
        logger.info(
            f"[processor] Started (interval={self.interval}s, "
            f"max_concurrent={self.max_concurrent}, worker={self.identity.worker_id})"
        )

    async def stop(self) -> None:
        """Остановить планирование новых задач. Уже запущенные доработают сами."""
        if not self.is_running or self._stop_event is None or self._loop_task is None:
            logger.warning("[processor] Not running")
            return

        self._stop_event.set()
        await self._loop_task
        self._loop_task = None
        logger.info(f"[processor] Stopped ({self.in_flight} tasks still in flight)")

    async def drain(self, timeout: float | None = None) -> bool:
        """Дождаться завершения задач в полёте. False — если не успели за timeout."""
        if not self._active_tasks:
            return True
        logger.info(f"[processor] Waiting for {len(self._active_tasks)} active tasks to finish...")
        _, pending = await asyncio.wait(set(self._active_tasks), timeout=timeout)
        if pending:
            logger.warning(f"[processor] {len(pending)} tasks did not finish in {timeout}s")
            return False
        return True

    def get_status(self) -> ProcessorStatus:
        return ProcessorStatus(
            running=self.is_running,
            active_tasks=self.in_flight,
            max_concurrent=self.max_concurrent,
            interval=self.interval,
        )

    async def _run(self, stop_event: asyncio.Event) -> None:
        while not stop_event.is_set():
            await self.tick()

            # Ждём interval или stop
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.interval)
            except TimeoutError:
                pass

    async def tick(self) -> int:
        """Один проход планировщика. Возвращает число запущенных задач."""
        try:
            if self.in_flight >= self.max_concurrent:
                return 0

            available_slots = self.max_concurrent - self.in_flight
            tasks = await self.queue.get_pending_tasks(available_slots)
            if not tasks:
                return 0

            logger.info(
                f"[processor] Found {len(tasks)} pending tasks (active={self.in_flight})"
            )
            dispatched = 0
            for task in tasks:
                if task.id in self._processing_ids:
                    continue
                if self.in_flight >= self.max_concurrent:
                    break
                self._dispatch(task)
                dispatched += 1
            return dispatched
        except Exception as e:
            logger.exception(f"[processor] Error in process loop: {e}")
            return 0

    def _dispatch(self, task: Task) -> None:
        # id регистрируется до запуска корутины
        self._processing_ids.add(task.id)
        t = asyncio.create_task(self._process_task(task), name=f"task-{task.id}")
        self._active_tasks.add(t)
        t.add_done_callback(lambda done_t, tid=task.id: self._on_task_done(tid, done_t))

    def _on_task_done(self, task_id: str, t: asyncio.Task[None]) -> None:
        self._active_tasks.discard(t)
        self._processing_ids.discard(task_id)
        if not t.cancelled() and t.exception() is not None:
            logger.error(f"[processor] Task {task_id} crashed: {t.exception()!r}")

    async def _process_task(self, task: Task) -> None:
        """pending → processing → completed/failed, затем best-effort доставка."""
        logger.info(f"[processor] Processing task {task.id} type={task.type} url={task.url}")
        try:
            errors = self.executor.validate_task(task)
            if errors:
                # Невалидная задача: без processing и без обращения к браузеру
                result = self.executor.validation_failure(task, errors)
                duration = 0
            else:
                claimed = await self.queue.update_task_status(
                    task.id,
                    "processing",
                    worker_id=self.identity.worker_id,
                    processing_by=self.identity.processing_by,
                )
                if not claimed:
                    # Задачу удалили или она уже ушла из pending
                    logger.warning(f"[processor] Task {task.id} is no longer pending, skipping")
                    return
                started = time.monotonic()
                result = await self.executor.execute(task)
                duration = int((time.monotonic() - started) * 1000)

            status = "completed" if result.success else "failed"
            await self.queue.update_task_status(
                task.id,
                status,
                result=result.result,
                error=result.error,
                duration_ms=duration,
            )
            logger.info(
                f"[processor] Task {task.id} {status} in {duration}ms"
            )
        except Exception as e:
            logger.error(f"[processor] Task {task.id} processing failed: {e}")
            try:
                await self.queue.update_task_status(task.id, "failed", error=str(e))
            except Exception as update_error:
                logger.error(f"[processor] Failed to mark task {task.id} as failed: {update_error}")
            return

        await self._submit(result)

    async def _submit(self, result: ExecutionResult) -> None:
        """Доставка не влияет на статус задачи — ошибки только логируются."""
        if self.submitter is None:
            return
        try:
            await self.submitter.submit(result)
        except Exception as e:
            logger.error(f"[processor] Failed to submit result for task {result.task_id}: {e}")
