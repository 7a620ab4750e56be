"""APScheduler-задачи обслуживания очереди: зависшие задачи и retention."""
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from loguru import logger

from localbrowser.queue_service import TaskQueueService


async def reset_stuck_tasks(queue: TaskQueueService, threshold_minutes: int) -> int:
    """Вернуть зависшие processing задачи в pending. Ошибка не останавливает расписание."""
    try:
        reset = await queue.reset_stuck_tasks(threshold_minutes)
    except Exception as e:
        logger.error(f"[maintenance] Failed to reset stuck tasks: {e}")
        return 0
    if reset:
        logger.warning(f"[maintenance] Reset {reset} stuck tasks")
    return reset


async def cleanup_old_tasks(queue: TaskQueueService, older_than_days: int) -> int:
    """Удалить старые completed/failed задачи."""
    try:
        deleted = await queue.cleanup_old_tasks(older_than_days)
    except Exception as e:
        logger.error(f"[maintenance] Failed to clean up old tasks: {e}")
        return 0
    if deleted:
        logger.info(f"[maintenance] Cleaned up {deleted} old tasks")
    return deleted


class TaskMaintenanceWorker:
    """Два независимых interval-джоба, запускаются и останавливаются вместе."""

    def __init__(
        self,
        queue: TaskQueueService,
        *,
        stuck_check_interval: float = 300.0,
        stuck_threshold_minutes: int = 30,
        cleanup_interval: float = 3600.0,
        cleanup_older_than_days: int = 7,
    ) -> None:
        self.queue = queue
        self.stuck_check_interval = stuck_check_interval
        self.stuck_threshold_minutes = stuck_threshold_minutes
        self.cleanup_interval = cleanup_interval
        self.cleanup_older_than_days = cleanup_older_than_days
        self._scheduler: AsyncIOScheduler | None = None

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None and self._scheduler.running

    def create_scheduler(self) -> AsyncIOScheduler:
        """Создать и настроить APScheduler."""
        scheduler = AsyncIOScheduler(
            job_defaults={
                # Дефолтный misfire_grace_time=1с слишком мал для async job'ов:
                # при задержке event loop job'ы будут тихо пропускаться.
                "misfire_grace_time": None,
                "coalesce": True,
                "max_instances": 1,
            }
        )

        scheduler.add_job(
            reset_stuck_tasks,
            "interval",
            seconds=self.stuck_check_interval,
            kwargs={"queue": self.queue, "threshold_minutes": self.stuck_threshold_minutes},
            id="reset_stuck_tasks",
        )

        scheduler.add_job(
            cleanup_old_tasks,
            "interval",
            seconds=self.cleanup_interval,
            kwargs={"queue": self.queue, "older_than_days": self.cleanup_older_than_days},
            id="cleanup_old_tasks",
        )

        return scheduler

    def start(self) -> None:
        if self.is_running:
            logger.warning("[maintenance] Already running")
            return

        self._scheduler = self.create_scheduler()
        self._scheduler.start()
        logger.info(
            f"[maintenance] Started (stuck check every {self.stuck_check_interval}s, "
            f"cleanup every {self.cleanup_interval}s)"
        )

    def stop(self) -> None:
        if not self.is_running or self._scheduler is None:
            logger.warning("[maintenance] Not running")
            return

        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("[maintenance] Stopped")
