"""Исполнитель задач: валидация, диспатч по типу, защита от таймаутов."""
import asyncio
import time
from collections.abc import Mapping
from typing import Any

from loguru import logger

from localbrowser.models.task import (
    TASK_TYPES,
    ExecutionResult,
    LighthouseHtmlOptions,
    Task,
    WebsiteHtmlOptions,
    utc_now,
)
from localbrowser.platforms.base import (
    AnalysisTool,
    AnalysisToolUnavailable,
    BrowserAutomation,
)


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def _score(categories: Mapping[str, Any], key: str) -> float | None:
    category = categories.get(key) or {}
    return category.get("score") if isinstance(category, Mapping) else None


class TaskExecutor:
    """Выполняет одну задачу и всегда возвращает ExecutionResult — исключения наружу не выходят."""

    def __init__(
        self,
        browser: BrowserAutomation,
        analysis_tool: AnalysisTool | None = None,
    ) -> None:
        self.browser = browser
        self.analysis_tool: AnalysisTool = analysis_tool or AnalysisToolUnavailable(
            reason="No page audit tool configured"
        )

    def validate_task(self, task: Any) -> list[str]:
        """Список ошибок валидации (пустой — задача корректна)."""
        if isinstance(task, Task):
            data: Mapping[str, Any] = task.model_dump()
        elif isinstance(task, Mapping):
            data = task
        else:
            return ["Task must be an object"]

        errors: list[str] = []
        if not data.get("id"):
            errors.append("Missing required field: id")

        task_type = data.get("type")
        if not task_type:
            errors.append("Missing required field: type")
        elif task_type not in TASK_TYPES:
            errors.append(f"Invalid task type: {task_type}")

        url = data.get("url")
        if not url:
            errors.append("Missing required field: url")
        elif not isinstance(url, str):
            errors.append("URL must be a string")
        elif not url.startswith(("http://", "https://")):
            errors.append("URL must start with http:// or https://")

        return errors

    def validation_failure(self, task: Any, errors: list[str]) -> ExecutionResult:
        """Failed-результат без обращения к браузеру."""
        task_id = "unknown"
        task_type = "unknown"
        if isinstance(task, Task):
            task_id, task_type = task.id or task_id, task.type or task_type
        elif isinstance(task, Mapping):
            task_id = str(task.get("id") or task_id)
            task_type = str(task.get("type") or task_type)
        return ExecutionResult(
            task_id=task_id,
            type=task_type,
            success=False,
            error=f"Task validation failed: {', '.join(errors)}",
            duration_ms=0,
        )

    async def execute(self, task: Task | Mapping[str, Any]) -> ExecutionResult:
        errors = self.validate_task(task)
        if errors:
            logger.error(f"[executor] Invalid task: {errors}")
            return self.validation_failure(task, errors)

        task_id = task.id if isinstance(task, Task) else str(task["id"])
        task_type = task.type if isinstance(task, Task) else str(task["type"])
        try:
            if not isinstance(task, Task):
                task = Task.model_validate(dict(task))
            logger.info(f"[executor] Starting task {task.id} type={task.type} url={task.url}")

            if task.type == "website_html":
                return await self.execute_website_html(task)
            if task.type == "lighthouse_html":
                return await self.execute_lighthouse_html(task)
            raise ValueError(f"Unknown task type: {task.type}")
        except Exception as e:
            logger.exception(f"[executor] Task {task_id} failed: {e}")
            return ExecutionResult(
                task_id=task_id,
                type=task_type,
                success=False,
                error=str(e) or type(e).__name__,
                duration_ms=0,
            )

    async def execute_website_html(self, task: Task) -> ExecutionResult:
        """Открыть URL через браузер; страница сохраняется в хранилище на его стороне."""
        started = time.monotonic()
        try:
            options = WebsiteHtmlOptions.model_validate(task.payload or {})
            file_metadata = await self.browser.visit(task.url, options.to_visit_options())
        except Exception as e:
            logger.error(f"[executor] website_html task {task.id} failed: {e}")
            return ExecutionResult(
                task_id=task.id,
                type="website_html",
                success=False,
                error=str(e) or type(e).__name__,
                duration_ms=_elapsed_ms(started),
            )

        duration = _elapsed_ms(started)
        logger.info(
            f"[executor] website_html task {task.id} completed in {duration}ms "
            f"(fileId={file_metadata.get('fileId')}, storage={file_metadata.get('storageType')})"
        )
        return ExecutionResult(
            task_id=task.id,
            type="website_html",
            success=True,
            result={**file_metadata, "timestamp": utc_now().isoformat()},
            duration_ms=duration,
        )

    async def execute_lighthouse_html(self, task: Task) -> ExecutionResult:
        """Аудит страницы. Нет инструмента — успех с пустыми оценками, таймаут — failed."""
        started = time.monotonic()
        tool = self.analysis_tool

        if isinstance(tool, AnalysisToolUnavailable):
            logger.warning(f"[executor] Lighthouse not available, using fallback: {tool.reason}")
            return ExecutionResult(
                task_id=task.id,
                type="lighthouse_html",
                success=True,
                result={
                    "url": task.url,
                    "lighthouseVersion": None,
                    "scores": {
                        "performance": None,
                        "accessibility": None,
                        "bestPractices": None,
                        "seo": None,
                    },
                    "message": tool.reason,
                    "timestamp": utc_now().isoformat(),
                },
                duration_ms=_elapsed_ms(started),
            )

        try:
            options = LighthouseHtmlOptions.model_validate(task.payload or {})
            timeout_ms = options.timeout
            logger.info(f"[executor] Starting Lighthouse audit for {task.url} (timeout={timeout_ms}ms)")
            try:
                report = await asyncio.wait_for(
                    tool.tool.audit(task.url, dict(options.lighthouse_options)),
                    timeout=timeout_ms / 1000,
                )
            except TimeoutError:
                raise TimeoutError(f"Lighthouse audit timeout after {timeout_ms}ms") from None

            lhr = report.get("lhr", report) if isinstance(report, dict) else None
            if not lhr:
                raise RuntimeError("No Lighthouse report generated")
        except Exception as e:
            logger.error(f"[executor] Lighthouse task {task.id} failed: {e}")
            return ExecutionResult(
                task_id=task.id,
                type="lighthouse_html",
                success=False,
                error=str(e) or type(e).__name__,
                duration_ms=_elapsed_ms(started),
            )

        categories = lhr.get("categories") or {}
        duration = _elapsed_ms(started)
        logger.info(
            f"[executor] lighthouse_html task {task.id} completed in {duration}ms "
            f"(performance={_score(categories, 'performance')})"
        )
        return ExecutionResult(
            task_id=task.id,
            type="lighthouse_html",
            success=True,
            result={
                "url": task.url,
                "lighthouseVersion": lhr.get("lighthouseVersion"),
                "scores": {
                    "performance": _score(categories, "performance"),
                    "accessibility": _score(categories, "accessibility"),
                    "bestPractices": _score(categories, "best-practices"),
                    "seo": _score(categories, "seo"),
                },
                "audits": lhr.get("audits"),
                "configSettings": lhr.get("configSettings"),
                "timestamp": utc_now().isoformat(),
            },
            duration_ms=duration,
        )
