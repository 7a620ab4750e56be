"""Интерфейсы внешних исполнителей: браузер и инструмент аудита страниц."""
from dataclasses import dataclass
from typing import Any, Protocol


class BrowserAutomation(Protocol):
    """Браузерная автоматизация: открыть URL, сохранить страницу, вернуть метаданные файла."""

    async def visit(self, url: str, options: dict[str, Any]) -> dict[str, Any]:
        """Метаданные файла: минимум fileId, storageType и ссылка на скачивание/просмотр."""
        ...


class PageAuditor(Protocol):
    """Инструмент аудита качества страницы (Lighthouse)."""

    async def audit(self, url: str, options: dict[str, Any]) -> dict[str, Any] | None:
        """Вернуть отчёт (lhr) или None, если отчёт не сформирован."""
        ...


@dataclass(frozen=True)
class AnalysisToolAvailable:
    """Инструмент аудита найден в окружении."""

    tool: PageAuditor


@dataclass(frozen=True)
class AnalysisToolUnavailable:
    """Инструмента нет — задачи аудита деградируют до пустых оценок."""

    reason: str


AnalysisTool = AnalysisToolAvailable | AnalysisToolUnavailable
