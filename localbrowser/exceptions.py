"""Кастомные исключения очереди задач."""


class TaskQueueError(Exception):
    """Общая ошибка очереди задач."""


class TaskValidationError(TaskQueueError):
    """Задача не прошла валидацию — ретрай бесполезен."""


class TaskStoreError(TaskQueueError):
    """Ошибка чтения/записи хранилища задач."""


class ConfigurationError(TaskQueueError):
    """Не хватает обязательных настроек."""


class ResultSubmissionError(TaskQueueError):
    """Не удалось доставить результат задачи."""


class ResultSubmissionRedirectError(ResultSubmissionError):
    """Эндпоинт ответил редиректом (3xx) — ошибка конфигурации, ретрай бесполезен."""

    def __init__(self, status_code: int, location: str | None = None) -> None:
        self.status_code = status_code
        self.location = location
        super().__init__(
            f"Endpoint returned redirect {status_code} to {location}. "
            "Check receiver routes and middleware."
        )
