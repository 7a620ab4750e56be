"""Loguru sink для записи WARNING+ логов в таблицу error_logs."""

from localbrowser.store import TaskStore


def create_store_sink(store: TaskStore):
    """Фабрика: вернуть sink-функцию, привязанную к хранилищу."""

    def sink(message) -> None:
        record = message.record
        try:
            store.insert_log(
                level=record["level"].name,
                module=record["name"],
                message=str(record["message"]),
            )
        except Exception:
            pass  # Ошибка логирования не должна ронять приложение

    return sink
