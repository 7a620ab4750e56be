"""SQLite-хранилище задач на SQLAlchemy Core.

Тонкий слой персистентности: без валидации и ретраев. Все методы синхронные,
TaskQueueService вызывает их через run_in_thread.
"""
import json
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from loguru import logger
from sqlalchemy import (
    Column,
    DateTime,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    delete,
    event,
    func,
    insert,
    literal_column,
    select,
    update,
)

metadata = MetaData()

browser_tasks = Table(
    "browser_tasks",
    metadata,
    Column("id", String, primary_key=True),
    Column("type", String, nullable=False),
    Column("url", Text, nullable=False),
    Column("payload", Text),
    Column("status", String, nullable=False, server_default="pending"),
    Column("result", Text),
    Column("error", Text),
    Column("worker_id", String),
    Column("processing_by", String),
    Column("created_at", DateTime, nullable=False),
    Column("started_at", DateTime),
    Column("completed_at", DateTime),
    Column("duration_ms", Integer),
    Index("idx_browser_tasks_status", "status", "created_at"),
    Index("idx_browser_tasks_worker", "worker_id", "status"),
)

error_logs = Table(
    "error_logs",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("level", String, nullable=False),
    Column("module", String),
    Column("message", Text, nullable=False),
    Column("created_at", DateTime, nullable=False),
)

_JSON_COLUMNS = ("payload", "result")
_DATETIME_COLUMNS = ("created_at", "started_at", "completed_at")


def _enable_wal(dbapi_connection: Any, _connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute("PRAGMA journal_mode=WAL")
    finally:
        cursor.close()


def _to_db_datetime(value: datetime | None) -> datetime | None:
    """SQLite DateTime хранит naive — приводим к UTC и убираем tzinfo."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(UTC).replace(tzinfo=None)


def _from_db_datetime(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


def _encode_values(values: Mapping[str, Any]) -> dict[str, Any]:
    """JSON-колонки → текст, datetime → naive UTC."""
    encoded: dict[str, Any] = {}
    for key, value in values.items():
        if key in _JSON_COLUMNS and value is not None:
            encoded[key] = json.dumps(value, ensure_ascii=False, default=str)
        elif key in _DATETIME_COLUMNS:
            encoded[key] = _to_db_datetime(value)
        else:
            encoded[key] = value
    return encoded


def _decode_json(raw: str | None) -> Any:
    if not raw:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        logger.warning(f"[store] Corrupted JSON column value: {raw[:100]!r}")
        return None


def _row_to_dict(row: Mapping[str, Any]) -> dict[str, Any]:
    data = dict(row)
    for key in _JSON_COLUMNS:
        data[key] = _decode_json(data.get(key))
    for key in _DATETIME_COLUMNS:
        data[key] = _from_db_datetime(data.get(key))
    return data


class TaskStore:
    """Таблица browser_tasks во встроенной SQLite."""

    def __init__(self, db_path: str | Path) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.engine = create_engine(
            f"sqlite:///{self.db_path}",
            connect_args={"check_same_thread": False, "timeout": 30},
        )
        event.listen(self.engine, "connect", _enable_wal)

    def init_schema(self) -> None:
        """Создать таблицы и индексы, если их нет."""
        metadata.create_all(self.engine)
        logger.info(f"[store] Schema ready db={self.db_path}")

    def close(self) -> None:
        self.engine.dispose()

    def get(self, task_id: str) -> dict[str, Any] | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(browser_tasks).where(browser_tasks.c.id == task_id)
            ).mappings().first()
        return _row_to_dict(row) if row is not None else None

    def insert_many(self, rows: Iterable[Mapping[str, Any]]) -> None:
        """Вставить строки одной транзакцией — при ошибке откатывается всё."""
        encoded = [_encode_values(row) for row in rows]
        if not encoded:
            return
        with self.engine.begin() as conn:
            for row in encoded:
                conn.execute(insert(browser_tasks).values(**row))

    def list_by_status(self, status: str, limit: int) -> list[dict[str, Any]]:
        """FIFO: created_at ASC, при равенстве — порядок вставки (rowid)."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(browser_tasks)
                .where(browser_tasks.c.status == status)
                .order_by(browser_tasks.c.created_at.asc(), literal_column("rowid").asc())
                .limit(limit)
            ).mappings().all()
        return [_row_to_dict(row) for row in rows]

    def update(
        self,
        task_id: str,
        values: Mapping[str, Any],
        from_statuses: Iterable[str] | None = None,
    ) -> int:
        """Обновить строку. С from_statuses только если текущий статус в этом списке."""
        stmt = update(browser_tasks).where(browser_tasks.c.id == task_id)
        if from_statuses is not None:
            stmt = stmt.where(browser_tasks.c.status.in_(list(from_statuses)))
        with self.engine.begin() as conn:
            result = conn.execute(stmt.values(**_encode_values(values)))
        return result.rowcount

    def count_by_status(self) -> dict[str, int]:
        """Один GROUP BY по статусу."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(browser_tasks.c.status, func.count().label("count"))
                .group_by(browser_tasks.c.status)
            ).all()
        return {status: int(count) for status, count in rows}

    def delete_older_than(self, statuses: Iterable[str], created_before: datetime) -> int:
        with self.engine.begin() as conn:
            result = conn.execute(
                delete(browser_tasks)
                .where(browser_tasks.c.status.in_(list(statuses)))
                .where(browser_tasks.c.created_at < _to_db_datetime(created_before))
            )
        return result.rowcount

    def update_stale(
        self, status: str, started_before: datetime, values: Mapping[str, Any]
    ) -> int:
        """Обновить строки со status, у которых started_at старше порога."""
        with self.engine.begin() as conn:
            result = conn.execute(
                update(browser_tasks)
                .where(browser_tasks.c.status == status)
                .where(browser_tasks.c.started_at < _to_db_datetime(started_before))
                .values(**_encode_values(values))
            )
        return result.rowcount

    def insert_log(self, level: str, module: str, message: str) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                insert(error_logs).values(
                    level=level,
                    module=module,
                    message=message,
                    created_at=_to_db_datetime(datetime.now(UTC)),
                )
            )

    def recent_logs(self, limit: int = 10) -> list[dict[str, Any]]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(error_logs).order_by(error_logs.c.id.desc()).limit(limit)
            ).mappings().all()
        return [dict(row) for row in rows]

    def ping(self) -> None:
        """Проверка доступности БД (healthcheck)."""
        with self.engine.connect() as conn:
            conn.execute(select(1))
