"""Durable task registry backed by SQLModel + SQLite."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path

from loguru import logger
from sqlalchemy import event
from sqlalchemy import update as sa_update
from sqlalchemy.exc import IntegrityError
from sqlmodel import Field, Session, SQLModel, col, create_engine, select

from taskpilot.errors import ConcurrentUpdateError, TaskNotFound
from taskpilot.state import Task


class TaskRecord(SQLModel, table=True):
    __tablename__ = "tasks"

    task_id: str = Field(primary_key=True)
    owner_id: str = Field(index=True)
    status: str = Field(index=True)
    version: int = 0
    created_at: datetime = Field(index=True)
    updated_at: datetime
    document: str


def _configure_sqlite(dbapi_connection, _connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode = WAL")
    cursor.execute("PRAGMA busy_timeout = 5000")
    cursor.close()


class SqliteTaskRegistry:
    """
    Keyed store of Task documents.

    Exactly four operations: create, get, put, list. `put` replaces the whole
    document and succeeds only when the caller's version is current.
    """

    def __init__(self, db_path: Path):
        self.db_path = db_path
        db_path.parent.mkdir(parents=True, exist_ok=True)
        self.engine = create_engine(
            f"sqlite:///{db_path}",
            connect_args={"check_same_thread": False},
        )
        event.listen(self.engine, "connect", _configure_sqlite)
        SQLModel.metadata.create_all(self.engine, tables=[TaskRecord.__table__])

    def close(self) -> None:
        self.engine.dispose()

    def create(self, task: Task) -> Task:
        with Session(self.engine) as session:
            session.add(
                TaskRecord(
                    task_id=task.id,
                    owner_id=task.owner_id,
                    status=task.status.value,
                    version=task.version,
                    created_at=task.created_at,
                    updated_at=task.updated_at,
                    document=task.model_dump_json(),
                )
            )
            try:
                session.commit()
            except IntegrityError as e:
                session.rollback()
                raise ValueError(f"Task already exists: {task.id}") from e
        logger.debug(f"[REGISTRY] created {task.id}")
        return task

    def get(self, task_id: str) -> Task:
        with Session(self.engine) as session:
            row = session.exec(
                select(TaskRecord).where(TaskRecord.task_id == task_id),
            ).one_or_none()
            if row is None:
                raise TaskNotFound(task_id)
            return Task.model_validate_json(row.document)

    def put(self, task: Task) -> Task:
        """Compare-and-swap on version; bumps `task.version` on success."""
        expected = task.version
        next_version = expected + 1
        document = task.model_copy(update={"version": next_version}).model_dump_json()

        with Session(self.engine) as session:
            result = session.exec(
                sa_update(TaskRecord)
                .where(
                    col(TaskRecord.task_id) == task.id,
                    col(TaskRecord.version) == expected,
                )
                .values(
                    status=task.status.value,
                    owner_id=task.owner_id,
                    version=next_version,
                    updated_at=task.updated_at,
                    document=document,
                ),
            )
            if result.rowcount != 1:
                session.rollback()
                exists = session.exec(
                    select(TaskRecord.task_id).where(TaskRecord.task_id == task.id),
                ).one_or_none()
                if exists is None:
                    raise TaskNotFound(task.id)
                raise ConcurrentUpdateError(
                    f"Stale write for {task.id}: version {expected} is no longer current"
                )
            session.commit()

        task.version = next_version
        return task

    def list(self, owner_id: str | None = None) -> list[Task]:
        """Newest first."""
        with Session(self.engine) as session:
            query = select(TaskRecord)
            if owner_id:
                query = query.where(TaskRecord.owner_id == owner_id)
            query = query.order_by(col(TaskRecord.created_at).desc())
            rows = session.exec(query).all()
            return [Task.model_validate_json(row.document) for row in rows]
