"""
Database abstraction for the REST fallback: SQL via SQLAlchemy and an
in-memory test implementation.

Records serialize to the camelCase shape the web client expects, with ISO
timestamps.
"""

from __future__ import annotations

import threading
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Dict, Iterable, Optional, Protocol

from sqlalchemy import (
    Boolean,
    Column,
    ForeignKey,
    Integer,
    String,
    create_engine,
    delete,
    event,
    func,
    select,
    update,
)
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from shared.errors import ValidationError
from shared.json_utils import convert_keys
from shared.types import DEFAULT_LIST_COLOR, DEFAULT_LIST_ID, DEFAULT_LIST_NAME, utc_now

TASK_FIELDS = ("title", "completed", "important", "notes", "due_date", "list_id")
STEP_FIELDS = ("title", "completed", "due_date", "assignee", "order_index")
LIST_FIELDS = ("name", "icon", "color")

_clock_lock = threading.Lock()
_last_stamp: Optional[datetime] = None


def timestamp() -> str:
    """ISO timestamp, strictly increasing within the process."""
    global _last_stamp
    with _clock_lock:
        now = utc_now()
        if _last_stamp is not None and now <= _last_stamp:
            now = _last_stamp + timedelta(microseconds=1)
        _last_stamp = now
        return now.isoformat(timespec="microseconds")


class DbClient(Protocol):
    """Interface for task, step and list persistence."""

    def list_tasks(self) -> list["TaskRecord"]:
        ...

    def get_task(self, task_id: str) -> Optional["TaskRecord"]:
        ...

    def create_task(
        self,
        *,
        title: str,
        list_id: str,
        completed: bool = False,
        important: bool = False,
        notes: Optional[str] = None,
        due_date: Optional[str] = None,
        steps: Iterable[dict] = (),
    ) -> "TaskRecord":
        ...

    def update_task(
        self, task_id: str, changes: dict, steps: Optional[list[dict]] = None
    ) -> Optional["TaskRecord"]:
        ...

    def delete_task(self, task_id: str) -> bool:
        ...

    def update_step(
        self, task_id: str, step_id: str, changes: dict
    ) -> Optional["StepRecord"]:
        ...

    def list_lists(self) -> list["ListRecord"]:
        ...

    def get_list(self, list_id: str) -> Optional["ListRecord"]:
        ...

    def create_list(
        self, *, name: str, icon: Optional[str] = None, color: Optional[str] = None
    ) -> "ListRecord":
        ...

    def update_list(self, list_id: str, changes: dict) -> Optional["ListRecord"]:
        ...

    def delete_list(self, list_id: str) -> bool:
        ...


@dataclass
class StepRecord:
    id: str
    task_id: str
    title: str
    completed: bool = False
    due_date: Optional[str] = None
    assignee: Optional[str] = None
    order_index: int = 0
    created_at: str = field(default_factory=timestamp)
    updated_at: str = field(default_factory=timestamp)

    def as_dict(self) -> dict:
        return convert_keys(asdict(self), "snake_to_camel")


@dataclass
class TaskRecord:
    id: str
    title: str
    list_id: str
    completed: bool = False
    important: bool = False
    notes: Optional[str] = None
    due_date: Optional[str] = None
    steps: list[StepRecord] = field(default_factory=list)
    created_at: str = field(default_factory=timestamp)
    updated_at: str = field(default_factory=timestamp)

    def as_dict(self) -> dict:
        return convert_keys(asdict(self), "snake_to_camel")


@dataclass
class ListRecord:
    id: str
    name: str
    icon: Optional[str] = None
    color: str = DEFAULT_LIST_COLOR
    created_at: str = field(default_factory=timestamp)
    updated_at: str = field(default_factory=timestamp)

    def as_dict(self) -> dict:
        return convert_keys(asdict(self), "snake_to_camel")


def _pick(changes: dict, allowed: tuple[str, ...]) -> dict:
    return {key: value for key, value in changes.items() if key in allowed}


def _check_deletable(list_id: str) -> None:
    if list_id == DEFAULT_LIST_ID:
        raise ValidationError("Cannot delete the default list")


def _build_steps(task_id: str, steps: Iterable[dict], now: str) -> list[StepRecord]:
    """Numbers steps by position, keeping ids and creation times that were sent."""
    return [
        StepRecord(
            id=step.get("id") or uuid.uuid4().hex,
            task_id=task_id,
            title=step["title"],
            completed=bool(step.get("completed", False)),
            due_date=step.get("due_date"),
            assignee=step.get("assignee"),
            order_index=index,
            created_at=step.get("created_at") or now,
            updated_at=now,
        )
        for index, step in enumerate(steps)
    ]


class InMemoryDbClient:
    """Simple in-memory database for development and tests."""

    def __init__(self):
        self.tasks: Dict[str, TaskRecord] = {}
        self.lists: Dict[str, ListRecord] = {}
        self.reset()

    def reset(self) -> None:
        self.tasks.clear()
        self.lists.clear()
        self.lists[DEFAULT_LIST_ID] = ListRecord(
            id=DEFAULT_LIST_ID, name=DEFAULT_LIST_NAME, color=DEFAULT_LIST_COLOR
        )

    def list_tasks(self) -> list[TaskRecord]:
        return sorted(self.tasks.values(), key=lambda t: t.created_at, reverse=True)

    def get_task(self, task_id: str) -> Optional[TaskRecord]:
        return self.tasks.get(task_id)

    def create_task(
        self,
        *,
        title: str,
        list_id: str,
        completed: bool = False,
        important: bool = False,
        notes: Optional[str] = None,
        due_date: Optional[str] = None,
        steps: Iterable[dict] = (),
    ) -> TaskRecord:
        now = timestamp()
        task_id = uuid.uuid4().hex
        task = TaskRecord(
            id=task_id,
            title=title,
            list_id=list_id,
            completed=completed,
            important=important,
            notes=notes,
            due_date=due_date,
            steps=_build_steps(task_id, steps, now),
            created_at=now,
            updated_at=now,
        )
        self.tasks[task_id] = task
        return task

    def update_task(
        self, task_id: str, changes: dict, steps: Optional[list[dict]] = None
    ) -> Optional[TaskRecord]:
        task = self.tasks.get(task_id)
        if task is None:
            return None
        now = timestamp()
        for key, value in _pick(changes, TASK_FIELDS).items():
            setattr(task, key, value)
        if steps is not None:
            task.steps = _build_steps(task_id, steps, now)
        task.updated_at = now
        return task

    def delete_task(self, task_id: str) -> bool:
        return self.tasks.pop(task_id, None) is not None

    def update_step(
        self, task_id: str, step_id: str, changes: dict
    ) -> Optional[StepRecord]:
        task = self.tasks.get(task_id)
        if task is None:
            return None
        for step in task.steps:
            if step.id == step_id:
                for key, value in _pick(changes, STEP_FIELDS).items():
                    setattr(step, key, value)
                step.updated_at = timestamp()
                task.steps.sort(key=lambda s: s.order_index)
                return step
        return None

    def list_lists(self) -> list[ListRecord]:
        return sorted(self.lists.values(), key=lambda record: record.created_at)

    def get_list(self, list_id: str) -> Optional[ListRecord]:
        return self.lists.get(list_id)

    def create_list(
        self, *, name: str, icon: Optional[str] = None, color: Optional[str] = None
    ) -> ListRecord:
        now = timestamp()
        record = ListRecord(
            id=uuid.uuid4().hex,
            name=name,
            icon=icon,
            color=color or DEFAULT_LIST_COLOR,
            created_at=now,
            updated_at=now,
        )
        self.lists[record.id] = record
        return record

    def update_list(self, list_id: str, changes: dict) -> Optional[ListRecord]:
        record = self.lists.get(list_id)
        if record is None:
            return None
        for key, value in _pick(changes, LIST_FIELDS).items():
            setattr(record, key, value)
        record.updated_at = timestamp()
        return record

    def delete_list(self, list_id: str) -> bool:
        _check_deletable(list_id)
        if list_id not in self.lists:
            return False
        now = timestamp()
        for task in self.tasks.values():
            if task.list_id == list_id:
                task.list_id = DEFAULT_LIST_ID
                task.updated_at = now
        del self.lists[list_id]
        return True


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class SqlDbClient:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL; SQLite is
    the default deployment and what the tests use.
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for SqlDbClient")
        engine_options: dict = {"future": True, "pool_pre_ping": True}
        if database_url.startswith("sqlite"):
            engine_options["connect_args"] = {"check_same_thread": False}
            if ":memory:" in database_url or database_url.rstrip("/").endswith(
                "sqlite:"
            ):
                # One shared connection, otherwise every checkout is a fresh database.
                engine_options["poolclass"] = StaticPool
        else:
            engine_options["pool_recycle"] = 1800
        self.engine = create_engine(database_url, **engine_options)
        if self.engine.dialect.name == "sqlite":
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)
        self._seed_default_list()

    def _seed_default_list(self) -> None:
        with self.Session.begin() as session:
            count = session.scalar(select(func.count()).select_from(ListRow))
            if count == 0:
                now = timestamp()
                session.add(
                    ListRow(
                        id=DEFAULT_LIST_ID,
                        name=DEFAULT_LIST_NAME,
                        color=DEFAULT_LIST_COLOR,
                        created_at=now,
                        updated_at=now,
                    )
                )

    def _to_step_record(self, row: "StepRow") -> StepRecord:
        return StepRecord(
            id=row.id,
            task_id=row.task_id,
            title=row.title,
            completed=bool(row.completed),
            due_date=row.due_date,
            assignee=row.assignee,
            order_index=row.order_index,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def _to_task_record(self, session: Session, row: "TaskRow") -> TaskRecord:
        steps = session.scalars(
            select(StepRow)
            .where(StepRow.task_id == row.id)
            .order_by(StepRow.order_index)
        ).all()
        return TaskRecord(
            id=row.id,
            title=row.title,
            list_id=row.list_id,
            completed=bool(row.completed),
            important=bool(row.important),
            notes=row.notes,
            due_date=row.due_date,
            steps=[self._to_step_record(step) for step in steps],
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def _to_list_record(self, row: "ListRow") -> ListRecord:
        return ListRecord(
            id=row.id,
            name=row.name,
            icon=row.icon,
            color=row.color,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    @staticmethod
    def _step_rows(steps: list[StepRecord]) -> list["StepRow"]:
        return [StepRow(**asdict(step)) for step in steps]

    def list_tasks(self) -> list[TaskRecord]:
        with self.Session() as session:
            rows = session.scalars(
                select(TaskRow).order_by(TaskRow.created_at.desc())
            ).all()
            return [self._to_task_record(session, row) for row in rows]

    def get_task(self, task_id: str) -> Optional[TaskRecord]:
        with self.Session() as session:
            row = session.get(TaskRow, task_id)
            if not row:
                return None
            return self._to_task_record(session, row)

    def create_task(
        self,
        *,
        title: str,
        list_id: str,
        completed: bool = False,
        important: bool = False,
        notes: Optional[str] = None,
        due_date: Optional[str] = None,
        steps: Iterable[dict] = (),
    ) -> TaskRecord:
        now = timestamp()
        task_id = uuid.uuid4().hex
        with self.Session.begin() as session:
            row = TaskRow(
                id=task_id,
                title=title,
                list_id=list_id,
                completed=completed,
                important=important,
                notes=notes,
                due_date=due_date,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            # Steps reference the task row, so it must exist first.
            session.flush()
            session.add_all(self._step_rows(_build_steps(task_id, steps, now)))
            session.flush()
            return self._to_task_record(session, row)

    def update_task(
        self, task_id: str, changes: dict, steps: Optional[list[dict]] = None
    ) -> Optional[TaskRecord]:
        now = timestamp()
        with self.Session.begin() as session:
            row = session.get(TaskRow, task_id)
            if not row:
                return None
            for key, value in _pick(changes, TASK_FIELDS).items():
                setattr(row, key, value)
            row.updated_at = now
            if steps is not None:
                session.execute(delete(StepRow).where(StepRow.task_id == task_id))
                session.add_all(self._step_rows(_build_steps(task_id, steps, now)))
            session.flush()
            return self._to_task_record(session, row)

    def delete_task(self, task_id: str) -> bool:
        with self.Session.begin() as session:
            result = session.execute(delete(TaskRow).where(TaskRow.id == task_id))
            return result.rowcount > 0

    def update_step(
        self, task_id: str, step_id: str, changes: dict
    ) -> Optional[StepRecord]:
        with self.Session.begin() as session:
            row = session.get(StepRow, step_id)
            if not row or row.task_id != task_id:
                return None
            for key, value in _pick(changes, STEP_FIELDS).items():
                setattr(row, key, value)
            row.updated_at = timestamp()
            session.flush()
            return self._to_step_record(row)

    def list_lists(self) -> list[ListRecord]:
        with self.Session() as session:
            rows = session.scalars(select(ListRow).order_by(ListRow.created_at)).all()
            return [self._to_list_record(row) for row in rows]

    def get_list(self, list_id: str) -> Optional[ListRecord]:
        with self.Session() as session:
            row = session.get(ListRow, list_id)
            if not row:
                return None
            return self._to_list_record(row)

    def create_list(
        self, *, name: str, icon: Optional[str] = None, color: Optional[str] = None
    ) -> ListRecord:
        now = timestamp()
        with self.Session.begin() as session:
            row = ListRow(
                id=uuid.uuid4().hex,
                name=name,
                icon=icon,
                color=color or DEFAULT_LIST_COLOR,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            return self._to_list_record(row)

    def update_list(self, list_id: str, changes: dict) -> Optional[ListRecord]:
        with self.Session.begin() as session:
            row = session.get(ListRow, list_id)
            if not row:
                return None
            for key, value in _pick(changes, LIST_FIELDS).items():
                setattr(row, key, value)
            row.updated_at = timestamp()
            return self._to_list_record(row)

    def delete_list(self, list_id: str) -> bool:
        _check_deletable(list_id)
        now = timestamp()
        with self.Session.begin() as session:
            if session.get(ListRow, list_id) is None:
                return False
            session.execute(
                update(TaskRow)
                .where(TaskRow.list_id == list_id)
                .values(list_id=DEFAULT_LIST_ID, updated_at=now)
            )
            session.execute(delete(ListRow).where(ListRow.id == list_id))
            return True


Base = declarative_base()


class TaskRow(Base):
    __tablename__ = "tasks"

    id = Column(String, primary_key=True)
    title = Column(String, nullable=False)
    completed = Column(Boolean, nullable=False, default=False)
    important = Column(Boolean, nullable=False, default=False)
    notes = Column(String, nullable=True)
    due_date = Column(String, nullable=True)
    list_id = Column(String, nullable=False, index=True)
    created_at = Column(String, nullable=False)
    updated_at = Column(String, nullable=False)


class StepRow(Base):
    __tablename__ = "task_steps"

    id = Column(String, primary_key=True)
    task_id = Column(
        String, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True
    )
    title = Column(String, nullable=False)
    completed = Column(Boolean, nullable=False, default=False)
    due_date = Column(String, nullable=True)
    assignee = Column(String, nullable=True)
    order_index = Column(Integer, nullable=False, default=0)
    created_at = Column(String, nullable=False)
    updated_at = Column(String, nullable=False)


class ListRow(Base):
    __tablename__ = "lists"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    icon = Column(String, nullable=True)
    color = Column(String, nullable=False, default=DEFAULT_LIST_COLOR)
    created_at = Column(String, nullable=False)
    updated_at = Column(String, nullable=False)
