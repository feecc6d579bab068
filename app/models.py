"""
SQLAlchemy models for the task wheel backend.
Users own tasks; spin results record which task the wheel picked for a user.
"""
import enum
from typing import Any, Iterable, Optional

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
)
from sqlalchemy.orm import declarative_base, relationship

from app.date_utils import format_datetime_iso, utc_now

Base = declarative_base()


class Category(str, enum.Enum):
    """Canonical task categories, shared by tasks and spin results."""
    ARTS_AND_CRAFTS = "arts_and_crafts"
    NATURE = "nature"
    FAMILY = "family"
    SPORT = "sport"
    FRIENDS = "friends"
    MEDITATION = "meditation"

    @classmethod
    def values(cls) -> list:
        return [member.value for member in cls]

    @property
    def label(self) -> str:
        return self.value.replace("_", " ")


class TaskStatus(str, enum.Enum):
    PENDING = "pending"
    IN_PROGRESS = "inprogress"
    DONE = "done"


class UserRole(str, enum.Enum):
    ADMIN = "admin"
    USER = "user"


def _enum_column(enum_cls: type, name: str) -> Enum:
    return Enum(
        enum_cls,
        name=name,
        native_enum=False,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )


def _value(v: Any) -> Any:
    return getattr(v, "value", v)


class User(Base):
    """
    Model for registered users.
    The password column holds a passlib hash, never the plain text.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(50), nullable=False)
    email = Column(String(255), nullable=False, unique=True, index=True)
    password = Column(String(255), nullable=False)
    role = Column(_enum_column(UserRole, "user_role"), nullable=False, default=UserRole.USER)
    is_active = Column(Boolean, nullable=False, default=True)
    points = Column(Integer, nullable=False, default=0)
    profile_image = Column(String(500), nullable=True)
    password_changed_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now, onupdate=utc_now)

    tasks = relationship(
        "Task",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    spin_results = relationship(
        "SpinResult",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email})>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "role": _value(self.role),
            "isActive": self.is_active,
            "points": self.points,
            "profileImage": self.profile_image,
            "passwordChangedAt": format_datetime_iso(self.password_changed_at),
            "createdAt": format_datetime_iso(self.created_at),
            "updatedAt": format_datetime_iso(self.updated_at),
        }


class Task(Base):
    """
    Model for a personal task owned by one user.
    """
    __tablename__ = "tasks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False
    )
    title = Column(String(100), nullable=False)
    description = Column(String(500), nullable=False)
    category = Column(_enum_column(Category, "task_category"), nullable=False)
    status = Column(
        _enum_column(TaskStatus, "task_status"),
        nullable=False,
        default=TaskStatus.PENDING
    )
    due_date = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    points = Column(Integer, nullable=False, default=10)
    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now, onupdate=utc_now)
    version = Column(Integer, nullable=False)

    user = relationship("User", back_populates="tasks")

    __table_args__ = (
        Index('ix_tasks_user_status', 'user_id', 'status'),
        Index('ix_tasks_user_category', 'user_id', 'category'),
        Index('ix_tasks_created', 'created_at'),
    )
    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<Task(id={self.id}, user_id={self.user_id}, status={_value(self.status)})>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "category": _value(self.category),
            "status": _value(self.status),
            "userId": self.user_id,
            "dueDate": format_datetime_iso(self.due_date),
            "completedAt": format_datetime_iso(self.completed_at),
            "points": self.points,
            "createdAt": format_datetime_iso(self.created_at),
            "updatedAt": format_datetime_iso(self.updated_at),
        }

    def to_summary(self) -> dict:
        """Display fields shown on the spin wheel."""
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "category": _value(self.category),
            "points": self.points,
        }


class SpinResult(Base):
    """
    Model for one spin of the wheel.
    Pending until completed; task_id is nulled if the task is deleted.
    """
    __tablename__ = "spin_results"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False
    )
    task_id = Column(
        Integer,
        ForeignKey("tasks.id", ondelete="SET NULL"),
        nullable=True
    )
    category = Column(_enum_column(Category, "spin_category"), nullable=False)
    spin_date = Column(DateTime, nullable=False, default=utc_now)
    is_completed = Column(Boolean, nullable=False, default=False)
    completed_at = Column(DateTime, nullable=True)
    points_earned = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=False, default=utc_now, onupdate=utc_now)
    version = Column(Integer, nullable=False)

    user = relationship("User", back_populates="spin_results")
    task = relationship("Task")

    __table_args__ = (
        Index('ix_spin_results_user_pending', 'user_id', 'is_completed', 'spin_date'),
        Index('ix_spin_results_user_task', 'user_id', 'task_id'),
    )
    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<SpinResult(id={self.id}, user_id={self.user_id}, "
            f"task_id={self.task_id}, is_completed={self.is_completed})>"
        )

    def to_dict(self, include_task: bool = False) -> dict:
        data = {
            "id": self.id,
            "userId": self.user_id,
            "taskId": self.task_id,
            "category": _value(self.category),
            "spinDate": format_datetime_iso(self.spin_date),
            "isCompleted": self.is_completed,
            "completedAt": format_datetime_iso(self.completed_at),
            "pointsEarned": self.points_earned,
            "createdAt": format_datetime_iso(self.created_at),
            "updatedAt": format_datetime_iso(self.updated_at),
        }
        if include_task:
            data["task"] = self.task.to_summary() if self.task is not None else None
        return data


def project_record(record: dict, fields: Optional[Iterable[str]]) -> dict:
    """
    Keep only the requested keys of a serialized record (the id always stays).
    Serializers never emit the internal version counter, so it cannot be
    selected either.
    """
    if fields is None:
        return dict(record)
    wanted = set(fields) | {"id"}
    return {key: value for key, value in record.items() if key in wanted}
