"""
Task CRUD, status transitions and task statistics.

Every query is scoped by the owning user. Moving a task into `done` adds its
points to the owner's balance; moving it out of `done` takes them back.
"""
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from app.date_utils import to_naive_utc, utc_now
from app.db import commit_or_conflict
from app.errors import InvalidInputError, NotFoundError
from app.logger import get_logger, log_operation
from app.models import Category, Task, TaskStatus, User
from app.query_builder import QueryBuilder, QueryFields, SortKey, enum_filter

logger = get_logger(__name__)

TASK_SEARCH_FIELDS = ("title", "description")

TASK_QUERY_FIELDS = QueryFields(
    columns={
        "id": Task.id,
        "title": Task.title,
        "description": Task.description,
        "category": Task.category,
        "status": Task.status,
        "dueDate": Task.due_date,
        "completedAt": Task.completed_at,
        "points": Task.points,
        "createdAt": Task.created_at,
        "updatedAt": Task.updated_at,
    },
    filters={
        "category": enum_filter(Category),
        "status": enum_filter(TaskStatus),
    },
    sortable=frozenset({"createdAt", "updatedAt", "title", "dueDate", "points", "status"}),
    default_sort=(SortKey("createdAt", descending=True),),
)

DEFAULT_TASK_POINTS = 10


def parse_category(value: Any) -> Category:
    try:
        return Category(getattr(value, "value", value))
    except ValueError:
        raise InvalidInputError(
            f"Invalid category: {value}. Must be one of: {', '.join(Category.values())}"
        )


def get_owned_task(db: Session, user_id: int, task_id: int) -> Task:
    task = db.query(Task).filter(Task.id == task_id, Task.user_id == user_id).first()
    if task is None:
        raise NotFoundError("Task not found")
    return task


def adjust_user_points(db: Session, user_id: int, delta: int) -> None:
    """Add delta to a user's balance in SQL, never read-modify-write."""
    if not delta:
        return
    db.query(User).filter(User.id == user_id).update(
        {User.points: User.points + delta},
        synchronize_session=False,
    )
    logger.info(f"User {user_id} points {'+' if delta > 0 else ''}{delta}")


@log_operation("create_task")
def create_task(db: Session, user_id: int, payload: Mapping[str, Any]) -> Task:
    due_date = payload.get("due_date")
    points = payload.get("points")
    task = Task(
        user_id=user_id,
        title=payload["title"],
        description=payload["description"],
        category=parse_category(payload["category"]),
        status=TaskStatus.PENDING,
        due_date=to_naive_utc(due_date) if due_date else None,
        points=DEFAULT_TASK_POINTS if points is None else points,
    )
    db.add(task)
    db.commit()
    db.refresh(task)
    logger.info(f"Task {task.id} created for user {user_id}")
    return task


def get_tasks(db: Session, user_id: int, params: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """List the user's tasks with search, filters, sort, paging and projection."""
    builder = (
        QueryBuilder(db.query(Task).filter(Task.user_id == user_id), params, TASK_QUERY_FIELDS)
        .search(TASK_SEARCH_FIELDS)
        .filter()
        .sort()
        .paginate()
        .fields()
    )
    return {
        "meta": builder.count_total(),
        "data": builder.records(),
    }


def get_task_by_id(db: Session, user_id: int, task_id: int) -> Task:
    return get_owned_task(db, user_id, task_id)


def _apply_changes(db: Session, task: Task, changes: Mapping[str, Any]) -> None:
    """
    Apply field changes and keep completedAt and the owner's balance in step
    with the status. A done task whose points change is re-credited by the
    difference.
    """
    old_points = task.points
    was_done = TaskStatus(task.status) == TaskStatus.DONE

    for key in ("title", "description", "points"):
        if changes.get(key) is not None:
            setattr(task, key, changes[key])
    if changes.get("category") is not None:
        task.category = parse_category(changes["category"])
    if changes.get("due_date") is not None:
        task.due_date = to_naive_utc(changes["due_date"])

    new_status = TaskStatus(changes.get("status") or task.status)
    now_done = new_status == TaskStatus.DONE
    task.status = new_status
    if now_done and not was_done:
        task.completed_at = utc_now()
    elif not now_done:
        task.completed_at = None

    delta = (task.points if now_done else 0) - (old_points if was_done else 0)
    adjust_user_points(db, task.user_id, delta)


@log_operation("update_task")
def update_task(db: Session, user_id: int, task_id: int, changes: Mapping[str, Any]) -> Task:
    task = get_owned_task(db, user_id, task_id)
    _apply_changes(db, task, changes)
    commit_or_conflict(db, "Task")
    db.refresh(task)
    return task


@log_operation("update_task_status")
def update_task_status(db: Session, user_id: int, task_id: int, status: Any) -> Task:
    try:
        new_status = TaskStatus(getattr(status, "value", status))
    except ValueError:
        raise InvalidInputError(f"Invalid status: {status}")
    return update_task(db, user_id, task_id, {"status": new_status})


@log_operation("delete_task")
def delete_task(db: Session, user_id: int, task_id: int) -> None:
    task = get_owned_task(db, user_id, task_id)
    db.delete(task)
    commit_or_conflict(db, "Task")
    logger.info(f"Task {task_id} deleted by user {user_id}")


def get_task_stats(db: Session, user_id: int) -> Dict[str, int]:
    """Task counts per status; totalPoints sums the points of done tasks."""
    rows = (
        db.query(Task.status, func.count(Task.id), func.coalesce(func.sum(Task.points), 0))
        .filter(Task.user_id == user_id)
        .group_by(Task.status)
        .all()
    )

    stats = {status.value: 0 for status in TaskStatus}
    stats.update({"totalTasks": 0, "totalPoints": 0})
    for status, count, points in rows:
        status = TaskStatus(status)
        stats[status.value] = count
        stats["totalTasks"] += count
        if status == TaskStatus.DONE:
            stats["totalPoints"] = int(points)
    return stats


def get_category_breakdown(db: Session, user_id: int) -> List[Dict[str, Any]]:
    """Per-category task totals and how many of them are done."""
    completed = func.sum(case((Task.status == TaskStatus.DONE, 1), else_=0))
    rows = (
        db.query(Task.category, func.count(Task.id), completed)
        .filter(Task.user_id == user_id)
        .group_by(Task.category)
        .order_by(Task.category)
        .all()
    )
    return [
        {
            "category": Category(category).value,
            "count": count,
            "completed": int(done or 0),
        }
        for category, count, done in rows
    ]


def get_tasks_by_category(db: Session, user_id: int, category: str) -> List[Task]:
    category = parse_category(category)
    return (
        db.query(Task)
        .filter(Task.user_id == user_id, Task.category == category)
        .order_by(Task.created_at.desc(), Task.id.desc())
        .all()
    )
