"""
Spin wheel: random selection of an incomplete task as a reward mechanism.

A SpinResult is created pending and ends either completed (points awarded)
or deleted. Both terminal transitions are single conditional statements on
the still-pending row, so two concurrent requests cannot both succeed.
"""
import random
from datetime import timedelta
from typing import Any, Dict, Iterable, List, Mapping, Optional

from sqlalchemy import case, func
from sqlalchemy.orm import Session, selectinload

from app.config import settings
from app.date_utils import utc_now
from app.errors import InvalidInputError, NotFoundError
from app.logger import get_logger, log_operation
from app.models import Category, SpinResult, Task, TaskStatus
from app.query_builder import QueryBuilder, QueryFields, SortKey, bool_filter, enum_filter
from app.task_service import adjust_user_points

logger = get_logger(__name__)

SPIN_QUERY_FIELDS = QueryFields(
    columns={
        "id": SpinResult.id,
        "category": SpinResult.category,
        "isCompleted": SpinResult.is_completed,
        "spinDate": SpinResult.spin_date,
        "completedAt": SpinResult.completed_at,
        "pointsEarned": SpinResult.points_earned,
        "createdAt": SpinResult.created_at,
    },
    filters={
        "category": enum_filter(Category),
        "completed": bool_filter,
        "isCompleted": bool_filter,
    },
    filter_targets={"completed": "isCompleted"},
    sortable=frozenset({"spinDate", "createdAt", "completedAt", "pointsEarned", "category"}),
    default_sort=(SortKey("spinDate", descending=True),),
)


def _validate_categories(categories: Optional[Iterable[Any]]) -> List[Category]:
    requested = [getattr(c, "value", c) for c in (categories or [])]
    if not requested:
        raise InvalidInputError(
            "Please select at least one category to spin the wheel.",
            details=[{"path": "categories", "message": "At least one category must be selected"}],
        )

    invalid = [str(c) for c in requested if c not in Category.values()]
    if invalid:
        raise InvalidInputError(
            f"Invalid categories: {', '.join(invalid)}",
            details=[{"path": "categories", "message": f"Must be one of: {', '.join(Category.values())}"}],
        )

    selected: List[Category] = []
    for value in requested:
        category = Category(value)
        if category not in selected:
            selected.append(category)
    return selected


def _spin_response(task: Task, spin: SpinResult, message: str, created: bool) -> Dict[str, Any]:
    return {
        "task": task.to_summary(),
        "spinResult": spin.to_dict(),
        "message": message,
        "isNew": created,
    }


def _outstanding_spin(db: Session, user_id: int, categories: List[Category], window_start) -> Optional[SpinResult]:
    """Most recent pending spin in the window whose task is still eligible."""
    return (
        db.query(SpinResult)
        .join(Task, SpinResult.task_id == Task.id)
        .filter(
            SpinResult.user_id == user_id,
            SpinResult.is_completed.is_(False),
            SpinResult.spin_date >= window_start,
            Task.user_id == user_id,
            Task.status != TaskStatus.DONE,
            Task.category.in_(categories),
        )
        .order_by(SpinResult.spin_date.desc(), SpinResult.id.desc())
        .first()
    )


@log_operation("spin_wheel")
def spin_wheel(
    db: Session,
    user_id: int,
    categories: Optional[Iterable[Any]],
    exclude_completed: bool = True,
    rng: Optional[random.Random] = None,
) -> Dict[str, Any]:
    """
    Pick one of the user's incomplete tasks in the given categories at random.

    With exclude_completed, a task that already has a pending spin from the
    exclusion window is never drawn again; if such a spin is still eligible
    it is returned instead of creating a second one. The wheel is sticky:
    while such a spin matches the requested categories, repeat spins keep
    returning it and no other task is drawn until it is completed or deleted
    or its spin date falls outside the window.

    Returns:
        {"task": {...}, "spinResult": {...}, "message": str, "isNew": bool}
    """
    selected = _validate_categories(categories)

    pool_query = db.query(Task).filter(
        Task.user_id == user_id,
        Task.status != TaskStatus.DONE,
        Task.category.in_(selected),
    )

    if exclude_completed:
        window_start = utc_now() - timedelta(hours=settings.spin_exclusion_hours)

        outstanding = _outstanding_spin(db, user_id, selected, window_start)
        if outstanding is not None:
            task = outstanding.task
            logger.info(f"User {user_id} resumed pending spin {outstanding.id} (task {task.id})")
            return _spin_response(
                task,
                outstanding,
                f"You have a pending task from {Category(task.category).label} category! "
                f"Complete this task to earn {task.points} points.",
                created=False,
            )

        recent_task_ids = (
            db.query(SpinResult.task_id)
            .filter(
                SpinResult.user_id == user_id,
                SpinResult.is_completed.is_(False),
                SpinResult.spin_date >= window_start,
                SpinResult.task_id.isnot(None),
            )
        )
        pool_query = pool_query.filter(~Task.id.in_(recent_task_ids))

    pool = pool_query.order_by(Task.id).all()
    if not pool:
        raise InvalidInputError(
            "No available tasks found in the selected categories. "
            "Try creating new tasks or selecting different categories."
        )

    task = (rng or random).choice(pool)
    category_label = Category(task.category).label

    if exclude_completed:
        existing = (
            db.query(SpinResult)
            .filter(
                SpinResult.user_id == user_id,
                SpinResult.task_id == task.id,
                SpinResult.is_completed.is_(False),
            )
            .order_by(SpinResult.spin_date.desc())
            .first()
        )
        if existing is not None:
            logger.info(f"User {user_id} drew task {task.id} again, reusing spin {existing.id}")
            return _spin_response(
                task,
                existing,
                f"You have a pending task from {category_label} category! "
                f"Complete this task to earn {task.points} points.",
                created=False,
            )

    spin = SpinResult(
        user_id=user_id,
        task_id=task.id,
        category=Category(task.category),
        spin_date=utc_now(),
        is_completed=False,
        points_earned=0,
    )
    db.add(spin)
    db.commit()
    db.refresh(spin)
    logger.info(f"User {user_id} spun {category_label}: task {task.id} out of {len(pool)}, spin {spin.id}")

    return _spin_response(
        task,
        spin,
        f"🎉 You spun {category_label} category! Complete this task to earn {task.points} points.",
        created=True,
    )


@log_operation("complete_spin")
def complete_spin(db: Session, user_id: int, spin_result_id: int) -> SpinResult:
    """
    Complete a pending spin: mark its task done and award the task's points.

    The spin row is updated only if it is still pending; losing that race
    reports NotFound like any already-completed spin. The task update and
    the points credit share the same transaction.
    """
    spin = (
        db.query(SpinResult)
        .filter(
            SpinResult.id == spin_result_id,
            SpinResult.user_id == user_id,
            SpinResult.is_completed.is_(False),
        )
        .first()
    )
    if spin is None:
        raise NotFoundError("Spin result not found or already completed")

    task = None
    if spin.task_id is not None:
        task = db.query(Task).filter(Task.id == spin.task_id, Task.user_id == user_id).first()
    if task is None:
        raise NotFoundError("Task associated with this spin no longer exists")

    now = utc_now()
    points = task.points

    try:
        updated = (
            db.query(SpinResult)
            .filter(
                SpinResult.id == spin.id,
                SpinResult.user_id == user_id,
                SpinResult.is_completed.is_(False),
            )
            .update(
                {
                    SpinResult.is_completed: True,
                    SpinResult.completed_at: now,
                    SpinResult.points_earned: points,
                    SpinResult.updated_at: now,
                    SpinResult.version: SpinResult.version + 1,
                },
                synchronize_session=False,
            )
        )
        if updated == 0:
            raise NotFoundError("Spin result not found or already completed")

        newly_done = (
            db.query(Task)
            .filter(Task.id == task.id, Task.status != TaskStatus.DONE)
            .update(
                {
                    Task.status: TaskStatus.DONE,
                    Task.completed_at: now,
                    Task.updated_at: now,
                    Task.version: Task.version + 1,
                },
                synchronize_session=False,
            )
        )
        if newly_done:
            adjust_user_points(db, user_id, points)

        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(spin)
    logger.info(f"User {user_id} completed spin {spin.id} (task {task.id}) for {points} points")
    return spin


@log_operation("delete_spin_result")
def delete_spin_result(db: Session, user_id: int, spin_result_id: int) -> None:
    deleted = (
        db.query(SpinResult)
        .filter(
            SpinResult.id == spin_result_id,
            SpinResult.user_id == user_id,
            SpinResult.is_completed.is_(False),
        )
        .delete(synchronize_session=False)
    )
    if deleted == 0:
        db.rollback()
        raise NotFoundError("Spin result not found or already completed")
    db.commit()
    logger.info(f"User {user_id} deleted pending spin {spin_result_id}")


def _spin_stats(db: Session, user_id: int) -> Dict[str, Any]:
    completed = func.sum(case((SpinResult.is_completed.is_(True), 1), else_=0))
    rows = (
        db.query(
            SpinResult.category,
            func.count(SpinResult.id),
            completed,
            func.coalesce(func.sum(SpinResult.points_earned), 0),
        )
        .filter(SpinResult.user_id == user_id)
        .group_by(SpinResult.category)
        .all()
    )
    return {Category(category): (count, int(done or 0), int(points)) for category, count, done, points in rows}


def get_spin_history(db: Session, user_id: int, params: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Paginated spin results (filters: category, completed) plus overall stats."""
    builder = (
        QueryBuilder(
            db.query(SpinResult)
            .options(selectinload(SpinResult.task))
            .filter(SpinResult.user_id == user_id),
            params,
            SPIN_QUERY_FIELDS,
        )
        .filter()
        .sort()
        .paginate()
        .fields()
    )
    spin_results = builder.records(lambda spin: spin.to_dict(include_task=True))

    per_category = _spin_stats(db, user_id)
    favorite = None
    if per_category:
        favorite = max(Category, key=lambda c: per_category.get(c, (0, 0, 0))[0]).value

    return {
        "meta": builder.count_total(),
        "data": {
            "spinResults": spin_results,
            "stats": {
                "totalSpins": sum(count for count, _, _ in per_category.values()),
                "completedSpins": sum(done for _, done, _ in per_category.values()),
                "totalPointsEarned": sum(points for _, _, points in per_category.values()),
                "favoriteCategory": favorite,
            },
        },
    }


def get_pending_spins(db: Session, user_id: int) -> List[Dict[str, Any]]:
    spins = (
        db.query(SpinResult)
        .options(selectinload(SpinResult.task))
        .filter(SpinResult.user_id == user_id, SpinResult.is_completed.is_(False))
        .order_by(SpinResult.spin_date.desc(), SpinResult.id.desc())
        .all()
    )
    return [spin.to_dict(include_task=True) for spin in spins]


def get_spins_by_category(db: Session, user_id: int) -> List[Dict[str, Any]]:
    """Per-category spin totals, completions, points and completion rate (%)."""
    per_category = _spin_stats(db, user_id)
    breakdown = []
    for category in Category:
        if category not in per_category:
            continue
        total, done, points = per_category[category]
        breakdown.append({
            "category": category.value,
            "totalSpins": total,
            "completedSpins": done,
            "pointsEarned": points,
            "completionRate": round(done / total * 100, 2) if total else 0.0,
        })
    return breakdown
