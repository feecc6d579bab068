from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.orm import Session

from app import task_service
from app.db import get_db
from app.models import User, UserRole
from auth.oauth2 import require_roles
from schemas.common import query_params, send_response
from schemas.task import TaskCreate, TaskStatusUpdate, TaskUpdate

router = APIRouter(prefix="/tasks", tags=["Tasks"])

task_owner = require_roles(UserRole.USER, UserRole.ADMIN)


@router.post("", status_code=status.HTTP_201_CREATED)
def create_task(
    payload: TaskCreate,
    current_user: User = Depends(task_owner),
    db: Session = Depends(get_db),
):
    task = task_service.create_task(db, current_user.id, payload.model_dump())
    return send_response("Task created successfully", task.to_dict())


@router.get("")
def list_tasks(
    request: Request,
    current_user: User = Depends(task_owner),
    db: Session = Depends(get_db),
):
    """
    List the caller's tasks.

    Query parameters: searchTerm/search, category, status, startDate, endDate,
    minPoints, maxPoints, sort (e.g. `-points,title`), sortBy/sortOrder,
    page, limit, fields (e.g. `title,status`).
    """
    result = task_service.get_tasks(db, current_user.id, query_params(request))
    return send_response("Tasks retrieved successfully", result["data"], result["meta"])


@router.get("/stats")
def task_stats(current_user: User = Depends(task_owner), db: Session = Depends(get_db)):
    return send_response(
        "Task statistics retrieved successfully",
        task_service.get_task_stats(db, current_user.id),
    )


@router.get("/stats/categories")
def task_category_stats(current_user: User = Depends(task_owner), db: Session = Depends(get_db)):
    return send_response(
        "Task category statistics retrieved successfully",
        task_service.get_category_breakdown(db, current_user.id),
    )


@router.get("/category/{category}")
def tasks_by_category(
    category: str,
    current_user: User = Depends(task_owner),
    db: Session = Depends(get_db),
):
    tasks = task_service.get_tasks_by_category(db, current_user.id, category)
    return send_response(
        "Tasks by category retrieved successfully",
        [task.to_dict() for task in tasks],
    )


@router.get("/{task_id}")
def get_task(task_id: int, current_user: User = Depends(task_owner), db: Session = Depends(get_db)):
    task = task_service.get_task_by_id(db, current_user.id, task_id)
    return send_response("Task retrieved successfully", task.to_dict())


@router.put("/{task_id}")
def update_task(
    task_id: int,
    payload: TaskUpdate,
    current_user: User = Depends(task_owner),
    db: Session = Depends(get_db),
):
    task = task_service.update_task(db, current_user.id, task_id, payload.model_dump(exclude_unset=True))
    return send_response("Task updated successfully", task.to_dict())


@router.patch("/{task_id}/status")
def update_task_status(
    task_id: int,
    payload: TaskStatusUpdate,
    current_user: User = Depends(task_owner),
    db: Session = Depends(get_db),
):
    task = task_service.update_task_status(db, current_user.id, task_id, payload.status)
    return send_response("Task status updated successfully", task.to_dict())


@router.delete("/{task_id}")
def delete_task(task_id: int, current_user: User = Depends(task_owner), db: Session = Depends(get_db)):
    task_service.delete_task(db, current_user.id, task_id)
    return send_response("Task deleted successfully")
