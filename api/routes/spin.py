from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app import spin_service
from app.db import get_db
from app.models import User, UserRole
from auth.oauth2 import require_roles
from schemas.common import query_params, send_response
from schemas.spin import CompleteSpinRequest, SpinRequest

router = APIRouter(prefix="/spin", tags=["Spin Wheel"])

spinner = require_roles(UserRole.USER, UserRole.ADMIN)


@router.post("")
def spin_wheel(
    payload: SpinRequest,
    current_user: User = Depends(spinner),
    db: Session = Depends(get_db),
):
    result = spin_service.spin_wheel(
        db,
        current_user.id,
        payload.categories,
        exclude_completed=payload.exclude_completed,
    )
    return send_response("Wheel spun successfully!", result)


@router.post("/complete")
def complete_spin(
    payload: CompleteSpinRequest,
    current_user: User = Depends(spinner),
    db: Session = Depends(get_db),
):
    spin = spin_service.complete_spin(db, current_user.id, payload.spin_result_id)
    return send_response(
        f"Congratulations! You completed the task and earned {spin.points_earned} points!",
        spin.to_dict(include_task=True),
    )


@router.get("/history")
def spin_history(
    request: Request,
    current_user: User = Depends(spinner),
    db: Session = Depends(get_db),
):
    """Query parameters: category, completed, sort, page, limit, fields."""
    result = spin_service.get_spin_history(db, current_user.id, query_params(request))
    return send_response("Spin history retrieved successfully", result["data"], result["meta"])


@router.get("/pending")
def pending_spins(current_user: User = Depends(spinner), db: Session = Depends(get_db)):
    return send_response(
        "Pending spins retrieved successfully",
        spin_service.get_pending_spins(db, current_user.id),
    )


@router.get("/stats/categories")
def spins_by_category(current_user: User = Depends(spinner), db: Session = Depends(get_db)):
    return send_response(
        "Spin statistics by category retrieved successfully",
        spin_service.get_spins_by_category(db, current_user.id),
    )


@router.delete("/{spin_result_id}")
def delete_spin_result(
    spin_result_id: int,
    current_user: User = Depends(spinner),
    db: Session = Depends(get_db),
):
    spin_service.delete_spin_result(db, current_user.id, spin_result_id)
    return send_response("Spin result deleted successfully")
