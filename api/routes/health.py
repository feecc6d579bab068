from datetime import datetime, timezone

from fastapi import APIRouter

from app.db import check_db_connection

router = APIRouter(tags=["Health"])


@router.get("/health")
def health_check():
    database_ok = check_db_connection()
    return {
        "success": True,
        "message": "Task Management API is running!" if database_ok else "Database unavailable",
        "status": "healthy" if database_ok else "degraded",
        "services": {"database": database_ok},
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
