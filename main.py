from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from api.routes import auth, health, spin, tasks, users
from app.config import settings
from app.db import get_db_session, init_db
from app.errors import AppError
from app.logger import get_logger, setup_logging
from app.user_service import ensure_admin

setup_logging(level=settings.log_level, log_file=settings.log_file)
logger = get_logger(__name__)


@asynccontextmanager
async def app_lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown."""
    logger.info("Starting application...")

    init_db()

    if settings.admin_email and settings.admin_password:
        with get_db_session() as db:
            ensure_admin(db, settings.admin_email, settings.admin_password)

    yield

    logger.info("Application shutdown complete")


def _validation_sources(exc: RequestValidationError) -> list:
    sources = []
    for error in exc.errors():
        location = [str(part) for part in error.get("loc", ()) if part not in ("body", "query", "path")]
        sources.append({"path": ".".join(location), "message": error.get("msg", "Invalid value")})
    return sources


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        sources = _validation_sources(exc)
        message = sources[0]["message"] if len(sources) == 1 else "Validation Error"
        return JSONResponse(
            status_code=400,
            content={"success": False, "message": message, "errorSources": sources},
        )

    @app.exception_handler(StaleDataError)
    async def stale_data_handler(request: Request, exc: StaleDataError):
        logger.warning(f"Concurrent update on {request.url.path}: {exc}")
        return JSONResponse(
            status_code=409,
            content={"success": False, "message": "Record was modified by another request, please retry", "errorSources": []},
        )

    @app.exception_handler(IntegrityError)
    async def integrity_error_handler(request: Request, exc: IntegrityError):
        logger.warning(f"Integrity error on {request.url.path}: {exc.orig}")
        return JSONResponse(
            status_code=409,
            content={"success": False, "message": "Duplicate or conflicting record", "errorSources": []},
        )

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        return JSONResponse(
            status_code=500,
            content={"success": False, "message": "Something went wrong!", "errorSources": []},
        )


def create_app() -> FastAPI:
    app = FastAPI(
        title="Task Wheel Backend",
        description="Personal task management with a gamified spin wheel and reward points",
        version="1.0.0",
        lifespan=app_lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    app.include_router(health.router, prefix="/api")
    app.include_router(users.router, prefix="/api")
    app.include_router(auth.router, prefix="/api")
    app.include_router(tasks.router, prefix="/api")
    app.include_router(spin.router, prefix="/api")

    @app.get("/", tags=["Health"])
    async def root():
        return {"message": "Task Wheel API", "docs": "/docs"}

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=settings.debug)
