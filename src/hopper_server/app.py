import logging
import traceback
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from alembic import command
from alembic.config import Config
from hopper_server.database import create_session_maker, ensure_sqlite_directory, get_session, sync_database_url
from hopper_server.errors import DedupeConflictError, InvalidTransitionError, JobNotFoundError
from hopper_server.router import router
from hopper_server.settings import Settings

logger = logging.getLogger("hopper_server")


def run_migrations(database_url: str) -> None:
    alembic_cfg = Config("alembic.ini")
    alembic_cfg.set_main_option("sqlalchemy.url", sync_database_url(database_url).replace("%", "%%"))
    alembic_cfg.attributes["configure_logger"] = False
    command.upgrade(alembic_cfg, "head")


@asynccontextmanager
async def lifespan(app: FastAPI) -> Any:
    settings = Settings()
    app.state.settings = settings
    logging.basicConfig(level=settings.log_level.upper(), format=settings.log_format)

    try:
        ensure_sqlite_directory(settings.database_url)
        app.state.engine, app.state.db_session_maker = create_session_maker(settings.database_url)
        app.state.get_db_session = lambda read_only=False: get_session(app.state.db_session_maker, read_only)
        run_migrations(settings.database_url)
    except Exception as e:
        logger.warning(f"Failed to create database session: {e}")
        raise

    logger.info(f"Hopper API ready ({settings.environment})")
    yield

    await app.state.engine.dispose()
    logger.info("Application shutdown completed")


def create_app() -> FastAPI:
    app = FastAPI(
        title="Hopper",
        description="Background job queue with webhook and timer intake",
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, e: HTTPException) -> JSONResponse:
        logger.error(f"HTTP {e.status_code}: {e.detail} - {request.method} {request.url}")
        return JSONResponse(
            status_code=e.status_code,
            content={"detail": e.detail},
        )

    @app.exception_handler(ValidationError)
    async def validation_exception_handler(request: Request, e: ValidationError) -> JSONResponse:
        logger.error(f"Validation error on {request.method} {request.url}: {e}")
        return JSONResponse(
            status_code=422,
            content={"detail": "Validation error", "errors": e.errors()},
        )

    @app.exception_handler(JobNotFoundError)
    async def job_not_found_handler(request: Request, e: JobNotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(e)})

    @app.exception_handler(InvalidTransitionError)
    async def invalid_transition_handler(request: Request, e: InvalidTransitionError) -> JSONResponse:
        logger.warning(f"Rejected transition on {request.method} {request.url}: {e}")
        return JSONResponse(status_code=400, content={"detail": str(e)})

    @app.exception_handler(DedupeConflictError)
    async def dedupe_conflict_handler(request: Request, e: DedupeConflictError) -> JSONResponse:
        logger.warning(f"Dedupe conflict on {request.method} {request.url}: {e}")
        return JSONResponse(status_code=409, content={"detail": str(e)})

    @app.exception_handler(ValueError)
    async def value_error_handler(request: Request, e: ValueError) -> JSONResponse:
        logger.error(f"ValueError on {request.method} {request.url}: {e}")
        return JSONResponse(
            status_code=400,
            content={"detail": str(e)},
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, e: Exception) -> JSONResponse:
        logger.error(f"Unhandled exception on {request.method} {request.url}:")
        logger.error(traceback.format_exc())
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error", "error": str(e)},
        )

    app.include_router(router)

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        return {"status": "ok"}

    return app


app = create_app()
