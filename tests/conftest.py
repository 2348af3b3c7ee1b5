from pathlib import Path
from typing import Any, AsyncGenerator, Callable, Generator

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from sqlalchemy import Engine, create_engine, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool
from sqlmodel import Session, col

from alembic import command
from alembic.config import Config
from hopper_server import database
from hopper_server.dependencies import get_db_session, get_readonly_db_session
from hopper_server.models.jobs import Job
from hopper_server.settings import Settings

ROOT = Path(__file__).resolve().parent.parent
CRON_SECRET = "test-cron-secret"


def migrate(database_url: str) -> None:
    sync_engine = create_engine(database.sync_database_url(database_url), poolclass=NullPool)
    alembic_cfg = Config(str(ROOT / "alembic.ini"))
    alembic_cfg.attributes["configure_logger"] = False
    with sync_engine.begin() as connection:
        alembic_cfg.attributes["connection"] = connection
        command.upgrade(alembic_cfg, "head")
    sync_engine.dispose()


@pytest.fixture
def database_url(tmp_path: Path) -> str:
    url = f"sqlite+aiosqlite:///{tmp_path / 'hopper_test.db'}"
    migrate(url)
    return url


@pytest.fixture
def settings(database_url: str) -> Settings:
    return Settings(
        _env_file=None,
        database_url=database_url,
        environment="test",
        cron_secret=CRON_SECRET,
        lease_seconds=60,
        handler_timeout_seconds=5,
        backoff_jitter_ratio=0.0,
        webhook_debounce_seconds=5,
    )


@pytest_asyncio.fixture
async def session_maker(database_url: str) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    engine, maker = database.create_session_maker(database_url)
    yield maker
    await engine.dispose()


@pytest.fixture
def sync_engine(database_url: str) -> Generator[Engine, None, None]:
    """Direct access for arranging rows in API tests."""
    engine = create_engine(database.sync_database_url(database_url), poolclass=NullPool)
    yield engine
    engine.dispose()


@pytest.fixture
def set_job_fields(sync_engine: Engine) -> Callable[..., None]:
    def _set(job_id: int, **values: Any) -> None:
        with Session(sync_engine) as session:
            session.execute(update(Job).where(col(Job.id) == job_id).values(**values))
            session.commit()

    return _set


@pytest.fixture
def read_job(sync_engine: Engine) -> Callable[[int], Job]:
    def _read(job_id: int) -> Job:
        with Session(sync_engine) as session:
            job = session.get(Job, job_id)
            assert job is not None
            session.expunge(job)
            return job

    return _read


@pytest.fixture
def client(database_url: str, settings: Settings) -> Generator[TestClient, None, None]:
    from starlette.routing import _DefaultLifespan

    from hopper_server.app import create_app

    engine = create_async_engine(database_url, echo=False, poolclass=NullPool)
    session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async def override_db_session() -> AsyncGenerator[AsyncSession, None]:
        async with database.get_session(session_maker) as session:
            yield session

    async def override_readonly_db_session() -> AsyncGenerator[AsyncSession, None]:
        async with database.get_session(session_maker, read_only=True) as session:
            yield session

    app = create_app()

    app.router.lifespan_context = _DefaultLifespan(app.router)
    app.state.settings = settings

    app.dependency_overrides[get_db_session] = override_db_session
    app.dependency_overrides[get_readonly_db_session] = override_readonly_db_session

    with TestClient(app) as test_client:
        yield test_client
