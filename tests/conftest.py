from __future__ import annotations

import json
import os
from decimal import Decimal

os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")
os.environ.setdefault("CELERY_BROKER_URL", "redis://localhost:6379/1")
os.environ.setdefault("CELERY_RESULT_BACKEND", "redis://localhost:6379/2")

import pytest  # noqa: E402
from sqlalchemy.ext.asyncio import create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from subledger.db.models.base import Base  # noqa: E402
from subledger.db.repo.users_repo import UsersRepo  # noqa: E402
from subledger.db.session import build_session_factory  # noqa: E402
from subledger.economy.subscriptions.catalog import CatalogProvider  # noqa: E402
from tests.fakes import (  # noqa: E402
    NOW_UTC,
    TEST_PLANS,
    FixedClock,
    RecordingPublisher,
    RecordingSink,
)


@pytest.fixture
async def db_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return build_session_factory(db_engine)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(NOW_UTC)


@pytest.fixture
def publisher() -> RecordingPublisher:
    return RecordingPublisher()


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def plans_file(tmp_path):
    path = tmp_path / "plans.json"
    path.write_text(json.dumps(TEST_PLANS), encoding="utf-8")
    return path


@pytest.fixture
def catalog(plans_file) -> CatalogProvider:
    return CatalogProvider(plans_file)


@pytest.fixture
def create_user(session_factory, clock):
    async def _create(user_id: int, *, balance: str = "500", username: str | None = None):
        async with session_factory.begin() as session:
            await UsersRepo.create(
                session,
                user_id=user_id,
                username=username or f"user{user_id}",
                balance=Decimal(balance),
                now_utc=clock.now(),
            )

    return _create


@pytest.fixture
def get_balance(session_factory):
    async def _get(user_id: int) -> Decimal:
        async with session_factory() as session:
            user = await UsersRepo.get_by_id(session, user_id)
            assert user is not None
            return user.balance

    return _get
