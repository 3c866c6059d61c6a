import os
import sys

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

TEST_SECRET_KEY = "0123456789abcdef0123456789abcdef0123456789abcdef0123456789abcdef"

os.environ.setdefault("SECRET_KEY", TEST_SECRET_KEY)
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("PASSWORD_HASH_ROUNDS", "4")

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from app.api import deps
from app.api.auth import router as auth_router
from app.api.errors import register_exception_handlers
from app.config import Settings, get_settings
from app.database import Base
from app.services.rate_limiter import InMemoryCounterStore, RateLimiter, default_policies

STRONG_PASSWORD = "Str0ng!Pass"


class FakeClock:
    """Manually advanced replacement for time.time."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_settings(**overrides) -> Settings:
    values = {
        "secret_key": TEST_SECRET_KEY,
        "database_url": "sqlite://",
        "password_hash_rounds": 4,
    }
    values.update(overrides)
    return Settings(**values)


def build_test_app(settings: Settings | None = None, clock: FakeClock | None = None):
    settings = settings or make_settings()
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    limiter = RateLimiter(InMemoryCounterStore(), default_policies(settings), clock=clock or FakeClock())

    app = FastAPI()
    register_exception_handlers(app)
    app.include_router(auth_router, prefix="/api")

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[deps.get_db] = override_get_db
    app.dependency_overrides[get_settings] = lambda: settings
    app.dependency_overrides[deps.get_rate_limiter] = lambda: limiter
    return app, TestingSessionLocal, limiter


def build_test_client(settings: Settings | None = None, clock: FakeClock | None = None):
    app, testing_session_local, _ = build_test_app(settings, clock)
    return TestClient(app), testing_session_local


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return make_settings()
