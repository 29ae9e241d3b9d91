from __future__ import annotations

from pathlib import Path
from typing import Callable, Iterator
import uuid

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from tunecraft.core.config import get_settings
from tunecraft.core.metrics import reset_metrics_for_tests
from tunecraft.generation.pricing import reset_credit_costs_cache
from tunecraft.providers import reset_generation_provider_cache
from tunecraft.storage.db import Base, load_models
from tunecraft.storage.models import User


TEST_SECRET_KEY = "tunecraft-test-secret-key-0123456789abcdef"
TEST_PUBLIC_BASE_URL = "https://api.tunecraft.test"


def build_sqlite_session_factory() -> sessionmaker:
    load_models()
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch, tmp_path: Path) -> Iterator[Path]:
    asset_root = tmp_path / "generated-music"
    monkeypatch.setenv("ENV", "development")
    monkeypatch.setenv("SECRET_KEY", TEST_SECRET_KEY)
    monkeypatch.setenv("GENERATION_PROVIDER", "mock")
    monkeypatch.setenv("APP_PUBLIC_BASE_URL", TEST_PUBLIC_BASE_URL)
    monkeypatch.setenv("FRONTEND_BASE_URL", "https://app.tunecraft.test")
    monkeypatch.setenv("ASSET_STORAGE_PATH", str(asset_root))
    monkeypatch.setenv("CREDIT_COSTS_FILE_PATH", "config/credit_costs.yaml")
    monkeypatch.setenv("DEFAULT_MODEL_VERSION", "v4")
    monkeypatch.setenv("SIGNUP_CREDITS", "30")
    get_settings.cache_clear()
    reset_credit_costs_cache()
    reset_generation_provider_cache()
    reset_metrics_for_tests()

    yield asset_root

    get_settings.cache_clear()
    reset_credit_costs_cache()
    reset_generation_provider_cache()


@pytest.fixture
def session_factory() -> sessionmaker:
    return build_sqlite_session_factory()


@pytest.fixture
def session(session_factory: sessionmaker) -> Iterator[Session]:
    db_session = session_factory()
    try:
        yield db_session
    finally:
        db_session.close()


@pytest.fixture
def make_user(session: Session) -> Callable[..., User]:
    def _make_user(*, credits: int = 100, username: str | None = None, email: str | None = None) -> User:
        suffix = uuid.uuid4().hex[:8]
        user = User(
            id=str(uuid.uuid4()),
            username=username or f"artist_{suffix}",
            email=email or f"artist-{suffix}@tunecraft.test",
            password_hash="not-a-real-hash",
            credit_balance=credits,
        )
        session.add(user)
        session.commit()
        return user

    return _make_user
