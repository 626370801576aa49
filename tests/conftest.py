"""Pytest configuration and fixtures."""
import os

# Settings are read at import time; give every required variable a test value.
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("CELERY_BROKER_URL", "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND", "cache+memory://")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key-for-referrals")

from datetime import datetime, timezone
from typing import Generator
from unittest.mock import patch

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.db.base import Base
from app.models.audit_log import AuditLog  # noqa: F401
from app.models.referral_code import CodeStatus, ReferralCode
from app.models.referral_redemption import ReferralRedemption  # noqa: F401


@pytest.fixture(scope="function")
def db_engine():
    """In-memory SQLite shared across threads (TestClient runs sync routes in a pool)."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db_session(db_engine) -> Generator[Session, None, None]:
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def published() -> list:
    """Collects ReferralRedeemed events instead of enqueueing Celery tasks."""
    return []


@pytest.fixture
def service(db_session, published):
    from app.referral.service import ReferralService

    return ReferralService(db_session, publish=published.append)


@pytest.fixture
def make_code(db_session):
    def _make(code: str = "ABCD2345", owner: str = "owner-1", **kwargs) -> ReferralCode:
        now = datetime.now(timezone.utc)
        record = ReferralCode(
            code=code,
            owner_user_id=owner,
            status=kwargs.pop("status", CodeStatus.ACTIVE),
            use_count=kwargs.pop("use_count", 0),
            created_at=kwargs.pop("created_at", now),
            last_activity_at=kwargs.pop("last_activity_at", now),
            **kwargs,
        )
        db_session.add(record)
        db_session.commit()
        return record

    return _make


@pytest.fixture
def client(db_session):
    """TestClient bound to the test session; rate limiting and the Celery broker are stubbed."""
    from fastapi.testclient import TestClient

    from app.db.session import get_db
    from app.main import app
    from app.referral.tasks import deliver_referral_credit, retry_pending_credits

    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with patch("app.api.routes.referrals.check_validate_rate_limit", return_value=True), \
            patch.object(deliver_referral_credit, "delay") as delay, \
            patch.object(retry_pending_credits, "delay") as retry_delay:
        with TestClient(app, raise_server_exceptions=False) as test_client:
            test_client.enqueued = delay
            test_client.retry_enqueued = retry_delay
            yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    from app.services.auth.jwt import create_access_token

    def _headers(user_id: str, role: str = "USER") -> dict:
        return {"Authorization": f"Bearer {create_access_token({'sub': user_id, 'role': role})}"}

    return _headers
