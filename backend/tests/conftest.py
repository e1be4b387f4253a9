from __future__ import annotations

import datetime as dt
import os
import sys
import uuid
from collections.abc import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool
from sqlalchemy.orm import Session, sessionmaker

# Make `backend/` importable regardless of pytest import mode.
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from redroom.core.config import settings
from redroom.core.db.base import Base
from redroom.core.db.models import Company, User, UserCompanyRole
from redroom.core.db.session import get_db
from redroom.main import create_app
from redroom.shared.enums import Env

# Ensure model modules are imported so Base.metadata is complete.
from redroom.core.db import models as _core_models  # noqa: F401
from redroom.domain.alerts.models import alerts as _domain_alerts  # noqa: F401

T0 = dt.datetime(2026, 3, 2, 8, 0, tzinfo=dt.timezone.utc)


class FixedClock:
    """Mutable clock handed to engines and schedulers under test."""

    def __init__(self, now: dt.datetime = T0) -> None:
        self.now = now

    def __call__(self) -> dt.datetime:
        return self.now

    def advance(self, **delta) -> dt.datetime:
        self.now = self.now + dt.timedelta(**delta)
        return self.now


class RecordingNotifier:
    def __init__(self, fail_times: int = 0) -> None:
        self.calls: list[dict] = []
        self.fail_times = fail_times

    def notify(self, recipient_user_ids, template_name, variables) -> None:
        if self.fail_times > 0:
            self.fail_times -= 1
            raise RuntimeError("notifier unavailable")
        self.calls.append(
            {"recipients": list(recipient_user_ids), "template": template_name, "variables": dict(variables)}
        )


@pytest.fixture()
def db_engine():
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture()
def db_session(db_engine) -> Generator[Session, None, None]:
    TestingSessionLocal = sessionmaker(bind=db_engine, autoflush=False, autocommit=False, class_=Session)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def client(db_session: Session) -> TestClient:
    settings.env = Env.dev
    app = create_app()

    def _override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db
    return TestClient(app)


@pytest.fixture()
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def company_id(db_session: Session) -> uuid.UUID:
    cid = uuid.uuid4()
    db_session.add(Company(id=cid, name=f"Company {cid.hex[:6]}"))
    db_session.commit()
    return cid


@pytest.fixture()
def grant_role(db_session: Session):
    """Create a user holding `role` in a company (optionally vessel-bound). Returns the user's external id."""

    def _grant(company_id: uuid.UUID, role: str, *, external_id: str, vessel_id: uuid.UUID | None = None, active: bool = True) -> str:
        user = User(external_id=external_id, email=f"{external_id}@fleet.test", display_name=external_id, is_active=active)
        db_session.add(user)
        db_session.flush()
        db_session.add(UserCompanyRole(user_id=user.id, company_id=company_id, vessel_id=vessel_id, role=role))
        db_session.commit()
        return external_id

    return _grant
