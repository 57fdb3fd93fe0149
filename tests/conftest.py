from __future__ import annotations

from collections.abc import Generator
from dataclasses import dataclass, field

import pytest
from fastapi import Request
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from leadboard import audit, events
from leadboard.core.config import get_settings
from leadboard.core.database import Base, get_db
from leadboard.crm.access import AuthContext
from leadboard.crm.api import get_current_user
from leadboard.main import app


@dataclass
class Actor:
    """Identity the overridden ``get_current_user`` hands to every request."""

    user_id: str = "user-1"
    roles: list[str] = field(default_factory=lambda: ["sales_staff"])

    def become(self, user_id: str, roles: list[str] | tuple[str, ...]) -> None:
        self.user_id = user_id
        self.roles = list(roles)


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = factory()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture(autouse=True)
def reset_recorders() -> Generator[None, None, None]:
    audit.activity_entries.clear()
    events.published_events.clear()
    get_settings.cache_clear()
    yield
    audit.activity_entries.clear()
    events.published_events.clear()
    get_settings.cache_clear()


@pytest.fixture()
def actor() -> Actor:
    return Actor()


@pytest.fixture()
def api_client(db_session: Session, actor: Actor) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_user(request: Request) -> AuthContext:
        return AuthContext(
            user_id=actor.user_id,
            roles=list(actor.roles),
            correlation_id=getattr(request.state, "correlation_id", None),
        )

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_user] = override_get_current_user
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()
