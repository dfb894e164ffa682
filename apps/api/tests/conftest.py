"""
Test configuration and fixtures.

Provides:
- In-memory SQLite session per test (schema created from the models)
- Fake task/reminder gateways and collaborators
- HTTPX AsyncClient wired to the app with db/collaborator overrides
"""
import os
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncGenerator, Generator

import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("KIT_TIMEZONE", "UTC")

from keepintouch.main import app
from keepintouch.core.deps import get_collaborators, get_db
from keepintouch.db.base import Base
from keepintouch.db.enums import AssigneeRule, CycleBehavior, KitEntityType, TouchMethod
from keepintouch.schemas.kit import SequenceStep, SubscriptionActivate
from keepintouch.services.collaborators import (
    DbActivityRecorder,
    DefaultIdentityResolver,
    FollowUpSpec,
    KitCollaborators,
)


# Monday 2026-03-02 09:00 UTC
MONDAY = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def db() -> Generator[Session, None, None]:
    """
    Fresh in-memory database per test.

    StaticPool keeps the single connection alive so the ASGI threadpool
    sees the same data as the test body.
    """
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()

    yield session

    session.close()
    Base.metadata.drop_all(engine)
    engine.dispose()


# =============================================================================
# Collaborator Fixtures
# =============================================================================

@dataclass
class FakeTaskGateway:
    """Records calls; optionally fails every call."""
    fail: bool = False
    created: list[FollowUpSpec] = field(default_factory=list)
    updates: list[tuple[str, dict[str, Any]]] = field(default_factory=list)

    def create_task(self, spec: FollowUpSpec) -> str:
        if self.fail:
            raise RuntimeError("task service unavailable")
        self.created.append(spec)
        return f"task-{len(self.created)}"

    def update_task(self, task_id: str, fields: dict[str, Any]) -> None:
        if self.fail:
            raise RuntimeError("task service unavailable")
        self.updates.append((task_id, fields))


@dataclass
class FakeReminderGateway:
    fail: bool = False
    created: list[FollowUpSpec] = field(default_factory=list)
    updates: list[tuple[str, dict[str, Any]]] = field(default_factory=list)

    def create_reminder(self, spec: FollowUpSpec) -> str:
        if self.fail:
            raise RuntimeError("reminder service unavailable")
        self.created.append(spec)
        return f"reminder-{len(self.created)}"

    def update_reminder(self, reminder_id: str, fields: dict[str, Any]) -> None:
        if self.fail:
            raise RuntimeError("reminder service unavailable")
        self.updates.append((reminder_id, fields))


class FailingActivityRecorder:
    def record(self, event) -> None:
        raise RuntimeError("audit log unavailable")


@pytest.fixture(scope="function")
def tasks() -> FakeTaskGateway:
    return FakeTaskGateway()


@pytest.fixture(scope="function")
def reminders() -> FakeReminderGateway:
    return FakeReminderGateway()


@pytest.fixture(scope="function")
def collaborators(db: Session, tasks, reminders) -> KitCollaborators:
    """Database activity log plus fake task/reminder gateways."""
    return KitCollaborators(
        identity=DefaultIdentityResolver(field_staff_assignee="field-team"),
        activity=DbActivityRecorder(db),
        tasks=tasks,
        reminders=reminders,
    )


# =============================================================================
# Data Helpers
# =============================================================================

def make_steps(*pairs: tuple[TouchMethod, int]) -> list[SequenceStep]:
    return [SequenceStep(method=method, interval_days=days) for method, days in pairs]


def make_activation(
    steps: list[SequenceStep] | None = None,
    cycle_behavior: CycleBehavior | None = CycleBehavior.ONE_TIME,
    **overrides,
) -> SubscriptionActivate:
    data = {
        "entity_type": KitEntityType.LEAD,
        "entity_id": uuid.uuid4(),
        "custom_sequence": steps
        if steps is not None
        else make_steps((TouchMethod.CALL, 0), (TouchMethod.WHATSAPP, 3), (TouchMethod.CALL, 7)),
        "cycle_behavior": cycle_behavior,
        "assigned_to": "owner@example.com",
    }
    data.update(overrides)
    return SubscriptionActivate(**data)


@pytest.fixture
def specific_user_step() -> SequenceStep:
    return SequenceStep(
        method=TouchMethod.VISIT,
        interval_days=2,
        assignee_rule=AssigneeRule.SPECIFIC_USER,
        assignee="rep@example.com",
    )


# =============================================================================
# Client Fixtures
# =============================================================================

@pytest.fixture(scope="function")
async def client(db: Session, collaborators: KitCollaborators) -> AsyncGenerator[AsyncClient, None]:
    """AsyncClient bound to the test session and collaborators."""
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_collaborators] = lambda: collaborators

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
        headers={"X-Actor": "manager@example.com"},
    ) as c:
        yield c

    app.dependency_overrides.clear()
