"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import os
from collections.abc import AsyncGenerator
from typing import Any, Optional

import pytest
import pytest_asyncio

from radlims.core.auth.identity import Identity, Role
from radlims.core.config import get_settings
from radlims.core.events import EventBus
from radlims.core.workflow.engine import WorkflowEngine
from radlims.core.workflow.payloads import SampleIntake, TransitionPayload
from radlims.core.workflow.states import Action
from radlims.db.database import DatabaseConfig
from radlims.db.models import Lab

TEST_JWT_SECRET = "radlims-test-signing-key-0123456789abcdef"


def pytest_configure(config) -> None:
    """Signing key for tokens minted by the tests, set before settings are cached."""
    os.environ.setdefault("RADLIMS_JWT_SECRET", TEST_JWT_SECRET)
    get_settings.cache_clear()


LABS = (
    ("BUSAN", "Busan Inspection Office", True),
    ("GANGNEUNG", "Gangneung Inspection Office", True),
    ("MOKPO", "Mokpo Inspection Office", False),
)


async def _seed_labs(db: DatabaseConfig) -> None:
    async with db.session() as session:
        for code, name, active in LABS:
            session.add(Lab(code=code, name=name, is_active=active))


@pytest_asyncio.fixture
async def db() -> AsyncGenerator[DatabaseConfig, None]:
    """In-memory database with the lab registry seeded."""
    config = DatabaseConfig("sqlite+aiosqlite:///:memory:")
    await config.create_tables()
    await _seed_labs(config)
    yield config
    await config.dispose()


@pytest_asyncio.fixture
async def file_db(tmp_path) -> AsyncGenerator[DatabaseConfig, None]:
    """File database; concurrent sessions get their own connections."""
    config = DatabaseConfig(f"sqlite+aiosqlite:///{tmp_path / 'radlims.db'}")
    await config.create_tables()
    await _seed_labs(config)
    yield config
    await config.dispose()


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
def engine(db: DatabaseConfig, bus: EventBus) -> WorkflowEngine:
    return WorkflowEngine(db.session_factory, event_bus=bus)


def make_identity(
    role: Role, labs: tuple[str, ...] = ("BUSAN",), user_id: Optional[str] = None
) -> Identity:
    return Identity(
        user_id=user_id or f"{role.value}-1",
        display_name=f"{role.value.replace('_', ' ').title()}",
        role=role,
        assigned_labs=frozenset(labs),
    )


@pytest.fixture
def collector() -> Identity:
    return make_identity(Role.collector)


@pytest.fixture
def analyst() -> Identity:
    return make_identity(Role.analyst)


@pytest.fixture
def technical_lead() -> Identity:
    return make_identity(Role.technical_lead)


@pytest.fixture
def association_admin() -> Identity:
    return make_identity(Role.association_admin, labs=("BUSAN", "GANGNEUNG"))


@pytest.fixture
def super_admin() -> Identity:
    return make_identity(Role.super_admin, labs=())


def make_intake(**overrides: Any) -> SampleIntake:
    fields: dict[str, Any] = {
        "lab": "BUSAN",
        "sample_type": "FISH",
        "item_name": "Flatfish",
        "sample_amount": "2 kg",
        "collection_location": "Gijang fish market",
        "collector": "Kim",
    }
    fields.update(overrides)
    return SampleIntake(**fields)


# Details that satisfy each advancing action, in lifecycle order
STEP_DETAILS: dict[Action, dict[str, Any]] = {
    Action.RECEIPT: {"received_condition": "chilled"},
    Action.CLASSIFICATION: {"classifications": [{"analysis_type": "gamma", "quantity": 1}]},
    Action.PREP_START: {"method": "ashing"},
    Action.ANALYSIS_START: {"equipment_id": "HPGe-01"},
    Action.ANALYSIS_DONE: {},
    Action.EVALUATION: {"summary": "below guideline"},
    Action.TECH_REVIEW: {},
    Action.SIGNOFF: {},
}


def step_payload(action: Action, **extra: Any) -> TransitionPayload:
    return TransitionPayload(details={**STEP_DETAILS[action], **extra})
