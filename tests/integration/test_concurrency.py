"""Concurrent writers against a file database.

Each session gets its own SQLite connection here, so the conditional
update is the only thing standing between two racing actors.
"""

import asyncio

import pytest

from conftest import make_identity, make_intake, step_payload
from radlims.core.auth.identity import Role
from radlims.core.workflow.engine import WorkflowEngine
from radlims.core.workflow.errors import StaleState
from radlims.core.workflow.states import ADVANCING_ACTIONS, Action, SampleStatus


@pytest.fixture
def file_engine(file_db) -> WorkflowEngine:
    return WorkflowEngine(file_db.session_factory)


async def _prepare(engine: WorkflowEngine, target: SampleStatus):
    collector = make_identity(Role.collector)
    analyst = make_identity(Role.analyst)
    document = await engine.create_sample(collector, make_intake())
    while document.status != target:
        action = ADVANCING_ACTIONS[document.status]
        document = await engine.request_transition(
            document.id, action, analyst, step_payload(action)
        )
    return document


@pytest.mark.asyncio
async def test_concurrent_prep_start_one_wins(file_engine) -> None:
    sample = await _prepare(file_engine, SampleStatus.AWAITING_PREP)
    first = make_identity(Role.analyst, user_id="analyst-a")
    second = make_identity(Role.analyst_assistant, user_id="assistant-b")

    results = await asyncio.gather(
        file_engine.request_transition(
            sample.id, Action.PREP_START, first, step_payload(Action.PREP_START)
        ),
        file_engine.request_transition(
            sample.id, Action.PREP_START, second, step_payload(Action.PREP_START)
        ),
        return_exceptions=True,
    )

    successes = [r for r in results if not isinstance(r, BaseException)]
    failures = [r for r in results if isinstance(r, BaseException)]
    assert len(successes) == 1
    assert len(failures) == 1
    assert isinstance(failures[0], StaleState)

    document = await file_engine.get_sample(sample.id)
    assert document.status == SampleStatus.AWAITING_ANALYSIS
    assert [e.action for e in document.history].count("prep_start") == 1
    assert document.history[-1].actor_id == successes[0].history[-1].actor_id
    assert document.version == sample.version + 1


@pytest.mark.asyncio
async def test_many_racers_single_commit(file_engine) -> None:
    sample = await _prepare(file_engine, SampleStatus.RECEIVED)
    racers = [make_identity(Role.analyst, user_id=f"analyst-{i}") for i in range(5)]

    results = await asyncio.gather(
        *(file_engine.request_transition(sample.id, Action.RECEIPT, who) for who in racers),
        return_exceptions=True,
    )

    assert sum(not isinstance(r, BaseException) for r in results) == 1
    assert all(isinstance(r, StaleState) for r in results if isinstance(r, BaseException))
    document = await file_engine.get_sample(sample.id)
    assert len(document.history) == 2


@pytest.mark.asyncio
async def test_concurrent_receptions_get_distinct_codes(file_engine) -> None:
    collectors = [make_identity(Role.collector, user_id=f"collector-{i}") for i in range(4)]

    documents = await asyncio.gather(
        *(file_engine.create_sample(who, make_intake()) for who in collectors)
    )

    codes = [d.code for d in documents]
    assert len(set(codes)) == len(codes)
    assert all(code.startswith("FISH-") for code in codes)
