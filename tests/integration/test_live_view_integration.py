"""Live view fed by committed workflow writes."""

import asyncio

import pytest
import pytest_asyncio

from conftest import make_intake
from radlims.core.live_view import LiveViewSynchronizer
from radlims.core.workflow.errors import InvalidTransition
from radlims.core.workflow.states import Action


@pytest_asyncio.fixture
async def synchronizer(db, bus):
    synchronizer = LiveViewSynchronizer(bus, db.session_factory)
    synchronizer.start()
    yield synchronizer
    await synchronizer.stop()


async def next_snapshot(subscription):
    return await asyncio.wait_for(subscription.get(), timeout=2)


@pytest.mark.asyncio
async def test_initial_snapshot_from_store(engine, synchronizer, collector) -> None:
    existing = await engine.create_sample(collector, make_intake())

    subscription = await synchronizer.subscribe({"BUSAN"})
    snapshot = await next_snapshot(subscription)

    assert set(snapshot.samples) == {existing.id}
    assert snapshot.counts["received"] == 1
    document = snapshot.samples[existing.id]
    assert len(document["history"]) == 1


@pytest.mark.asyncio
async def test_commits_reach_subscribers(engine, synchronizer, bus, collector, analyst) -> None:
    subscription = await synchronizer.subscribe({"BUSAN"})
    await next_snapshot(subscription)

    sample = await engine.create_sample(collector, make_intake())
    snapshot = await next_snapshot(subscription)
    assert snapshot.samples[sample.id]["status"] == "received"

    await engine.request_transition(sample.id, Action.RECEIPT, analyst)
    snapshot = await next_snapshot(subscription)
    document = snapshot.samples[sample.id]
    assert document["status"] == "received_at_lab"
    # Status is never seen without the entry that produced it
    assert document["history"][-1]["action"] == "receipt"


@pytest.mark.asyncio
async def test_failed_transition_publishes_nothing(
    engine, synchronizer, bus, collector, analyst
) -> None:
    sample = await engine.create_sample(collector, make_intake())
    subscription = await synchronizer.subscribe({"BUSAN"})
    await next_snapshot(subscription)

    with pytest.raises(InvalidTransition):
        await engine.request_transition(sample.id, Action.ANALYSIS_DONE, analyst)
    await bus.drain()

    assert subscription.pending == 0


@pytest.mark.asyncio
async def test_other_lab_not_delivered(engine, synchronizer, bus, collector) -> None:
    subscription = await synchronizer.subscribe({"GANGNEUNG"})
    await next_snapshot(subscription)

    await engine.create_sample(collector, make_intake())
    await bus.drain()

    assert subscription.pending == 0
    assert subscription.current().samples == {}


@pytest.mark.asyncio
async def test_lab_move_between_subscriptions(
    engine, synchronizer, bus, collector, association_admin
) -> None:
    sample = await engine.create_sample(collector, make_intake())
    busan = await synchronizer.subscribe({"BUSAN"})
    gangneung = await synchronizer.subscribe({"GANGNEUNG"})
    await next_snapshot(busan)
    await next_snapshot(gangneung)

    await engine.ledger.record_modification(
        sample.id, {"lab": "GANGNEUNG"}, "registered at the wrong office", association_admin
    )

    assert (await next_snapshot(busan)).samples == {}
    moved = await next_snapshot(gangneung)
    assert moved.samples[sample.id]["lab"] == "GANGNEUNG"
    assert moved.samples[sample.id]["modification_history"][0]["changes"]["lab"] == {
        "old": "BUSAN",
        "new": "GANGNEUNG",
    }


@pytest.mark.asyncio
async def test_closed_subscription_releases_resources(engine, synchronizer, bus, collector) -> None:
    subscription = await synchronizer.subscribe({"BUSAN"})
    assert synchronizer.get_subscription_count("BUSAN") == 1

    subscription.close()
    await engine.create_sample(collector, make_intake())
    await bus.drain()

    assert synchronizer.get_subscription_count() == 0
    assert await subscription.get() is None
