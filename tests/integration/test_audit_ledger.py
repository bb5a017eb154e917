"""Integration tests for the audit ledger.

Tests cover:
- Append-only enforcement on committed ledger rows
- Corrective edits with justification and field diffs
- Lab moves and code changes through corrective edits
- Commit failure mapping
"""

import asyncio
from datetime import datetime

import pytest
from sqlalchemy import select

from conftest import make_identity, make_intake
from radlims.core.auth.identity import Role
from radlims.core.events import EventBus, SampleCommittedEvent
from radlims.core.workflow.engine import WorkflowEngine
from radlims.core.workflow.errors import (
    AppendOnlyViolation,
    DuplicateSampleCode,
    Forbidden,
    InvalidModification,
    ReasonRequired,
    SampleNotFound,
    StaleState,
    StoreUnavailable,
    UnknownLab,
)
from radlims.core.workflow.ledger import AuditLedger
from radlims.core.workflow.states import Action, SampleStatus
from radlims.db.models import HistoryEntry, ModificationEntry


@pytest.fixture
def ledger(engine) -> AuditLedger:
    return engine.ledger


@pytest.fixture
def lead():
    return make_identity(Role.technical_lead, labs=("BUSAN", "GANGNEUNG"))


class TestAppendOnly:
    @pytest.mark.asyncio
    async def test_history_rows_cannot_be_updated(self, db, engine, collector) -> None:
        sample = await engine.create_sample(collector, make_intake())

        async with db.session_factory() as session:
            entry = await session.scalar(
                select(HistoryEntry).where(HistoryEntry.sample_id == sample.id)
            )
            entry.actor = "someone else"
            with pytest.raises(AppendOnlyViolation):
                await session.flush()
            await session.rollback()

        document = await engine.get_sample(sample.id)
        assert document.history[0].actor == collector.display_name

    @pytest.mark.asyncio
    async def test_history_rows_cannot_be_deleted(self, db, engine, collector) -> None:
        sample = await engine.create_sample(collector, make_intake())

        async with db.session_factory() as session:
            entry = await session.scalar(
                select(HistoryEntry).where(HistoryEntry.sample_id == sample.id)
            )
            await session.delete(entry)
            with pytest.raises(AppendOnlyViolation):
                await session.flush()
            await session.rollback()

        assert len((await engine.get_sample(sample.id)).history) == 1

    @pytest.mark.asyncio
    async def test_modification_rows_cannot_be_updated(
        self, db, engine, ledger, collector, lead
    ) -> None:
        sample = await engine.create_sample(collector, make_intake())
        await ledger.record_modification(sample.id, {"notes": "re-weighed"}, "typo", lead)

        async with db.session_factory() as session:
            entry = await session.scalar(select(ModificationEntry))
            entry.reason = "changed my mind"
            with pytest.raises(AppendOnlyViolation):
                await session.flush()
            await session.rollback()


class TestRecordModification:
    @pytest.mark.asyncio
    async def test_correction_records_diff(self, engine, ledger, collector, lead) -> None:
        sample = await engine.create_sample(collector, make_intake())

        document = await ledger.record_modification(
            sample.id,
            {"item_name": "Olive flounder", "sample_amount": "2 kg"},
            "species misidentified at reception",
            lead,
        )

        assert document.item_name == "Olive flounder"
        assert document.version == 2
        assert document.status == SampleStatus.RECEIVED
        assert len(document.history) == 1
        assert len(document.modification_history) == 1
        modification = document.modification_history[0]
        assert modification.reason == "species misidentified at reception"
        assert modification.editor_id == lead.user_id
        # Unchanged fields are not recorded
        assert set(modification.changes) == {"item_name"}
        assert modification.changes["item_name"].old == "Flatfish"
        assert modification.changes["item_name"].new == "Olive flounder"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("reason", ["", "   ", "\n\t"])
    async def test_reason_required(self, engine, ledger, collector, lead, reason) -> None:
        sample = await engine.create_sample(collector, make_intake())
        with pytest.raises(ReasonRequired):
            await ledger.record_modification(sample.id, {"notes": "x"}, reason, lead)

    @pytest.mark.asyncio
    async def test_reason_checked_before_sample_lookup(self, ledger, lead) -> None:
        with pytest.raises(ReasonRequired):
            await ledger.record_modification("missing", {"notes": "x"}, " ", lead)

    @pytest.mark.asyncio
    async def test_unknown_sample(self, ledger, lead) -> None:
        with pytest.raises(SampleNotFound):
            await ledger.record_modification("missing", {"notes": "x"}, "why", lead)

    @pytest.mark.asyncio
    async def test_analyst_may_not_correct(self, engine, ledger, collector, analyst) -> None:
        sample = await engine.create_sample(collector, make_intake())
        with pytest.raises(Forbidden):
            await ledger.record_modification(sample.id, {"notes": "x"}, "why", analyst)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "patch",
        [
            {"status": "complete"},
            {"history": []},
            {"item_name": None},
            {"sample_type": "not valid!"},
            {},
        ],
    )
    async def test_invalid_patches(self, engine, ledger, collector, lead, patch) -> None:
        sample = await engine.create_sample(collector, make_intake())
        with pytest.raises(InvalidModification):
            await ledger.record_modification(sample.id, patch, "why", lead)

    @pytest.mark.asyncio
    async def test_no_op_patch(self, engine, ledger, collector, lead) -> None:
        sample = await engine.create_sample(collector, make_intake())
        with pytest.raises(InvalidModification):
            await ledger.record_modification(sample.id, {"item_name": "Flatfish"}, "why", lead)

    @pytest.mark.asyncio
    async def test_move_to_unknown_lab(self, engine, ledger, collector, lead) -> None:
        sample = await engine.create_sample(collector, make_intake())
        with pytest.raises(UnknownLab):
            await ledger.record_modification(sample.id, {"lab": "MOKPO"}, "why", lead)

    @pytest.mark.asyncio
    async def test_move_to_unassigned_lab(self, engine, ledger, collector, technical_lead) -> None:
        sample = await engine.create_sample(collector, make_intake())
        with pytest.raises(Forbidden):
            await ledger.record_modification(
                sample.id, {"lab": "GANGNEUNG"}, "wrong office", technical_lead
            )

    @pytest.mark.asyncio
    async def test_lab_move_announces_previous_lab(self, db, collector, lead) -> None:
        bus = EventBus()
        events: list[SampleCommittedEvent] = []

        async def record(event: SampleCommittedEvent) -> None:
            events.append(event)

        bus.subscribe(SampleCommittedEvent, record)
        engine = WorkflowEngine(db.session_factory, event_bus=bus)
        sample = await engine.create_sample(collector, make_intake())

        document = await engine.ledger.record_modification(
            sample.id, {"lab": "GANGNEUNG"}, "registered at the wrong office", lead
        )
        await bus.drain()

        assert document.lab == "GANGNEUNG"
        assert events[-1].kind == "modification"
        assert events[-1].action is None
        assert events[-1].previous_lab == "BUSAN"
        assert events[-1].labs == frozenset({"BUSAN", "GANGNEUNG"})

    @pytest.mark.asyncio
    async def test_code_change_to_taken_code(self, engine, ledger, collector, lead) -> None:
        await engine.create_sample(collector, make_intake(code="TAKEN-1"))
        sample = await engine.create_sample(collector, make_intake())
        with pytest.raises(DuplicateSampleCode):
            await ledger.record_modification(sample.id, {"code": "TAKEN-1"}, "why", lead)

    @pytest.mark.asyncio
    async def test_collection_timestamp_stored_as_naive_utc(
        self, engine, ledger, collector, lead
    ) -> None:
        sample = await engine.create_sample(collector, make_intake())

        document = await ledger.record_modification(
            sample.id,
            {"collection_timestamp": "2026-10-18T09:30:00+09:00"},
            "time zone entered wrong",
            lead,
        )

        assert document.collection_timestamp == datetime(2026, 10, 18, 0, 30)
        change = document.modification_history[0].changes["collection_timestamp"]
        assert change.old is None
        assert change.new == "2026-10-18T00:30:00"

    @pytest.mark.asyncio
    async def test_corrections_do_not_touch_status(
        self, engine, ledger, collector, analyst, lead
    ) -> None:
        sample = await engine.create_sample(collector, make_intake())
        await ledger.record_modification(sample.id, {"notes": "first"}, "why", lead)
        document = await engine.request_transition(sample.id, Action.RECEIPT, analyst)

        assert document.status == SampleStatus.RECEIVED_AT_LAB
        assert document.version == 3
        assert [m.seq for m in document.modification_history] == [1]


class TestCommitFailures:
    @pytest.mark.asyncio
    async def test_timeout_is_store_unavailable(self, db, collector) -> None:
        ledger = AuditLedger(db.session_factory, commit_timeout=0.01)

        async def slow(session):
            await asyncio.sleep(1)

        async with db.session_factory() as session:
            with pytest.raises(StoreUnavailable):
                await ledger.commit(session, slow, operation="test")

    @pytest.mark.asyncio
    async def test_workflow_errors_propagate(self, db) -> None:
        ledger = AuditLedger(db.session_factory)

        async def stale(session):
            raise StaleState("moved on")

        async with db.session_factory() as session:
            with pytest.raises(StaleState):
                await ledger.commit(session, stale, operation="test")

    @pytest.mark.asyncio
    async def test_append_to_moved_sample_is_stale(self, db, engine, collector) -> None:
        sample = await engine.create_sample(collector, make_intake())
        ledger = engine.ledger

        async def work(session):
            await ledger.append_history(
                session,
                sample.id,
                collector,
                [],
                expected_status=SampleStatus.ANALYZING,
                next_status=SampleStatus.ANALYSIS_DONE,
                expected_lab="BUSAN",
            )

        async with db.session_factory() as session:
            with pytest.raises(StaleState):
                await ledger.commit(session, work, operation="test", sample_id=sample.id)

        document = await engine.get_sample(sample.id)
        assert document.status == SampleStatus.RECEIVED
        assert document.version == 1

    @pytest.mark.asyncio
    async def test_transition_after_lab_move_is_stale(
        self, file_db, monkeypatch, collector, analyst, lead
    ) -> None:
        # File database: the move commits on its own connection mid-transition
        engine = WorkflowEngine(file_db.session_factory)
        ledger = engine.ledger
        sample = await engine.create_sample(collector, make_intake())
        original_commit = ledger.commit

        async def commit_after_move(session, work, **kwargs):
            monkeypatch.setattr(ledger, "commit", original_commit)
            await ledger.record_modification(
                sample.id, {"lab": "GANGNEUNG"}, "registered at the wrong office", lead
            )
            return await original_commit(session, work, **kwargs)

        monkeypatch.setattr(ledger, "commit", commit_after_move)

        with pytest.raises(StaleState):
            await engine.request_transition(sample.id, Action.RECEIPT, analyst)

        document = await engine.get_sample(sample.id)
        assert document.lab == "GANGNEUNG"
        assert document.status == SampleStatus.RECEIVED
        assert len(document.history) == 1
        assert document.version == 2

    @pytest.mark.asyncio
    async def test_append_for_other_lab_is_stale(self, db, engine, collector) -> None:
        sample = await engine.create_sample(collector, make_intake())
        ledger = engine.ledger

        async def work(session):
            await ledger.append_history(
                session,
                sample.id,
                collector,
                [],
                expected_status=SampleStatus.RECEIVED,
                next_status=SampleStatus.RECEIVED_AT_LAB,
                expected_lab="GANGNEUNG",
            )

        async with db.session_factory() as session:
            with pytest.raises(StaleState):
                await ledger.commit(session, work, operation="test", sample_id=sample.id)

        document = await engine.get_sample(sample.id)
        assert document.status == SampleStatus.RECEIVED
        assert document.version == 1
