"""Workflow engine: creates samples and advances them through the lifecycle.

Every mutation passes the transition guard first, then commits the new status
and its history entry in one conditional write through the audit ledger, and
only after the store acknowledged the commit announces the new document on
the event bus.
"""

from typing import Optional

import structlog
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from radlims.core.auth.identity import Identity
from radlims.core.config import Settings, get_settings
from radlims.core.events import EventBus
from radlims.core.workflow.codes import next_sample_code
from radlims.core.workflow.documents import SampleDocument
from radlims.core.workflow.errors import (
    DuplicateSampleCode,
    InvalidPayload,
    SampleNotFound,
    StaleState,
    UnknownLab,
)
from radlims.core.workflow.guards import authorize_reception, authorize_transition
from radlims.core.workflow.ledger import AuditLedger, NewHistoryEntry
from radlims.core.workflow.payloads import (
    ActionDetails,
    ResultRow,
    SampleIntake,
    TransitionPayload,
    parse_details,
)
from radlims.core.workflow.results import normalize_result_rows, rows_to_document
from radlims.core.workflow.states import Action
from radlims.db.models.sample import Sample
from radlims.db.repositories.lab import LabRepository
from radlims.db.repositories.sample import SampleRepository
from radlims.utils.time import to_naive_utc, utcnow

logger = structlog.get_logger(__name__)


def _validated_details(action: Action, raw: Optional[dict]) -> ActionDetails:
    try:
        return parse_details(action, raw)
    except ValidationError as e:
        first = e.errors()[0]
        where = ".".join(str(part) for part in first["loc"]) or "details"
        raise InvalidPayload(
            f"invalid details for '{action.value}': {where}: {first['msg']}"
        ) from e


class WorkflowEngine:
    """Entry point for every lifecycle mutation of a sample.

    Args:
        session_factory: Factory for sessions bound to the sample store
        event_bus: Bus receiving committed documents
        ledger: Audit ledger to commit through (built from the other
            arguments when omitted)
        settings: Commit timeout and code retry limit (application settings
            when omitted)
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        event_bus: Optional[EventBus] = None,
        ledger: Optional[AuditLedger] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        settings = settings or get_settings()
        self.session_factory = session_factory
        self.ledger = ledger or AuditLedger(
            session_factory,
            event_bus=event_bus,
            commit_timeout=settings.commit_timeout_seconds,
        )
        self.code_retry_limit = max(1, settings.code_retry_limit)

    async def get_sample(self, sample_id: str) -> SampleDocument:
        """Committed document of a sample.

        Raises:
            SampleNotFound: No such sample
        """
        async with self.session_factory() as session:
            return await self.ledger.load_document(session, sample_id)

    async def create_sample(
        self,
        identity: Identity,
        intake: SampleIntake,
        payload: Optional[TransitionPayload] = None,
    ) -> SampleDocument:
        """Receive a new sample (the Reception action).

        The sample and its first history entry are inserted together with
        status Received. Without a manual code, the next code of the day's
        sequence is drawn; a draw that collides with a concurrent reception
        is retried up to the configured limit.

        Raises:
            UnknownLab: Lab is not an active registry entry
            Forbidden: Identity may not receive samples for the lab
            InvalidPayload: Reception details are not empty
            DuplicateSampleCode: Manual code taken, or every draw collided
            StoreUnavailable: Commit failed or timed out
        """
        payload = payload or TransitionPayload()

        async with self.session_factory() as session:
            if await LabRepository(session).get_active_by_code(intake.lab) is None:
                raise UnknownLab(f"lab '{intake.lab}' is not in the registry")

        rule = authorize_reception(identity, intake.lab)
        details = _validated_details(Action.RECEPTION, payload.details)
        entry = NewHistoryEntry(
            action=Action.RECEPTION,
            details=details.model_dump(mode="json"),
            location=payload.location,
            signature=payload.signature,
            photo_refs=payload.photo_refs,
        )

        attempts = 1 if intake.code is not None else self.code_retry_limit
        for attempt in range(1, attempts + 1):
            async with self.session_factory() as session:
                repo = SampleRepository(session)
                now = utcnow()

                if intake.code is not None:
                    if await repo.code_exists(intake.code):
                        raise DuplicateSampleCode(
                            f"sample code '{intake.code}' already exists"
                        )
                    code = intake.code
                else:
                    code = await next_sample_code(repo, intake.sample_type, now.date())

                sample = Sample(
                    code=code,
                    status=rule.target,
                    lab=intake.lab,
                    item_name=intake.item_name,
                    sample_type=intake.sample_type,
                    sample_amount=intake.sample_amount,
                    collection_location=intake.collection_location,
                    collection_timestamp=to_naive_utc(intake.collection_timestamp),
                    collector=intake.collector,
                    collector_contact=intake.collector_contact,
                    collecting_organization=intake.collecting_organization,
                    notes=intake.notes,
                    photo_refs=list(payload.photo_refs),
                    version=1,
                    created_at=now,
                    updated_at=now,
                )

                async def work(s: AsyncSession) -> SampleDocument:
                    await self.ledger.open_history(s, sample, identity, entry)
                    return await self.ledger.load_document(s, sample.id)

                try:
                    document = await self.ledger.commit(
                        session, work, operation="reception", conflict=DuplicateSampleCode
                    )
                except DuplicateSampleCode:
                    if intake.code is not None or attempt == attempts:
                        logger.warning("sample_code_conflict", code=code, attempts=attempt)
                        raise
                    logger.info("sample_code_collision", code=code, attempt=attempt)
                    continue

            logger.info(
                "sample_received",
                sample_id=document.id,
                code=document.code,
                lab=document.lab,
                actor=identity.user_id,
            )
            await self.ledger.publish(document, kind="reception", action=Action.RECEPTION)
            return document

        raise DuplicateSampleCode("could not allocate a sample code")

    async def request_transition(
        self,
        sample_id: str,
        action: Action,
        identity: Identity,
        payload: Optional[TransitionPayload] = None,
    ) -> SampleDocument:
        """Advance a sample by one step.

        Raises:
            SampleNotFound: No such sample
            InvalidTransition: Action is not the sample's next step
            Forbidden: Role or lab assignment insufficient
            StaleState: Another actor advanced the sample first
            InvalidPayload: Details do not fit the action
            StoreUnavailable: Commit failed or timed out
        """
        return await self._commit_action(
            sample_id, action, identity, payload or TransitionPayload(), in_place=False
        )

    async def record_prep_done(
        self,
        sample_id: str,
        identity: Identity,
        payload: TransitionPayload,
    ) -> SampleDocument:
        """Record the finished pre-treatment of a sample awaiting analysis."""
        return await self._commit_action(
            sample_id, Action.PREP_DONE, identity, payload, in_place=True
        )

    async def save_results(
        self,
        sample_id: str,
        identity: Identity,
        results: list[ResultRow],
        payload: Optional[TransitionPayload] = None,
    ) -> SampleDocument:
        """Record a result set for a sample whose analysis is done."""
        payload = (payload or TransitionPayload()).model_copy(
            update={"details": {"results": [row.model_dump() for row in results]}}
        )
        return await self._commit_action(
            sample_id, Action.RESULTS_SAVED, identity, payload, in_place=True
        )

    async def _commit_action(
        self,
        sample_id: str,
        action: Action,
        identity: Identity,
        payload: TransitionPayload,
        in_place: bool,
    ) -> SampleDocument:
        async with self.session_factory() as session:
            sample = await SampleRepository(session).get_by_id(sample_id)
            if sample is None:
                raise SampleNotFound(f"sample {sample_id} not found")

            try:
                rule = authorize_transition(
                    sample.status, sample.lab, action, identity, in_place=in_place
                )
            except StaleState:
                logger.info(
                    "transition_stale",
                    sample_id=sample_id,
                    action=action.value,
                    status=sample.status.value,
                    actor=identity.user_id,
                )
                raise

            details = _validated_details(action, payload.details)
            entries, values = self._plan_entries(action, details, payload)

            async def work(s: AsyncSession) -> SampleDocument:
                await self.ledger.append_history(
                    s,
                    sample_id,
                    identity,
                    entries,
                    expected_status=rule.source,
                    next_status=rule.target,
                    expected_lab=sample.lab,
                    values=values,
                )
                return await self.ledger.load_document(s, sample_id)

            try:
                document = await self.ledger.commit(
                    session, work, operation=action.value, sample_id=sample_id
                )
            except StaleState:
                logger.info(
                    "transition_stale",
                    sample_id=sample_id,
                    action=action.value,
                    expected=rule.source.value,
                    actor=identity.user_id,
                )
                raise

        logger.info(
            "transition_committed",
            sample_id=sample_id,
            action=action.value,
            status=document.status.value,
            entries=len(entries),
            version=document.version,
            actor=identity.user_id,
        )
        await self.ledger.publish(
            document, kind="ledger" if in_place else "transition", action=action
        )
        return document

    def _plan_entries(
        self,
        action: Action,
        details: ActionDetails,
        payload: TransitionPayload,
    ) -> tuple[list[NewHistoryEntry], dict]:
        """History entries and sample column values for one committed action.

        Result rows are normalized before they are stored anywhere. Results
        submitted with AnalysisDone are recorded as a separate ResultsSaved
        entry directly after it.
        """
        values: dict = {}
        results = getattr(details, "results", None)

        def entry(
            entry_action: Action, entry_details: ActionDetails, with_refs: bool
        ) -> NewHistoryEntry:
            return NewHistoryEntry(
                action=entry_action,
                details=entry_details.model_dump(mode="json"),
                location=payload.location,
                signature=payload.signature,
                photo_refs=list(payload.photo_refs) if with_refs else [],
            )

        if not results:
            return [entry(action, details, True)], values

        rows = normalize_result_rows(results)
        values["analysis_results"] = rows_to_document(rows)

        if action == Action.ANALYSIS_DONE:
            done = details.model_copy(update={"results": None})
            saved = parse_details(Action.RESULTS_SAVED, {"results": values["analysis_results"]})
            return [
                entry(action, done, True),
                entry(Action.RESULTS_SAVED, saved, False),
            ], values

        return [entry(action, details.model_copy(update={"results": rows}), True)], values
