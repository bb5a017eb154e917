"""Audit ledger: the only writer of sample history and corrective edits.

History rows are inserted, never updated or deleted. Every append runs in the
same transaction as a conditional update of the owning sample, so a status
is never visible without the entry that produced it. Corrective edits change
descriptive fields only and are recorded with the editor's justification and
the previous and new value of every changed field.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional, TypeVar

import structlog
from pydantic import ValidationError
from sqlalchemy import update
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from radlims.core.auth.identity import Identity
from radlims.core.events import EventBus, SampleCommittedEvent
from radlims.core.workflow.documents import SampleDocument, sample_document
from radlims.core.workflow.errors import (
    DuplicateSampleCode,
    InvalidModification,
    ReasonRequired,
    SampleNotFound,
    StaleState,
    StoreUnavailable,
    UnknownLab,
    WorkflowError,
)
from radlims.core.workflow.guards import authorize_modification, check_lab_scope
from radlims.core.workflow.payloads import GeoLocation, SampleCorrection, Signature
from radlims.core.workflow.states import Action, SampleStatus
from radlims.db.models.sample import HistoryEntry, ModificationEntry, Sample
from radlims.db.repositories.lab import LabRepository
from radlims.db.repositories.sample import SampleRepository
from radlims.utils.time import to_naive_utc, utcnow

logger = structlog.get_logger(__name__)

T = TypeVar("T")


@dataclass
class NewHistoryEntry:
    """A history entry ready to be appended (details already validated)."""

    action: Action
    details: dict[str, Any] = field(default_factory=dict)
    location: Optional[GeoLocation] = None
    signature: Optional[Signature] = None
    photo_refs: list[str] = field(default_factory=list)


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class AuditLedger:
    """Appends history entries and records corrective edits.

    Args:
        session_factory: Factory for sessions bound to the sample store
        event_bus: Bus receiving a SampleCommittedEvent after every commit
        commit_timeout: Seconds a commit may take before it is reported as
            StoreUnavailable; None waits indefinitely
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        event_bus: Optional[EventBus] = None,
        commit_timeout: Optional[float] = None,
    ) -> None:
        self.session_factory = session_factory
        self.event_bus = event_bus
        self.commit_timeout = commit_timeout

    async def commit(
        self,
        session: AsyncSession,
        work: Callable[[AsyncSession], Awaitable[T]],
        *,
        operation: str,
        sample_id: Optional[str] = None,
        conflict: type[WorkflowError] = StaleState,
    ) -> T:
        """Run work and commit it as one transaction within the commit timeout.

        Any failure rolls the whole transaction back. Constraint violations
        are reported as ``conflict``; timeouts and driver failures as
        StoreUnavailable. Nothing is retried here.
        """
        try:
            return await asyncio.wait_for(
                self._apply(session, work), timeout=self.commit_timeout
            )
        except WorkflowError:
            await self._rollback(session)
            raise
        except IntegrityError as e:
            await self._rollback(session)
            logger.info(
                "commit_conflict", operation=operation, sample_id=sample_id, error=str(e.orig)
            )
            raise conflict(f"{operation} conflicted with a concurrent write") from e
        except asyncio.TimeoutError as e:
            await self._rollback(session)
            logger.warning(
                "commit_timed_out",
                operation=operation,
                sample_id=sample_id,
                timeout=self.commit_timeout,
            )
            raise StoreUnavailable(
                f"{operation} was not acknowledged within {self.commit_timeout}s"
            ) from e
        except DBAPIError as e:
            await self._rollback(session)
            logger.warning(
                "commit_failed", operation=operation, sample_id=sample_id, error=str(e.orig)
            )
            raise StoreUnavailable(f"store unavailable during {operation}") from e
        except Exception:
            await self._rollback(session)
            logger.exception("commit_error", operation=operation, sample_id=sample_id)
            raise

    async def _apply(
        self, session: AsyncSession, work: Callable[[AsyncSession], Awaitable[T]]
    ) -> T:
        result = await work(session)
        await session.commit()
        return result

    async def _rollback(self, session: AsyncSession) -> None:
        try:
            await session.rollback()
        except DBAPIError as e:
            logger.warning("rollback_failed", error=str(e.orig))

    def _history_row(
        self,
        sample_id: str,
        seq: int,
        actor: Identity,
        entry: NewHistoryEntry,
        timestamp: datetime,
    ) -> HistoryEntry:
        return HistoryEntry(
            sample_id=sample_id,
            seq=seq,
            action=entry.action,
            actor=actor.display_name,
            actor_id=actor.user_id,
            actor_role=actor.role.value,
            timestamp=timestamp,
            location_lat=entry.location.lat if entry.location else None,
            location_lon=entry.location.lon if entry.location else None,
            signature_name=entry.signature.name if entry.signature else None,
            signature_timestamp=(
                entry.signature.formatted_timestamp if entry.signature else None
            ),
            details=entry.details,
            photo_refs=list(entry.photo_refs),
        )

    async def open_history(
        self,
        session: AsyncSession,
        sample: Sample,
        actor: Identity,
        entry: NewHistoryEntry,
    ) -> HistoryEntry:
        """Insert a new sample together with its first history entry."""
        session.add(sample)
        await session.flush()

        row = self._history_row(sample.id, 1, actor, entry, sample.created_at)
        session.add(row)
        await session.flush()
        return row

    async def append_history(
        self,
        session: AsyncSession,
        sample_id: str,
        actor: Identity,
        entries: list[NewHistoryEntry],
        expected_status: SampleStatus,
        next_status: SampleStatus,
        expected_lab: str,
        values: Optional[dict[str, Any]] = None,
    ) -> None:
        """Append entries and move the sample to next_status.

        The sample row is updated only while its status still equals
        expected_status and it still belongs to expected_lab, the lab the
        actor was authorized for; otherwise nothing is written and StaleState
        is raised. Entry timestamps never precede the sample's latest entry.

        Must run inside :meth:`commit`.
        """
        now = utcnow()
        stmt = (
            update(Sample)
            .where(
                Sample.id == sample_id,
                Sample.status == expected_status,
                Sample.lab == expected_lab,
            )
            .values(
                status=next_status,
                version=Sample.version + 1,
                updated_at=now,
                **(values or {}),
            )
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        if result.rowcount != 1:
            raise StaleState(
                f"sample {sample_id} is no longer '{expected_status.value}' "
                f"at lab '{expected_lab}'"
            )

        last_seq, last_timestamp = await SampleRepository(session).history_tail(sample_id)
        timestamp = max(now, last_timestamp) if last_timestamp else now
        for offset, entry in enumerate(entries, start=1):
            session.add(self._history_row(sample_id, last_seq + offset, actor, entry, timestamp))
        await session.flush()

    async def load_document(self, session: AsyncSession, sample_id: str) -> SampleDocument:
        """Read the sample and both ledgers as currently visible to session."""
        sample = await SampleRepository(session).get_with_history(sample_id, refresh=True)
        if sample is None:
            raise SampleNotFound(f"sample {sample_id} not found")
        return sample_document(sample)

    async def publish(
        self,
        document: SampleDocument,
        kind: str,
        action: Optional[Action] = None,
        previous_lab: Optional[str] = None,
    ) -> None:
        """Announce a committed document to live viewers."""
        if self.event_bus is None:
            return
        await self.event_bus.publish(
            SampleCommittedEvent(
                sample_id=document.id,
                lab=document.lab,
                previous_lab=previous_lab,
                status=document.status.value,
                version=document.version,
                kind=kind,
                action=action.value if action else None,
                document=document.model_dump(mode="json"),
            )
        )

    async def record_modification(
        self,
        sample_id: str,
        field_patch: dict[str, Any],
        reason: str,
        editor: Identity,
    ) -> SampleDocument:
        """Apply a justified correction of descriptive fields.

        Args:
            sample_id: Sample to correct
            field_patch: New values keyed by descriptive field name
            reason: Justification; must not be blank
            editor: Acting identity

        Returns:
            The committed sample document

        Raises:
            ReasonRequired: reason is empty or whitespace
            SampleNotFound: No such sample
            Forbidden: Editor may not correct records of the sample's lab
            InvalidModification: Patch names a non-editable field, carries an
                invalid value or changes nothing
            UnknownLab: New lab is not an active registry entry
            DuplicateSampleCode: New code is already taken
            StaleState: The sample was written concurrently
            StoreUnavailable: Commit failed or timed out
        """
        reason = (reason or "").strip()
        if not reason:
            raise ReasonRequired("a corrective edit requires a reason")

        async with self.session_factory() as session:
            repo = SampleRepository(session)
            sample = await repo.get_by_id(sample_id)
            if sample is None:
                raise SampleNotFound(f"sample {sample_id} not found")

            authorize_modification(editor, sample.lab)

            try:
                correction = SampleCorrection.model_validate(field_patch or {})
            except ValidationError as e:
                raise InvalidModification(
                    f"invalid correction: {e.errors()[0]['msg']}"
                ) from e

            patch = correction.patch()
            if "collection_timestamp" in patch:
                patch["collection_timestamp"] = to_naive_utc(patch["collection_timestamp"])

            changed = {
                name: value for name, value in patch.items() if getattr(sample, name) != value
            }
            if not changed:
                raise InvalidModification("correction does not change any field")

            if "lab" in changed:
                if await LabRepository(session).get_active_by_code(changed["lab"]) is None:
                    raise UnknownLab(f"lab '{changed['lab']}' is not in the registry")
                check_lab_scope(editor, changed["lab"])

            if "code" in changed and await repo.code_exists(changed["code"]):
                raise DuplicateSampleCode(f"sample code '{changed['code']}' already exists")

            changes = {
                name: {"old": _jsonable(getattr(sample, name)), "new": _jsonable(value)}
                for name, value in changed.items()
            }
            previous_lab = sample.lab
            expected_version = sample.version

            async def work(s: AsyncSession) -> SampleDocument:
                now = utcnow()
                result = await s.execute(
                    update(Sample)
                    .where(Sample.id == sample_id, Sample.version == expected_version)
                    .values(**changed, version=Sample.version + 1, updated_at=now)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    raise StaleState(f"sample {sample_id} changed while being corrected")

                last_seq = await SampleRepository(s).modification_tail(sample_id)
                s.add(
                    ModificationEntry(
                        sample_id=sample_id,
                        seq=last_seq + 1,
                        reason=reason,
                        editor=editor.display_name,
                        editor_id=editor.user_id,
                        timestamp=now,
                        changes=changes,
                    )
                )
                await s.flush()
                return await self.load_document(s, sample_id)

            document = await self.commit(
                session,
                work,
                operation="modification",
                sample_id=sample_id,
                conflict=DuplicateSampleCode if "code" in changed else StaleState,
            )

        logger.info(
            "modification_recorded",
            sample_id=sample_id,
            editor=editor.user_id,
            fields=sorted(changes),
            version=document.version,
        )
        await self.publish(
            document,
            kind="modification",
            previous_lab=previous_lab if previous_lab != document.lab else None,
        )
        return document
