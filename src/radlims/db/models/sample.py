"""Sample, history ledger and corrective-edit ledger models."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from radlims.core.workflow.errors import AppendOnlyViolation
from radlims.core.workflow.states import Action, SampleStatus
from radlims.db.models.lab import Base
from radlims.utils.time import utcnow


def _new_sample_id() -> str:
    return uuid.uuid4().hex


def _enum_values(enum_cls: type) -> list[str]:
    return [member.value for member in enum_cls]


class Sample(Base):
    """A tracked specimen and its record.

    ``status`` is written only together with a new history entry; descriptive
    fields change afterwards only through the corrective-edit ledger.
    """

    __tablename__ = "sample"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=_new_sample_id)
    code: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    status: Mapped[SampleStatus] = mapped_column(
        Enum(
            SampleStatus,
            native_enum=False,
            length=32,
            values_callable=_enum_values,
            validate_strings=True,
        ),
        nullable=False,
        index=True,
    )
    lab: Mapped[str] = mapped_column(ForeignKey("lab.code"), nullable=False, index=True)

    # Descriptive attributes captured at reception
    item_name: Mapped[str] = mapped_column(String(255), nullable=False)
    sample_type: Mapped[str] = mapped_column(String(16), nullable=False)
    sample_amount: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    collection_location: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    collection_timestamp: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    collector: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    collector_contact: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    collecting_organization: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Latest normalized nuclide result rows
    analysis_results: Mapped[Optional[list[dict[str, Any]]]] = mapped_column(JSON, nullable=True)
    photo_refs: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)

    # Bumped on every committed write
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    # Ledgers are read-only through the relationship; rows are only ever inserted
    history: Mapped[list["HistoryEntry"]] = relationship(
        "HistoryEntry", viewonly=True, order_by="HistoryEntry.seq"
    )
    modification_history: Mapped[list["ModificationEntry"]] = relationship(
        "ModificationEntry", viewonly=True, order_by="ModificationEntry.seq"
    )

    def __repr__(self) -> str:
        return (
            f"<Sample(id={self.id}, code='{self.code}', lab='{self.lab}', "
            f"status={self.status.value if self.status else None}, version={self.version})>"
        )


class HistoryEntry(Base):
    """One immutable fact about what happened to a sample."""

    __tablename__ = "sample_history"
    __table_args__ = (UniqueConstraint("sample_id", "seq", name="uq_sample_history_seq"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    sample_id: Mapped[str] = mapped_column(ForeignKey("sample.id"), nullable=False, index=True)
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    action: Mapped[Action] = mapped_column(
        Enum(
            Action,
            native_enum=False,
            length=32,
            values_callable=_enum_values,
            validate_strings=True,
        ),
        nullable=False,
    )

    actor: Mapped[str] = mapped_column(String(255), nullable=False)
    actor_id: Mapped[str] = mapped_column(String(64), nullable=False)
    actor_role: Mapped[str] = mapped_column(String(32), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    location_lat: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    location_lon: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    signature_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    signature_timestamp: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    details: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict, nullable=False)
    photo_refs: Mapped[list[str]] = mapped_column(JSON, default=list, nullable=False)

    @property
    def location(self) -> Optional[dict[str, float]]:
        if self.location_lat is None or self.location_lon is None:
            return None
        return {"lat": self.location_lat, "lon": self.location_lon}

    @property
    def signature(self) -> Optional[dict[str, str]]:
        if self.signature_name is None:
            return None
        return {
            "name": self.signature_name,
            "formatted_timestamp": self.signature_timestamp or "",
        }

    def __repr__(self) -> str:
        return (
            f"<HistoryEntry(sample_id={self.sample_id}, seq={self.seq}, "
            f"action={self.action.value if self.action else None}, actor='{self.actor}')>"
        )


class ModificationEntry(Base):
    """Justified correction of already-recorded descriptive fields.

    ``changes`` maps each corrected field to its previous and new value.
    """

    __tablename__ = "sample_modification"
    __table_args__ = (UniqueConstraint("sample_id", "seq", name="uq_sample_modification_seq"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    sample_id: Mapped[str] = mapped_column(ForeignKey("sample.id"), nullable=False, index=True)
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    editor: Mapped[str] = mapped_column(String(255), nullable=False)
    editor_id: Mapped[str] = mapped_column(String(64), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    changes: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)

    def __repr__(self) -> str:
        return (
            f"<ModificationEntry(sample_id={self.sample_id}, seq={self.seq}, "
            f"editor='{self.editor}')>"
        )


@event.listens_for(HistoryEntry, "before_update")
@event.listens_for(ModificationEntry, "before_update")
def _refuse_ledger_update(mapper, connection, target) -> None:
    raise AppendOnlyViolation(
        f"{type(target).__name__} rows are append-only and cannot be updated"
    )


@event.listens_for(HistoryEntry, "before_delete")
@event.listens_for(ModificationEntry, "before_delete")
def _refuse_ledger_delete(mapper, connection, target) -> None:
    raise AppendOnlyViolation(
        f"{type(target).__name__} rows are append-only and cannot be deleted"
    )
