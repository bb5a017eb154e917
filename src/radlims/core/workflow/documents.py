"""Read models for committed samples.

History entries are exposed as a closed tagged union keyed by ``action``;
each variant carries only the details model of its action.
"""

from datetime import datetime
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from radlims.core.workflow.payloads import (
    AnalysisDoneDetails,
    AnalysisStartDetails,
    ClassificationDetails,
    EvaluationDetails,
    GeoLocation,
    PrepDoneDetails,
    PrepStartDetails,
    ReceiptDetails,
    ReceptionDetails,
    ResultRow,
    ResultsSavedDetails,
    Signature,
    SignoffDetails,
    TechReviewDetails,
)
from radlims.core.workflow.states import Action, SampleStatus, display_step


class _EntryBase(BaseModel):
    seq: int
    actor: str
    actor_id: str
    actor_role: str
    timestamp: datetime
    location: Optional[GeoLocation] = None
    signature: Optional[Signature] = None
    photo_refs: list[str] = Field(default_factory=list)


class ReceptionEntry(_EntryBase):
    action: Literal["reception"]
    details: ReceptionDetails


class ReceiptEntry(_EntryBase):
    action: Literal["receipt"]
    details: ReceiptDetails


class ClassificationEntry(_EntryBase):
    action: Literal["classification"]
    details: ClassificationDetails


class PrepStartEntry(_EntryBase):
    action: Literal["prep_start"]
    details: PrepStartDetails


class PrepDoneEntry(_EntryBase):
    action: Literal["prep_done"]
    details: PrepDoneDetails


class AnalysisStartEntry(_EntryBase):
    action: Literal["analysis_start"]
    details: AnalysisStartDetails


class AnalysisDoneEntry(_EntryBase):
    action: Literal["analysis_done"]
    details: AnalysisDoneDetails


class ResultsSavedEntry(_EntryBase):
    action: Literal["results_saved"]
    details: ResultsSavedDetails


class EvaluationEntry(_EntryBase):
    action: Literal["evaluation"]
    details: EvaluationDetails


class TechReviewEntry(_EntryBase):
    action: Literal["tech_review"]
    details: TechReviewDetails


class SignoffEntry(_EntryBase):
    action: Literal["signoff"]
    details: SignoffDetails


HistoryEntryDocument = Annotated[
    Union[
        ReceptionEntry,
        ReceiptEntry,
        ClassificationEntry,
        PrepStartEntry,
        PrepDoneEntry,
        AnalysisStartEntry,
        AnalysisDoneEntry,
        ResultsSavedEntry,
        EvaluationEntry,
        TechReviewEntry,
        SignoffEntry,
    ],
    Field(discriminator="action"),
]

_history_adapter: TypeAdapter[HistoryEntryDocument] = TypeAdapter(HistoryEntryDocument)


class FieldChange(BaseModel):
    old: Any = None
    new: Any = None


class ModificationDocument(BaseModel):
    seq: int
    reason: str
    editor: str
    editor_id: str
    timestamp: datetime
    changes: dict[str, FieldChange]


class StepDocument(BaseModel):
    """Step-queue position, derived from status only."""

    index: int
    label: str
    next_action: Optional[Action] = None
    is_terminal: bool


class SampleSummaryDocument(BaseModel):
    """A sample without its ledgers."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    code: str
    status: SampleStatus
    lab: str
    item_name: str
    sample_type: str
    sample_amount: Optional[str] = None
    collection_location: Optional[str] = None
    collection_timestamp: Optional[datetime] = None
    collector: Optional[str] = None
    collector_contact: Optional[str] = None
    collecting_organization: Optional[str] = None
    notes: Optional[str] = None
    analysis_results: Optional[list[ResultRow]] = None
    photo_refs: list[str] = Field(default_factory=list)
    version: int
    created_at: datetime
    updated_at: datetime
    step: StepDocument


class SampleDocument(SampleSummaryDocument):
    """A committed sample with both ledgers in commit order."""

    history: list[HistoryEntryDocument] = Field(default_factory=list)
    modification_history: list[ModificationDocument] = Field(default_factory=list)


def history_entry_document(entry) -> HistoryEntryDocument:
    """Build the tagged history variant for an ORM history row."""
    return _history_adapter.validate_python(
        {
            "seq": entry.seq,
            "action": Action(entry.action).value,
            "actor": entry.actor,
            "actor_id": entry.actor_id,
            "actor_role": entry.actor_role,
            "timestamp": entry.timestamp,
            "location": entry.location,
            "signature": entry.signature,
            "photo_refs": list(entry.photo_refs or []),
            "details": dict(entry.details or {}),
        }
    )


def modification_document(entry) -> ModificationDocument:
    return ModificationDocument(
        seq=entry.seq,
        reason=entry.reason,
        editor=entry.editor,
        editor_id=entry.editor_id,
        timestamp=entry.timestamp,
        changes=entry.changes,
    )


def step_document(status: SampleStatus) -> StepDocument:
    step = display_step(status)
    return StepDocument(
        index=step.index,
        label=step.label,
        next_action=step.next_action,
        is_terminal=step.is_terminal,
    )


def _summary_fields(sample) -> dict[str, Any]:
    return {
        "id": sample.id,
        "code": sample.code,
        "status": sample.status,
        "lab": sample.lab,
        "item_name": sample.item_name,
        "sample_type": sample.sample_type,
        "sample_amount": sample.sample_amount,
        "collection_location": sample.collection_location,
        "collection_timestamp": sample.collection_timestamp,
        "collector": sample.collector,
        "collector_contact": sample.collector_contact,
        "collecting_organization": sample.collecting_organization,
        "notes": sample.notes,
        "analysis_results": sample.analysis_results,
        "photo_refs": list(sample.photo_refs or []),
        "version": sample.version,
        "created_at": sample.created_at,
        "updated_at": sample.updated_at,
        "step": step_document(sample.status),
    }


def sample_summary(sample) -> SampleSummaryDocument:
    """Summary document for a sample row (ledgers are not touched)."""
    return SampleSummaryDocument.model_validate(_summary_fields(sample))


def sample_document(sample) -> SampleDocument:
    """Full document for a sample loaded with both ledgers."""
    return SampleDocument.model_validate(
        {
            **_summary_fields(sample),
            "history": [history_entry_document(e) for e in sample.history],
            "modification_history": [
                modification_document(m) for m in sample.modification_history
            ],
        }
    )
