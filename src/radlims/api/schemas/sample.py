"""Pydantic schemas for sample endpoints."""

from typing import Any, Optional

from pydantic import BaseModel, Field

from radlims.core.workflow.documents import (
    HistoryEntryDocument,
    ModificationDocument,
    SampleDocument,
    SampleSummaryDocument,
)
from radlims.core.workflow.payloads import (
    GeoLocation,
    ResultRow,
    SampleIntake,
    Signature,
    TransitionPayload,
)
from radlims.core.workflow.states import Action

# Response models are the committed read documents
SampleResponse = SampleDocument
SampleSummaryResponse = SampleSummaryDocument
HistoryEntryResponse = HistoryEntryDocument
ModificationResponse = ModificationDocument


class SampleCreate(SampleIntake):
    """Schema for receiving a new sample.

    Attributes:
        location: Device position of the receiving actor, if available
        signature: Optional sign-off of the receiving actor
        photo_refs: Attachment references from the upload service
    """

    location: Optional[GeoLocation] = None
    signature: Optional[Signature] = None
    photo_refs: list[str] = Field(default_factory=list, max_length=20)

    def to_intake(self) -> SampleIntake:
        return SampleIntake.model_validate(
            self.model_dump(include=set(SampleIntake.model_fields))
        )

    def to_payload(self) -> TransitionPayload:
        return TransitionPayload(
            location=self.location,
            signature=self.signature,
            photo_refs=self.photo_refs,
        )


class TransitionRequest(TransitionPayload):
    """Schema for advancing a sample by one step.

    ``details`` must match the action (see the per-action details models).
    """

    action: Action

    def to_payload(self) -> TransitionPayload:
        return TransitionPayload.model_validate(
            self.model_dump(include=set(TransitionPayload.model_fields))
        )


class PrepDoneRequest(TransitionPayload):
    """Schema for recording finished pre-treatment.

    ``details`` carries ``prepared_weight`` and optionally ``weight_unit``
    and ``finished_at``.
    """


class ResultsRequest(BaseModel):
    """Schema for saving a nuclide result set."""

    results: list[ResultRow] = Field(..., min_length=1)
    location: Optional[GeoLocation] = None
    signature: Optional[Signature] = None
    photo_refs: list[str] = Field(default_factory=list, max_length=20)

    def to_payload(self) -> TransitionPayload:
        return TransitionPayload(
            location=self.location,
            signature=self.signature,
            photo_refs=self.photo_refs,
        )


class CorrectionRequest(BaseModel):
    """Schema for a corrective edit of descriptive fields.

    Attributes:
        changes: New values keyed by field name
        reason: Justification recorded with the edit (required, non-blank)
    """

    changes: dict[str, Any]
    reason: str = ""


class LabStatusCounts(BaseModel):
    """Dashboard counts of one lab."""

    lab: str
    total: int
    counts: dict[str, int]
