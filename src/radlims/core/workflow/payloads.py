"""Typed payloads carried by history entries.

Each action has exactly one details model; details that do not match the
action's model are rejected before the store is touched.
"""

import re
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from radlims.core.workflow.states import Action


class GeoLocation(BaseModel):
    """Device position at the time of the action (best effort)."""

    lat: float = Field(..., ge=-90.0, le=90.0)
    lon: float = Field(..., ge=-180.0, le=180.0)


class Signature(BaseModel):
    """Explicit sign-off, distinct from the entry's commit timestamp."""

    name: str = Field(..., min_length=1, max_length=255)
    formatted_timestamp: str = Field(..., min_length=1, max_length=32)


class ResultRow(BaseModel):
    """One nuclide measurement.

    When ``below_detection_limit`` is set, ``concentration`` is the
    less-than value and ``uncertainty`` does not apply.
    """

    nuclide: str = Field(..., min_length=1, max_length=32)
    below_detection_limit: bool = False
    concentration: Optional[float] = None
    uncertainty: Optional[float] = Field(None, ge=0)

    @field_validator("nuclide")
    @classmethod
    def strip_nuclide(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("nuclide must not be blank")
        return value


class ActionDetails(BaseModel):
    """Base of the per-action details models; unknown keys are rejected."""

    model_config = ConfigDict(extra="forbid")


class ReceptionDetails(ActionDetails):
    pass


class ReceiptDetails(ActionDetails):
    received_condition: Optional[str] = Field(None, max_length=255)
    received_amount: Optional[str] = Field(None, max_length=64)


class AnalysisClassification(BaseModel):
    analysis_type: str = Field(..., min_length=1, max_length=32)
    quantity: int = Field(1, ge=1, le=99)


class ClassificationDetails(ActionDetails):
    classifications: list[AnalysisClassification] = Field(..., min_length=1)


class PrepStartDetails(ActionDetails):
    method: Optional[str] = Field(None, max_length=255)
    started_at: Optional[datetime] = None


class PrepDoneDetails(ActionDetails):
    prepared_weight: float = Field(..., gt=0)
    weight_unit: str = Field("g", min_length=1, max_length=8)
    finished_at: Optional[datetime] = None


class AnalysisStartDetails(ActionDetails):
    equipment_id: str = Field(..., min_length=1, max_length=64)
    equipment_name: Optional[str] = Field(None, max_length=255)
    started_at: Optional[datetime] = None


class AnalysisDoneDetails(ActionDetails):
    finished_at: Optional[datetime] = None
    results: Optional[list[ResultRow]] = None


class ResultsSavedDetails(ActionDetails):
    results: list[ResultRow] = Field(..., min_length=1)


class EvaluationDetails(ActionDetails):
    summary: Optional[str] = Field(None, max_length=2000)
    results: Optional[list[ResultRow]] = None


class TechReviewDetails(ActionDetails):
    comment: Optional[str] = Field(None, max_length=2000)


class SignoffDetails(ActionDetails):
    comment: Optional[str] = Field(None, max_length=2000)


DETAILS_MODELS: dict[Action, type[ActionDetails]] = {
    Action.RECEPTION: ReceptionDetails,
    Action.RECEIPT: ReceiptDetails,
    Action.CLASSIFICATION: ClassificationDetails,
    Action.PREP_START: PrepStartDetails,
    Action.PREP_DONE: PrepDoneDetails,
    Action.ANALYSIS_START: AnalysisStartDetails,
    Action.ANALYSIS_DONE: AnalysisDoneDetails,
    Action.RESULTS_SAVED: ResultsSavedDetails,
    Action.EVALUATION: EvaluationDetails,
    Action.TECH_REVIEW: TechReviewDetails,
    Action.SIGNOFF: SignoffDetails,
}


def parse_details(action: Action, raw: Optional[dict]) -> ActionDetails:
    """Validate raw details against the action's model.

    Raises:
        pydantic.ValidationError: If the details do not fit the action
    """
    return DETAILS_MODELS[action].model_validate(raw or {})


class TransitionPayload(BaseModel):
    """Everything a caller may attach to a history entry."""

    location: Optional[GeoLocation] = None
    signature: Optional[Signature] = None
    details: dict = Field(default_factory=dict)
    photo_refs: list[str] = Field(default_factory=list, max_length=20)


SAMPLE_TYPE_PATTERN = re.compile(r"^[A-Za-z0-9]{1,16}$")


def _clean_sample_type(value: str) -> str:
    value = value.strip()
    if not SAMPLE_TYPE_PATTERN.match(value):
        raise ValueError("sample_type must be 1-16 letters or digits")
    return value.upper()


def _clean_code(value: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError("code must not be blank")
    return value


class SampleIntake(BaseModel):
    """Descriptive fields captured when a sample is received.

    ``code`` is optional; when omitted the system generates one.
    """

    lab: str = Field(..., min_length=1, max_length=32)
    sample_type: str = Field(..., min_length=1, max_length=16)
    item_name: str = Field(..., min_length=1, max_length=255)
    code: Optional[str] = Field(None, max_length=64)
    sample_amount: Optional[str] = Field(None, max_length=64)
    collection_location: Optional[str] = Field(None, max_length=255)
    collection_timestamp: Optional[datetime] = None
    collector: Optional[str] = Field(None, max_length=255)
    collector_contact: Optional[str] = Field(None, max_length=64)
    collecting_organization: Optional[str] = Field(None, max_length=255)
    notes: Optional[str] = None

    @field_validator("sample_type")
    @classmethod
    def validate_sample_type(cls, value: str) -> str:
        return _clean_sample_type(value)

    @field_validator("code")
    @classmethod
    def validate_code(cls, value: Optional[str]) -> Optional[str]:
        return None if value is None else _clean_code(value)

    @field_validator("item_name")
    @classmethod
    def strip_item_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("item_name must not be blank")
        return value


# Descriptive fields a corrective edit may change
CORRECTABLE_FIELDS: tuple[str, ...] = (
    "code",
    "lab",
    "item_name",
    "sample_type",
    "sample_amount",
    "collection_location",
    "collection_timestamp",
    "collector",
    "collector_contact",
    "collecting_organization",
    "notes",
)

_REQUIRED_FIELDS = frozenset({"code", "lab", "item_name", "sample_type"})


class SampleCorrection(BaseModel):
    """Patch of descriptive fields for a corrective edit.

    Only the keys present in the patch are applied; unknown keys (including
    ``status`` and ``history``) are rejected.
    """

    model_config = ConfigDict(extra="forbid")

    code: Optional[str] = Field(None, max_length=64)
    lab: Optional[str] = Field(None, min_length=1, max_length=32)
    item_name: Optional[str] = Field(None, min_length=1, max_length=255)
    sample_type: Optional[str] = Field(None, max_length=16)
    sample_amount: Optional[str] = Field(None, max_length=64)
    collection_location: Optional[str] = Field(None, max_length=255)
    collection_timestamp: Optional[datetime] = None
    collector: Optional[str] = Field(None, max_length=255)
    collector_contact: Optional[str] = Field(None, max_length=64)
    collecting_organization: Optional[str] = Field(None, max_length=255)
    notes: Optional[str] = None

    @field_validator("sample_type")
    @classmethod
    def validate_sample_type(cls, value: Optional[str]) -> Optional[str]:
        return None if value is None else _clean_sample_type(value)

    @field_validator("code")
    @classmethod
    def validate_code(cls, value: Optional[str]) -> Optional[str]:
        return None if value is None else _clean_code(value)

    @model_validator(mode="after")
    def check_required_not_cleared(self) -> "SampleCorrection":
        for name in _REQUIRED_FIELDS & self.model_fields_set:
            if getattr(self, name) is None:
                raise ValueError(f"{name} cannot be cleared")
        return self

    def patch(self) -> dict[str, Any]:
        """Only the fields the caller actually sent."""
        return {
            name: getattr(self, name)
            for name in CORRECTABLE_FIELDS
            if name in self.model_fields_set
        }
