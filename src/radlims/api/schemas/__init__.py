"""Pydantic schemas for the RadLIMS REST API."""

from radlims.api.schemas.common import ErrorResponse, PaginatedResponse
from radlims.api.schemas.lab import LabResponse
from radlims.api.schemas.sample import (
    CorrectionRequest,
    HistoryEntryResponse,
    LabStatusCounts,
    ModificationResponse,
    PrepDoneRequest,
    ResultsRequest,
    SampleCreate,
    SampleResponse,
    SampleSummaryResponse,
    TransitionRequest,
)

__all__ = [
    # Common
    "ErrorResponse",
    "PaginatedResponse",
    # Lab
    "LabResponse",
    # Sample
    "SampleCreate",
    "SampleResponse",
    "SampleSummaryResponse",
    "TransitionRequest",
    "PrepDoneRequest",
    "ResultsRequest",
    "CorrectionRequest",
    "HistoryEntryResponse",
    "ModificationResponse",
    "LabStatusCounts",
]
