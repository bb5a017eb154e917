"""Sample REST endpoints for RadLIMS.

Reception, lifecycle transitions, ledger-only records, corrective edits and
lab-scoped reads. Every mutation goes through the workflow engine or the
audit ledger; workflow errors are rendered by the application's
WorkflowError handler.
"""

from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Query, status

from radlims.api.deps import (
    get_audit_ledger,
    get_current_identity,
    get_sample_repo,
    get_workflow_engine,
    visible_labs,
)
from radlims.api.schemas.common import PaginatedResponse
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
from radlims.core.auth.identity import Identity
from radlims.core.workflow.documents import (
    history_entry_document,
    modification_document,
    sample_document,
    sample_summary,
)
from radlims.core.workflow.engine import WorkflowEngine
from radlims.core.workflow.errors import SampleNotFound
from radlims.core.workflow.guards import check_lab_scope
from radlims.core.workflow.ledger import AuditLedger
from radlims.core.workflow.states import LIFECYCLE, SampleStatus
from radlims.db.models.sample import Sample
from radlims.db.repositories.sample import SampleRepository

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/samples", tags=["samples"])


async def _load_visible(
    sample_id: str, identity: Identity, repo: SampleRepository
) -> Sample:
    sample = await repo.get_with_history(sample_id)
    if sample is None:
        raise SampleNotFound(f"sample {sample_id} not found")
    check_lab_scope(identity, sample.lab)
    return sample


@router.post("", response_model=SampleResponse, status_code=status.HTTP_201_CREATED)
async def receive_sample(
    data: SampleCreate,
    identity: Identity = Depends(get_current_identity),
    engine: WorkflowEngine = Depends(get_workflow_engine),
) -> SampleResponse:
    """Receive a new sample (Reception).

    The code is generated from the sample type and the reception date
    unless one is supplied.
    """
    return await engine.create_sample(identity, data.to_intake(), data.to_payload())


@router.get("", response_model=PaginatedResponse[SampleSummaryResponse])
async def list_samples(
    lab: Optional[str] = Query(None, description="Restrict to one lab"),
    sample_status: Optional[SampleStatus] = Query(None, alias="status"),
    offset: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    identity: Identity = Depends(get_current_identity),
    repo: SampleRepository = Depends(get_sample_repo),
) -> PaginatedResponse[SampleSummaryResponse]:
    """List the samples of the caller's labs, newest first."""
    labs = visible_labs(identity)
    if lab is not None:
        check_lab_scope(identity, lab)
        labs = frozenset({lab})

    samples = await repo.list_by_labs(labs, status=sample_status, offset=offset, limit=limit)
    total = await repo.count_by_labs(labs, status=sample_status)
    return PaginatedResponse[SampleSummaryResponse](
        items=[sample_summary(sample) for sample in samples],
        total=total,
        offset=offset,
        limit=limit,
    )


@router.get("/summary", response_model=list[LabStatusCounts])
async def sample_summary_counts(
    identity: Identity = Depends(get_current_identity),
    repo: SampleRepository = Depends(get_sample_repo),
) -> list[LabStatusCounts]:
    """Per-lab sample counts by status for the dashboard."""
    labs = visible_labs(identity)
    counts = await repo.status_counts(labs)
    lab_codes = sorted(counts) if labs is None else sorted(labs)

    summary = []
    for code in lab_codes:
        lab_counts = counts.get(code, {})
        by_status = {s.value: lab_counts.get(s, 0) for s in LIFECYCLE}
        summary.append(
            LabStatusCounts(lab=code, total=sum(by_status.values()), counts=by_status)
        )
    return summary


@router.get("/{sample_id}", response_model=SampleResponse)
async def get_sample(
    sample_id: str,
    identity: Identity = Depends(get_current_identity),
    repo: SampleRepository = Depends(get_sample_repo),
) -> SampleResponse:
    """Get a sample with its history and corrective edits."""
    sample = await _load_visible(sample_id, identity, repo)
    return sample_document(sample)


@router.post("/{sample_id}/transitions", response_model=SampleResponse)
async def request_transition(
    sample_id: str,
    data: TransitionRequest,
    identity: Identity = Depends(get_current_identity),
    engine: WorkflowEngine = Depends(get_workflow_engine),
) -> SampleResponse:
    """Advance a sample by one lifecycle step.

    Returns 409 ``stale_state`` when another actor advanced the sample first;
    re-read the sample before retrying.
    """
    return await engine.request_transition(
        sample_id, data.action, identity, data.to_payload()
    )


@router.post("/{sample_id}/prep-done", response_model=SampleResponse)
async def record_prep_done(
    sample_id: str,
    data: PrepDoneRequest,
    identity: Identity = Depends(get_current_identity),
    engine: WorkflowEngine = Depends(get_workflow_engine),
) -> SampleResponse:
    """Record finished pre-treatment (prepared weight) while awaiting analysis."""
    return await engine.record_prep_done(sample_id, identity, data)


@router.post("/{sample_id}/results", response_model=SampleResponse)
async def save_results(
    sample_id: str,
    data: ResultsRequest,
    identity: Identity = Depends(get_current_identity),
    engine: WorkflowEngine = Depends(get_workflow_engine),
) -> SampleResponse:
    """Save a nuclide result set for a sample whose analysis is done."""
    return await engine.save_results(sample_id, identity, data.results, data.to_payload())


@router.patch("/{sample_id}", response_model=SampleResponse)
async def correct_sample(
    sample_id: str,
    data: CorrectionRequest,
    identity: Identity = Depends(get_current_identity),
    ledger: AuditLedger = Depends(get_audit_ledger),
) -> SampleResponse:
    """Correct descriptive fields of a sample.

    A non-blank ``reason`` is required; the edit is recorded with the
    previous and new value of every changed field.
    """
    return await ledger.record_modification(sample_id, data.changes, data.reason, identity)


@router.get("/{sample_id}/history", response_model=list[HistoryEntryResponse])
async def get_sample_history(
    sample_id: str,
    identity: Identity = Depends(get_current_identity),
    repo: SampleRepository = Depends(get_sample_repo),
) -> list[HistoryEntryResponse]:
    """History entries of a sample in commit order."""
    sample = await _load_visible(sample_id, identity, repo)
    return [history_entry_document(entry) for entry in sample.history]


@router.get("/{sample_id}/modifications", response_model=list[ModificationResponse])
async def get_sample_modifications(
    sample_id: str,
    identity: Identity = Depends(get_current_identity),
    repo: SampleRepository = Depends(get_sample_repo),
) -> list[ModificationResponse]:
    """Corrective edits of a sample in commit order."""
    sample = await _load_visible(sample_id, identity, repo)
    return [modification_document(entry) for entry in sample.modification_history]
