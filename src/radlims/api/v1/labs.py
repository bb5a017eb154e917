"""Inspection office registry endpoints."""

from fastapi import APIRouter, Depends, Query

from radlims.api.deps import get_current_identity, get_lab_repo
from radlims.api.schemas.lab import LabResponse
from radlims.core.auth.identity import Identity
from radlims.db.repositories.lab import LabRepository

router = APIRouter(prefix="/api/v1/labs", tags=["labs"])


@router.get("", response_model=list[LabResponse])
async def list_labs(
    active_only: bool = Query(True, description="Only labs accepting samples"),
    identity: Identity = Depends(get_current_identity),
    repo: LabRepository = Depends(get_lab_repo),
) -> list[LabResponse]:
    """List the lab registry."""
    labs = await repo.list_all(active_only=active_only)
    return [LabResponse.model_validate(lab) for lab in labs]
