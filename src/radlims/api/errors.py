"""HTTP rendering of workflow errors."""

import structlog
from fastapi import Request, status
from fastapi.responses import JSONResponse

from radlims.api.schemas.common import ErrorResponse
from radlims.core.workflow.errors import (
    DuplicateSampleCode,
    Forbidden,
    InvalidModification,
    InvalidPayload,
    InvalidTransition,
    ReasonRequired,
    SampleNotFound,
    StaleState,
    StoreUnavailable,
    UnknownLab,
    WorkflowError,
)

logger = structlog.get_logger(__name__)

WORKFLOW_ERROR_STATUS: dict[type[WorkflowError], int] = {
    InvalidTransition: status.HTTP_409_CONFLICT,
    StaleState: status.HTTP_409_CONFLICT,
    DuplicateSampleCode: status.HTTP_409_CONFLICT,
    Forbidden: status.HTTP_403_FORBIDDEN,
    ReasonRequired: 422,
    InvalidModification: 422,
    InvalidPayload: 422,
    StoreUnavailable: status.HTTP_503_SERVICE_UNAVAILABLE,
    SampleNotFound: status.HTTP_404_NOT_FOUND,
    UnknownLab: status.HTTP_400_BAD_REQUEST,
}


def status_for(exc: WorkflowError) -> int:
    for error_type in type(exc).__mro__:
        if error_type in WORKFLOW_ERROR_STATUS:
            return WORKFLOW_ERROR_STATUS[error_type]
    return status.HTTP_400_BAD_REQUEST


async def workflow_error_handler(request: Request, exc: WorkflowError) -> JSONResponse:
    """Render a workflow error as ErrorResponse."""
    status_code = status_for(exc)
    logger.info(
        "workflow_error",
        path=request.url.path,
        code=exc.code,
        status_code=status_code,
        detail=exc.message,
    )
    headers = {"Retry-After": "1"} if isinstance(exc, StoreUnavailable) else None
    body = ErrorResponse(detail=exc.message, code=exc.code, retryable=exc.retryable)
    return JSONResponse(status_code=status_code, content=body.model_dump(), headers=headers)
