"""Sample lifecycle workflow: states, transition guard and error taxonomy.

The engine and audit ledger depend on the database layer and are imported
from their own modules (``radlims.core.workflow.engine``,
``radlims.core.workflow.ledger``).
"""

from .errors import (
    AppendOnlyViolation,
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
from .guards import (
    LAB_ROLES,
    authorize_modification,
    authorize_reception,
    authorize_transition,
    evaluate,
)
from .states import (
    LIFECYCLE,
    Action,
    SampleStatus,
    derive_status,
    display_step,
    next_action,
)

__all__ = [
    # States
    "Action",
    "SampleStatus",
    "LIFECYCLE",
    "derive_status",
    "display_step",
    "next_action",
    # Guard
    "LAB_ROLES",
    "evaluate",
    "authorize_reception",
    "authorize_transition",
    "authorize_modification",
    # Errors
    "WorkflowError",
    "InvalidTransition",
    "Forbidden",
    "StaleState",
    "ReasonRequired",
    "InvalidModification",
    "InvalidPayload",
    "StoreUnavailable",
    "SampleNotFound",
    "UnknownLab",
    "DuplicateSampleCode",
    "AppendOnlyViolation",
]
