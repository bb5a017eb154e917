"""Workflow error taxonomy.

Every failure of the workflow core is reported to the initiating caller as one
of these exceptions. ``code`` is a stable machine-readable identifier that the
HTTP layer returns alongside the message.
"""


class WorkflowError(Exception):
    """Base class for workflow failures."""

    code: str = "workflow_error"
    retryable: bool = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InvalidTransition(WorkflowError):
    """Action is not legal from the sample's current status."""

    code = "invalid_transition"


class Forbidden(WorkflowError):
    """Actor's role or lab assignment does not permit the action."""

    code = "forbidden"


class StaleState(WorkflowError):
    """Another actor advanced or edited the sample first.

    The caller must re-read the sample and may retry.
    """

    code = "stale_state"
    retryable = True


class ReasonRequired(WorkflowError):
    """Corrective edit submitted without a justification."""

    code = "reason_required"


class InvalidModification(WorkflowError):
    """Corrective edit targets a non-editable field or carries bad values."""

    code = "invalid_modification"


class StoreUnavailable(WorkflowError):
    """Transient store failure or commit timeout; safe to retry with backoff."""

    code = "store_unavailable"
    retryable = True


class SampleNotFound(WorkflowError):
    """No sample with the requested identifier."""

    code = "sample_not_found"


class UnknownLab(WorkflowError):
    """Lab is not in the inspection office registry (or is inactive)."""

    code = "unknown_lab"


class DuplicateSampleCode(WorkflowError):
    """Sample code is already taken."""

    code = "duplicate_sample_code"


class InvalidPayload(WorkflowError):
    """Action details do not match the action's payload model."""

    code = "invalid_payload"


class AppendOnlyViolation(RuntimeError):
    """Attempt to update or delete a committed ledger entry.

    Raised by the ORM guard; indicates a programming error, not a user error.
    """
