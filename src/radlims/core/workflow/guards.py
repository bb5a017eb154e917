"""Transition guard: the sole authorization gate for sample mutations.

``evaluate`` is the pure ``(status, action, role) -> allow/deny`` decision.
``authorize_transition`` runs the same checks plus the lab scope of the acting
identity and raises the matching workflow error; ``authorize_modification``
does the same for corrective edits.
"""

from dataclasses import dataclass
from typing import Optional

from radlims.core.auth.identity import Identity, Role
from radlims.core.workflow.errors import (
    Forbidden,
    InvalidTransition,
    StaleState,
    WorkflowError,
)
from radlims.core.workflow.states import (
    Action,
    SampleStatus,
    TransitionRule,
    get_rule,
    status_index,
)

LAB_ROLES: frozenset[Role] = frozenset(
    {
        Role.analyst,
        Role.analyst_assistant,
        Role.technical_lead,
        Role.association_admin,
        Role.super_admin,
    }
)

REVIEW_ROLES: frozenset[Role] = frozenset(
    {Role.technical_lead, Role.association_admin, Role.super_admin}
)

SIGNOFF_ROLES: frozenset[Role] = frozenset({Role.association_admin, Role.super_admin})

ACTION_ROLES: dict[Action, frozenset[Role]] = {
    Action.RECEPTION: frozenset(Role),
    Action.RECEIPT: LAB_ROLES,
    Action.CLASSIFICATION: LAB_ROLES,
    Action.PREP_START: LAB_ROLES,
    Action.PREP_DONE: LAB_ROLES,
    Action.ANALYSIS_START: LAB_ROLES,
    Action.ANALYSIS_DONE: LAB_ROLES,
    Action.RESULTS_SAVED: LAB_ROLES,
    Action.EVALUATION: LAB_ROLES,
    Action.TECH_REVIEW: REVIEW_ROLES,
    Action.SIGNOFF: SIGNOFF_ROLES,
}

# Corrective edits of already-recorded descriptive fields
MODIFICATION_ROLES: frozenset[Role] = REVIEW_ROLES


@dataclass(frozen=True)
class GuardDecision:
    """Outcome of a guard evaluation."""

    allowed: bool
    reason: Optional[str] = None


def is_permitted(action: Action, role: Role) -> bool:
    """Whether role is in the static role set for action."""
    return role in ACTION_ROLES.get(action, frozenset())


def _check_action_kind(action: Action, in_place: bool) -> TransitionRule:
    rule = get_rule(action)
    if rule.source is None:
        raise InvalidTransition(
            "reception creates a sample and cannot be requested as a transition"
        )
    if rule.advances == in_place:
        kind = "an advancing action" if rule.advances else "a ledger-only action"
        raise InvalidTransition(f"'{action.value}' is {kind} and cannot be requested here")
    return rule


def _check_role(action: Action, role: Role) -> None:
    if not is_permitted(action, role):
        raise Forbidden(f"role '{role.value}' may not perform '{action.value}'")


def _check_source_status(rule: TransitionRule, action: Action, status: SampleStatus) -> None:
    if status == rule.source:
        return
    if status_index(status) < status_index(rule.source):
        raise InvalidTransition(f"'{action.value}' is not legal from status '{status.value}'")
    raise StaleState(
        f"sample already advanced to '{status.value}'; '{action.value}' "
        f"expected '{rule.source.value}'"
    )


def evaluate(
    status: SampleStatus, action: Action, role: Role, in_place: bool = False
) -> GuardDecision:
    """Pure allow/deny decision for performing action from status as role.

    Runs the same checks as :func:`authorize_transition` except lab scope;
    ``in_place`` selects ledger-only actions as there.
    """
    try:
        rule = _check_action_kind(action, in_place)
        _check_role(action, role)
        _check_source_status(rule, action, status)
    except WorkflowError as e:
        return GuardDecision(False, e.message)
    return GuardDecision(True)


def check_lab_scope(identity: Identity, lab: str) -> None:
    """Raise Forbidden unless identity may act on samples of lab."""
    if not identity.can_access_lab(lab):
        raise Forbidden(f"user '{identity.user_id}' is not assigned to lab '{lab}'")


def authorize_reception(identity: Identity, lab: str) -> TransitionRule:
    """Authorize creating a sample at lab."""
    if not is_permitted(Action.RECEPTION, identity.role):
        raise Forbidden(f"role '{identity.role.value}' may not receive samples")
    check_lab_scope(identity, lab)
    return get_rule(Action.RECEPTION)


def authorize_transition(
    status: SampleStatus,
    lab: str,
    action: Action,
    identity: Identity,
    in_place: bool = False,
) -> TransitionRule:
    """Authorize action on a sample currently in status and owned by lab.

    Checks run in this order: action kind, role, lab scope, source status.
    ``in_place`` selects the ledger-only actions (PrepDone, ResultsSaved)
    instead of the advancing ones.
    A sample that already moved past the action's source status was advanced
    by someone else, so that case is reported as StaleState rather than
    InvalidTransition.

    Returns:
        The transition table row to commit.

    Raises:
        InvalidTransition: Reception requested as a transition, an action of
            the other kind than in_place selects, or the sample
            has not reached the action's source status yet
        Forbidden: Role or lab assignment insufficient
        StaleState: Sample is already past the action's source status
    """
    rule = _check_action_kind(action, in_place)
    _check_role(action, identity.role)
    check_lab_scope(identity, lab)
    _check_source_status(rule, action, status)
    return rule


def authorize_modification(identity: Identity, lab: str) -> None:
    """Authorize a corrective edit on a sample owned by lab."""
    if identity.role not in MODIFICATION_ROLES:
        raise Forbidden(f"role '{identity.role.value}' may not correct sample records")
    check_lab_scope(identity, lab)
