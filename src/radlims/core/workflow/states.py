"""Sample lifecycle states, actions and the transition table.

The lifecycle is strictly linear. Every advancing action is legal from exactly
one status and moves the sample exactly one step forward. Ledger-only actions
(PrepDone, ResultsSaved) append a history entry without moving the status;
each is bound to a single status so the current status is always a pure
function of the action of the most recent history entry.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class SampleStatus(str, Enum):
    """Lifecycle states, in forward order."""

    RECEIVED = "received"
    RECEIVED_AT_LAB = "received_at_lab"
    AWAITING_PREP = "awaiting_prep"
    AWAITING_ANALYSIS = "awaiting_analysis"
    ANALYZING = "analyzing"
    ANALYSIS_DONE = "analysis_done"
    AWAITING_TECH_REVIEW = "awaiting_tech_review"
    AWAITING_ASSOC_REVIEW = "awaiting_assoc_review"
    COMPLETE = "complete"


class Action(str, Enum):
    """History entry actions."""

    RECEPTION = "reception"
    RECEIPT = "receipt"
    CLASSIFICATION = "classification"
    PREP_START = "prep_start"
    PREP_DONE = "prep_done"
    ANALYSIS_START = "analysis_start"
    ANALYSIS_DONE = "analysis_done"
    RESULTS_SAVED = "results_saved"
    EVALUATION = "evaluation"
    TECH_REVIEW = "tech_review"
    SIGNOFF = "signoff"


LIFECYCLE: tuple[SampleStatus, ...] = tuple(SampleStatus)
TERMINAL_STATUS = SampleStatus.COMPLETE


@dataclass(frozen=True)
class TransitionRule:
    """One row of the transition table.

    Attributes:
        action: Action that triggers the row
        source: Status the sample must be in (None for sample creation)
        target: Status after the entry is committed
    """

    action: Action
    source: Optional[SampleStatus]
    target: SampleStatus

    @property
    def advances(self) -> bool:
        """True when committing the action moves the status forward."""
        return self.source != self.target


TRANSITION_RULES: dict[Action, TransitionRule] = {
    rule.action: rule
    for rule in (
        TransitionRule(Action.RECEPTION, None, SampleStatus.RECEIVED),
        TransitionRule(Action.RECEIPT, SampleStatus.RECEIVED, SampleStatus.RECEIVED_AT_LAB),
        TransitionRule(
            Action.CLASSIFICATION, SampleStatus.RECEIVED_AT_LAB, SampleStatus.AWAITING_PREP
        ),
        TransitionRule(
            Action.PREP_START, SampleStatus.AWAITING_PREP, SampleStatus.AWAITING_ANALYSIS
        ),
        TransitionRule(
            Action.PREP_DONE, SampleStatus.AWAITING_ANALYSIS, SampleStatus.AWAITING_ANALYSIS
        ),
        TransitionRule(
            Action.ANALYSIS_START, SampleStatus.AWAITING_ANALYSIS, SampleStatus.ANALYZING
        ),
        TransitionRule(Action.ANALYSIS_DONE, SampleStatus.ANALYZING, SampleStatus.ANALYSIS_DONE),
        TransitionRule(
            Action.RESULTS_SAVED, SampleStatus.ANALYSIS_DONE, SampleStatus.ANALYSIS_DONE
        ),
        TransitionRule(
            Action.EVALUATION, SampleStatus.ANALYSIS_DONE, SampleStatus.AWAITING_TECH_REVIEW
        ),
        TransitionRule(
            Action.TECH_REVIEW,
            SampleStatus.AWAITING_TECH_REVIEW,
            SampleStatus.AWAITING_ASSOC_REVIEW,
        ),
        TransitionRule(Action.SIGNOFF, SampleStatus.AWAITING_ASSOC_REVIEW, SampleStatus.COMPLETE),
    )
}

# status -> the single action that advances it
ADVANCING_ACTIONS: dict[SampleStatus, Action] = {
    rule.source: rule.action
    for rule in TRANSITION_RULES.values()
    if rule.source is not None and rule.advances
}

LEDGER_ONLY_ACTIONS: frozenset[Action] = frozenset(
    rule.action for rule in TRANSITION_RULES.values() if not rule.advances
)


def get_rule(action: Action) -> TransitionRule:
    """Return the transition table row for an action."""
    return TRANSITION_RULES[action]


def derive_status(action: Action) -> SampleStatus:
    """Status implied by a history entry with the given action."""
    return TRANSITION_RULES[action].target


def status_index(status: SampleStatus) -> int:
    """Position of a status in the forward lifecycle (0-based)."""
    return LIFECYCLE.index(status)


def next_action(status: SampleStatus) -> Optional[Action]:
    """The one advancing action legal from status, or None when terminal."""
    return ADVANCING_ACTIONS.get(status)


# Step-queue display, derived from status only
STATUS_LABELS: dict[SampleStatus, str] = {
    SampleStatus.RECEIVED: "Received",
    SampleStatus.RECEIVED_AT_LAB: "Received at lab",
    SampleStatus.AWAITING_PREP: "Awaiting pre-treatment",
    SampleStatus.AWAITING_ANALYSIS: "Awaiting analysis",
    SampleStatus.ANALYZING: "Analyzing",
    SampleStatus.ANALYSIS_DONE: "Analysis done",
    SampleStatus.AWAITING_TECH_REVIEW: "Technical review",
    SampleStatus.AWAITING_ASSOC_REVIEW: "Association review",
    SampleStatus.COMPLETE: "Complete",
}


@dataclass(frozen=True)
class StepInfo:
    """Display information for one step of the queue."""

    status: SampleStatus
    index: int
    label: str
    next_action: Optional[Action]
    is_terminal: bool


def display_step(status: SampleStatus) -> StepInfo:
    """Compute the displayable step for a status."""
    return StepInfo(
        status=status,
        index=status_index(status),
        label=STATUS_LABELS[status],
        next_action=next_action(status),
        is_terminal=status == TERMINAL_STATUS,
    )
