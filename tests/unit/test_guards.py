"""Unit tests for the transition guard.

Tests cover:
- The pure (status, action, role) decision
- Role sets per action
- Lab scoping of non-super-admin identities
- Order of checks and the error raised for each failure
- Corrective-edit authorization
"""

import pytest

from radlims.core.auth.identity import Identity, Role
from radlims.core.workflow.errors import Forbidden, InvalidTransition, StaleState
from radlims.core.workflow.guards import (
    ACTION_ROLES,
    authorize_modification,
    authorize_reception,
    authorize_transition,
    evaluate,
    is_permitted,
)
from radlims.core.workflow.states import Action, SampleStatus


def identity(role: Role, *labs: str) -> Identity:
    return Identity(
        user_id=f"{role.value}-1",
        display_name=role.value,
        role=role,
        assigned_labs=frozenset(labs),
    )


class TestEvaluate:
    def test_analyst_may_receive_at_lab(self) -> None:
        decision = evaluate(SampleStatus.RECEIVED, Action.RECEIPT, Role.analyst)
        assert decision.allowed
        assert decision.reason is None

    def test_collector_may_not_receive_at_lab(self) -> None:
        decision = evaluate(SampleStatus.RECEIVED, Action.RECEIPT, Role.collector)
        assert not decision.allowed
        assert "collector" in decision.reason

    def test_wrong_status_denied(self) -> None:
        decision = evaluate(SampleStatus.ANALYZING, Action.RECEIPT, Role.analyst)
        assert not decision.allowed

    def test_reception_is_never_a_transition(self) -> None:
        decision = evaluate(SampleStatus.RECEIVED, Action.RECEPTION, Role.super_admin)
        assert not decision.allowed

    @pytest.mark.parametrize("role", list(Role))
    def test_signoff_roles(self, role: Role) -> None:
        decision = evaluate(SampleStatus.AWAITING_ASSOC_REVIEW, Action.SIGNOFF, role)
        assert decision.allowed == (role in {Role.association_admin, Role.super_admin})

    @pytest.mark.parametrize("role", list(Role))
    def test_tech_review_roles(self, role: Role) -> None:
        decision = evaluate(SampleStatus.AWAITING_TECH_REVIEW, Action.TECH_REVIEW, role)
        assert decision.allowed == (
            role in {Role.technical_lead, Role.association_admin, Role.super_admin}
        )

    def test_ledger_only_action_needs_in_place(self) -> None:
        advancing = evaluate(SampleStatus.AWAITING_ANALYSIS, Action.PREP_DONE, Role.analyst)
        in_place = evaluate(
            SampleStatus.AWAITING_ANALYSIS, Action.PREP_DONE, Role.analyst, in_place=True
        )

        assert not advancing.allowed
        assert "ledger-only" in advancing.reason
        assert in_place.allowed

    def test_advancing_action_refused_in_place(self) -> None:
        decision = evaluate(
            SampleStatus.RECEIVED, Action.RECEIPT, Role.analyst, in_place=True
        )
        assert not decision.allowed

    @pytest.mark.parametrize("in_place", [False, True])
    @pytest.mark.parametrize("role", list(Role))
    def test_agrees_with_authorize_transition(self, role: Role, in_place: bool) -> None:
        actor = identity(role, "BUSAN")
        for status in SampleStatus:
            for action in Action:
                decision = evaluate(status, action, role, in_place=in_place)
                try:
                    authorize_transition(status, "BUSAN", action, actor, in_place=in_place)
                    authorized = True
                except (InvalidTransition, Forbidden, StaleState):
                    authorized = False
                assert decision.allowed == authorized, (status, action)

    def test_every_action_has_a_role_set(self) -> None:
        assert set(ACTION_ROLES) == set(Action)

    def test_anyone_may_receive(self) -> None:
        for role in Role:
            assert is_permitted(Action.RECEPTION, role)


class TestAuthorizeTransition:
    def test_allowed_returns_rule(self) -> None:
        rule = authorize_transition(
            SampleStatus.RECEIVED, "BUSAN", Action.RECEIPT, identity(Role.analyst, "BUSAN")
        )
        assert rule.target == SampleStatus.RECEIVED_AT_LAB

    def test_analyst_signoff_forbidden(self) -> None:
        with pytest.raises(Forbidden):
            authorize_transition(
                SampleStatus.AWAITING_ASSOC_REVIEW,
                "BUSAN",
                Action.SIGNOFF,
                identity(Role.analyst, "BUSAN"),
            )

    def test_collector_signoff_forbidden(self) -> None:
        with pytest.raises(Forbidden):
            authorize_transition(
                SampleStatus.AWAITING_ASSOC_REVIEW,
                "BUSAN",
                Action.SIGNOFF,
                identity(Role.collector, "BUSAN"),
            )

    def test_other_lab_forbidden(self) -> None:
        with pytest.raises(Forbidden):
            authorize_transition(
                SampleStatus.RECEIVED,
                "GANGNEUNG",
                Action.RECEIPT,
                identity(Role.analyst, "BUSAN"),
            )

    def test_super_admin_ignores_lab_scope(self) -> None:
        rule = authorize_transition(
            SampleStatus.RECEIVED, "GANGNEUNG", Action.RECEIPT, identity(Role.super_admin)
        )
        assert rule.action == Action.RECEIPT

    def test_skipping_ahead_is_invalid(self) -> None:
        with pytest.raises(InvalidTransition):
            authorize_transition(
                SampleStatus.RECEIVED,
                "BUSAN",
                Action.ANALYSIS_START,
                identity(Role.analyst, "BUSAN"),
            )

    def test_already_advanced_is_stale(self) -> None:
        with pytest.raises(StaleState):
            authorize_transition(
                SampleStatus.RECEIVED_AT_LAB,
                "BUSAN",
                Action.RECEIPT,
                identity(Role.analyst, "BUSAN"),
            )

    def test_complete_is_stale_for_every_earlier_action(self) -> None:
        admin = identity(Role.super_admin)
        with pytest.raises(StaleState):
            authorize_transition(SampleStatus.COMPLETE, "BUSAN", Action.SIGNOFF, admin)

    def test_reception_rejected_as_transition(self) -> None:
        with pytest.raises(InvalidTransition):
            authorize_transition(
                SampleStatus.RECEIVED, "BUSAN", Action.RECEPTION, identity(Role.super_admin)
            )

    def test_ledger_only_action_rejected_as_transition(self) -> None:
        with pytest.raises(InvalidTransition):
            authorize_transition(
                SampleStatus.AWAITING_ANALYSIS,
                "BUSAN",
                Action.PREP_DONE,
                identity(Role.analyst, "BUSAN"),
            )

    def test_advancing_action_rejected_in_place(self) -> None:
        with pytest.raises(InvalidTransition):
            authorize_transition(
                SampleStatus.AWAITING_ANALYSIS,
                "BUSAN",
                Action.ANALYSIS_START,
                identity(Role.analyst, "BUSAN"),
                in_place=True,
            )

    def test_ledger_only_action_in_place(self) -> None:
        rule = authorize_transition(
            SampleStatus.AWAITING_ANALYSIS,
            "BUSAN",
            Action.PREP_DONE,
            identity(Role.analyst, "BUSAN"),
            in_place=True,
        )
        assert rule.source == rule.target == SampleStatus.AWAITING_ANALYSIS

    def test_role_checked_before_status(self) -> None:
        # Collector on a sample that already moved on is still a role failure
        with pytest.raises(Forbidden):
            authorize_transition(
                SampleStatus.COMPLETE,
                "BUSAN",
                Action.RECEIPT,
                identity(Role.collector, "BUSAN"),
            )

    def test_lab_checked_before_status(self) -> None:
        with pytest.raises(Forbidden):
            authorize_transition(
                SampleStatus.COMPLETE,
                "GANGNEUNG",
                Action.RECEIPT,
                identity(Role.analyst, "BUSAN"),
            )


class TestAuthorizeReceptionAndModification:
    def test_reception_requires_lab_assignment(self) -> None:
        with pytest.raises(Forbidden):
            authorize_reception(identity(Role.collector, "BUSAN"), "GANGNEUNG")

    def test_reception_allowed(self) -> None:
        rule = authorize_reception(identity(Role.collector, "BUSAN"), "BUSAN")
        assert rule.target == SampleStatus.RECEIVED

    @pytest.mark.parametrize("role", [Role.collector, Role.analyst, Role.analyst_assistant])
    def test_modification_needs_review_role(self, role: Role) -> None:
        with pytest.raises(Forbidden):
            authorize_modification(identity(role, "BUSAN"), "BUSAN")

    def test_modification_scoped_to_lab(self) -> None:
        with pytest.raises(Forbidden):
            authorize_modification(identity(Role.technical_lead, "BUSAN"), "GANGNEUNG")
        authorize_modification(identity(Role.technical_lead, "BUSAN"), "BUSAN")
