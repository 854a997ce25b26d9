"""
Tests for the issue state machine.

Verifies:
- The transition table is closed and terminal states have no exits
- transition() semantics (no-op, rejection, success)
- resolve_next_step() blockers and fail-closed behaviour
- IssueService persistence adapter and STATE_CHANGED events
"""

import pytest

from control_center.db.models import TimelineEventModel
from control_center.lifecycle.enums import BlockerCode, IssueState, LoopStep, TimelineEventType
from control_center.lifecycle.errors import InvalidTransition, NotFoundError, ValidationError
from control_center.lifecycle.issues import IssueService
from control_center.lifecycle.schemas import TransitionRequest
from control_center.lifecycle.state_machine import (
    TERMINAL_STATES,
    TRANSITIONS,
    can_transition,
    is_terminal,
    resolve_next_step,
    transition,
)


class TestTransitionTable:
    """Tests for the closed transition table."""

    def test_every_state_has_an_entry(self):
        assert set(TRANSITIONS) == set(IssueState)

    def test_terminal_states_have_no_exits(self):
        assert TERMINAL_STATES == {IssueState.DONE, IssueState.FAILED}
        for state in TERMINAL_STATES:
            assert TRANSITIONS[state] == frozenset()
            assert is_terminal(state)

    def test_happy_path(self):
        assert can_transition("CREATED", "SPEC_READY")
        assert can_transition("SPEC_READY", "IMPLEMENTING_PREP")
        assert can_transition("IMPLEMENTING_PREP", "REVIEW_READY")
        assert can_transition("REVIEW_READY", "DONE")

    def test_no_skipping_stages(self):
        assert not can_transition(IssueState.CREATED, IssueState.DONE)
        assert not can_transition(IssueState.SPEC_READY, IssueState.REVIEW_READY)
        assert not can_transition(IssueState.HOLD, IssueState.DONE)

    def test_unknown_state_is_validation_error(self):
        with pytest.raises(ValidationError) as exc_info:
            can_transition("DRAFT", "SPEC_READY")
        assert exc_info.value.code == "INVALID_STATE"


class TestTransition:
    """Tests for transition()."""

    def test_valid_move_changes_state(self):
        result = transition(IssueState.REVIEW_READY, IssueState.DONE)
        assert result.from_state == IssueState.REVIEW_READY
        assert result.to_state == IssueState.DONE
        assert result.changed is True

    def test_same_state_is_noop(self):
        result = transition("SPEC_READY", "SPEC_READY")
        assert result.changed is False

    def test_same_terminal_state_is_noop(self):
        assert transition("DONE", "DONE").changed is False

    def test_terminal_state_rejected(self):
        with pytest.raises(InvalidTransition) as exc_info:
            transition(IssueState.DONE, IssueState.REVIEW_READY)
        assert exc_info.value.code == "INVALID_TRANSITION"
        assert exc_info.value.details == {"from": "DONE", "to": "REVIEW_READY"}

    def test_move_outside_table_rejected(self):
        with pytest.raises(InvalidTransition):
            transition(IssueState.CREATED, IssueState.REVIEW_READY)


class TestResolveNextStep:
    """Tests for the S1-S9 resolver."""

    def test_created_without_github_link_is_blocked(self):
        result = resolve_next_step("CREATED", github_url=None)
        assert result.blocked
        assert result.step is None
        assert result.blocker_code == BlockerCode.NO_GITHUB_LINK

    def test_created_with_github_link_picks_issue(self):
        result = resolve_next_step("CREATED", github_url="https://github.com/a/b/issues/1")
        assert not result.blocked
        assert result.step == LoopStep.S1_PICK_ISSUE

    def test_review_ready_needs_pr(self):
        assert resolve_next_step("REVIEW_READY").blocker_code == BlockerCode.NO_PR_LINKED
        result = resolve_next_step("REVIEW_READY", pr_url="https://github.com/a/b/pull/2")
        assert result.step == LoopStep.S5_MERGE

    def test_intermediate_states(self):
        assert resolve_next_step("SPEC_READY").step == LoopStep.S3_IMPLEMENT_PREP
        assert resolve_next_step("IMPLEMENTING_PREP").step == LoopStep.S4_REVIEW
        assert resolve_next_step("DONE").step == LoopStep.S7_VERIFY_GATE
        assert resolve_next_step("FAILED").step == LoopStep.S9_REMEDIATE

    def test_hold_is_blocked(self):
        assert resolve_next_step("HOLD").blocker_code == BlockerCode.ON_HOLD

    @pytest.mark.parametrize("status", [None, "", "DRAFT", "done"])
    def test_unknown_state_fails_closed(self, status):
        result = resolve_next_step(status)
        assert result.blocked
        assert result.blocker_code == BlockerCode.UNKNOWN_STATE

    def test_to_dict(self):
        body = resolve_next_step("HOLD").to_dict()
        assert body["step"] is None
        assert body["blocked"] is True
        assert body["blocker_code"] == "ON_HOLD"


class TestIssueServiceTransitions:
    """Tests for the persistence adapter."""

    def _state_changes(self, db_session, issue_id):
        return (
            db_session.query(TimelineEventModel)
            .filter(
                TimelineEventModel.issue_id == issue_id,
                TimelineEventModel.event_type == TimelineEventType.STATE_CHANGED.value,
            )
            .count()
        )

    def test_transition_persists_and_emits_event(self, db_session, make_issue):
        issue = make_issue()
        service = IssueService(db_session)

        result = service.transition(issue.public_id, TransitionRequest(to_state="SPEC_READY"))

        assert result.changed
        assert service.get(issue.id).status == "SPEC_READY"
        assert self._state_changes(db_session, issue.id) == 1

    def test_same_state_does_not_duplicate_event(self, db_session, make_issue):
        issue = make_issue(IssueState.SPEC_READY)
        service = IssueService(db_session)
        before = self._state_changes(db_session, issue.id)

        result = service.transition(issue.id, TransitionRequest(to_state="SPEC_READY"))

        assert result.changed is False
        assert self._state_changes(db_session, issue.id) == before

    def test_invalid_transition_leaves_state(self, db_session, make_issue):
        issue = make_issue(IssueState.DONE)
        service = IssueService(db_session)

        with pytest.raises(InvalidTransition):
            service.transition(issue.id, TransitionRequest(to_state="REVIEW_READY"))

        assert service.get(issue.id).status == "DONE"

    def test_apply_transition_uses_persisted_state(self, db_session, make_issue):
        issue = make_issue(IssueState.SPEC_READY)
        service = IssueService(db_session)
        # A stale in-memory status must not be trusted
        issue.status = "CREATED"

        result = service.apply_transition(issue.id, IssueState.IMPLEMENTING_PREP)
        db_session.commit()

        assert result.from_state == IssueState.SPEC_READY
        assert service.get(issue.id).status == "IMPLEMENTING_PREP"

    def test_apply_transition_missing_issue(self, db_session):
        with pytest.raises(NotFoundError):
            IssueService(db_session).apply_transition(
                "00000000-0000-4000-8000-000000000000", IssueState.SPEC_READY
            )
