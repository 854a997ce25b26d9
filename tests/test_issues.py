"""
Tests for issue identifiers, the issue service and runs.
"""

import pytest

from control_center.db.models import EvidenceModel, IssueModel, TimelineEventModel
from control_center.lifecycle import issues
from control_center.lifecycle.enums import IssueState
from control_center.lifecycle.errors import (
    ConflictError,
    InvalidTransition,
    NotFoundError,
    ValidationError,
)
from control_center.lifecycle.identifiers import (
    IdentifierKind,
    parse_identifier,
    validate_canonical_id,
)
from control_center.lifecycle.issues import IssueService, RunService
from control_center.lifecycle.schemas import (
    IssueCreate,
    PullRequestLink,
    RunFinish,
    RunStart,
    TransitionRequest,
)
from control_center.lifecycle.state_machine import transition as compute_transition


class TestParseIdentifier:
    def test_uuid(self):
        parsed = parse_identifier("3F2504E0-4F89-41D3-9A0C-0305E82C3301")
        assert parsed.kind == IdentifierKind.UUID
        assert parsed.value == "3f2504e0-4f89-41d3-9a0c-0305e82c3301"

    def test_public_id(self):
        parsed = parse_identifier("DEADBEEF")
        assert parsed.kind == IdentifierKind.PUBLIC_ID
        assert parsed.value == "deadbeef"

    def test_canonical_id(self):
        assert parse_identifier("E81.5").kind == IdentifierKind.CANONICAL_ID
        assert parse_identifier(" I811 ").value == "I811"

    @pytest.mark.parametrize("raw", ["", "   ", "123", "has space", "x" * 80, None])
    def test_invalid(self, raw):
        with pytest.raises(ValidationError) as exc_info:
            parse_identifier(raw)
        assert exc_info.value.code == "INVALID_IDENTIFIER"

    def test_canonical_id_must_not_look_like_public_id(self):
        with pytest.raises(ValidationError):
            validate_canonical_id("abcdef12")


class TestIssueService:
    def test_create(self, db_session):
        issue = IssueService(db_session).create(IssueCreate(title="Add login", canonical_id="I811"))

        assert issue.status == "CREATED"
        assert issue.public_id == issue.id.replace("-", "")[:8]
        events = db_session.query(TimelineEventModel).filter_by(issue_id=issue.id).all()
        assert [e.event_type for e in events] == ["ISSUE_CREATED"]

    def test_identifiers_resolve_to_same_row(self, db_session, make_issue):
        issue = make_issue(canonical_id="E81.5")
        service = IssueService(db_session)

        assert service.get_by_identifier(issue.id).id == issue.id
        assert service.get_by_identifier(issue.public_id.upper()).id == issue.id
        assert service.get_by_identifier("E81.5").id == issue.id

    def test_not_found(self, db_session):
        with pytest.raises(NotFoundError) as exc_info:
            IssueService(db_session).get_by_identifier("0badc0de")
        assert exc_info.value.code == "ISSUE_NOT_FOUND"

    def test_duplicate_canonical_id(self, db_session, make_issue):
        make_issue(canonical_id="I1")
        with pytest.raises(ConflictError):
            IssueService(db_session).create(IssueCreate(title="again", canonical_id="I1"))

    def test_list_by_status(self, db_session, make_issue):
        make_issue()
        held = make_issue(IssueState.HOLD)
        issues = IssueService(db_session).list(status="HOLD")
        assert [i.id for i in issues] == [held.id]

    def test_link_pull_request(self, db_session, make_issue):
        issue = make_issue(IssueState.REVIEW_READY)
        service = IssueService(db_session)

        service.link_pull_request(
            issue.public_id,
            PullRequestLink(repository="acme/app", pr_number=12, pr_url="https://github.com/acme/app/pull/12"),
        )

        found = service.find_by_pull_request("acme/app", 12)
        assert found.id == issue.id
        assert service.next_step(issue.id).step.value == "S5_MERGE"


class TestConcurrentTransition:
    """A competing writer commits between the locked read and the update."""

    @pytest.fixture
    def race_to(self, monkeypatch, competing_writer):
        def _arm(issue_id, status):
            def racing_transition(current, target):
                competing_writer(issue_id, status)
                return compute_transition(current, target)

            monkeypatch.setattr(issues, "compute_transition", racing_transition)

        return _arm

    def _state_changes(self, session, issue_id):
        return (
            session.query(TimelineEventModel)
            .filter_by(issue_id=issue_id, event_type="STATE_CHANGED")
            .count()
        )

    def test_loser_with_other_target_is_rejected(self, file_session, make_file_issue, race_to):
        issue = make_file_issue(IssueState.SPEC_READY)
        before = self._state_changes(file_session, issue.id)
        race_to(issue.id, IssueState.HOLD)

        with pytest.raises(InvalidTransition) as exc_info:
            IssueService(file_session).transition(
                issue.id, TransitionRequest(to_state=IssueState.IMPLEMENTING_PREP)
            )

        assert exc_info.value.from_state == "HOLD"
        assert file_session.get(IssueModel, issue.id).status == "HOLD"
        assert self._state_changes(file_session, issue.id) == before

    def test_loser_with_same_target_is_noop(self, file_session, make_file_issue, race_to):
        issue = make_file_issue(IssueState.SPEC_READY)
        before = self._state_changes(file_session, issue.id)
        race_to(issue.id, IssueState.IMPLEMENTING_PREP)

        result = IssueService(file_session).transition(
            issue.id, TransitionRequest(to_state=IssueState.IMPLEMENTING_PREP)
        )

        assert result.changed is False
        assert file_session.get(IssueModel, issue.id).status == "IMPLEMENTING_PREP"
        assert self._state_changes(file_session, issue.id) == before


class TestRunService:
    def test_start_and_finish(self, db_session, make_issue):
        issue = make_issue(IssueState.SPEC_READY)
        runs = RunService(db_session)

        run = runs.start(issue.id, RunStart(step="S3_IMPLEMENT_PREP", actor="engine"))
        finished = runs.finish(
            run.id, RunFinish(status="SUCCEEDED", output={"branch": "feat/x", "api_key": "k"})
        )

        assert finished.status == "SUCCEEDED"
        assert finished.finished_at is not None
        evidence = db_session.query(EvidenceModel).filter_by(run_id=run.id).one()
        assert evidence.result == {"branch": "feat/x", "api_key": "[REDACTED]"}
        types = [
            e.event_type
            for e in db_session.query(TimelineEventModel).filter_by(run_id=run.id).all()
        ]
        assert sorted(types) == ["RUN_FINISHED", "RUN_STARTED"]

    def test_finish_twice_same_status_is_noop(self, db_session, make_issue):
        issue = make_issue()
        runs = RunService(db_session)
        run = runs.start(issue.id, RunStart())
        runs.finish(run.id, RunFinish(status="FAILED"))
        runs.finish(run.id, RunFinish(status="FAILED"))

        count = db_session.query(TimelineEventModel).filter_by(
            run_id=run.id, event_type="RUN_FINISHED"
        ).count()
        assert count == 1

    def test_finish_with_other_status_conflicts(self, db_session, make_issue):
        issue = make_issue()
        runs = RunService(db_session)
        run = runs.start(issue.id, RunStart())
        runs.finish(run.id, RunFinish(status="FAILED"))

        with pytest.raises(ConflictError):
            runs.finish(run.id, RunFinish(status="SUCCEEDED"))

    def test_finish_as_running_rejected(self, db_session, make_issue):
        issue = make_issue()
        runs = RunService(db_session)
        run = runs.start(issue.id, RunStart())
        with pytest.raises(ValidationError):
            runs.finish(run.id, RunFinish(status="RUNNING"))

    def test_unknown_run(self, db_session):
        with pytest.raises(NotFoundError):
            RunService(db_session).get("missing")
