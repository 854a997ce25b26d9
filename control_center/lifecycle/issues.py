"""
Issue and run services.

``IssueService.apply_transition`` is the persistence adapter for the pure
state machine: it re-reads the issue inside the caller's transaction, checks
the move against the transition table and performs a compare-and-set
``UPDATE ... WHERE status = <read status>`` so that two racing writers cannot
both succeed from the same starting state.
"""

from typing import Any, Dict, List, Optional, Union

import structlog
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..db.base import transaction
from ..db.models import IssueModel, RunModel
from .enums import EvidenceAction, IssueState, RunStatus, TimelineEventType
from .errors import ConflictError, InvalidTransition, NotFoundError, StorageError, ValidationError
from .evidence import EvidenceRecorder
from .identifiers import IdentifierKind, parse_identifier, validate_canonical_id
from .primitives import generate_id, public_id_from_uuid, utc_now
from .schemas import IssueCreate, PullRequestLink, RunFinish, RunStart, TransitionRequest
from .state_machine import (
    StepResolution,
    TransitionResult,
    parse_state,
    resolve_next_step,
    transition as compute_transition,
)
from .timeline import TimelineStore

logger = structlog.get_logger()

_PUBLIC_ID_ATTEMPTS = 5


class IssueService:
    """Service for managing issues."""

    def __init__(self, db: Session):
        self.db = db
        self.timeline = TimelineStore(db)

    def create(self, data: IssueCreate) -> IssueModel:
        """Create an issue in CREATED and emit ISSUE_CREATED."""
        canonical_id = validate_canonical_id(data.canonical_id) if data.canonical_id else None

        if canonical_id and self._query_canonical(canonical_id) is not None:
            raise ConflictError(
                f"Issue with canonical id '{canonical_id}' already exists",
                code="DUPLICATE_CANONICAL_ID",
            )

        issue_id, public_id = self._new_ids()
        now = utc_now()
        issue = IssueModel(
            id=issue_id,
            public_id=public_id,
            canonical_id=canonical_id,
            title=data.title,
            status=IssueState.CREATED.value,
            github_url=data.github_url,
            repository=data.repository,
            pr_number=data.pr_number,
            pr_url=data.pr_url,
            created_at=now,
            updated_at=now,
        )

        try:
            with transaction(self.db):
                self.db.add(issue)
                self.db.flush()
                self.timeline.append(
                    issue_id=issue.id,
                    event_type=TimelineEventType.ISSUE_CREATED,
                    event_data={
                        "public_id": public_id,
                        "canonical_id": canonical_id,
                        "status": issue.status,
                    },
                    actor=data.actor,
                    actor_type=data.actor_type,
                    request_id=data.request_id,
                    occurred_at=now,
                )
        except IntegrityError:
            raise ConflictError("Issue identifiers already in use") from None
        except SQLAlchemyError:
            logger.exception("issue_create_failed", issue_id=issue_id)
            raise StorageError("Failed to create issue") from None

        logger.info("issue_created", issue_id=issue.id, public_id=public_id)
        return issue

    def _new_ids(self):
        for _ in range(_PUBLIC_ID_ATTEMPTS):
            issue_id = generate_id()
            public_id = public_id_from_uuid(issue_id)
            taken = (
                self.db.query(IssueModel.id).filter(IssueModel.public_id == public_id).first()
            )
            if taken is None:
                return issue_id, public_id
        raise StorageError("Could not allocate a unique public id")

    def _query_canonical(self, canonical_id: str) -> Optional[IssueModel]:
        return self.db.query(IssueModel).filter(IssueModel.canonical_id == canonical_id).first()

    def get(self, issue_id: str, for_update: bool = False) -> Optional[IssueModel]:
        """Get an issue by UUID."""
        query = self.db.query(IssueModel).filter(IssueModel.id == issue_id)
        if for_update:
            query = query.with_for_update().populate_existing()
        return query.first()

    def find_by_identifier(self, identifier: str, for_update: bool = False) -> Optional[IssueModel]:
        """Resolve a UUID, public id or canonical id. Raises on bad format."""
        parsed = parse_identifier(identifier)
        query = self.db.query(IssueModel)
        if parsed.kind == IdentifierKind.UUID:
            query = query.filter(IssueModel.id == parsed.value)
        elif parsed.kind == IdentifierKind.PUBLIC_ID:
            query = query.filter(IssueModel.public_id == parsed.value)
        else:
            query = query.filter(IssueModel.canonical_id == parsed.value)
        if for_update:
            query = query.with_for_update().populate_existing()
        return query.first()

    def get_by_identifier(self, identifier: str, for_update: bool = False) -> IssueModel:
        """Like ``find_by_identifier`` but raises ``NotFoundError``."""
        issue = self.find_by_identifier(identifier, for_update=for_update)
        if issue is None:
            raise NotFoundError(
                f"Issue '{identifier}' not found",
                code="ISSUE_NOT_FOUND",
                details={"identifier": identifier},
            )
        return issue

    def find_by_pull_request(
        self, repository: str, pr_number: int, for_update: bool = False
    ) -> Optional[IssueModel]:
        query = self.db.query(IssueModel).filter(
            IssueModel.repository == repository,
            IssueModel.pr_number == pr_number,
        )
        if for_update:
            query = query.with_for_update().populate_existing()
        return query.order_by(IssueModel.created_at.asc()).first()

    def list(
        self,
        status: Optional[Union[IssueState, str]] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[IssueModel]:
        """List issues, newest first."""
        query = self.db.query(IssueModel)
        if status:
            query = query.filter(IssueModel.status == parse_state(status).value)
        return (
            query.order_by(IssueModel.created_at.desc(), IssueModel.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )

    def link_pull_request(self, identifier: str, link: PullRequestLink) -> IssueModel:
        """Associate a pull request with an issue (for merge correlation)."""
        try:
            with transaction(self.db):
                issue = self.get_by_identifier(identifier, for_update=True)
                issue.repository = link.repository
                issue.pr_number = link.pr_number
                if link.pr_url:
                    issue.pr_url = link.pr_url
                issue.updated_at = utc_now()
        except SQLAlchemyError:
            logger.exception("issue_link_pr_failed", identifier=identifier)
            raise StorageError("Failed to link pull request") from None
        return issue

    def apply_transition(
        self, issue_id: str, to_state: Union[IssueState, str]
    ) -> TransitionResult:
        """Move a persisted issue to ``to_state`` inside the caller's transaction.

        The current status is re-read (row-locked where supported) and the
        update only applies if the status is still the one that was read.
        Emits no events.

        Raises:
            NotFoundError: If the issue does not exist
            InvalidTransition: If the move is not allowed from the persisted state
        """
        target = parse_state(to_state)
        issue = self.get(issue_id, for_update=True)
        if issue is None:
            raise NotFoundError(f"Issue '{issue_id}' not found", code="ISSUE_NOT_FOUND")

        result = compute_transition(issue.status, target)
        if not result.changed:
            return result

        now = utc_now()
        rowcount = self.db.execute(
            update(IssueModel)
            .where(IssueModel.id == issue_id, IssueModel.status == result.from_state.value)
            .values(status=target.value, updated_at=now)
            .execution_options(synchronize_session=False)
        ).rowcount

        if rowcount == 0:
            # Lost a race: judge the request against what the winner wrote
            self.db.expire(issue)
            current = parse_state(issue.status)
            if current == target:
                return TransitionResult(current, target, changed=False)
            raise InvalidTransition(current.value, target.value)

        self.db.expire(issue)
        return result

    def transition(self, identifier: str, request: TransitionRequest) -> TransitionResult:
        """Apply a transition and emit STATE_CHANGED when the status moved."""
        try:
            with transaction(self.db):
                issue = self.get_by_identifier(identifier)
                result = self.apply_transition(issue.id, request.to_state)
                if result.changed:
                    self.timeline.append(
                        issue_id=issue.id,
                        event_type=TimelineEventType.STATE_CHANGED,
                        event_data={
                            "from": result.from_state.value,
                            "to": result.to_state.value,
                            "reason": request.reason,
                        },
                        actor=request.actor,
                        actor_type=request.actor_type,
                        request_id=request.request_id,
                    )
        except SQLAlchemyError:
            logger.exception("issue_transition_failed", identifier=identifier)
            raise StorageError("Failed to transition issue") from None

        logger.info(
            "issue_transition",
            issue_id=issue.id,
            from_state=result.from_state.value,
            to_state=result.to_state.value,
            changed=result.changed,
        )
        return result

    def next_step(self, identifier: str) -> StepResolution:
        issue = self.get_by_identifier(identifier)
        return resolve_next_step(issue.status, issue.github_url, issue.pr_url)


class RunService:
    """Service for managing issue runs."""

    def __init__(self, db: Session):
        self.db = db
        self.issues = IssueService(db)
        self.timeline = TimelineStore(db)
        self.evidence = EvidenceRecorder(db)

    def get(self, run_id: str) -> RunModel:
        run = self.db.query(RunModel).filter(RunModel.id == run_id).first()
        if run is None:
            raise NotFoundError(f"Run '{run_id}' not found", code="RUN_NOT_FOUND")
        return run

    def get_for_issue(self, issue_id: str, run_id: str) -> RunModel:
        """Get a run that must belong to ``issue_id``."""
        run = (
            self.db.query(RunModel)
            .filter(RunModel.id == run_id, RunModel.issue_id == issue_id)
            .first()
        )
        if run is None:
            raise NotFoundError(
                f"Run '{run_id}' not found for issue",
                code="RUN_NOT_FOUND",
                details={"run_id": run_id},
            )
        return run

    def list_by_issue(self, issue_id: str) -> List[RunModel]:
        return (
            self.db.query(RunModel)
            .filter(RunModel.issue_id == issue_id)
            .order_by(RunModel.started_at.asc(), RunModel.id.asc())
            .all()
        )

    def start(self, identifier: str, data: RunStart) -> RunModel:
        """Start a run and emit RUN_STARTED."""
        issue = self.issues.get_by_identifier(identifier)
        now = utc_now()
        run = RunModel(
            id=generate_id(),
            issue_id=issue.id,
            step=data.step.value if data.step else None,
            status=RunStatus.RUNNING.value,
            request_id=data.request_id,
            actor=data.actor,
            started_at=now,
        )

        try:
            with transaction(self.db):
                self.db.add(run)
                self.db.flush()
                self.timeline.append(
                    issue_id=issue.id,
                    run_id=run.id,
                    event_type=TimelineEventType.RUN_STARTED,
                    event_data={"step": run.step},
                    actor=data.actor,
                    actor_type=data.actor_type,
                    request_id=data.request_id,
                    occurred_at=now,
                )
        except SQLAlchemyError:
            logger.exception("run_start_failed", issue_id=issue.id)
            raise StorageError("Failed to start run") from None

        logger.info("run_started", issue_id=issue.id, run_id=run.id, step=run.step)
        return run

    def finish(self, run_id: str, data: RunFinish) -> RunModel:
        """Finish a RUNNING run.

        Finishing again with the same status is a no-op; a different status
        is a conflict.
        """
        if data.status == RunStatus.RUNNING:
            raise ValidationError("A run can only finish as SUCCEEDED or FAILED")

        run = self.get(run_id)
        if run.status != RunStatus.RUNNING.value:
            if run.status == data.status.value:
                return run
            raise ConflictError(
                f"Run already finished as {run.status}",
                code="RUN_ALREADY_FINISHED",
                details={"status": run.status},
            )

        try:
            with transaction(self.db):
                run.status = data.status.value
                run.finished_at = utc_now()
                event_data: Dict[str, Any] = {"status": run.status}
                if data.output is not None:
                    evidence = self.evidence.record(
                        issue_id=run.issue_id,
                        action=EvidenceAction.RUN_OUTPUT,
                        params={"step": run.step},
                        result=data.output,
                        run_id=run.id,
                        request_id=data.request_id,
                        actor=data.actor,
                    )
                    event_data["evidence_id"] = evidence.id
                self.timeline.append(
                    issue_id=run.issue_id,
                    run_id=run.id,
                    event_type=TimelineEventType.RUN_FINISHED,
                    event_data=event_data,
                    actor=data.actor,
                    actor_type=data.actor_type,
                    request_id=data.request_id,
                )
        except SQLAlchemyError:
            logger.exception("run_finish_failed", run_id=run_id)
            raise StorageError("Failed to finish run") from None

        logger.info("run_finished", run_id=run.id, status=run.status)
        return run
