"""
Merge outcome applier.

Applies a merged pull request to its issue as one transaction:

1. find the issue (identifier, or repository + PR number), locking the row
2. re-validate the persisted status against the transition table
3. compare-and-set the status to DONE
4. record one ``merge_applied`` evidence row
5. emit one PR_MERGED timeline event
6. commit

Any failure rolls the whole unit back. Callers see a single failure code,
``MESH_UPDATE_FAILED``; the internal cause is logged and returned as a
``reason`` detail without storage internals. An issue that is already DONE
yields a no-op success so webhook redeliveries are harmless.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

import structlog
from sqlalchemy import update
from sqlalchemy.orm import Session

from ..db.base import transaction
from ..db.models import IssueModel
from .enums import ActorType, EvidenceAction, IssueState, TimelineEventType
from .errors import ControlCenterError
from .evidence import EvidenceRecorder
from .issues import IssueService
from .primitives import isoformat, utc_now
from .schemas import MergeOutcome
from .state_machine import can_transition
from .timeline import TimelineStore

logger = structlog.get_logger()

MESH_UPDATE_FAILED = "MESH_UPDATE_FAILED"


@dataclass
class MergeResult:
    ok: bool
    code: Optional[str] = None
    issue_id: Optional[str] = None
    idempotent: bool = False
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"ok": self.ok}
        if self.ok:
            body["issue_id"] = self.issue_id
            body["idempotent"] = self.idempotent
        else:
            body["code"] = self.code
            if self.details:
                body["details"] = self.details
        return body


class _MergeRejected(Exception):
    def __init__(self, reason: str, **details: Any):
        self.reason = reason
        self.details = {"reason": reason, **details}
        super().__init__(reason)


class MergeOutcomeApplier:
    """Apply PR merge outcomes to issues atomically."""

    def __init__(self, db: Session):
        self.db = db
        self.issues = IssueService(db)
        self.evidence = EvidenceRecorder(db)
        self.timeline = TimelineStore(db)

    def apply_outcome(self, outcome: MergeOutcome) -> MergeResult:
        """Apply ``outcome``. Never raises; see ``MergeResult``."""
        log = logger.bind(
            request_id=outcome.request_id,
            source=outcome.source,
            issue_ref=outcome.issue_id,
            repository=outcome.repository,
            pr_number=outcome.pr_number,
        )

        try:
            with transaction(self.db):
                result = self._apply(outcome)
        except _MergeRejected as rejected:
            log.warning("merge_apply_rejected", reason=rejected.reason)
            return MergeResult(ok=False, code=MESH_UPDATE_FAILED, details=rejected.details)
        except Exception:
            log.exception("merge_apply_failed")
            return MergeResult(
                ok=False,
                code=MESH_UPDATE_FAILED,
                details={"reason": "INTERNAL_ERROR"},
            )

        log.info("merge_applied", issue_id=result.issue_id, idempotent=result.idempotent)
        return result

    def _lookup(self, outcome: MergeOutcome) -> Optional[IssueModel]:
        if outcome.issue_id is not None:
            try:
                return self.issues.find_by_identifier(outcome.issue_id, for_update=True)
            except ControlCenterError as exc:
                raise _MergeRejected(exc.code) from None
        return self.issues.find_by_pull_request(
            outcome.repository, outcome.pr_number, for_update=True
        )

    def _apply(self, outcome: MergeOutcome) -> MergeResult:
        issue = self._lookup(outcome)
        if issue is None:
            raise _MergeRejected("ISSUE_NOT_FOUND")

        if issue.status == IssueState.DONE.value:
            return MergeResult(ok=True, issue_id=issue.id, idempotent=True)

        if (
            outcome.pr_number is not None
            and issue.pr_number is not None
            and outcome.pr_number != issue.pr_number
        ):
            raise _MergeRejected(
                "PR_MISMATCH", expected=issue.pr_number, received=outcome.pr_number
            )

        from_state = issue.status
        if not can_transition(from_state, IssueState.DONE):
            raise _MergeRejected("INVALID_STATE", status=from_state)

        values: Dict[str, Any] = {"status": IssueState.DONE.value, "updated_at": utc_now()}
        if outcome.pr_url:
            values["pr_url"] = outcome.pr_url
        if outcome.pr_number is not None and issue.pr_number is None:
            values["pr_number"] = outcome.pr_number
        if outcome.repository and issue.repository is None:
            values["repository"] = outcome.repository

        rowcount = self.db.execute(
            update(IssueModel)
            .where(IssueModel.id == issue.id, IssueModel.status == from_state)
            .values(**values)
            .execution_options(synchronize_session=False)
        ).rowcount
        self.db.expire(issue)

        if rowcount == 0:
            # Another writer moved the issue between our read and update
            if issue.status == IssueState.DONE.value:
                return MergeResult(ok=True, issue_id=issue.id, idempotent=True)
            raise _MergeRejected("CONCURRENT_UPDATE", status=issue.status)

        merge_data = {
            "pr_url": outcome.pr_url,
            "repository": outcome.repository or issue.repository,
            "pr_number": outcome.pr_number or issue.pr_number,
            "merge_sha": outcome.merge_sha,
            "merged_at": isoformat(outcome.merged_at),
        }
        evidence = self.evidence.record(
            issue_id=issue.id,
            action=EvidenceAction.MERGE_APPLIED,
            params={"source": outcome.source, "request_id": outcome.request_id},
            result=merge_data,
            request_id=outcome.request_id,
            actor=outcome.source,
        )
        self.timeline.append(
            issue_id=issue.id,
            event_type=TimelineEventType.PR_MERGED,
            event_data={
                **merge_data,
                "from": from_state,
                "to": IssueState.DONE.value,
                "evidence_id": evidence.id,
            },
            actor=outcome.source,
            actor_type=ActorType.WEBHOOK,
            request_id=outcome.request_id,
        )
        return MergeResult(ok=True, issue_id=issue.id)
