"""
SQLAlchemy Database Models for the issue lifecycle.

One mutable table (``issues``, plus the ``issue_runs`` bookkeeping table) and
six append-only tables. Append-only tables are guarded at the database level
by triggers and at the ORM level by mapper events (see ``append_only``).
Weak back-references only: nothing here is ever cascaded or deleted.
"""

from typing import Any, Dict

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from ..lifecycle.enums import (
    ActorType,
    IssueState,
    LoopStep,
    PublishAction,
    RunStatus,
    TimelineEventType,
    Verdict,
)
from ..lifecycle.primitives import isoformat
from .append_only import register_append_only
from .base import Base


def _values(enum_cls) -> list:
    return [member.value for member in enum_cls]


issue_state_enum = Enum(*_values(IssueState), name="issue_state")
loop_step_enum = Enum(*_values(LoopStep), name="loop_step")
run_status_enum = Enum(*_values(RunStatus), name="run_status")
verdict_enum = Enum(*_values(Verdict), name="verdict")
actor_type_enum = Enum(*_values(ActorType), name="actor_type")
timeline_event_type_enum = Enum(*_values(TimelineEventType), name="timeline_event_type")
publish_action_enum = Enum(*_values(PublishAction), name="publish_action")

# SQLite only autoincrements INTEGER PRIMARY KEY columns
_sequence_pk = BigInteger().with_variant(Integer, "sqlite")


class IssueModel(Base):
    """The central entity. ``status`` is its only lifecycle-mutable column."""

    __tablename__ = "issues"

    id = Column(String(36), primary_key=True)
    public_id = Column(String(8), nullable=False, unique=True, index=True)
    canonical_id = Column(String(64), nullable=True, unique=True, index=True)

    title = Column(String(500), nullable=False)
    status = Column(issue_state_enum, nullable=False, default=IssueState.CREATED.value, index=True)

    github_url = Column(String(500), nullable=True)

    # Pull request correlation (repository is "owner/repo")
    repository = Column(String(255), nullable=True)
    pr_number = Column(Integer, nullable=True)
    pr_url = Column(String(500), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_issues_repository_pr", "repository", "pr_number"),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "public_id": self.public_id,
            "canonical_id": self.canonical_id,
            "title": self.title,
            "status": self.status,
            "github_url": self.github_url,
            "repository": self.repository,
            "pr_number": self.pr_number,
            "pr_url": self.pr_url,
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }


class RunModel(Base):
    """One execution attempt of a pipeline step for an issue."""

    __tablename__ = "issue_runs"

    id = Column(String(36), primary_key=True)
    issue_id = Column(String(36), ForeignKey("issues.id"), nullable=False, index=True)
    step = Column(loop_step_enum, nullable=True)
    status = Column(run_status_enum, nullable=False, default=RunStatus.RUNNING.value)
    request_id = Column(String(128), nullable=True)
    actor = Column(String(128), nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=False)
    finished_at = Column(DateTime(timezone=True), nullable=True)

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "issue_id": self.issue_id,
            "step": self.step,
            "status": self.status,
            "request_id": self.request_id,
            "actor": self.actor,
            "started_at": isoformat(self.started_at),
            "finished_at": isoformat(self.finished_at),
        }


class EvidenceModel(Base):
    """Immutable, redacted record of what a step observed or did."""

    __tablename__ = "evidence"

    id = Column(String(36), primary_key=True)
    issue_id = Column(String(36), ForeignKey("issues.id"), nullable=False, index=True)
    run_id = Column(String(36), ForeignKey("issue_runs.id"), nullable=True, index=True)
    action = Column(String(64), nullable=False)

    params = Column(JSON, nullable=True)
    result = Column(JSON, nullable=True)
    params_hash = Column(String(64), nullable=False)
    result_hash = Column(String(64), nullable=False, index=True)

    request_id = Column(String(128), nullable=True)
    actor = Column(String(128), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_evidence_issue_run_action_hash", "issue_id", "run_id", "action", "result_hash"),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "issue_id": self.issue_id,
            "run_id": self.run_id,
            "action": self.action,
            "params": self.params,
            "result": self.result,
            "params_hash": self.params_hash,
            "result_hash": self.result_hash,
            "request_id": self.request_id,
            "actor": self.actor,
            "created_at": isoformat(self.created_at),
        }


class VerdictModel(Base):
    """GREEN/RED outcome bound to exactly one evidence set.

    The natural key (issue_id, run_id, evidence_hash) makes re-submission of
    identical evidence for the same run resolve to the same row.
    """

    __tablename__ = "verdicts"

    id = Column(String(36), primary_key=True)
    issue_id = Column(String(36), ForeignKey("issues.id"), nullable=False, index=True)
    run_id = Column(String(36), ForeignKey("issue_runs.id"), nullable=False, index=True)
    verdict = Column(verdict_enum, nullable=False)
    rationale = Column(Text, nullable=False)
    failed_checks = Column(JSON, nullable=False)
    evaluation_rules = Column(JSON, nullable=False)
    evidence_id = Column(String(36), ForeignKey("evidence.id"), nullable=False)
    evidence_hash = Column(String(64), nullable=False)
    request_id = Column(String(128), nullable=True)
    evaluated_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "issue_id", "run_id", "evidence_hash", name="uq_verdicts_issue_run_evidence"
        ),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "issue_id": self.issue_id,
            "run_id": self.run_id,
            "verdict": self.verdict,
            "rationale": self.rationale,
            "failed_checks": list(self.failed_checks or []),
            "evaluation_rules": list(self.evaluation_rules or []),
            "evidence_id": self.evidence_id,
            "evidence_hash": self.evidence_hash,
            "request_id": self.request_id,
            "evaluated_at": isoformat(self.evaluated_at),
        }


class EvidenceLinkModel(Base):
    """Immutable association of a verdict with the evidence it judged."""

    __tablename__ = "evidence_links"

    verdict_id = Column(String(36), ForeignKey("verdicts.id"), primary_key=True)
    evidence_id = Column(String(36), ForeignKey("evidence.id"), primary_key=True)
    evidence_hash = Column(String(64), nullable=False)
    linked_at = Column(DateTime(timezone=True), nullable=False)

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "verdict_id": self.verdict_id,
            "evidence_id": self.evidence_id,
            "evidence_hash": self.evidence_hash,
            "linked_at": isoformat(self.linked_at),
        }


class TimelineEventModel(Base):
    """Append-only event. Read order is (occurred_at ASC, id ASC)."""

    __tablename__ = "timeline_events"

    id = Column(_sequence_pk, primary_key=True, autoincrement=True)
    issue_id = Column(String(36), ForeignKey("issues.id"), nullable=False)
    run_id = Column(String(36), nullable=True)
    event_type = Column(timeline_event_type_enum, nullable=False, index=True)
    event_data = Column(JSON, nullable=False)
    actor = Column(String(128), nullable=False)
    actor_type = Column(actor_type_enum, nullable=False)
    request_id = Column(String(128), nullable=True)
    occurred_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_timeline_events_issue_order", "issue_id", "occurred_at", "id"),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "issue_id": self.issue_id,
            "run_id": self.run_id,
            "event_type": self.event_type,
            "event_data": self.event_data,
            "actor": self.actor,
            "actor_type": self.actor_type,
            "request_id": self.request_id,
            "occurred_at": isoformat(self.occurred_at),
        }


class PublishBatchModel(Base):
    """A group of publish attempts made in one operation. Never mutated."""

    __tablename__ = "publish_batches"

    id = Column(String(36), primary_key=True)
    session_id = Column(String(128), nullable=False)
    request_id = Column(String(128), nullable=True)
    batch_hash = Column(String(64), nullable=False)
    total_items = Column(Integer, nullable=False)
    created_count = Column(Integer, nullable=False)
    updated_count = Column(Integer, nullable=False)
    skipped_count = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_publish_batches_session_created", "session_id", "created_at"),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "session_id": self.session_id,
            "request_id": self.request_id,
            "batch_hash": self.batch_hash,
            "total_items": self.total_items,
            "created_count": self.created_count,
            "updated_count": self.updated_count,
            "skipped_count": self.skipped_count,
            "created_at": isoformat(self.created_at),
        }


class PublishItemModel(Base):
    """One publish attempt. ``result_json`` is bounded; see ``truncated``."""

    __tablename__ = "publish_items"

    id = Column(String(36), primary_key=True)
    batch_id = Column(String(36), ForeignKey("publish_batches.id"), nullable=False)
    position = Column(Integer, nullable=False)
    issue_id = Column(String(36), ForeignKey("issues.id"), nullable=True, index=True)
    canonical_id = Column(String(64), nullable=True, index=True)
    action = Column(publish_action_enum, nullable=False)
    reason = Column(Text, nullable=True)
    result_json = Column(JSON(none_as_null=True), nullable=True)
    truncated = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("batch_id", "position", name="uq_publish_items_batch_position"),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "batch_id": self.batch_id,
            "position": self.position,
            "issue_id": self.issue_id,
            "canonical_id": self.canonical_id,
            "action": self.action,
            "reason": self.reason,
            "result_json": self.result_json,
            "truncated": bool(self.truncated),
            "created_at": isoformat(self.created_at),
        }


for _model in (
    EvidenceModel,
    VerdictModel,
    EvidenceLinkModel,
    TimelineEventModel,
    PublishBatchModel,
    PublishItemModel,
):
    register_append_only(_model)
