"""
Verdict/evidence linker and store.

A verdict is keyed on ``(issue_id, run_id, evidence_hash)`` where the hash is
the SHA-256 of the key-sorted evidence as submitted. Redaction applies only
to the stored evidence row, so two submissions that differ only under a
secret-looking key still get distinct verdicts. Re-submitting identical
evidence for the same run returns the stored verdict instead of inserting a
second one; the first submission's evaluation rules are kept.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

import structlog
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..db.base import transaction
from ..db.models import EvidenceLinkModel, EvidenceModel, VerdictModel
from .enums import ActorType, EvidenceAction, TimelineEventType
from .errors import NotFoundError, StorageError
from .evidence import EvidenceRecorder
from .primitives import as_utc, generate_id, isoformat, utc_now
from .redaction import compute_hash
from .timeline import TimelineStore
from .verdict import VerdictResult

logger = structlog.get_logger()


@dataclass
class StoredVerdict:
    verdict_id: str
    evidence_id: str
    evidence_hash: str
    verdict: str
    rationale: str
    failed_checks: List[str]
    evaluation_rules: List[str]
    evaluated_at: datetime
    created: bool

    @classmethod
    def from_model(cls, model: VerdictModel, created: bool) -> "StoredVerdict":
        return cls(
            verdict_id=model.id,
            evidence_id=model.evidence_id,
            evidence_hash=model.evidence_hash,
            verdict=model.verdict,
            rationale=model.rationale,
            failed_checks=list(model.failed_checks or []),
            evaluation_rules=list(model.evaluation_rules or []),
            evaluated_at=as_utc(model.evaluated_at),
            created=created,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "verdict": self.verdict,
            "verdict_id": self.verdict_id,
            "evidence_id": self.evidence_id,
            "evidence_hash": self.evidence_hash,
            "evaluated_at": isoformat(self.evaluated_at),
            "rationale": self.rationale,
            "failed_checks": self.failed_checks,
            "evaluation_rules": self.evaluation_rules,
            "created": self.created,
        }


def evidence_hash_for(evidence: Any) -> str:
    """Idempotency hash of verification evidence, taken before redaction."""
    return compute_hash(evidence)


class VerdictStore:
    """Persist verdicts and their evidence as immutable pairs."""

    def __init__(self, db: Session):
        self.db = db
        self.evidence = EvidenceRecorder(db)
        self.timeline = TimelineStore(db)

    def find(self, issue_id: str, run_id: str, evidence_hash: str) -> Optional[VerdictModel]:
        return (
            self.db.query(VerdictModel)
            .filter(
                VerdictModel.issue_id == issue_id,
                VerdictModel.run_id == run_id,
                VerdictModel.evidence_hash == evidence_hash,
            )
            .first()
        )

    def list_by_run(self, issue_id: str, run_id: str) -> List[VerdictModel]:
        return (
            self.db.query(VerdictModel)
            .filter(VerdictModel.issue_id == issue_id, VerdictModel.run_id == run_id)
            .order_by(VerdictModel.evaluated_at.asc(), VerdictModel.id.asc())
            .all()
        )

    def link_evidence(
        self,
        verdict_id: str,
        evidence_id: str,
        evidence_hash: Optional[str] = None,
    ) -> EvidenceLinkModel:
        """Link a verdict to evidence. Existing links are returned unchanged.

        Only flushes; the caller owns the commit.
        """
        existing = self.db.get(EvidenceLinkModel, (verdict_id, evidence_id))
        if existing is not None:
            return existing

        verdict = self.db.get(VerdictModel, verdict_id)
        if verdict is None:
            raise NotFoundError(f"Verdict {verdict_id} not found", code="VERDICT_NOT_FOUND")
        evidence = self.db.get(EvidenceModel, evidence_id)
        if evidence is None:
            raise NotFoundError(f"Evidence {evidence_id} not found", code="EVIDENCE_NOT_FOUND")

        link = EvidenceLinkModel(
            verdict_id=verdict_id,
            evidence_id=evidence_id,
            evidence_hash=evidence_hash or evidence.result_hash,
            linked_at=utc_now(),
        )
        self.db.add(link)
        self.db.flush()
        self.timeline.append(
            issue_id=verdict.issue_id,
            run_id=verdict.run_id,
            event_type=TimelineEventType.EVIDENCE_LINKED,
            event_data={"verdict_id": verdict_id, "evidence_id": evidence_id},
            request_id=verdict.request_id,
        )
        return link

    def store_verdict(
        self,
        issue_id: str,
        run_id: str,
        result: VerdictResult,
        evidence: Any,
        request_id: Optional[str] = None,
        actor: str = "system",
        actor_type: Union[ActorType, str] = ActorType.SYSTEM,
    ) -> StoredVerdict:
        """Store a verdict with its evidence in one transaction.

        Returns the existing verdict when ``(issue_id, run_id, evidence)``
        was stored before. A concurrent insert of the same key surfaces as an
        ``IntegrityError``; that path rolls back and returns the winner.

        Raises:
            StorageError: If the transaction fails for any other reason
        """
        evidence_hash = evidence_hash_for(evidence)
        log = logger.bind(issue_id=issue_id, run_id=run_id, evidence_hash=evidence_hash)

        existing = self.find(issue_id, run_id, evidence_hash)
        if existing is not None:
            log.info("verdict_idempotent_hit", verdict_id=existing.id)
            return StoredVerdict.from_model(existing, created=False)

        try:
            with transaction(self.db):
                verdict = self._insert(
                    issue_id, run_id, result, evidence, evidence_hash,
                    request_id, actor, actor_type,
                )
        except IntegrityError:
            winner = self.find(issue_id, run_id, evidence_hash)
            if winner is not None:
                log.info("verdict_race_resolved", verdict_id=winner.id)
                return StoredVerdict.from_model(winner, created=False)
            log.exception("verdict_store_failed")
            raise StorageError("Failed to store verdict") from None
        except SQLAlchemyError:
            log.exception("verdict_store_failed")
            raise StorageError("Failed to store verdict") from None

        log.info("verdict_stored", verdict_id=verdict.id, verdict=verdict.verdict)
        return StoredVerdict.from_model(verdict, created=True)

    def _insert(
        self,
        issue_id: str,
        run_id: str,
        result: VerdictResult,
        evidence: Any,
        evidence_hash: str,
        request_id: Optional[str],
        actor: str,
        actor_type: Union[ActorType, str],
    ) -> VerdictModel:
        evidence_row = self.evidence.record(
            issue_id=issue_id,
            action=EvidenceAction.VERIFICATION,
            params={"required_checks": list(result.evaluation_rules)},
            result=evidence,
            run_id=run_id,
            request_id=request_id,
            actor=actor,
        )

        verdict = VerdictModel(
            id=generate_id(),
            issue_id=issue_id,
            run_id=run_id,
            verdict=result.verdict.value,
            rationale=result.rationale,
            failed_checks=list(result.failed_checks),
            evaluation_rules=list(result.evaluation_rules),
            evidence_id=evidence_row.id,
            evidence_hash=evidence_hash,
            request_id=request_id,
            evaluated_at=utc_now(),
        )
        self.db.add(verdict)
        self.db.flush()

        self.link_evidence(verdict.id, evidence_row.id, evidence_hash)

        self.timeline.append(
            issue_id=issue_id,
            run_id=run_id,
            event_type=TimelineEventType.VERDICT_SET,
            event_data={
                "verdict_id": verdict.id,
                "evidence_id": evidence_row.id,
                "verdict": verdict.verdict,
                "failed_checks": list(result.failed_checks),
            },
            actor=actor,
            actor_type=actor_type,
            request_id=request_id,
        )
        return verdict
