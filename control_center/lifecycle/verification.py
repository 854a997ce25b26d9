"""
S7 verification gate.

Validates evidence, evaluates the verdict and stores it against a run.
Verification is evidence-only: the issue status is never changed here.
"""

from typing import Optional

import structlog
from sqlalchemy.orm import Session

from ..config import Settings, get_settings
from .issues import IssueService, RunService
from .redaction import check_payload_size, redact_secrets
from .schemas import VerifyRequest
from .verdict import ensure_valid_evidence, evaluate_verdict, normalize_required_checks
from .verdict_store import StoredVerdict, VerdictStore

logger = structlog.get_logger()


class VerificationService:
    def __init__(self, db: Session, settings: Optional[Settings] = None):
        self.db = db
        self.settings = settings or get_settings()
        self.issues = IssueService(db)
        self.runs = RunService(db)
        self.verdicts = VerdictStore(db)

    def verify(self, identifier: str, run_id: str, request: VerifyRequest) -> StoredVerdict:
        """Evaluate and store a verdict for ``run_id``.

        Raises:
            ValidationError: Malformed or oversized evidence (before any write)
            NotFoundError: Unknown issue, or a run that is not the issue's
            StorageError: If the verdict cannot be stored
        """
        ensure_valid_evidence(request.evidence)
        required = normalize_required_checks(request.required_checks)

        issue = self.issues.get_by_identifier(identifier)
        run = self.runs.get_for_issue(issue.id, run_id)

        result = evaluate_verdict(
            request.evidence,
            required_checks=required,
            default_required_checks=self.settings.default_required_checks(),
        )
        # Size bound is enforced outside the store transaction
        check_payload_size(
            {"required_checks": list(result.evaluation_rules)},
            redact_secrets(request.evidence),
            self.settings.evidence_max_payload_bytes,
        )
        stored = self.verdicts.store_verdict(
            issue_id=issue.id,
            run_id=run.id,
            result=result,
            evidence=request.evidence,
            request_id=request.request_id,
            actor=request.actor,
            actor_type=request.actor_type,
        )
        logger.info(
            "verification_completed",
            issue_id=issue.id,
            run_id=run.id,
            verdict=stored.verdict,
            created=stored.created,
        )
        return stored
