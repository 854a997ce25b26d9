"""
Evidence recorder.

Writes immutable, redacted evidence rows. Params and result are redacted
first, then bounded (combined size) and hashed, so stored JSON and hashes
never see a secret.
"""

from typing import Any, Optional, Union

from sqlalchemy.orm import Session

from ..config import get_settings
from ..db.models import EvidenceModel
from .enums import EvidenceAction
from .primitives import generate_id, utc_now
from .redaction import check_payload_size, compute_hash, redact_secrets


class EvidenceRecorder:
    """Stage evidence rows in the caller's transaction."""

    def __init__(self, db: Session, max_payload_bytes: Optional[int] = None):
        self.db = db
        self.max_payload_bytes = (
            max_payload_bytes
            if max_payload_bytes is not None
            else get_settings().evidence_max_payload_bytes
        )

    def record(
        self,
        issue_id: str,
        action: Union[EvidenceAction, str],
        params: Any = None,
        result: Any = None,
        run_id: Optional[str] = None,
        request_id: Optional[str] = None,
        actor: Optional[str] = None,
    ) -> EvidenceModel:
        """Redact, bound, hash and stage one evidence row.

        Raises:
            ValidationError: ``EVIDENCE_PAYLOAD_TOO_LARGE`` if the redacted
                payload exceeds the configured bound
        """
        redacted_params = redact_secrets(params if params is not None else {})
        redacted_result = redact_secrets(result if result is not None else {})
        check_payload_size(redacted_params, redacted_result, self.max_payload_bytes)

        evidence = EvidenceModel(
            id=generate_id(),
            issue_id=issue_id,
            run_id=run_id,
            action=EvidenceAction(action).value,
            params=redacted_params,
            result=redacted_result,
            params_hash=compute_hash(redacted_params),
            result_hash=compute_hash(redacted_result),
            request_id=request_id,
            actor=actor,
            created_at=utc_now(),
        )
        self.db.add(evidence)
        self.db.flush()
        return evidence

    def get(self, evidence_id: str) -> Optional[EvidenceModel]:
        return self.db.query(EvidenceModel).filter(EvidenceModel.id == evidence_id).first()

    def find(
        self,
        issue_id: str,
        run_id: Optional[str],
        action: Union[EvidenceAction, str],
        result_hash: str,
    ) -> Optional[EvidenceModel]:
        """Return the earliest evidence row matching the natural key, if any."""
        return (
            self.db.query(EvidenceModel)
            .filter(
                EvidenceModel.issue_id == issue_id,
                EvidenceModel.run_id == run_id,
                EvidenceModel.action == EvidenceAction(action).value,
                EvidenceModel.result_hash == result_hash,
            )
            .order_by(EvidenceModel.created_at.asc(), EvidenceModel.id.asc())
            .first()
        )
