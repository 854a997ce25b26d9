"""
Publish ledger.

Append-only audit trail of publish operations. A batch groups the attempts
made in one operation; each item records its action and a bounded copy of
the provider's result. A written batch is never changed: corrections are a
new batch.

Result bounding: the compact JSON form of ``result_json`` is measured in
UTF-8 bytes. Above the bound the value is replaced with ``{}`` and the item
is flagged ``truncated``; the oversized payload is not kept anywhere.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import get_settings
from ..db.base import transaction
from ..db.models import IssueModel, PublishBatchModel, PublishItemModel
from .enums import ActorType, PublishAction, TimelineEventType
from .errors import NotFoundError, StorageError, ValidationError
from .primitives import generate_id, utc_now
from .redaction import compute_hash
from .schemas import PublishItemIn
from .timeline import TimelineStore

logger = logging.getLogger(__name__)

MAX_RESULT_JSON_BYTES = 32768


def bound_result_json(
    value: Any, max_bytes: int = MAX_RESULT_JSON_BYTES
) -> Tuple[Any, bool]:
    """Return ``(stored_value, truncated)`` for a publish result.

    ``None`` stays ``None``. Objects and arrays are treated alike.
    """
    if value is None:
        return None, False
    size = len(json.dumps(value, separators=(",", ":"), ensure_ascii=False).encode("utf-8"))
    if size > max_bytes:
        return {}, True
    return value, False


def compute_batch_hash(session_id: str, items: Sequence[PublishItemIn]) -> str:
    return compute_hash(
        {
            "session_id": session_id,
            "items": [
                {
                    "position": position,
                    "action": item.action.value,
                    "issue_id": item.issue_id,
                    "canonical_id": item.canonical_id,
                }
                for position, item in enumerate(items)
            ],
        }
    )


@dataclass
class BatchPage:
    batches: List[PublishBatchModel]
    items: Optional[Dict[str, List[PublishItemModel]]]
    limit: int
    offset: int

    def to_dict(self) -> Dict[str, Any]:
        rendered = []
        for batch in self.batches:
            body = batch.to_dict()
            if self.items is not None:
                body["items"] = [i.to_dict() for i in self.items.get(batch.id, [])]
            rendered.append(body)
        return {"batches": rendered, "limit": self.limit, "offset": self.offset}


def _page_limit(limit: Optional[int], default: int, maximum: int) -> int:
    if limit is None:
        return default
    if limit < 1:
        raise ValidationError("limit must be at least 1", details={"limit": limit})
    return min(limit, maximum)


class PublishLedger:
    """Append and query publish batches."""

    def __init__(self, db: Session, max_result_bytes: Optional[int] = None):
        self.db = db
        self.settings = get_settings()
        self.timeline = TimelineStore(db)
        self.max_result_bytes = (
            max_result_bytes
            if max_result_bytes is not None
            else self.settings.publish_result_max_bytes
        )

    def append_batch(
        self,
        session_id: str,
        items: Sequence[PublishItemIn],
        request_id: Optional[str] = None,
    ) -> PublishBatchModel:
        """Write a batch and all of its items in one transaction."""
        if not session_id:
            raise ValidationError("session_id is required")
        if not items:
            raise ValidationError("A publish batch needs at least one item")

        counts = {action: 0 for action in PublishAction}
        for item in items:
            counts[item.action] += 1

        now = utc_now()
        batch = PublishBatchModel(
            id=generate_id(),
            session_id=session_id,
            request_id=request_id,
            batch_hash=compute_batch_hash(session_id, items),
            total_items=len(items),
            created_count=counts[PublishAction.CREATE],
            updated_count=counts[PublishAction.UPDATE],
            skipped_count=counts[PublishAction.SKIP],
            created_at=now,
        )

        issue_ids = {item.issue_id for item in items if item.issue_id}
        known = set()
        if issue_ids:
            rows = self.db.query(IssueModel.id).filter(IssueModel.id.in_(issue_ids))
            known = {row.id for row in rows}
        unknown = sorted(issue_ids - known)
        if unknown:
            raise ValidationError(
                "Publish items reference unknown issues",
                code="UNKNOWN_ISSUE",
                details={"issue_ids": unknown},
            )

        truncated_positions = []
        try:
            with transaction(self.db):
                self.db.add(batch)
                self.db.flush()
                for item in items:
                    if item.issue_id and item.action != PublishAction.SKIP:
                        self.timeline.append(
                            issue_id=item.issue_id,
                            event_type=TimelineEventType.PUBLISHED,
                            event_data={
                                "batch_id": batch.id,
                                "action": item.action.value,
                                "canonical_id": item.canonical_id,
                            },
                            actor=session_id,
                            actor_type=ActorType.HUMAN,
                            request_id=request_id,
                            occurred_at=now,
                        )
                for position, item in enumerate(items):
                    stored, truncated = bound_result_json(item.result_json, self.max_result_bytes)
                    if truncated:
                        truncated_positions.append(position)
                    self.db.add(
                        PublishItemModel(
                            id=generate_id(),
                            batch_id=batch.id,
                            position=position,
                            issue_id=item.issue_id,
                            canonical_id=item.canonical_id,
                            action=item.action.value,
                            reason=item.reason,
                            result_json=stored,
                            truncated=truncated,
                            created_at=now,
                        )
                    )
                self.db.flush()
        except SQLAlchemyError:
            logger.exception("Failed to append publish batch for session %s", session_id)
            raise StorageError("Failed to append publish batch") from None

        if truncated_positions:
            logger.warning(
                "Publish batch %s: result_json truncated at positions %s",
                batch.id,
                truncated_positions,
            )
        return batch

    def get_batch(self, batch_id: str) -> PublishBatchModel:
        batch = self.db.get(PublishBatchModel, batch_id)
        if batch is None:
            raise NotFoundError(f"Publish batch '{batch_id}' not found", code="BATCH_NOT_FOUND")
        return batch

    def query_batches_by_session(
        self,
        session_id: str,
        limit: Optional[int] = None,
        offset: int = 0,
        include_items: bool = False,
    ) -> BatchPage:
        """Batches for a session, newest first (limit capped at 100)."""
        limit = _page_limit(
            limit,
            self.settings.publish_batches_default_limit,
            self.settings.publish_batches_max_limit,
        )
        if offset < 0:
            raise ValidationError("offset must not be negative", details={"offset": offset})

        batches = (
            self.db.query(PublishBatchModel)
            .filter(PublishBatchModel.session_id == session_id)
            .order_by(PublishBatchModel.created_at.desc(), PublishBatchModel.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )

        items = None
        if include_items:
            items = {batch.id: [] for batch in batches}
            if batches:
                rows = (
                    self.db.query(PublishItemModel)
                    .filter(PublishItemModel.batch_id.in_(list(items)))
                    .order_by(PublishItemModel.batch_id, PublishItemModel.position.asc())
                    .all()
                )
                for row in rows:
                    items[row.batch_id].append(row)

        return BatchPage(batches=batches, items=items, limit=limit, offset=offset)

    def query_items_by_batch_id(
        self, batch_id: str, limit: Optional[int] = None
    ) -> List[PublishItemModel]:
        """Items of a batch in insertion order (limit capped at 500)."""
        limit = _page_limit(
            limit,
            self.settings.publish_items_default_limit,
            self.settings.publish_items_max_limit,
        )
        self.get_batch(batch_id)
        return (
            self.db.query(PublishItemModel)
            .filter(PublishItemModel.batch_id == batch_id)
            .order_by(PublishItemModel.position.asc())
            .limit(limit)
            .all()
        )
