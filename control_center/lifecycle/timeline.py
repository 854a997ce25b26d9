"""
Timeline event store.

Append-only log of typed events per issue. Total read order is
``(occurred_at ASC, id ASC)``; the autoincrement id breaks ties between
events that share a timestamp.

``total`` is counted in a separate query with the same predicate as the
page, so under concurrent appends the two may briefly disagree.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..config import get_settings
from ..db.models import TimelineEventModel
from .enums import ActorType, TimelineEventType
from .errors import ValidationError
from .primitives import utc_now


def parse_event_type(value: Union[TimelineEventType, str]) -> TimelineEventType:
    if isinstance(value, TimelineEventType):
        return value
    try:
        return TimelineEventType(value)
    except ValueError:
        raise ValidationError(
            f"Invalid event type: {value!r}",
            code="INVALID_EVENT_TYPE",
            details={"allowed": [t.value for t in TimelineEventType]},
        ) from None


@dataclass
class TimelinePage:
    events: List[TimelineEventModel]
    total: int
    limit: int
    offset: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "events": [e.to_dict() for e in self.events],
            "total": self.total,
            "limit": self.limit,
            "offset": self.offset,
        }


class TimelineStore:
    """Append and read timeline events within the caller's session."""

    def __init__(self, db: Session):
        self.db = db

    def append(
        self,
        issue_id: str,
        event_type: Union[TimelineEventType, str],
        event_data: Optional[Dict[str, Any]] = None,
        actor: str = "system",
        actor_type: Union[ActorType, str] = ActorType.SYSTEM,
        run_id: Optional[str] = None,
        request_id: Optional[str] = None,
        occurred_at: Optional[datetime] = None,
    ) -> TimelineEventModel:
        """Stage an event in the current transaction.

        Only flushes; the caller owns the commit.
        """
        event = TimelineEventModel(
            issue_id=issue_id,
            run_id=run_id,
            event_type=parse_event_type(event_type).value,
            event_data=event_data or {},
            actor=actor,
            actor_type=ActorType(actor_type).value,
            request_id=request_id,
            occurred_at=occurred_at or utc_now(),
        )
        self.db.add(event)
        self.db.flush()
        return event

    def _filtered(self, issue_id: str, event_type: Optional[TimelineEventType]):
        query = self.db.query(TimelineEventModel).filter(
            TimelineEventModel.issue_id == issue_id
        )
        if event_type is not None:
            query = query.filter(TimelineEventModel.event_type == event_type.value)
        return query

    def list_by_issue(
        self,
        issue_id: str,
        event_type: Optional[Union[TimelineEventType, str]] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> TimelinePage:
        """Return one page of events plus the filtered total.

        ``limit`` defaults to the configured default and is capped at the
        configured maximum (500).
        """
        settings = get_settings()
        if limit is None:
            limit = settings.timeline_default_limit
        if limit < 1:
            raise ValidationError("limit must be at least 1", details={"limit": limit})
        if offset < 0:
            raise ValidationError("offset must not be negative", details={"offset": offset})
        limit = min(limit, settings.timeline_max_limit)

        parsed_type = parse_event_type(event_type) if event_type else None

        events = (
            self._filtered(issue_id, parsed_type)
            .order_by(TimelineEventModel.occurred_at.asc(), TimelineEventModel.id.asc())
            .offset(offset)
            .limit(limit)
            .all()
        )
        return TimelinePage(
            events=events,
            total=self.count(issue_id, parsed_type),
            limit=limit,
            offset=offset,
        )

    def count(
        self,
        issue_id: str,
        event_type: Optional[Union[TimelineEventType, str]] = None,
    ) -> int:
        parsed_type = parse_event_type(event_type) if event_type else None
        return (
            self._filtered(issue_id, parsed_type)
            .with_entities(func.count(TimelineEventModel.id))
            .scalar()
            or 0
        )
