"""
Lifecycle API Routes.

Thin HTTP mapping over the lifecycle services. Errors propagate as
``ControlCenterError`` and are rendered by the application's handler.
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ..db.base import get_db
from .issues import IssueService, RunService
from .merge import MergeOutcomeApplier
from .publish_ledger import PublishLedger
from .schemas import (
    IssueCreate,
    MergeOutcome,
    PublishBatchCreate,
    PullRequestLink,
    RunFinish,
    RunStart,
    TransitionRequest,
    VerifyRequest,
)
from .timeline import TimelineStore
from .verification import VerificationService

router = APIRouter(tags=["lifecycle"])


# =============================================================================
# Issues
# =============================================================================


@router.post("/issues", status_code=201)
async def create_issue(
    issue: IssueCreate,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Create a new issue in CREATED."""
    db_issue = IssueService(db).create(issue)
    return {"ok": True, "issue": db_issue.to_dict()}


@router.get("/issues")
async def list_issues(
    status: Optional[str] = None,
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """List issues, newest first."""
    issues = IssueService(db).list(status=status, limit=limit, offset=offset)
    return {"issues": [i.to_dict() for i in issues], "limit": limit, "offset": offset}


@router.get("/issues/{identifier}")
async def get_issue(
    identifier: str,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Get an issue by UUID, 8-hex public id or canonical id."""
    service = IssueService(db)
    issue = service.get_by_identifier(identifier)
    body = issue.to_dict()
    body["next_step"] = service.next_step(issue.id).to_dict()
    return body


@router.post("/issues/{identifier}/transitions")
async def transition_issue(
    identifier: str,
    request: TransitionRequest,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Move an issue through the state machine."""
    result = IssueService(db).transition(identifier, request)
    return {
        "ok": True,
        "from": result.from_state.value,
        "to": result.to_state.value,
        "changed": result.changed,
    }


@router.post("/issues/{identifier}/pull-request")
async def link_pull_request(
    identifier: str,
    link: PullRequestLink,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Associate a pull request with an issue."""
    issue = IssueService(db).link_pull_request(identifier, link)
    return {"ok": True, "issue": issue.to_dict()}


# =============================================================================
# Runs and verification
# =============================================================================


@router.post("/issues/{identifier}/runs", status_code=201)
async def start_run(
    identifier: str,
    data: RunStart,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    run = RunService(db).start(identifier, data)
    return {"ok": True, "run": run.to_dict()}


@router.post("/runs/{run_id}/finish")
async def finish_run(
    run_id: str,
    data: RunFinish,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    run = RunService(db).finish(run_id, data)
    return {"ok": True, "run": run.to_dict()}


@router.post("/issues/{identifier}/runs/{run_id}/verify")
async def verify_run(
    identifier: str,
    run_id: str,
    request: VerifyRequest,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Evaluate verification evidence and store the verdict (idempotent)."""
    stored = VerificationService(db).verify(identifier, run_id, request)
    return stored.to_dict()


# =============================================================================
# Timeline
# =============================================================================


@router.get("/timeline")
async def get_timeline(
    issue_id: str,
    event_type: Optional[str] = None,
    limit: Optional[int] = None,
    offset: int = 0,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Events for an issue in (occurred_at, id) order."""
    issue = IssueService(db).get_by_identifier(issue_id)
    page = TimelineStore(db).list_by_issue(
        issue.id, event_type=event_type, limit=limit, offset=offset
    )
    return page.to_dict()


# =============================================================================
# Merge
# =============================================================================


@router.post("/merge/apply")
async def apply_merge(
    outcome: MergeOutcome,
    db: Session = Depends(get_db),
):
    """Apply a merged PR to its issue. Failure is always MESH_UPDATE_FAILED."""
    result = MergeOutcomeApplier(db).apply_outcome(outcome)
    if not result.ok:
        return JSONResponse(status_code=409, content=result.to_dict())
    return result.to_dict()


# =============================================================================
# Publish ledger
# =============================================================================


@router.post("/publish/batches", status_code=201)
async def append_publish_batch(
    data: PublishBatchCreate,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    ledger = PublishLedger(db)
    batch = ledger.append_batch(data.session_id, data.items, request_id=data.request_id)
    return {"ok": True, "batch": batch.to_dict()}


@router.get("/publish/batches")
async def list_publish_batches(
    session_id: str,
    limit: Optional[int] = None,
    offset: int = 0,
    include_items: bool = False,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    """Batches for a session, newest first."""
    page = PublishLedger(db).query_batches_by_session(
        session_id, limit=limit, offset=offset, include_items=include_items
    )
    return page.to_dict()


@router.get("/publish/batches/{batch_id}/items")
async def list_publish_items(
    batch_id: str,
    limit: Optional[int] = None,
    db: Session = Depends(get_db),
) -> Dict[str, Any]:
    items = PublishLedger(db).query_items_by_batch_id(batch_id, limit=limit)
    return {"batch_id": batch_id, "items": [i.to_dict() for i in items]}
