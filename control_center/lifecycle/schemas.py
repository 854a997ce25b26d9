"""
Request models for the lifecycle API.

All models forbid unknown fields so that typos fail validation instead of
being silently ignored.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, conint, constr, model_validator

from .enums import ActorType, IssueState, LoopStep, PublishAction, RunStatus


class IssueCreate(BaseModel):
    """A new issue. It always starts in CREATED."""

    model_config = ConfigDict(extra="forbid")

    title: constr(min_length=1, max_length=500)
    canonical_id: Optional[constr(min_length=1, max_length=64)] = None
    github_url: Optional[constr(max_length=500)] = None
    repository: Optional[constr(min_length=3, max_length=255)] = Field(
        None, description="owner/repo of the pull request"
    )
    pr_number: Optional[conint(ge=1)] = None
    pr_url: Optional[constr(max_length=500)] = None
    actor: constr(min_length=1, max_length=128) = "system"
    actor_type: ActorType = ActorType.SYSTEM
    request_id: Optional[constr(min_length=1, max_length=128)] = None


class PullRequestLink(BaseModel):
    """Associate a pull request with an issue."""

    model_config = ConfigDict(extra="forbid")

    repository: constr(min_length=3, max_length=255)
    pr_number: conint(ge=1)
    pr_url: Optional[constr(max_length=500)] = None


class TransitionRequest(BaseModel):
    """Move an issue to ``to_state``."""

    model_config = ConfigDict(extra="forbid")

    to_state: IssueState
    reason: Optional[constr(max_length=2000)] = None
    actor: constr(min_length=1, max_length=128) = "system"
    actor_type: ActorType = ActorType.SYSTEM
    request_id: Optional[constr(min_length=1, max_length=128)] = None


class RunStart(BaseModel):
    model_config = ConfigDict(extra="forbid")

    step: Optional[LoopStep] = None
    actor: constr(min_length=1, max_length=128) = "system"
    actor_type: ActorType = ActorType.SYSTEM
    request_id: Optional[constr(min_length=1, max_length=128)] = None


class RunFinish(BaseModel):
    model_config = ConfigDict(extra="forbid")

    status: RunStatus = Field(..., description="SUCCEEDED or FAILED")
    output: Optional[Dict[str, Any]] = Field(
        None, description="Recorded as run_output evidence after redaction"
    )
    actor: constr(min_length=1, max_length=128) = "system"
    actor_type: ActorType = ActorType.SYSTEM
    request_id: Optional[constr(min_length=1, max_length=128)] = None


class VerifyRequest(BaseModel):
    """Verification evidence for a run.

    ``evidence`` is validated by the verdict evaluator, not here, so that a
    malformed payload is reported with the evaluator's message.
    """

    model_config = ConfigDict(extra="forbid")

    evidence: Any
    required_checks: Optional[List[constr(min_length=1, max_length=64)]] = None
    actor: constr(min_length=1, max_length=128) = "system"
    actor_type: ActorType = ActorType.SYSTEM
    request_id: Optional[constr(min_length=1, max_length=128)] = None


class MergeOutcome(BaseModel):
    """A merged pull request reported by a webhook or operator.

    Identifies the issue either by ``issue_id`` (any identifier form) or by
    ``repository`` + ``pr_number``.
    """

    model_config = ConfigDict(extra="forbid")

    issue_id: Optional[constr(min_length=1, max_length=100)] = None
    repository: Optional[constr(min_length=3, max_length=255)] = None
    pr_number: Optional[conint(ge=1)] = None
    pr_url: Optional[constr(max_length=500)] = None
    merge_sha: constr(min_length=7, max_length=64)
    merged_at: datetime
    request_id: Optional[constr(min_length=1, max_length=128)] = None
    source: constr(min_length=1, max_length=128) = "webhook"

    @model_validator(mode="after")
    def require_issue_reference(self) -> "MergeOutcome":
        if self.issue_id is None and (self.repository is None or self.pr_number is None):
            raise ValueError("Either 'issue_id' or 'repository' + 'pr_number' must be provided")
        return self


class PublishItemIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    action: PublishAction
    issue_id: Optional[constr(min_length=1, max_length=36)] = None
    canonical_id: Optional[constr(min_length=1, max_length=64)] = None
    reason: Optional[constr(max_length=2000)] = None
    result_json: Optional[Union[Dict[str, Any], List[Any]]] = None


class PublishBatchCreate(BaseModel):
    """One publish operation and the outcome of each attempt in it."""

    model_config = ConfigDict(extra="forbid")

    session_id: constr(min_length=1, max_length=128)
    request_id: Optional[constr(min_length=1, max_length=128)] = None
    items: List[PublishItemIn] = Field(..., min_length=1, max_length=1000)
