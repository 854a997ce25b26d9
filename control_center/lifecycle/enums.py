"""
Canonical enums for the issue lifecycle.

These enums define the allowed values for fields across issues, runs,
verdicts, timeline events and the publish ledger. Storage and API layers
MUST map into these sets; no other string values are valid.
"""

from enum import Enum


class IssueState(str, Enum):
    """Issue status. Mutated only through the state machine."""

    CREATED = "CREATED"
    SPEC_READY = "SPEC_READY"
    IMPLEMENTING_PREP = "IMPLEMENTING_PREP"
    REVIEW_READY = "REVIEW_READY"
    HOLD = "HOLD"
    DONE = "DONE"
    FAILED = "FAILED"


class LoopStep(str, Enum):
    """The nine pipeline stages."""

    S1_PICK_ISSUE = "S1_PICK_ISSUE"
    S2_SPEC_READY = "S2_SPEC_READY"
    S3_IMPLEMENT_PREP = "S3_IMPLEMENT_PREP"
    S4_REVIEW = "S4_REVIEW"
    S5_MERGE = "S5_MERGE"
    S6_DEPLOYMENT_OBSERVE = "S6_DEPLOYMENT_OBSERVE"
    S7_VERIFY_GATE = "S7_VERIFY_GATE"
    S8_CLOSE = "S8_CLOSE"
    S9_REMEDIATE = "S9_REMEDIATE"


class BlockerCode(str, Enum):
    """Reasons a step cannot proceed."""

    NO_GITHUB_LINK = "NO_GITHUB_LINK"
    NO_PR_LINKED = "NO_PR_LINKED"
    UNKNOWN_STATE = "UNKNOWN_STATE"
    ON_HOLD = "ON_HOLD"


class Verdict(str, Enum):
    """Binary verification outcome. Never null."""

    GREEN = "GREEN"
    RED = "RED"


class CheckStatus(str, Enum):
    """Status of an individual verification check."""

    PASS = "pass"
    FAIL = "fail"


class RunStatus(str, Enum):
    """Lifecycle of an issue run."""

    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


class ActorType(str, Enum):
    """Types of actors that can cause events."""

    HUMAN = "human"
    AGENT = "agent"
    SYSTEM = "system"
    WEBHOOK = "webhook"


class TimelineEventType(str, Enum):
    """Types of timeline events."""

    ISSUE_CREATED = "ISSUE_CREATED"
    STATE_CHANGED = "STATE_CHANGED"
    RUN_STARTED = "RUN_STARTED"
    RUN_FINISHED = "RUN_FINISHED"
    EVIDENCE_RECORDED = "EVIDENCE_RECORDED"
    VERDICT_SET = "VERDICT_SET"
    EVIDENCE_LINKED = "EVIDENCE_LINKED"
    PR_MERGED = "PR_MERGED"
    PUBLISHED = "PUBLISHED"
    ERROR_OCCURRED = "ERROR_OCCURRED"


class EvidenceAction(str, Enum):
    """What an evidence record describes."""

    VERIFICATION = "verification"
    MERGE_APPLIED = "merge_applied"
    RUN_OUTPUT = "run_output"


class PublishAction(str, Enum):
    """Outcome of a single publish attempt."""

    CREATE = "create"
    UPDATE = "update"
    SKIP = "skip"
