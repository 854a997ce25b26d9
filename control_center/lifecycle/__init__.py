"""
Issue lifecycle core.

Only the storage-free parts are exported here (``control_center.db.models``
imports the enums from this package). Services that need a ``Session`` are
imported from their modules: ``issues``, ``verification``, ``verdict_store``,
``timeline``, ``evidence``, ``merge`` and ``publish_ledger``.
"""

from .enums import (
    ActorType,
    BlockerCode,
    CheckStatus,
    EvidenceAction,
    IssueState,
    LoopStep,
    PublishAction,
    RunStatus,
    TimelineEventType,
    Verdict,
)
from .errors import (
    ConflictError,
    ControlCenterError,
    ImmutabilityError,
    InvalidTransition,
    NotFoundError,
    StorageError,
    ValidationError,
)
from .identifiers import IdentifierKind, parse_identifier
from .redaction import compute_hash, redact_secrets, stable_stringify
from .state_machine import (
    TERMINAL_STATES,
    TRANSITIONS,
    StepResolution,
    TransitionResult,
    can_transition,
    is_terminal,
    resolve_next_step,
    transition,
)
from .verdict import (
    VerdictResult,
    evaluate_verdict,
    validate_verification_evidence,
)

__all__ = [
    # Enums
    "ActorType",
    "BlockerCode",
    "CheckStatus",
    "EvidenceAction",
    "IssueState",
    "LoopStep",
    "PublishAction",
    "RunStatus",
    "TimelineEventType",
    "Verdict",
    # Errors
    "ConflictError",
    "ControlCenterError",
    "ImmutabilityError",
    "InvalidTransition",
    "NotFoundError",
    "StorageError",
    "ValidationError",
    # Identifiers
    "IdentifierKind",
    "parse_identifier",
    # Evidence hashing
    "compute_hash",
    "redact_secrets",
    "stable_stringify",
    # State machine
    "TERMINAL_STATES",
    "TRANSITIONS",
    "StepResolution",
    "TransitionResult",
    "can_transition",
    "is_terminal",
    "resolve_next_step",
    "transition",
    # Verdicts
    "VerdictResult",
    "evaluate_verdict",
    "validate_verification_evidence",
]
