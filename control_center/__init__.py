"""
Control Center

Issue lifecycle orchestration for the S1-S9 delivery pipeline: state
machine, verification gate, merge outcome application, timeline and publish
ledger.
"""

import importlib.metadata

__version__ = importlib.metadata.version("control-center")

from .lifecycle import (
    InvalidTransition,
    IssueState,
    LoopStep,
    Verdict,
    can_transition,
    evaluate_verdict,
    resolve_next_step,
    transition,
)

__all__ = [
    "InvalidTransition",
    "IssueState",
    "LoopStep",
    "Verdict",
    "can_transition",
    "evaluate_verdict",
    "resolve_next_step",
    "transition",
]
