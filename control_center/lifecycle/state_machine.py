"""
Issue state machine.

A closed transition table over ``IssueState`` plus a pure next-step resolver
for the S1-S9 pipeline. There is no implicit any-to-any move: a pair absent
from ``TRANSITIONS`` is rejected. Persistence lives in ``IssueService``
(``issues.py``); nothing in this module performs I/O.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, FrozenSet, Optional, Union

from .enums import BlockerCode, IssueState, LoopStep
from .errors import InvalidTransition, ValidationError

StateLike = Union[IssueState, str]

TERMINAL_STATES: FrozenSet[IssueState] = frozenset({IssueState.DONE, IssueState.FAILED})

TRANSITIONS: Dict[IssueState, FrozenSet[IssueState]] = {
    IssueState.CREATED: frozenset(
        {IssueState.SPEC_READY, IssueState.HOLD, IssueState.FAILED}
    ),
    IssueState.SPEC_READY: frozenset(
        {IssueState.IMPLEMENTING_PREP, IssueState.HOLD, IssueState.FAILED}
    ),
    IssueState.IMPLEMENTING_PREP: frozenset(
        {IssueState.REVIEW_READY, IssueState.HOLD, IssueState.FAILED}
    ),
    # Changes requested at review sends the issue back to implementation
    IssueState.REVIEW_READY: frozenset(
        {IssueState.DONE, IssueState.IMPLEMENTING_PREP, IssueState.HOLD, IssueState.FAILED}
    ),
    IssueState.HOLD: frozenset(
        {
            IssueState.CREATED,
            IssueState.SPEC_READY,
            IssueState.IMPLEMENTING_PREP,
            IssueState.REVIEW_READY,
            IssueState.FAILED,
        }
    ),
    IssueState.DONE: frozenset(),
    IssueState.FAILED: frozenset(),
}


def parse_state(value: StateLike) -> IssueState:
    """Coerce a raw value into ``IssueState`` or raise ``ValidationError``."""
    if isinstance(value, IssueState):
        return value
    try:
        return IssueState(value)
    except ValueError:
        raise ValidationError(
            f"Unknown issue state: {value!r}",
            code="INVALID_STATE",
            details={"allowed": [s.value for s in IssueState]},
        ) from None


def is_terminal(state: StateLike) -> bool:
    """True if no transition leaves ``state``."""
    return parse_state(state) in TERMINAL_STATES


def can_transition(from_state: StateLike, to_state: StateLike) -> bool:
    """Pure check against the transition table.

    A self-transition is not a move and returns False here; callers that
    want idempotent retries use ``transition`` which treats it as a no-op.
    """
    source = parse_state(from_state)
    target = parse_state(to_state)
    return target in TRANSITIONS[source]


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of applying a transition."""

    from_state: IssueState
    to_state: IssueState
    changed: bool


def transition(current: StateLike, target: StateLike) -> TransitionResult:
    """Compute the result of moving ``current`` to ``target``.

    - Same state: no-op success (``changed=False``).
    - Terminal source: always rejected.
    - Anything not in the table: ``InvalidTransition``.
    """
    source = parse_state(current)
    destination = parse_state(target)

    if source == destination:
        return TransitionResult(source, destination, changed=False)

    if source in TERMINAL_STATES:
        raise InvalidTransition(
            source.value,
            destination.value,
            f"Issue is in terminal state {source.value}",
        )

    if destination not in TRANSITIONS[source]:
        raise InvalidTransition(source.value, destination.value)

    return TransitionResult(source, destination, changed=True)


@dataclass(frozen=True)
class StepResolution:
    """Next pipeline step for an issue, or why there is none."""

    step: Optional[LoopStep]
    blocked: bool
    blocker_code: Optional[BlockerCode] = None
    blocker_message: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "step": self.step.value if self.step else None,
            "blocked": self.blocked,
            "blocker_code": self.blocker_code.value if self.blocker_code else None,
            "blocker_message": self.blocker_message,
        }


def resolve_next_step(
    status: Optional[str],
    github_url: Optional[str] = None,
    pr_url: Optional[str] = None,
) -> StepResolution:
    """Deterministically resolve the next step for an issue.

    Unknown or missing states fail closed with ``UNKNOWN_STATE``.
    """
    try:
        state = parse_state(status) if status else None
    except ValidationError:
        state = None

    if state is None:
        return StepResolution(
            step=None,
            blocked=True,
            blocker_code=BlockerCode.UNKNOWN_STATE,
            blocker_message=f"Unknown issue status: {status!r}",
        )

    if state == IssueState.FAILED:
        return StepResolution(
            step=LoopStep.S9_REMEDIATE,
            blocked=False,
        )

    if state == IssueState.DONE:
        # S6 observation is external; the next step owned here is the verify gate
        return StepResolution(step=LoopStep.S7_VERIFY_GATE, blocked=False)

    if state == IssueState.HOLD:
        return StepResolution(
            step=None,
            blocked=True,
            blocker_code=BlockerCode.ON_HOLD,
            blocker_message="Issue is on hold and must be released by an operator",
        )

    if state == IssueState.CREATED:
        if not github_url or not github_url.strip():
            return StepResolution(
                step=None,
                blocked=True,
                blocker_code=BlockerCode.NO_GITHUB_LINK,
                blocker_message="S1 (Pick Issue) requires GitHub issue link",
            )
        return StepResolution(step=LoopStep.S1_PICK_ISSUE, blocked=False)

    if state == IssueState.SPEC_READY:
        return StepResolution(step=LoopStep.S3_IMPLEMENT_PREP, blocked=False)

    if state == IssueState.IMPLEMENTING_PREP:
        return StepResolution(step=LoopStep.S4_REVIEW, blocked=False)

    # REVIEW_READY
    if not pr_url or not pr_url.strip():
        return StepResolution(
            step=None,
            blocked=True,
            blocker_code=BlockerCode.NO_PR_LINKED,
            blocker_message="S5 (Merge) requires a linked pull request",
        )
    return StepResolution(step=LoopStep.S5_MERGE, blocked=False)
