"""
Verdict evaluator.

Converts verification evidence into a binary GREEN/RED decision. The
evaluation is a pure function of its input: no clock, no randomness and no
I/O, so identical evidence always produces an identical result.

Evidence is a mapping of checks. Flat entries carry a status directly::

    {"build": "pass", "tests": "pass", "security": "fail"}

Structured observations are reduced to named checks:

- ``deploymentObservations`` -> ``deployment`` (one authentic, successful deployment)
- ``healthChecks`` -> ``health_checks`` (every endpoint answered 2xx)
- ``integrationTests`` -> ``integration_tests`` (zero failures)
- ``errorRates`` -> ``error_rates`` (current rate not above threshold)

A required check that is absent fails. There is no implicit success.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .enums import CheckStatus, Verdict
from .errors import ValidationError

logger = logging.getLogger(__name__)

GREEN_RATIONALE = "All verification checks passed"

DEFAULT_REQUIRED_CHECKS: Tuple[str, ...] = ("deployment",)

STRUCTURED_KEYS: Dict[str, str] = {
    "deploymentObservations": "deployment",
    "healthChecks": "health_checks",
    "integrationTests": "integration_tests",
    "errorRates": "error_rates",
}

CHECK_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_.:-]{1,64}$")


@dataclass(frozen=True)
class EvidenceValidation:
    """Result of structural validation."""

    valid: bool
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"valid": self.valid}
        if self.error:
            body["error"] = self.error
        return body


@dataclass(frozen=True)
class CheckOutcome:
    name: str
    passed: bool
    detail: str


@dataclass(frozen=True)
class VerdictResult:
    """Outcome of ``evaluate_verdict``."""

    verdict: Verdict
    rationale: str
    failed_checks: Tuple[str, ...] = ()
    evaluation_rules: Tuple[str, ...] = ()
    checks: Tuple[CheckOutcome, ...] = field(default=(), compare=False)

    @property
    def is_green(self) -> bool:
        return self.verdict == Verdict.GREEN

    def to_dict(self) -> Dict[str, Any]:
        return {
            "verdict": self.verdict.value,
            "rationale": self.rationale,
            "failed_checks": list(self.failed_checks),
            "evaluation_rules": list(self.evaluation_rules),
        }


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _validate_deployments(value: Any) -> Optional[str]:
    if not isinstance(value, list):
        return "deploymentObservations must be an array"
    for obs in value:
        if not isinstance(obs, Mapping):
            return "Each deployment observation must be an object"
        if not _is_number(obs.get("deploymentId")):
            return "deploymentId must be a number"
        for key in ("environment", "sha", "status", "observedAt"):
            if not isinstance(obs.get(key), str):
                return f"{key} must be a string"
        if not isinstance(obs.get("isAuthentic"), bool):
            return "isAuthentic must be a boolean"
    return None


def _validate_health_checks(value: Any) -> Optional[str]:
    if not isinstance(value, list):
        return "healthChecks must be an array if provided"
    for hc in value:
        if not isinstance(hc, Mapping):
            return "Each health check must be an object"
        if not isinstance(hc.get("endpoint"), str):
            return "Health check endpoint must be a string"
        if not _is_number(hc.get("status")):
            return "Health check status must be a number"
    return None


def _validate_counts(name: str, value: Any, fields: Sequence[str]) -> Optional[str]:
    if not isinstance(value, Mapping):
        return f"{name} must be an object if provided"
    for key in fields:
        if not _is_number(value.get(key)):
            return f"{name}.{key} must be a number"
    return None


def _parse_status(value: Any) -> Optional[CheckStatus]:
    if not isinstance(value, str):
        return None
    try:
        return CheckStatus(value.strip().lower())
    except ValueError:
        return None


def validate_verification_evidence(evidence: Any) -> EvidenceValidation:
    """Structural validation; runs before evaluation and before any transaction."""
    if not isinstance(evidence, Mapping):
        return EvidenceValidation(False, "Evidence must be an object")

    seen_checks = set()
    for key in sorted(evidence):
        if not isinstance(key, str) or not key:
            return EvidenceValidation(False, "Evidence keys must be non-empty strings")
        value = evidence[key]

        if key in STRUCTURED_KEYS:
            if key == "deploymentObservations":
                error = _validate_deployments(value)
            elif key == "healthChecks":
                error = _validate_health_checks(value)
            elif key == "integrationTests":
                error = _validate_counts(key, value, ("passed", "failed"))
            else:
                error = _validate_counts(key, value, ("current", "threshold"))
            if error:
                return EvidenceValidation(False, error)
            check = STRUCTURED_KEYS[key]
        else:
            if not CHECK_NAME_PATTERN.match(key):
                return EvidenceValidation(False, f"Invalid check name: {key!r}")
            if _parse_status(value) is None:
                return EvidenceValidation(
                    False, f"Check '{key}' must be 'pass' or 'fail'"
                )
            check = key

        if check in seen_checks:
            return EvidenceValidation(False, f"Check '{check}' is supplied more than once")
        seen_checks.add(check)

    return EvidenceValidation(True)


def ensure_valid_evidence(evidence: Any) -> Mapping[str, Any]:
    """Validate and return ``evidence`` or raise ``ValidationError``."""
    result = validate_verification_evidence(evidence)
    if not result.valid:
        raise ValidationError(result.error or "Invalid evidence", code="INVALID_EVIDENCE")
    return evidence


def normalize_required_checks(required_checks: Optional[Iterable[str]]) -> Optional[List[str]]:
    """Strip, validate and de-duplicate check names, keeping first-seen order."""
    if required_checks is None:
        return None
    if isinstance(required_checks, str):
        raise ValidationError(
            "required_checks must be a list of check names", code="INVALID_EVIDENCE"
        )

    names: List[str] = []
    for raw in required_checks:
        name = raw.strip() if isinstance(raw, str) else ""
        if not CHECK_NAME_PATTERN.match(name):
            raise ValidationError(
                f"Invalid required check name: {raw!r}", code="INVALID_EVIDENCE"
            )
        if name not in names:
            names.append(name)
    return names


def _deployment_outcome(observations: Sequence[Mapping[str, Any]]) -> CheckOutcome:
    authentic = any(o["isAuthentic"] and o["status"] == "success" for o in observations)
    if authentic:
        return CheckOutcome("deployment", True, "authentic successful deployment observed")
    return CheckOutcome("deployment", False, "no authentic successful deployment found")


def _health_outcome(checks: Sequence[Mapping[str, Any]]) -> CheckOutcome:
    failures = [
        f"{hc['endpoint']} returned {hc['status']}"
        for hc in checks
        if not 200 <= hc["status"] < 300
    ]
    if failures:
        return CheckOutcome("health_checks", False, ", ".join(failures))
    return CheckOutcome("health_checks", True, f"{len(checks)} endpoint(s) healthy")


def _integration_outcome(tests: Mapping[str, Any]) -> CheckOutcome:
    if tests["failed"] > 0:
        return CheckOutcome("integration_tests", False, f"{tests['failed']} failures")
    return CheckOutcome("integration_tests", True, f"{tests['passed']} passed")


def _error_rate_outcome(rates: Mapping[str, Any]) -> CheckOutcome:
    current, threshold = rates["current"], rates["threshold"]
    if current > threshold:
        return CheckOutcome(
            "error_rates", False, f"error rate {current} exceeds threshold {threshold}"
        )
    return CheckOutcome("error_rates", True, f"error rate {current} within threshold {threshold}")


def derive_checks(evidence: Mapping[str, Any]) -> Dict[str, CheckOutcome]:
    """Reduce validated evidence to named check outcomes."""
    outcomes: Dict[str, CheckOutcome] = {}
    for key in sorted(evidence):
        value = evidence[key]
        if key == "deploymentObservations":
            outcome = _deployment_outcome(value)
        elif key == "healthChecks":
            # An empty list carries no observation
            if not value:
                continue
            outcome = _health_outcome(value)
        elif key == "integrationTests":
            outcome = _integration_outcome(value)
        elif key == "errorRates":
            outcome = _error_rate_outcome(value)
        else:
            passed = _parse_status(value) == CheckStatus.PASS
            outcome = CheckOutcome(key, passed, "passed" if passed else "check failed")
        outcomes[outcome.name] = outcome
    return outcomes


def evaluate_verdict(
    evidence: Mapping[str, Any],
    required_checks: Optional[Iterable[str]] = None,
    default_required_checks: Sequence[str] = DEFAULT_REQUIRED_CHECKS,
) -> VerdictResult:
    """Evaluate evidence into a verdict.

    Args:
        evidence: Verification evidence (validated here first)
        required_checks: Checks that must pass. When omitted the required set
            is ``default_required_checks`` plus every check present in the
            evidence.
        default_required_checks: Fallback required checks

    Returns:
        VerdictResult. ``evaluation_rules`` is the required check list;
        ``failed_checks`` names every failing or missing check, in required
        order followed by any other failing check present in the evidence.

    Raises:
        ValidationError: If the evidence or check names are malformed
    """
    ensure_valid_evidence(evidence)
    outcomes = derive_checks(evidence)

    required = normalize_required_checks(required_checks)
    if required is None:
        required = list(normalize_required_checks(default_required_checks) or [])
        required.extend(name for name in sorted(outcomes) if name not in required)

    if not required:
        raise ValidationError(
            "At least one required check must be evaluated", code="INVALID_EVIDENCE"
        )

    failed: List[str] = []
    details: List[str] = []
    for name in required:
        outcome = outcomes.get(name)
        if outcome is None:
            failed.append(name)
            details.append(f"{name}: missing required check")
        elif not outcome.passed:
            failed.append(name)
            details.append(f"{name}: {outcome.detail}")

    for name in sorted(outcomes):
        outcome = outcomes[name]
        if name not in required and not outcome.passed:
            failed.append(name)
            details.append(f"{name}: {outcome.detail}")

    if failed:
        verdict = Verdict.RED
        rationale = "Verification failed: " + "; ".join(details)
    else:
        verdict = Verdict.GREEN
        rationale = GREEN_RATIONALE

    logger.debug("Evaluated verdict %s (failed=%s)", verdict.value, failed)
    return VerdictResult(
        verdict=verdict,
        rationale=rationale,
        failed_checks=tuple(failed),
        evaluation_rules=tuple(required),
        checks=tuple(outcomes[name] for name in sorted(outcomes)),
    )
