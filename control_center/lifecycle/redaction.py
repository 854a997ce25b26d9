"""
Secret redaction, stable serialization and hashing for evidence payloads.

- No secrets in stored JSON (explicit deny-list plus word-boundary patterns)
- Deterministic hashes (sorted keys, compact separators, UTF-8)
- Bounded payloads (params + result after redaction)
"""

import hashlib
import json
from datetime import datetime
from typing import Any, Optional, Tuple

from .errors import ValidationError

REDACTED = "[REDACTED]"

MAX_EVIDENCE_PAYLOAD_BYTES = 100 * 1024

PAYLOAD_TOO_LARGE = "EVIDENCE_PAYLOAD_TOO_LARGE"

# Matched as words inside a key (snake_case, kebab-case or a camelCase suffix)
SECRET_KEY_PATTERNS: Tuple[str, ...] = (
    "token",
    "secret",
    "password",
    "credential",
    "bearer",
    "jwt",
    "cookie",
    "authorization",
)

EXACT_SECRET_KEYS: Tuple[str, ...] = (
    "api_key",
    "apikey",
    "access_key",
    "accesskey",
    "private_key",
    "privatekey",
    "session",
    "x-api-key",
    "x-auth-token",
    "env",
    "process.env",
    "github_token",
    "anthropic_api_key",
    "openai_api_key",
    "aws_secret_access_key",
    "database_url",
    "db_password",
)

# Redacted even when the value is a container
ALWAYS_REDACT_KEYS = frozenset({"env", "process.env"})

_EXACT_VARIANTS = frozenset(
    variant
    for key in EXACT_SECRET_KEYS
    for variant in (key, key.replace("-", "_"), key.replace("_", "-"))
)


def _json_default(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def stable_stringify(value: Any) -> str:
    """Serialize with sorted keys so equal payloads give equal strings."""
    return json.dumps(
        value,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        default=_json_default,
    )


def compute_hash(value: Any) -> str:
    """SHA-256 hex digest of the stable serialization."""
    return hashlib.sha256(stable_stringify(value).encode("utf-8")).hexdigest()


def json_byte_length(value: Any) -> int:
    """UTF-8 length of the compact JSON form of ``value``."""
    return len(stable_stringify(value).encode("utf-8"))


def _matches_pattern(key: str, pattern: str) -> bool:
    return (
        key == pattern
        or key.startswith(f"{pattern}_")
        or key.startswith(f"{pattern}-")
        or key.endswith(pattern)
        or f"_{pattern}_" in key
        or f"-{pattern}-" in key
        or f"_{pattern}-" in key
        or f"-{pattern}_" in key
    )


def is_secret_key(key: str) -> bool:
    """True if ``key`` names a secret."""
    lowered = key.lower()
    if lowered in _EXACT_VARIANTS:
        return True
    return any(_matches_pattern(lowered, pattern) for pattern in SECRET_KEY_PATTERNS)


def redact_secrets(value: Any) -> Any:
    """Return a deep copy of ``value`` with secret values replaced.

    Secret keys holding containers are recursed into rather than dropped,
    except ``env``/``process.env`` which are always replaced wholesale.
    """
    if isinstance(value, dict):
        redacted = {}
        for key, item in value.items():
            lowered = str(key).lower()
            if lowered in ALWAYS_REDACT_KEYS:
                redacted[key] = REDACTED
            elif is_secret_key(str(key)) and not isinstance(item, (dict, list, tuple)):
                redacted[key] = REDACTED
            else:
                redacted[key] = redact_secrets(item)
        return redacted
    if isinstance(value, (list, tuple)):
        return [redact_secrets(item) for item in value]
    return value


def check_payload_size(
    params: Any,
    result: Any,
    max_bytes: Optional[int] = None,
) -> int:
    """Raise ``ValidationError`` if params + result exceed ``max_bytes``."""
    limit = MAX_EVIDENCE_PAYLOAD_BYTES if max_bytes is None else max_bytes
    total = json_byte_length(params) + json_byte_length(result)
    if total > limit:
        raise ValidationError(
            f"Combined payload exceeds maximum size: {total} bytes > {limit} bytes",
            code=PAYLOAD_TOO_LARGE,
            details={"bytes": total, "max_bytes": limit},
        )
    return total
