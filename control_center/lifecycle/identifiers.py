"""
Issue identifier parsing.

An issue can be addressed by any of three interchangeable keys:

- ``uuid``: the internal row id
- ``public_id``: 8 lowercase hex chars, the UUID prefix
- ``canonical_id``: a human-readable code such as ``E81.5`` or ``I811``

Parsing is format-only; lookups live in ``IssueService.get_by_identifier``.
"""

import re
import uuid
from dataclasses import dataclass
from enum import Enum

from .errors import ValidationError

UUID_PATTERN = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)
PUBLIC_ID_PATTERN = re.compile(r"^[0-9a-f]{8}$", re.IGNORECASE)
CANONICAL_ID_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9._:-]{0,63}$")


class IdentifierKind(str, Enum):
    UUID = "uuid"
    PUBLIC_ID = "public_id"
    CANONICAL_ID = "canonical_id"


@dataclass(frozen=True)
class ParsedIdentifier:
    kind: IdentifierKind
    value: str


def parse_identifier(raw: str) -> ParsedIdentifier:
    """Classify ``raw`` or raise ``ValidationError`` (``INVALID_IDENTIFIER``)."""
    value = raw.strip() if isinstance(raw, str) else ""

    if UUID_PATTERN.match(value):
        return ParsedIdentifier(IdentifierKind.UUID, str(uuid.UUID(value)))
    if PUBLIC_ID_PATTERN.match(value):
        return ParsedIdentifier(IdentifierKind.PUBLIC_ID, value.lower())
    if CANONICAL_ID_PATTERN.match(value):
        return ParsedIdentifier(IdentifierKind.CANONICAL_ID, value)

    raise ValidationError(
        "Invalid issue identifier format",
        code="INVALID_IDENTIFIER",
        details={"identifier": value[:100]},
    )


def validate_canonical_id(value: str) -> str:
    """Validate a canonical id for a new issue.

    Values that would parse as a UUID or public id are rejected so that every
    identifier resolves unambiguously.
    """
    parsed = parse_identifier(value)
    if parsed.kind != IdentifierKind.CANONICAL_ID:
        raise ValidationError(
            "Canonical id must not look like a UUID or public id",
            code="INVALID_IDENTIFIER",
            details={"canonical_id": value},
        )
    return parsed.value
