"""
Database package for Control Center.
"""

from .base import Base, get_db, get_engine, init_database, transaction
from .models import (
    EvidenceLinkModel,
    EvidenceModel,
    IssueModel,
    PublishBatchModel,
    PublishItemModel,
    RunModel,
    TimelineEventModel,
    VerdictModel,
)

__all__ = [
    "Base",
    "get_db",
    "get_engine",
    "init_database",
    "transaction",
    "EvidenceLinkModel",
    "EvidenceModel",
    "IssueModel",
    "PublishBatchModel",
    "PublishItemModel",
    "RunModel",
    "TimelineEventModel",
    "VerdictModel",
]
