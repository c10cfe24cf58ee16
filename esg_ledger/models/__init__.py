"""
ESG Ledger - Database Models

Import all models here so they register with Base.metadata.
"""

from esg_ledger.models.base import Base
from esg_ledger.models.audit import AuditLog, GENESIS_HASH
from esg_ledger.models.workflow import (
    APPROVAL_LEVELS,
    ApprovalLevel,
    ApprovalStatus,
    ApprovalStep,
    ApprovalWorkflow,
)
from esg_ledger.models.notification import (
    NotificationQueueItem,
    NotificationStatus,
    NotificationType,
)

__all__ = [
    "Base",
    "AuditLog",
    "GENESIS_HASH",
    "APPROVAL_LEVELS",
    "ApprovalLevel",
    "ApprovalStatus",
    "ApprovalStep",
    "ApprovalWorkflow",
    "NotificationQueueItem",
    "NotificationStatus",
    "NotificationType",
]
