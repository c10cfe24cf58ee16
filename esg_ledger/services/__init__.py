"""
ESG Ledger - Services Package

Business logic services.
"""

from esg_ledger.services.audit_service import AuditService
from esg_ledger.services.email_service import EmailService
from esg_ledger.services.notification_service import NotificationQueueService
from esg_ledger.services.workflow_service import WorkflowService

__all__ = [
    "AuditService",
    "EmailService",
    "NotificationQueueService",
    "WorkflowService",
]
