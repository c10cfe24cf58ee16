"""
ESG Ledger - FastAPI Dependencies

Services are built per request from the request's database session.
Tests replace ``get_async_session`` or ``get_transport`` through
``app.dependency_overrides``.
"""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from esg_ledger.database import get_async_session
from esg_ledger.services.audit_service import AuditService
from esg_ledger.services.email_service import EmailService
from esg_ledger.services.notification_service import NotificationQueueService
from esg_ledger.services.workflow_service import WorkflowService


def get_transport() -> EmailService:
    """Delivery transport for queued notifications."""
    return EmailService()


def get_audit_service(
    db: AsyncSession = Depends(get_async_session),
) -> AuditService:
    return AuditService(db)


def get_notification_service(
    db: AsyncSession = Depends(get_async_session),
    transport: EmailService = Depends(get_transport),
) -> NotificationQueueService:
    return NotificationQueueService(db, transport)


def get_workflow_service(
    db: AsyncSession = Depends(get_async_session),
    notifications: NotificationQueueService = Depends(get_notification_service),
    audit: AuditService = Depends(get_audit_service),
) -> WorkflowService:
    return WorkflowService(db, notifications, audit)
