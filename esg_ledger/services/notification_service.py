"""
ESG Ledger - Notification Queue Service

Durable outbound message queue with bounded retries.

Messages are enqueued inside the caller's transaction and delivered later by
``process_queue``, either inline after a workflow transition or from the
periodic Celery task.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from esg_ledger.config import settings
from esg_ledger.models.notification import (
    NotificationQueueItem,
    NotificationStatus,
    NotificationType,
)
from esg_ledger.services.email_service import EmailService
from esg_ledger.utils.error_handling import StorageException, TransportException

logger = logging.getLogger(__name__)


@dataclass
class DeliveryResult:
    """
    Outcome of one delivery attempt.

    ``status`` is "failed" for every failed attempt; whether the item will be
    retried is stored on the queue item itself.
    """
    id: int
    status: str  # sent | failed
    error: Optional[str] = None


class NotificationQueueService:
    """
    Service for queueing and delivering notifications.

    ``transport`` is anything with ``async send(recipient, subject, body)``
    that raises TransportException on failure; EmailService by default.
    """

    def __init__(self, db: AsyncSession, transport: Optional[Any] = None):
        self.db = db
        self.transport = transport or EmailService()

    async def enqueue(
        self,
        recipient: str,
        subject: str,
        body: str,
        notification_type: NotificationType,
        related_id: Optional[str] = None,
    ) -> NotificationQueueItem:
        """Queue a message as part of the caller's transaction."""
        item = NotificationQueueItem(
            recipient=recipient,
            subject=subject,
            body=body,
            notification_type=notification_type,
            related_id=related_id,
            status=NotificationStatus.PENDING,
            attempts=0,
        )
        self.db.add(item)
        try:
            await self.db.flush()
        except SQLAlchemyError as e:
            raise StorageException.from_sqlalchemy(e, "notification enqueue") from e

        logger.debug(f"Queued {notification_type.value} notification #{item.id} for {recipient}")
        return item

    async def process_queue(self) -> List[DeliveryResult]:
        """
        Deliver one batch of pending notifications, oldest first.

        Transport failures are recorded on the item and never abort the
        batch. The batch is committed as a whole at the end.
        """
        max_attempts = settings.notification_max_attempts

        query = (
            select(NotificationQueueItem)
            .where(
                NotificationQueueItem.status == NotificationStatus.PENDING,
                NotificationQueueItem.attempts < max_attempts,
            )
            .order_by(NotificationQueueItem.created_at, NotificationQueueItem.id)
            .limit(settings.notification_batch_size)
            .with_for_update(skip_locked=True)
        )

        try:
            result = await self.db.execute(query)
            items = list(result.scalars().all())
        except SQLAlchemyError as e:
            raise StorageException.from_sqlalchemy(e, "notification claim") from e

        results: List[DeliveryResult] = []
        for item in items:
            try:
                await self.transport.send(item.recipient, item.subject, item.body)
            except TransportException as e:
                item.record_failure(e.message, max_attempts)
                logger.warning(
                    f"Delivery of notification #{item.id} to {item.recipient} failed "
                    f"(attempt {item.attempts}/{max_attempts}): {e.message}"
                )
                results.append(DeliveryResult(id=item.id, status="failed", error=e.message))
                continue
            except Exception as e:
                error = f"{type(e).__name__}: {e}"
                item.record_failure(error, max_attempts)
                logger.error(
                    f"Unexpected error delivering notification #{item.id} to {item.recipient} "
                    f"(attempt {item.attempts}/{max_attempts})",
                    exc_info=True,
                )
                results.append(DeliveryResult(id=item.id, status="failed", error=error))
                continue

            item.mark_sent()
            results.append(DeliveryResult(id=item.id, status=NotificationStatus.SENT.value))

        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise StorageException.from_sqlalchemy(e, "notification processing") from e

        if results:
            sent = sum(1 for r in results if r.status == NotificationStatus.SENT.value)
            logger.info(f"Processed {len(results)} notifications ({sent} sent)")

        return results

    async def get_queue_stats(self) -> Dict[str, int]:
        """Count queue items per status."""
        query = (
            select(NotificationQueueItem.status, func.count(NotificationQueueItem.id))
            .group_by(NotificationQueueItem.status)
        )
        try:
            result = await self.db.execute(query)
        except SQLAlchemyError as e:
            raise StorageException.from_sqlalchemy(e, "notification stats") from e

        stats = {status.value: 0 for status in NotificationStatus}
        for status, count in result.all():
            stats[NotificationStatus(status).value] = count
        return stats

    # ===========================================
    # MESSAGE BUILDERS
    # ===========================================

    async def send_approval_notification(
        self,
        workflow_id: str,
        approver_email: str,
        data_type: str,
        submitted_by: str,
    ) -> NotificationQueueItem:
        """Ask an approver to review a submission."""
        subject = f"ESG Approval Required: {data_type}"
        body = (
            f"A new ESG data submission requires your approval.\n\n"
            f"Data type: {data_type}\n"
            f"Submitted by: {submitted_by}\n"
            f"Workflow ID: {workflow_id}\n\n"
            f"Review it at: {settings.app_url}/approvals/{workflow_id}\n"
        )
        return await self.enqueue(
            recipient=approver_email,
            subject=subject,
            body=body,
            notification_type=NotificationType.APPROVAL_REQUEST,
            related_id=workflow_id,
        )

    async def send_approval_status_notification(
        self,
        workflow_id: str,
        recipient: str,
        status: str,
        comments: Optional[str] = None,
    ) -> NotificationQueueItem:
        """Tell the submitter how their workflow ended."""
        subject = f"ESG Approval {status.upper()}: Workflow {workflow_id}"
        body = (
            f"Your ESG data submission has been {status}.\n\n"
            f"Workflow ID: {workflow_id}\n"
            f"Comments: {comments or 'No comments provided'}\n\n"
            f"View details at: {settings.app_url}/workflows/{workflow_id}\n"
        )
        return await self.enqueue(
            recipient=recipient,
            subject=subject,
            body=body,
            notification_type=NotificationType.APPROVAL_STATUS,
            related_id=workflow_id,
        )

    async def send_audit_alert_notification(
        self,
        recipients: List[str],
        alert_type: str,
        details: Dict[str, Any],
    ) -> List[NotificationQueueItem]:
        """Queue one audit alert per recipient."""
        subject = f"ESG Audit Alert: {alert_type}"
        lines = [f"An audit alert has been raised: {alert_type}", ""]
        lines.extend(f"{key}: {value}" for key, value in details.items())
        body = "\n".join(lines) + "\n"

        items = []
        for recipient in recipients:
            items.append(await self.enqueue(
                recipient=recipient,
                subject=subject,
                body=body,
                notification_type=NotificationType.AUDIT_ALERT,
            ))
        return items
