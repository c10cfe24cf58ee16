"""
ESG Ledger - Celery Tasks

Background tasks for scheduled operations.
"""

import asyncio
import logging
from typing import Any, Dict, Optional

from celery import shared_task

from esg_ledger.config import settings
from esg_ledger.database import async_session_factory, engine
from esg_ledger.services.audit_service import AuditService
from esg_ledger.services.notification_service import NotificationQueueService

logger = logging.getLogger(__name__)

CHAIN_ALERT_TYPE = "audit_chain_integrity_failure"


def run_async(coro):
    """Helper to run async functions in Celery tasks."""
    async def _run():
        try:
            return await coro
        finally:
            # Pooled connections are bound to this task's event loop
            await engine.dispose()

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(_run())
    finally:
        loop.close()


# ===========================================
# NOTIFICATION TASKS
# ===========================================

@shared_task(name='esg_ledger.tasks.celery_tasks.process_notification_queue_task')
def process_notification_queue_task() -> Dict[str, Any]:
    """Deliver one batch of queued notifications."""
    return run_async(_process_notification_queue())


async def _process_notification_queue(
    session_factory=async_session_factory,
    transport: Optional[Any] = None,
) -> Dict[str, Any]:
    """Async implementation of queue processing."""
    async with session_factory() as db:
        results = await NotificationQueueService(db, transport).process_queue()

    return {
        "processed": len(results),
        "sent": sum(1 for r in results if r.status == "sent"),
        "failed": sum(1 for r in results if r.status == "failed"),
    }


# ===========================================
# AUDIT TASKS
# ===========================================

@shared_task(name='esg_ledger.tasks.celery_tasks.verify_audit_chain_task')
def verify_audit_chain_task() -> Dict[str, Any]:
    """Verify the full audit chain and alert operators if it is broken."""
    return run_async(_verify_audit_chain())


async def _verify_audit_chain(
    session_factory=async_session_factory,
    transport: Optional[Any] = None,
) -> Dict[str, Any]:
    """
    Async implementation of the daily chain verification.

    Verification itself is read-only; alerts are queued afterwards as a
    separate write and delivered immediately.
    """
    async with session_factory() as db:
        result = await AuditService(db).verify()
        summary = {
            "is_valid": result.is_valid,
            "total_entries": result.total_entries,
            "invalid_entries": result.invalid_entries,
            "last_verified_id": result.last_verified_id,
            "alerts_queued": 0,
        }

        if result.is_valid:
            return summary

        recipients = settings.audit_alert_recipients_list
        if not recipients:
            logger.warning("Audit chain is invalid but no alert recipients are configured")
            return summary

        notifications = NotificationQueueService(db, transport)
        items = await notifications.send_audit_alert_notification(
            recipients=recipients,
            alert_type=CHAIN_ALERT_TYPE,
            details={
                "invalid_entries": ", ".join(str(i) for i in result.invalid_entries),
                "total_entries": result.total_entries,
                "first_discrepancy": result.discrepancies[0].message,
            },
        )
        await db.commit()
        summary["alerts_queued"] = len(items)

        await notifications.process_queue()

    logger.error(
        f"Audit chain verification failed; alerted {len(recipients)} recipients "
        f"about entries {result.invalid_entries}"
    )
    return summary
