"""
ESG Ledger - Notifications Router

Operator endpoints for the notification queue.
"""

from dataclasses import asdict

from fastapi import APIRouter, Depends

from esg_ledger.dependencies import get_notification_service
from esg_ledger.schemas.notification import ProcessQueueResponse, QueueStatsResponse
from esg_ledger.services.notification_service import NotificationQueueService


router = APIRouter(prefix="/notifications", tags=["Notifications"])


@router.post("/process", response_model=ProcessQueueResponse)
async def process_notification_queue(
    notifications: NotificationQueueService = Depends(get_notification_service),
):
    """Deliver one batch of pending notifications."""
    results = await notifications.process_queue()
    return ProcessQueueResponse(
        processed=len(results),
        results=[asdict(r) for r in results],
    )


@router.get("/stats", response_model=QueueStatsResponse)
async def get_notification_stats(
    notifications: NotificationQueueService = Depends(get_notification_service),
):
    """Queue item counts per delivery status."""
    return await notifications.get_queue_stats()
