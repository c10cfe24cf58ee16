"""
ESG Ledger - Notification Schemas
"""

from typing import List, Optional

from pydantic import BaseModel


class DeliveryResultResponse(BaseModel):
    id: int
    status: str
    error: Optional[str] = None

    class Config:
        from_attributes = True


class ProcessQueueResponse(BaseModel):
    """Outcome of one queue processing run."""
    processed: int
    results: List[DeliveryResultResponse]


class QueueStatsResponse(BaseModel):
    pending: int = 0
    sent: int = 0
    failed: int = 0
