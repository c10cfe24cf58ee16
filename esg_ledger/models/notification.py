"""
ESG Ledger - Notification Queue Model

Durable queue of outbound messages.

Rows move pending -> sent, or pending -> failed once delivery has been
attempted the configured number of times. Rows are never deleted; the table
doubles as the delivery audit trail.
"""

import enum
from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from esg_ledger.models.base import Base, enum_column, utcnow


class NotificationType(str, enum.Enum):
    """Types of queued notifications."""
    APPROVAL_REQUEST = "approval_request"
    APPROVAL_STATUS = "approval_status"
    AUDIT_ALERT = "audit_alert"


class NotificationStatus(str, enum.Enum):
    """Delivery status of a queue item."""
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"


class NotificationQueueItem(Base):
    """One outbound message and its delivery bookkeeping."""

    __tablename__ = "notification_queue"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    recipient: Mapped[str] = mapped_column(String(255), nullable=False)
    subject: Mapped[str] = mapped_column(String(255), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    notification_type: Mapped[NotificationType] = mapped_column(
        enum_column(NotificationType),
        nullable=False,
        index=True,
    )
    related_id: Mapped[Optional[str]] = mapped_column(
        String(100),
        nullable=True,
        index=True,
        comment="Workflow or record the message refers to",
    )

    # Delivery bookkeeping
    status: Mapped[NotificationStatus] = mapped_column(
        enum_column(NotificationStatus),
        default=NotificationStatus.PENDING,
        nullable=False,
        index=True,
    )
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
        index=True,
    )
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<NotificationQueueItem(id={self.id}, type={self.notification_type}, status={self.status})>"

    def mark_sent(self) -> None:
        """Mark message as delivered."""
        self.status = NotificationStatus.SENT
        self.sent_at = utcnow()

    def record_failure(self, error: str, max_attempts: int) -> None:
        """Count a failed delivery attempt; give up once max_attempts is reached."""
        self.attempts = (self.attempts or 0) + 1
        self.last_error = error
        if self.attempts >= max_attempts:
            self.status = NotificationStatus.FAILED
