"""
ESG Ledger - Audit Log Model

Append-only, hash-chained audit log for every state-changing action.

Each row carries the SHA-256 of its predecessor (``previous_hash``) and of its
own canonical content (``current_hash``). Editing, deleting or reordering any
row breaks one of the two links and is reported by chain verification.

This table should have no UPDATE or DELETE permissions.
"""

from typing import Any, Optional

from sqlalchemy import JSON, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from esg_ledger.models.base import Base


GENESIS_HASH = "0"


class AuditLog(Base):
    """
    Immutable audit log entry.

    Hashed fields: previous_hash, action, table_name, record_id, user_id,
    timestamp, old_values, new_values. ``user_role`` and the request metadata
    (ip_address, user_agent, session_id) are informational only.
    """

    __tablename__ = "audit_log"
    __table_args__ = (
        # Two entries can never claim the same predecessor, so the chain cannot fork
        UniqueConstraint("previous_hash", name="uq_audit_log_previous_hash"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Chain links
    previous_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    current_hash: Mapped[str] = mapped_column(String(64), nullable=False, index=True)

    # Action
    action: Mapped[str] = mapped_column(String(100), nullable=False, index=True)

    # Target record
    table_name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        index=True,
        comment="Logical table/entity type the action applies to",
    )
    record_id: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        index=True,
        comment="ID of the affected record",
    )

    # Actor
    user_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    user_role: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    # Before/After snapshots. Plain JSON, not JSONB: the stored text must read
    # back exactly as hashed, and JSONB rewrites numbers (2.5e+16 -> 25000000000000000)
    old_values: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)
    new_values: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)

    # ISO-8601 UTC string exactly as it was hashed
    timestamp: Mapped[str] = mapped_column(String(32), nullable=False, index=True)

    # Request context (not hashed)
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    session_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    def __repr__(self) -> str:
        return f"<AuditLog(id={self.id}, action={self.action}, table={self.table_name}, record={self.record_id})>"
