"""
ESG Ledger - Approval Workflow Models

Models for the sequential multi-level approval of ESG data submissions.

A workflow walks a fixed chain of approval levels one decision at a time:

    site -> business_unit -> group_esg -> executive -> approved

A rejection at any level terminates the workflow. Every (workflow, level)
pair has exactly one ApprovalStep, created up front as pending.
"""

import enum
from datetime import datetime
from typing import List, Optional

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from esg_ledger.models.base import Base, enum_column, utcnow


class ApprovalLevel(str, enum.Enum):
    """Approval levels, declared in approval order."""
    SITE = "site"
    BUSINESS_UNIT = "business_unit"
    GROUP_ESG = "group_esg"
    EXECUTIVE = "executive"

    @classmethod
    def ordered(cls) -> List["ApprovalLevel"]:
        return list(cls)

    @classmethod
    def first(cls) -> "ApprovalLevel":
        return cls.ordered()[0]

    def next_level(self) -> Optional["ApprovalLevel"]:
        """The level after this one, or None if this is the last level."""
        levels = self.ordered()
        index = levels.index(self)
        if index + 1 < len(levels):
            return levels[index + 1]
        return None


# Fixed approval chain shared by every workflow
APPROVAL_LEVELS: List[ApprovalLevel] = ApprovalLevel.ordered()


class ApprovalStatus(str, enum.Enum):
    """Status of a workflow or of a single approval step."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"

    @property
    def is_terminal(self) -> bool:
        return self != ApprovalStatus.PENDING


class ApprovalWorkflow(Base):
    """One submission's approval lifecycle."""

    __tablename__ = "approval_workflows"

    workflow_id: Mapped[str] = mapped_column(String(50), primary_key=True)

    # Entity under approval
    data_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    data_type: Mapped[str] = mapped_column(String(100), nullable=False)

    # Submitter
    submitted_by: Mapped[str] = mapped_column(String(100), nullable=False)
    submitter_email: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        comment="Address for approval status notifications",
    )

    # State
    current_level: Mapped[Optional[ApprovalLevel]] = mapped_column(
        enum_column(ApprovalLevel),
        nullable=True,
        index=True,
        comment="Level awaiting a decision; NULL once the workflow is terminal",
    )
    status: Mapped[ApprovalStatus] = mapped_column(
        enum_column(ApprovalStatus),
        default=ApprovalStatus.PENDING,
        nullable=False,
        index=True,
    )

    submitted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
        index=True,
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    steps: Mapped[List["ApprovalStep"]] = relationship(
        "ApprovalStep",
        back_populates="workflow",
        order_by="ApprovalStep.id",
        cascade="save-update, merge",
    )

    def __repr__(self) -> str:
        return f"<ApprovalWorkflow(id={self.workflow_id}, status={self.status}, level={self.current_level})>"

    @property
    def is_terminal(self) -> bool:
        return ApprovalStatus(self.status).is_terminal

    def step_for(self, level: ApprovalLevel) -> Optional["ApprovalStep"]:
        return next((s for s in self.steps if s.level == level), None)


class ApprovalStep(Base):
    """Decision record for one level of one workflow."""

    __tablename__ = "approval_steps"
    __table_args__ = (
        UniqueConstraint("workflow_id", "level", name="uq_approval_steps_workflow_level"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    workflow_id: Mapped[str] = mapped_column(
        String(50),
        ForeignKey("approval_workflows.workflow_id"),
        nullable=False,
        index=True,
    )
    level: Mapped[ApprovalLevel] = mapped_column(enum_column(ApprovalLevel), nullable=False)
    status: Mapped[ApprovalStatus] = mapped_column(
        enum_column(ApprovalStatus),
        default=ApprovalStatus.PENDING,
        nullable=False,
    )
    approver: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    comments: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    workflow: Mapped["ApprovalWorkflow"] = relationship("ApprovalWorkflow", back_populates="steps")

    def __repr__(self) -> str:
        return f"<ApprovalStep(workflow={self.workflow_id}, level={self.level}, status={self.status})>"

    def record_decision(self, status: ApprovalStatus, approver: str, comments: Optional[str]) -> None:
        """Record this level's decision. A step is decided exactly once."""
        self.status = status
        self.approver = approver
        self.approved_at = utcnow()
        self.comments = comments
