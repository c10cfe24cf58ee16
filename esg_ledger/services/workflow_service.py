"""
ESG Ledger - Approval Workflow Service

Sequential multi-level approval of ESG data submissions.

Every transition is recorded in the audit chain within the same transaction
as the state change. Notifications about a decision are queued afterwards
as a separate best-effort step: a decision is never rolled back because a
message could not be queued or delivered.
"""

import logging
import secrets
import string
import time
from dataclasses import dataclass
from typing import List, Optional, Union

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from esg_ledger.config import settings
from esg_ledger.models.audit import AuditLog
from esg_ledger.models.base import utcnow
from esg_ledger.models.workflow import (
    APPROVAL_LEVELS,
    ApprovalLevel,
    ApprovalStatus,
    ApprovalStep,
    ApprovalWorkflow,
)
from esg_ledger.services.audit_service import AuditService
from esg_ledger.services.notification_service import NotificationQueueService
from esg_ledger.utils.error_handling import (
    AppException,
    InvalidApprovalLevelException,
    StorageException,
    WorkflowNotFoundException,
    WorkflowStateException,
)

logger = logging.getLogger(__name__)

WORKFLOW_TABLE = "approval_workflows"

_ID_ALPHABET = string.digits + string.ascii_lowercase


def generate_workflow_id() -> str:
    """WF_<epoch millis>_<6 random base36 chars>"""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(6))
    return f"WF_{int(time.time() * 1000)}_{suffix}"


@dataclass
class WorkflowCreated:
    workflow_id: str
    status: str


@dataclass
class WorkflowDecision:
    success: bool
    workflow_id: str
    status: str
    current_level: Optional[str]


class WorkflowService:
    """Service for driving approval workflows through their levels"""

    def __init__(
        self,
        db: AsyncSession,
        notifications: NotificationQueueService,
        audit: AuditService,
    ):
        self.db = db
        self.notifications = notifications
        self.audit = audit

    async def create(
        self,
        data_id: str,
        data_type: str,
        submitted_by: str,
        submitter_email: Optional[str] = None,
    ) -> WorkflowCreated:
        """
        Start an approval workflow for a submission.

        The workflow, its four steps, the first approval request and the
        ``workflow_created`` audit entry commit together or not at all.
        """
        workflow_id = generate_workflow_id()
        first_level = ApprovalLevel.first()

        workflow = ApprovalWorkflow(
            workflow_id=workflow_id,
            data_id=str(data_id),
            data_type=data_type,
            submitted_by=submitted_by,
            submitter_email=submitter_email,
            current_level=first_level,
            status=ApprovalStatus.PENDING,
        )
        workflow.steps = [
            ApprovalStep(level=level, status=ApprovalStatus.PENDING)
            for level in APPROVAL_LEVELS
        ]

        try:
            self.db.add(workflow)
            await self.db.flush()

            approver_email = settings.level_approver_emails.get(first_level.value)
            if approver_email:
                await self.notifications.send_approval_notification(
                    workflow_id=workflow_id,
                    approver_email=approver_email,
                    data_type=data_type,
                    submitted_by=submitted_by,
                )

            await self.audit.append(
                action="workflow_created",
                table_name=WORKFLOW_TABLE,
                record_id=workflow_id,
                user_id=submitted_by,
                user_role="submitter",
                new_values={"data_id": str(data_id), "data_type": data_type},
            )
            await self._commit("workflow create")
        except AppException:
            await self.db.rollback()
            raise
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise StorageException.from_sqlalchemy(e, "workflow create") from e

        logger.info(f"Created workflow {workflow_id} for {data_type} {data_id} (submitted by {submitted_by})")

        await self._process_inline()
        return WorkflowCreated(workflow_id=workflow_id, status=ApprovalStatus.PENDING.value)

    async def approve(
        self,
        workflow_id: str,
        approver_id: str,
        approver_email: Optional[str] = None,
        comments: Optional[str] = "",
    ) -> WorkflowDecision:
        """
        Approve the workflow at its current level.

        Advances to the next level, or completes the workflow as approved
        when the current level is the last one.
        """
        try:
            workflow = await self._get_for_update(workflow_id)
            level = ApprovalLevel(workflow.current_level)

            workflow.step_for(level).record_decision(ApprovalStatus.APPROVED, approver_id, comments)

            next_level = level.next_level()
            if next_level is not None:
                workflow.current_level = next_level
            else:
                workflow.status = ApprovalStatus.APPROVED
                workflow.current_level = None
                workflow.completed_at = utcnow()

            await self.audit.append(
                action="workflow_approved",
                table_name=WORKFLOW_TABLE,
                record_id=workflow_id,
                user_id=approver_id,
                user_role="approver",
                old_values={"level": level.value},
                new_values={"status": ApprovalStatus.APPROVED.value, "comments": comments},
            )
            await self._commit("workflow approval")
        except AppException:
            await self.db.rollback()
            raise

        decision = self._decision(workflow)
        data_type = workflow.data_type
        submitted_by = workflow.submitted_by
        submitter_email = workflow.submitter_email

        logger.info(
            f"Workflow {workflow_id} approved at {level.value} by {approver_id}"
            f"{f' <{approver_email}>' if approver_email else ''}; now {decision.current_level or decision.status}"
        )

        if next_level is not None:
            next_approver = settings.level_approver_emails.get(next_level.value)
            if next_approver:
                await self._notify(
                    workflow_id,
                    self.notifications.send_approval_notification(
                        workflow_id=workflow_id,
                        approver_email=next_approver,
                        data_type=data_type,
                        submitted_by=submitted_by,
                    ),
                )
        elif submitter_email:
            await self._notify(
                workflow_id,
                self.notifications.send_approval_status_notification(
                    workflow_id=workflow_id,
                    recipient=submitter_email,
                    status=ApprovalStatus.APPROVED.value,
                    comments=comments,
                ),
            )

        return decision

    async def reject(
        self,
        workflow_id: str,
        approver_id: str,
        approver_email: Optional[str] = None,
        comments: Optional[str] = "",
    ) -> WorkflowDecision:
        """Reject the workflow at its current level, terminating it."""
        try:
            workflow = await self._get_for_update(workflow_id)
            level = ApprovalLevel(workflow.current_level)

            workflow.step_for(level).record_decision(ApprovalStatus.REJECTED, approver_id, comments)
            workflow.status = ApprovalStatus.REJECTED
            workflow.current_level = None
            workflow.completed_at = utcnow()

            await self.audit.append(
                action="workflow_rejected",
                table_name=WORKFLOW_TABLE,
                record_id=workflow_id,
                user_id=approver_id,
                user_role="approver",
                old_values={"level": level.value},
                new_values={"status": ApprovalStatus.REJECTED.value, "comments": comments},
            )
            await self._commit("workflow rejection")
        except AppException:
            await self.db.rollback()
            raise

        decision = self._decision(workflow)
        submitter_email = workflow.submitter_email

        logger.info(
            f"Workflow {workflow_id} rejected at {level.value} by {approver_id}"
            f"{f' <{approver_email}>' if approver_email else ''}"
        )

        if submitter_email:
            await self._notify(
                workflow_id,
                self.notifications.send_approval_status_notification(
                    workflow_id=workflow_id,
                    recipient=submitter_email,
                    status=ApprovalStatus.REJECTED.value,
                    comments=comments,
                ),
            )

        return decision

    async def get_with_steps(self, workflow_id: str) -> ApprovalWorkflow:
        """Get a workflow with its steps in level order"""
        query = (
            select(ApprovalWorkflow)
            .where(ApprovalWorkflow.workflow_id == workflow_id)
            .options(selectinload(ApprovalWorkflow.steps))
            .execution_options(populate_existing=True)
        )
        try:
            result = await self.db.execute(query)
        except SQLAlchemyError as e:
            raise StorageException.from_sqlalchemy(e, "workflow lookup") from e

        workflow = result.scalar_one_or_none()
        if workflow is None:
            raise WorkflowNotFoundException(workflow_id)
        return workflow

    async def get_pending(
        self,
        level: Optional[Union[str, ApprovalLevel]] = None,
    ) -> List[ApprovalWorkflow]:
        """Get pending workflows, newest submission first"""
        query = (
            select(ApprovalWorkflow)
            .where(ApprovalWorkflow.status == ApprovalStatus.PENDING)
            .options(selectinload(ApprovalWorkflow.steps))
            .order_by(ApprovalWorkflow.submitted_at.desc(), ApprovalWorkflow.workflow_id.desc())
        )

        if level is not None:
            try:
                level = ApprovalLevel(level)
            except ValueError:
                raise InvalidApprovalLevelException(
                    str(level), [lvl.value for lvl in APPROVAL_LEVELS]
                )
            query = query.where(ApprovalWorkflow.current_level == level)

        try:
            result = await self.db.execute(query)
        except SQLAlchemyError as e:
            raise StorageException.from_sqlalchemy(e, "pending workflow query") from e
        return list(result.scalars().all())

    async def get_history(self, workflow_id: str) -> List[AuditLog]:
        """Audit entries for one workflow, oldest first"""
        await self.get_with_steps(workflow_id)
        return await self.audit.get_record_trail(WORKFLOW_TABLE, workflow_id)

    # ===========================================
    # HELPERS
    # ===========================================

    async def _get_for_update(self, workflow_id: str) -> ApprovalWorkflow:
        """Lock the workflow row for this transaction and check it is still open"""
        query = (
            select(ApprovalWorkflow)
            .where(ApprovalWorkflow.workflow_id == workflow_id)
            .options(selectinload(ApprovalWorkflow.steps))
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        try:
            result = await self.db.execute(query)
        except SQLAlchemyError as e:
            raise StorageException.from_sqlalchemy(e, "workflow lock") from e

        workflow = result.scalar_one_or_none()
        if workflow is None:
            raise WorkflowNotFoundException(workflow_id)
        if workflow.is_terminal:
            raise WorkflowStateException(workflow_id, ApprovalStatus(workflow.status).value)
        return workflow

    async def _commit(self, operation: str) -> None:
        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            raise StorageException.from_sqlalchemy(e, operation) from e

    async def _notify(self, workflow_id: str, enqueue) -> None:
        """Queue a post-decision message. Failures are logged; the decision stands."""
        try:
            await enqueue
            await self._commit("notification enqueue")
        except AppException as e:
            await self.db.rollback()
            logger.error(f"Failed to queue notification for workflow {workflow_id}: {e.message}")
            return

        await self._process_inline()

    async def _process_inline(self) -> None:
        if not settings.notification_process_inline:
            return
        try:
            await self.notifications.process_queue()
        except AppException as e:
            await self.db.rollback()
            logger.error(f"Inline notification processing failed: {e.message}")

    @staticmethod
    def _decision(workflow: ApprovalWorkflow) -> WorkflowDecision:
        return WorkflowDecision(
            success=True,
            workflow_id=workflow.workflow_id,
            status=ApprovalStatus(workflow.status).value,
            current_level=workflow.current_level.value if workflow.current_level else None,
        )
