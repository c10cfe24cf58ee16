"""
ESG Ledger - Approval Workflows Router

API endpoints for submitting ESG data for approval and recording
decisions at each approval level.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from esg_ledger.dependencies import get_workflow_service
from esg_ledger.schemas.audit import AuditEntryResponse
from esg_ledger.schemas.workflow import (
    WorkflowCreatedResponse,
    WorkflowCreateRequest,
    WorkflowDecisionRequest,
    WorkflowDecisionResponse,
    WorkflowResponse,
)
from esg_ledger.services.workflow_service import WorkflowService


router = APIRouter(prefix="/workflows", tags=["Approval Workflows"])


@router.post("", response_model=WorkflowCreatedResponse, status_code=status.HTTP_201_CREATED)
async def create_workflow(
    payload: WorkflowCreateRequest,
    workflows: WorkflowService = Depends(get_workflow_service),
):
    """Start an approval workflow at the site level."""
    created = await workflows.create(
        data_id=payload.data_id,
        data_type=payload.data_type,
        submitted_by=payload.submitted_by,
        submitter_email=payload.submitter_email,
    )
    return WorkflowCreatedResponse(workflow_id=created.workflow_id, status=created.status)


@router.get("/pending", response_model=List[WorkflowResponse])
async def list_pending_workflows(
    level: Optional[str] = Query(None, description="site, business_unit, group_esg or executive"),
    workflows: WorkflowService = Depends(get_workflow_service),
):
    """Get pending workflows, optionally only those awaiting one level."""
    return await workflows.get_pending(level=level)


@router.post("/{workflow_id}/approve", response_model=WorkflowDecisionResponse)
async def approve_workflow(
    workflow_id: str,
    payload: WorkflowDecisionRequest,
    workflows: WorkflowService = Depends(get_workflow_service),
):
    decision = await workflows.approve(
        workflow_id=workflow_id,
        approver_id=payload.approver_id,
        approver_email=payload.approver_email,
        comments=payload.comments,
    )
    return WorkflowDecisionResponse(**vars(decision))


@router.post("/{workflow_id}/reject", response_model=WorkflowDecisionResponse)
async def reject_workflow(
    workflow_id: str,
    payload: WorkflowDecisionRequest,
    workflows: WorkflowService = Depends(get_workflow_service),
):
    decision = await workflows.reject(
        workflow_id=workflow_id,
        approver_id=payload.approver_id,
        approver_email=payload.approver_email,
        comments=payload.comments,
    )
    return WorkflowDecisionResponse(**vars(decision))


@router.get("/{workflow_id}", response_model=WorkflowResponse)
async def get_workflow(
    workflow_id: str,
    workflows: WorkflowService = Depends(get_workflow_service),
):
    return await workflows.get_with_steps(workflow_id)


@router.get("/{workflow_id}/history", response_model=List[AuditEntryResponse])
async def get_workflow_history(
    workflow_id: str,
    workflows: WorkflowService = Depends(get_workflow_service),
):
    """Audit entries recorded for this workflow, oldest first."""
    return await workflows.get_history(workflow_id)
