"""
ESG Ledger - Workflow Schemas

Pydantic schemas for approval workflow request/response validation.
"""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from esg_ledger.models.workflow import ApprovalLevel, ApprovalStatus


class WorkflowCreateRequest(BaseModel):
    """Submit a data item for approval."""
    data_id: str = Field(..., min_length=1, max_length=100)
    data_type: str = Field(..., min_length=1, max_length=100)
    submitted_by: str = Field(..., min_length=1, max_length=100)
    submitter_email: Optional[str] = Field(None, max_length=255)


class WorkflowCreatedResponse(BaseModel):
    workflow_id: str
    status: ApprovalStatus


class WorkflowDecisionRequest(BaseModel):
    """Approve or reject at the workflow's current level."""
    approver_id: str = Field(..., min_length=1, max_length=100)
    approver_email: Optional[str] = Field(None, max_length=255)
    comments: Optional[str] = ""


class WorkflowDecisionResponse(BaseModel):
    success: bool
    workflow_id: str
    status: ApprovalStatus
    current_level: Optional[ApprovalLevel] = None


class ApprovalStepResponse(BaseModel):
    """Decision record for one level."""
    id: int
    level: ApprovalLevel
    status: ApprovalStatus
    approver: Optional[str] = None
    approved_at: Optional[datetime] = None
    comments: Optional[str] = None

    class Config:
        from_attributes = True


class WorkflowResponse(BaseModel):
    """Workflow with its approval steps."""
    workflow_id: str
    data_id: str
    data_type: str
    submitted_by: str
    submitter_email: Optional[str] = None
    current_level: Optional[ApprovalLevel] = None
    status: ApprovalStatus
    submitted_at: datetime
    completed_at: Optional[datetime] = None
    steps: List[ApprovalStepResponse] = []

    class Config:
        from_attributes = True
