"""
ESG Ledger - Audit Schemas

Pydantic schemas for audit trail request/response validation.
"""

from typing import Any, List, Optional

from pydantic import BaseModel, Field


class AuditEntryCreate(BaseModel):
    """Request body for appending an audit entry."""
    action: str = Field(..., min_length=1, max_length=100)
    table_name: str = Field(..., min_length=1, max_length=100)
    record_id: str = Field(..., min_length=1, max_length=100)
    user_id: Optional[str] = Field(None, max_length=100)
    user_role: Optional[str] = Field(None, max_length=50)
    old_values: Optional[Any] = None
    new_values: Optional[Any] = None


class AppendResponse(BaseModel):
    """Id and hash of the appended entry."""
    id: int
    hash: str


class AuditEntryResponse(BaseModel):
    """One audit log entry."""
    id: int
    previous_hash: str
    current_hash: str
    action: str
    table_name: str
    record_id: str
    user_id: Optional[str] = None
    user_role: Optional[str] = None
    old_values: Optional[Any] = None
    new_values: Optional[Any] = None
    timestamp: str
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    session_id: Optional[str] = None

    class Config:
        from_attributes = True


class AuditEntryListResponse(BaseModel):
    entries: List[AuditEntryResponse]
    count: int


class ChainDiscrepancyResponse(BaseModel):
    entry_id: int
    type: str
    message: str
    expected: Optional[str] = None
    actual: Optional[str] = None

    class Config:
        from_attributes = True


class ChainVerificationResponse(BaseModel):
    """Outcome of a chain verification run."""
    is_valid: bool
    total_entries: int
    invalid_entries: List[int]
    discrepancies: List[ChainDiscrepancyResponse]
    last_verified_id: Optional[int] = None

    class Config:
        from_attributes = True
