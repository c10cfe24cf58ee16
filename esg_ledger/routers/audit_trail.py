"""
ESG Ledger - Audit Trail Router

API endpoints for the hash-chained audit log.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, status

from esg_ledger.dependencies import get_audit_service
from esg_ledger.schemas.audit import (
    AppendResponse,
    AuditEntryCreate,
    AuditEntryListResponse,
    AuditEntryResponse,
    ChainVerificationResponse,
)
from esg_ledger.services.audit_service import AuditService


router = APIRouter(prefix="/audit-trail", tags=["Audit Trail"])


def _request_metadata(request: Request) -> dict:
    """Client context recorded alongside an appended entry."""
    return {
        "ip_address": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
        "session_id": request.headers.get("x-session-id"),
    }


@router.get("", response_model=AuditEntryListResponse)
async def list_audit_entries(
    record_id: Optional[str] = Query(None),
    table_name: Optional[str] = Query(None),
    user_id: Optional[str] = Query(None),
    start_date: Optional[str] = Query(None, description="ISO date or datetime"),
    end_date: Optional[str] = Query(None, description="ISO date or datetime"),
    limit: Optional[int] = Query(None, ge=1),
    audit: AuditService = Depends(get_audit_service),
):
    """Query the audit trail, newest first."""
    entries = await audit.query(
        record_id=record_id,
        table_name=table_name,
        user_id=user_id,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
    )
    return AuditEntryListResponse(
        entries=[AuditEntryResponse.model_validate(e) for e in entries],
        count=len(entries),
    )


@router.post("", response_model=AppendResponse, status_code=status.HTTP_201_CREATED)
async def append_audit_entry(
    payload: AuditEntryCreate,
    request: Request,
    audit: AuditService = Depends(get_audit_service),
):
    """Append an entry to the chain."""
    result = await audit.append_and_commit(
        action=payload.action,
        table_name=payload.table_name,
        record_id=payload.record_id,
        user_id=payload.user_id,
        user_role=payload.user_role,
        old_values=payload.old_values,
        new_values=payload.new_values,
        metadata=_request_metadata(request),
    )
    return AppendResponse(id=result.id, hash=result.hash)


@router.get("/verify", response_model=ChainVerificationResponse)
async def verify_audit_chain(
    start_id: int = Query(1, ge=1),
    end_id: Optional[int] = Query(None, ge=1),
    audit: AuditService = Depends(get_audit_service),
):
    """
    Verify the integrity of the audit chain.

    A broken chain is reported in the body with ``is_valid: false``, not as
    an error status.
    """
    result = await audit.verify(start_id=start_id, end_id=end_id)
    return result.to_dict()


@router.get("/{entry_id}", response_model=AuditEntryResponse)
async def get_audit_entry(
    entry_id: int,
    audit: AuditService = Depends(get_audit_service),
):
    return await audit.get_entry(entry_id)
