from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from typing import Optional
from datetime import datetime

from app.api.dependencies import get_current_actor
from app.database.databse import get_db
from app.database.services.audit_service import AuditLogService
from app.ReqResModels.auditmodels import AuditLogQueryParams, AuditLogListResponse
from app.ReqResModels.companymodels import ErrorResponse
from app.logic.actor import Actor

router = APIRouter(
    prefix="/audit-logs",
    tags=["audit-logs"],
    responses={403: {"model": ErrorResponse, "description": "Admin only"}}
)

@router.get(
    "/",
    response_model=AuditLogListResponse,
    summary="Query the audit trail",
    description="Audit records of the caller's company, newest first (admin only)"
)
def get_audit_logs(
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    user_id: Optional[int] = Query(None, description="Filter by acting user"),
    action: Optional[str] = Query(None, description="Filter by action, e.g. expense_approved"),
    resource_type: Optional[str] = Query(None, description="Filter by resource type, e.g. Expense"),
    resource_id: Optional[int] = Query(None, description="Filter by resource ID"),
    severity: Optional[str] = Query(None, description="Filter by severity"),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    params = AuditLogQueryParams(
        page=page,
        limit=limit,
        user_id=user_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        severity=severity,
        start_date=start_date,
        end_date=end_date
    )
    return AuditLogService.list_logs(db, actor, params)
