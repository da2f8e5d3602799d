from fastapi import APIRouter, Depends, Query, status as http_status
from sqlalchemy.orm import Session
from typing import Optional

from app.api.dependencies import get_current_actor
from app.database.databse import get_db
from app.database.services.approval_service import ApprovalRuleService
from app.ReqResModels.approvalmodels import (
    CreateApprovalRuleRequest,
    UpdateApprovalRuleRequest,
    ApprovalRuleQueryParams,
    ApprovalRuleResponse,
    ApprovalRuleListResponse
)
from app.ReqResModels.companymodels import ErrorResponse
from app.logic.actor import Actor
from app.logic.constants import RuleType

router = APIRouter(
    prefix="/approval-rules",
    tags=["approval-rules"],
    responses={
        403: {"model": ErrorResponse, "description": "Admin only"},
        404: {"model": ErrorResponse, "description": "Approval rule not found"},
        422: {"model": ErrorResponse, "description": "Invalid rule configuration"}
    }
)

@router.post(
    "/",
    response_model=ApprovalRuleResponse,
    status_code=http_status.HTTP_201_CREATED,
    summary="Create approval rule",
    description="Create a sequence, percentage, specific, hybrid or amount-based rule"
)
def create_approval_rule(
    request: CreateApprovalRuleRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    return ApprovalRuleService.create_approval_rule(db, actor, request)

@router.get(
    "/",
    response_model=ApprovalRuleListResponse,
    summary="List approval rules",
    description="Rules of the caller's company, highest priority first"
)
def get_approval_rules(
    page: int = Query(1, ge=1, description="Page number"),
    limit: int = Query(10, ge=1, le=100, description="Items per page"),
    rule_type: Optional[RuleType] = Query(None, alias="type", description="Filter by rule type"),
    is_active: Optional[bool] = Query(None, description="Filter by active flag"),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    params = ApprovalRuleQueryParams(page=page, limit=limit, rule_type=rule_type, is_active=is_active)
    return ApprovalRuleService.get_approval_rules(db, actor, params)

@router.get(
    "/{rule_id}",
    response_model=ApprovalRuleResponse,
    summary="Get approval rule by ID"
)
def get_approval_rule(
    rule_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    return ApprovalRuleService.get_approval_rule(db, actor, rule_id)

@router.put(
    "/{rule_id}",
    response_model=ApprovalRuleResponse,
    summary="Update approval rule"
)
def update_approval_rule(
    rule_id: int,
    request: UpdateApprovalRuleRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    return ApprovalRuleService.update_approval_rule(db, actor, rule_id, request)

@router.delete(
    "/{rule_id}",
    response_model=ApprovalRuleResponse,
    summary="Deactivate approval rule",
    description="Rules are never removed; the rule stops matching new expenses"
)
def delete_approval_rule(
    rule_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    return ApprovalRuleService.deactivate_approval_rule(db, actor, rule_id)
