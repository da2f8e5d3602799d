from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from typing import Optional

from app.api.dependencies import get_current_actor
from app.database.databse import get_db
from app.database.services.expense_approval_service import ExpenseApprovalService
from app.ReqResModels.approvalmodels import (
    ExpenseApprovalStatusResponse,
    ManagerPendingRequestsResponse
)
from app.ReqResModels.companymodels import ErrorResponse
from app.ReqResModels.expensemodels import ExpenseDecisionRequest, ExpenseResponse
from app.logic.actor import Actor
from app.logic.constants import DecisionAction

router = APIRouter(
    prefix="/expense-approval",
    tags=["expense-approval"],
    responses={
        403: {"model": ErrorResponse, "description": "Not an awaiting approver"},
        404: {"model": ErrorResponse, "description": "Expense not found"},
        409: {"model": ErrorResponse, "description": "Already decided or modified concurrently"}
    }
)

@router.post(
    "/{expense_id}/approve",
    response_model=ExpenseResponse,
    summary="Approve an expense",
    description="Record an approval by the caller; the expense resolves once its completion policy is met"
)
def approve_expense(
    expense_id: int,
    request: Optional[ExpenseDecisionRequest] = None,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    return ExpenseApprovalService.decide(db, actor, expense_id, DecisionAction.APPROVE, request.comment if request else None)

@router.post(
    "/{expense_id}/reject",
    response_model=ExpenseResponse,
    summary="Reject an expense"
)
def reject_expense(
    expense_id: int,
    request: Optional[ExpenseDecisionRequest] = None,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    return ExpenseApprovalService.decide(db, actor, expense_id, DecisionAction.REJECT, request.comment if request else None)

@router.get(
    "/status/{expense_id}",
    response_model=ExpenseApprovalStatusResponse,
    summary="Get approval status",
    description="Approvers, who is awaited now and the counts so far"
)
def get_approval_status(
    expense_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    return ExpenseApprovalService.get_approval_status(db, actor, expense_id)

@router.get(
    "/pending",
    response_model=ManagerPendingRequestsResponse,
    summary="Get pending reviews",
    description="Pending expenses the caller can decide on right now"
)
def get_pending_reviews(
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    return ExpenseApprovalService.pending_reviews(db, actor)
