from fastapi import APIRouter, Depends, Query, status as http_status
from sqlalchemy.orm import Session
from typing import Optional
from datetime import date
from decimal import Decimal

from app.api.dependencies import get_current_actor
from app.database.databse import get_db
from app.database.services.expense_approval_service import ExpenseApprovalService
from app.database.services.expense_service import ExpenseService
from app.ReqResModels.companymodels import ErrorResponse
from app.ReqResModels.expensemodels import (
    ExpenseSubmitRequest,
    ExpenseUpdateRequest,
    ExpenseResponse,
    ExpenseListResponse,
    ExpenseStatsResponse,
    ExpenseQueryParams
)
from app.logic.actor import Actor

router = APIRouter(
    prefix="/expenses",
    tags=["expenses"],
    responses={
        400: {"model": ErrorResponse, "description": "Policy violation"},
        403: {"model": ErrorResponse, "description": "Not allowed"},
        404: {"model": ErrorResponse, "description": "Expense not found"},
        409: {"model": ErrorResponse, "description": "Invalid state or concurrent modification"},
        422: {"model": ErrorResponse, "description": "Validation or configuration error"}
    }
)

@router.post(
    "/",
    response_model=ExpenseResponse,
    status_code=http_status.HTTP_201_CREATED,
    summary="Submit a new expense",
    description="Submit an expense; it is routed to approvers or auto-approved"
)
def submit_expense(
    request: ExpenseSubmitRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    return ExpenseApprovalService.submit_expense(db, actor, request)

@router.get(
    "/",
    response_model=ExpenseListResponse,
    summary="Get expenses",
    description="Expenses visible to the caller, with filtering and pagination"
)
def get_expenses(
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(10, ge=1, le=100, description="Number of items per page"),
    employee_id: Optional[int] = Query(None, description="Filter by submitter user ID"),
    status: Optional[str] = Query(None, description="Filter by expense status"),
    category: Optional[str] = Query(None, description="Filter by expense category"),
    date_from: Optional[date] = Query(None, description="Filter expenses from this date"),
    date_to: Optional[date] = Query(None, description="Filter expenses to this date"),
    amount_min: Optional[Decimal] = Query(None, ge=0, description="Minimum amount filter"),
    amount_max: Optional[Decimal] = Query(None, ge=0, description="Maximum amount filter"),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    params = ExpenseQueryParams(
        page=page,
        page_size=page_size,
        employee_id=employee_id,
        status=status,
        category=category,
        date_from=date_from,
        date_to=date_to,
        amount_min=amount_min,
        amount_max=amount_max
    )
    return ExpenseService.get_expenses(db, actor, params)

@router.get(
    "/stats/summary",
    response_model=ExpenseStatsResponse,
    summary="Get expense statistics",
    description="Counts and amounts by status over the expenses visible to the caller"
)
def get_expense_stats(
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    return ExpenseService.get_expense_stats(db, actor)

@router.get(
    "/{expense_id}",
    response_model=ExpenseResponse,
    summary="Get expense by ID"
)
def get_expense(
    expense_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    return ExpenseService.get_expense(db, actor, expense_id)

@router.put(
    "/{expense_id}",
    response_model=ExpenseResponse,
    summary="Update expense",
    description="Edit a pending expense nobody has decided on yet; approvers are chosen again"
)
def update_expense(
    expense_id: int,
    request: ExpenseUpdateRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    return ExpenseApprovalService.update_expense(db, actor, expense_id, request)

@router.delete(
    "/{expense_id}",
    status_code=http_status.HTTP_204_NO_CONTENT,
    summary="Delete expense"
)
def delete_expense(
    expense_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    ExpenseApprovalService.delete_expense(db, actor, expense_id)
