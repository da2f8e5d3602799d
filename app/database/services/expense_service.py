from typing import List, Optional, Set
from sqlalchemy.orm import Session, Query, joinedload
from sqlalchemy import func, or_, select
from decimal import Decimal

from app.database.models.expense import Expense, ExpenseApprover
from app.database.models.users import User
from app.ReqResModels.expensemodels import (
    ExpenseResponse,
    ExpenseListResponse,
    ExpenseStatsResponse,
    ExpenseQueryParams
)
from app.logic.actor import Actor
from app.logic.constants import ExpenseStatus
from app.logic.exceptions import AuthorizationError, NotFoundError

class ExpenseService:
    """Read side of the expense store. Writes go through ExpenseApprovalService."""

    @staticmethod
    def get_expense(db: Session, actor: Actor, expense_id: int) -> ExpenseResponse:
        expense = ExpenseService.get_visible_expense(db, actor, expense_id)
        return ExpenseService._build_expense_response(expense)

    @staticmethod
    def get_visible_expense(db: Session, actor: Actor, expense_id: int) -> Expense:
        """Tenant-scoped lookup that also enforces who may look at the expense"""
        expense = ExpenseService.get_tenant_expense(db, actor, expense_id)
        if not ExpenseService.can_view(db, actor, expense):
            raise AuthorizationError(f"Not allowed to view expense {expense_id}")
        return expense

    @staticmethod
    def get_tenant_expense(db: Session, actor: Actor, expense_id: int) -> Expense:
        # Expenses of other tenants are reported as missing
        expense = db.query(Expense).options(joinedload(Expense.employee)).filter(
            Expense.id == expense_id,
            Expense.company_id == actor.company_id
        ).first()
        if not expense:
            raise NotFoundError(f"Expense with ID {expense_id} not found")
        return expense

    @staticmethod
    def can_view(db: Session, actor: Actor, expense: Expense) -> bool:
        if actor.is_admin or expense.employee_id == actor.user_id:
            return True
        if actor.user_id in (expense.approvers or []):
            return True
        if actor.is_manager:
            return expense.employee_id in ExpenseService._direct_reports(db, actor)
        return False

    @staticmethod
    def get_expenses(db: Session, actor: Actor, params: ExpenseQueryParams) -> ExpenseListResponse:
        """Get expenses visible to the actor with filtering and pagination"""
        query = ExpenseService._visible_query(db, actor).options(joinedload(Expense.employee))

        if params.employee_id:
            query = query.filter(Expense.employee_id == params.employee_id)

        if params.status:
            query = query.filter(Expense.status == params.status)

        if params.category:
            query = query.filter(Expense.category.ilike(f"%{params.category}%"))

        if params.date_from:
            query = query.filter(Expense.expense_date >= params.date_from)

        if params.date_to:
            query = query.filter(Expense.expense_date <= params.date_to)

        if params.amount_min is not None:
            query = query.filter(Expense.amount >= params.amount_min)

        if params.amount_max is not None:
            query = query.filter(Expense.amount <= params.amount_max)

        # Get total count
        total_count = query.count()

        # Apply pagination
        offset = (params.page - 1) * params.page_size
        expenses = query.order_by(Expense.created_at.desc(), Expense.id.desc()).offset(offset).limit(params.page_size).all()

        total_pages = (total_count + params.page_size - 1) // params.page_size

        return ExpenseListResponse(
            expenses=[ExpenseService._build_expense_response(expense) for expense in expenses],
            total_count=total_count,
            page=params.page,
            page_size=params.page_size,
            total_pages=total_pages
        )

    @staticmethod
    def get_expense_stats(db: Session, actor: Actor) -> ExpenseStatsResponse:
        """Counts and sums by status over the expenses the actor can see"""
        query = ExpenseService._visible_query(db, actor)

        rows = query.with_entities(
            Expense.status, func.count(Expense.id), func.sum(Expense.amount)
        ).group_by(Expense.status).all()

        counts = {status: count for status, count, _ in rows}
        amounts = {status: Decimal(str(total or 0)) for status, _, total in rows}

        return ExpenseStatsResponse(
            total_expenses=sum(counts.values()),
            pending_expenses=counts.get(ExpenseStatus.PENDING.value, 0),
            approved_expenses=counts.get(ExpenseStatus.APPROVED.value, 0),
            rejected_expenses=counts.get(ExpenseStatus.REJECTED.value, 0),
            reimbursed_expenses=counts.get(ExpenseStatus.REIMBURSED.value, 0),
            total_amount=sum(amounts.values(), Decimal("0")),
            pending_amount=amounts.get(ExpenseStatus.PENDING.value, Decimal("0")),
            approved_amount=amounts.get(ExpenseStatus.APPROVED.value, Decimal("0"))
        )

    @staticmethod
    def _visible_query(db: Session, actor: Actor) -> Query:
        query = db.query(Expense).filter(Expense.company_id == actor.company_id)
        if actor.is_admin:
            return query

        submitters = {actor.user_id}
        if actor.is_manager:
            submitters |= ExpenseService._direct_reports(db, actor)

        approving = select(ExpenseApprover.expense_id).where(ExpenseApprover.user_id == actor.user_id)
        return query.filter(or_(Expense.employee_id.in_(submitters), Expense.id.in_(approving)))

    @staticmethod
    def _direct_reports(db: Session, actor: Actor) -> Set[int]:
        return {
            user_id for (user_id,) in db.query(User.id).filter(
                User.company_id == actor.company_id,
                User.manager_id == actor.user_id
            ).all()
        }

    @staticmethod
    def _build_expense_response(expense: Expense) -> ExpenseResponse:
        """Build expense response from database model"""
        employee_name: Optional[str] = expense.employee.name if expense.employee else None
        history: List[dict] = list(expense.approval_history or [])

        return ExpenseResponse(
            id=expense.id,
            employee_id=expense.employee_id,
            employee_name=employee_name,
            company_id=expense.company_id,
            amount=expense.amount,
            currency=expense.currency,
            category=expense.category,
            description=expense.description,
            expense_date=expense.expense_date,
            tags=list(expense.tags or []),
            notes=expense.notes,
            status=expense.status,
            rule_id=expense.rule_id,
            completion_policy=expense.completion_policy,
            approvers=list(expense.approvers or []),
            approval_history=history,
            current_approver_index=expense.current_approver_index or 0,
            final_decision=expense.final_decision,
            final_decision_by=expense.final_decision_by,
            final_decision_at=expense.final_decision_at,
            created_at=expense.created_at,
            updated_at=expense.updated_at,
            version=expense.version
        )
