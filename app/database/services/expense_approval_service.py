"""Approval workflow engine.

Every write to an expense goes through this service. A decision is computed
entirely from the loaded row (approvers, policy snapshot and history), then
committed as one versioned UPDATE; a writer that lost the race gets
``ConflictError`` and must retry with fresh state.
"""
from typing import List, Optional
from sqlalchemy.orm import Session, joinedload
from sqlalchemy.orm.exc import StaleDataError
from decimal import Decimal
import logging

from app.database.databse import utcnow
from app.database.models.expense import Expense, ExpenseApprover
from app.database.models.users import User
from app.database.services.approval_service import ApprovalRuleService
from app.database.services.audit_service import AuditLogService
from app.database.services.company_service import CompanyService
from app.database.services.expense_service import ExpenseService
from app.ReqResModels.approvalmodels import (
    ExpenseApprovalStatusResponse,
    PendingReviewRequest,
    ManagerPendingRequestsResponse
)
from app.ReqResModels.expensemodels import (
    ExpenseSubmitRequest,
    ExpenseUpdateRequest,
    ExpenseResponse
)
from app.logic.actor import Actor
from app.logic.approval_rules import (
    ApprovalPlan,
    SubmissionContext,
    TenantPolicy,
    parse_rule,
    select_approvers
)
from app.logic.completion import (
    CompletionPolicy,
    approval_counts,
    awaiting_approvers,
    current_index,
    resolve
)
from app.logic.constants import (
    AuditAction,
    AuditSeverity,
    DecisionAction,
    ExpenseStatus,
    FinalDecision,
    ResourceType
)
from app.logic.exceptions import (
    AuthorizationError,
    ConfigurationError,
    ConflictError,
    DatabaseError,
    NotFoundError,
    PolicyViolation,
    StateError,
    ValidationError
)

logger = logging.getLogger(__name__)
# Tenant misconfiguration is reported to administrators on this channel
config_logger = logging.getLogger("app.configuration")

class ExpenseApprovalService:

    @staticmethod
    def submit_expense(db: Session, actor: Actor, request: ExpenseSubmitRequest) -> ExpenseResponse:
        """Create an expense and route it to its approvers (or auto-approve it)"""
        ExpenseApprovalService._check_required(request.amount, request.category, request.description)

        policy = CompanyService.get_policy(db, actor.company_id)
        employee = ExpenseApprovalService._load_submitter(db, actor.company_id, actor.user_id)
        ExpenseApprovalService._check_policy(request.amount, request.category, policy)

        context = ExpenseApprovalService._context(db, employee, request.amount, request.category)
        plan = ExpenseApprovalService._plan(db, employee.company_id, context, policy)

        now = utcnow()
        expense = Expense(
            employee_id=employee.id,
            company_id=employee.company_id,
            amount=request.amount,
            currency=request.currency or policy.currency_code,
            category=request.category,
            description=request.description,
            expense_date=request.expense_date or now.date(),
            tags=list(request.tags),
            notes=request.notes,
            created_at=now
        )
        ExpenseApprovalService._apply_plan(expense, plan, now)

        try:
            db.add(expense)
            db.commit()
            db.refresh(expense)
        except Exception as e:
            db.rollback()
            raise DatabaseError(f"Failed to submit expense: {str(e)}")

        logger.info("Expense %s submitted by %s (%s)", expense.id, employee.id, plan.reason)

        snapshot = ExpenseApprovalService._snapshot(expense)
        AuditLogService.record(
            db, expense.company_id, actor.user_id, AuditAction.EXPENSE_CREATED, ResourceType.EXPENSE, expense.id,
            after=snapshot,
            severity=AuditSeverity.LOW,
            description=f"Expense {expense.id} submitted for {expense.amount} {expense.currency}"
        )
        if plan.auto_approved:
            AuditLogService.record(
                db, expense.company_id, None, AuditAction.EXPENSE_APPROVED, ResourceType.EXPENSE, expense.id,
                after=snapshot,
                severity=AuditSeverity.MEDIUM,
                description=f"Expense {expense.id} auto-approved ({plan.reason})"
            )

        return ExpenseService._build_expense_response(expense)

    @staticmethod
    def decide(
        db: Session,
        actor: Actor,
        expense_id: int,
        action: DecisionAction,
        comment: Optional[str] = None,
    ) -> ExpenseResponse:
        """Record one approver's decision and resolve the expense if it is now final"""
        expense = ExpenseService.get_tenant_expense(db, actor, expense_id)

        if expense.status != ExpenseStatus.PENDING.value:
            raise StateError(f"Expense {expense_id} is already {expense.status}")

        policy = CompletionPolicy.from_dict(expense.completion_policy)
        approvers: List[int] = list(expense.approvers or [])
        history: List[dict] = list(expense.approval_history or [])

        ExpenseApprovalService._check_active_actor(db, actor)
        awaiting = awaiting_approvers(policy, approvers, history)
        on_behalf_of = None
        if actor.user_id in awaiting:
            override = False
        elif actor.is_admin and awaiting:
            # An admin approval fills the next awaited slot
            override = True
            on_behalf_of = awaiting[0]
        else:
            raise AuthorizationError(f"User {actor.user_id} is not an awaiting approver of expense {expense_id}")

        now = utcnow()
        entry = {
            "approver_id": actor.user_id,
            "decision": action.recorded_as,
            "comment": comment or "",
            "decided_at": now.isoformat(),
            "override": override,
            "on_behalf_of": on_behalf_of,
        }
        new_history = history + [entry]
        outcome = resolve(policy, approvers, new_history)
        next_index = current_index(policy, approvers, new_history)

        if outcome is None and policy.is_sequential and next_index >= len(approvers):
            error = ConfigurationError(
                f"Expense {expense_id} has no approver after position {next_index}",
                details={"expense_id": expense_id, "approvers": approvers}
            )
            config_logger.error("Company %s: %s", actor.company_id, error.message)
            raise error

        before = ExpenseApprovalService._snapshot(expense)

        # New list objects so the JSON columns are flagged as changed
        expense.approval_history = new_history
        expense.current_approver_index = next_index
        expense.updated_at = now
        if outcome is not None:
            expense.status = outcome
            expense.final_decision = outcome
            expense.final_decision_by = actor.user_id
            expense.final_decision_at = now

        ExpenseApprovalService._commit(db, expense_id, "decide on")
        db.refresh(expense)

        if outcome is not None:
            logger.info("Expense %s %s by %s", expense.id, outcome, actor.user_id)
            audit_action = AuditAction.EXPENSE_APPROVED if outcome == FinalDecision.APPROVED.value else AuditAction.EXPENSE_REJECTED
            severity = AuditSeverity.MEDIUM
            description = f"Expense {expense.id} {outcome} by user {actor.user_id}"
        else:
            logger.info("Expense %s: %s recorded by %s", expense.id, entry["decision"], actor.user_id)
            audit_action = AuditAction.APPROVAL_STEP_RECORDED
            severity = AuditSeverity.LOW
            description = f"User {actor.user_id} {entry['decision']} expense {expense.id}"
        if override:
            severity = AuditSeverity.HIGH
            description += " (admin override)"

        AuditLogService.record(
            db, expense.company_id, actor.user_id, audit_action, ResourceType.EXPENSE, expense.id,
            before=before,
            after=ExpenseApprovalService._snapshot(expense),
            severity=severity,
            description=description
        )
        return ExpenseService._build_expense_response(expense)

    @staticmethod
    def update_expense(db: Session, actor: Actor, expense_id: int, request: ExpenseUpdateRequest) -> ExpenseResponse:
        """Edit an untouched pending expense; its approvers are chosen again"""
        expense = ExpenseService.get_tenant_expense(db, actor, expense_id)
        ExpenseApprovalService._check_editable(actor, expense)

        update_data = request.model_dump(exclude_unset=True)
        amount = update_data.get("amount", expense.amount)
        category = update_data.get("category", expense.category)
        description = update_data.get("description", expense.description)
        ExpenseApprovalService._check_required(amount, category, description)

        policy = CompanyService.get_policy(db, expense.company_id)
        employee = ExpenseApprovalService._load_submitter(db, expense.company_id, expense.employee_id)
        ExpenseApprovalService._check_policy(amount, category, policy)

        context = ExpenseApprovalService._context(db, employee, Decimal(str(amount)), category)
        plan = ExpenseApprovalService._plan(db, employee.company_id, context, policy)

        before = ExpenseApprovalService._snapshot(expense)
        now = utcnow()

        for field in ("amount", "currency", "category", "description", "expense_date", "notes"):
            if field in update_data and update_data[field] is not None:
                setattr(expense, field, update_data[field])
        if update_data.get("tags") is not None:
            expense.tags = list(update_data["tags"])
        expense.updated_at = now
        ExpenseApprovalService._apply_plan(expense, plan, now)

        ExpenseApprovalService._commit(db, expense_id, "update")
        db.refresh(expense)

        logger.info("Expense %s updated by %s (%s)", expense.id, actor.user_id, plan.reason)
        after = ExpenseApprovalService._snapshot(expense)
        AuditLogService.record(
            db, expense.company_id, actor.user_id, AuditAction.EXPENSE_UPDATED, ResourceType.EXPENSE, expense.id,
            before=before,
            after=after,
            severity=AuditSeverity.LOW,
            description=f"Expense {expense.id} updated"
        )
        if plan.auto_approved:
            AuditLogService.record(
                db, expense.company_id, None, AuditAction.EXPENSE_APPROVED, ResourceType.EXPENSE, expense.id,
                after=after,
                severity=AuditSeverity.MEDIUM,
                description=f"Expense {expense.id} auto-approved ({plan.reason})"
            )
        return ExpenseService._build_expense_response(expense)

    @staticmethod
    def delete_expense(db: Session, actor: Actor, expense_id: int):
        """Delete an untouched pending expense"""
        expense = ExpenseService.get_tenant_expense(db, actor, expense_id)
        ExpenseApprovalService._check_editable(actor, expense)

        before = ExpenseApprovalService._snapshot(expense)
        company_id = expense.company_id

        db.delete(expense)
        ExpenseApprovalService._commit(db, expense_id, "delete")

        logger.info("Expense %s deleted by %s", expense_id, actor.user_id)
        AuditLogService.record(
            db, expense.company_id, actor.user_id, AuditAction.EXPENSE_DELETED, ResourceType.EXPENSE, expense_id,
            before=before,
            severity=AuditSeverity.MEDIUM,
            description=f"Expense {expense_id} deleted"
        )

    @staticmethod
    def get_approval_status(db: Session, actor: Actor, expense_id: int) -> ExpenseApprovalStatusResponse:
        """Derived view of where an expense stands in its approval"""
        expense = ExpenseService.get_visible_expense(db, actor, expense_id)
        approvers: List[int] = list(expense.approvers or [])
        history: List[dict] = list(expense.approval_history or [])
        is_final = expense.status != ExpenseStatus.PENDING.value

        if not expense.completion_policy:
            # Auto-approved expenses never had approvers
            return ExpenseApprovalStatusResponse(
                expense_id=expense.id,
                current_status=expense.status,
                approvers=[],
                awaiting_approvers=[],
                approved_count=0,
                rejected_count=0,
                approval_percentage=0.0,
                is_final=is_final
            )

        policy = CompletionPolicy.from_dict(expense.completion_policy)
        counts = approval_counts(approvers, history)
        awaiting = [] if is_final else awaiting_approvers(policy, approvers, history)

        return ExpenseApprovalStatusResponse(
            expense_id=expense.id,
            current_status=expense.status,
            completion_mode=policy.mode.value,
            approvers=approvers,
            awaiting_approvers=awaiting,
            approved_count=counts["approved"],
            rejected_count=counts["rejected"],
            approval_percentage=round(counts["approved"] * 100.0 / len(approvers), 2) if approvers else 0.0,
            required_percentage=float(policy.threshold) if policy.threshold is not None else None,
            is_final=is_final
        )

    @staticmethod
    def pending_reviews(db: Session, actor: Actor) -> ManagerPendingRequestsResponse:
        """Pending expenses the actor may decide right now"""
        expenses = db.query(Expense).options(joinedload(Expense.employee)).filter(
            Expense.company_id == actor.company_id,
            Expense.status == ExpenseStatus.PENDING.value
        ).order_by(Expense.created_at.asc(), Expense.id.asc()).all()

        reviews = []
        total_amount = Decimal("0")
        for expense in expenses:
            policy = CompletionPolicy.from_dict(expense.completion_policy)
            awaiting = awaiting_approvers(policy, list(expense.approvers or []), list(expense.approval_history or []))
            if actor.user_id not in awaiting and not actor.is_admin:
                continue
            reviews.append(PendingReviewRequest(
                expense_id=expense.id,
                employee_id=expense.employee_id,
                employee_name=expense.employee.name if expense.employee else None,
                amount=expense.amount,
                currency=expense.currency,
                category=expense.category,
                description=expense.description,
                expense_date=expense.expense_date,
                submitted_date=expense.created_at,
                completion_mode=policy.mode.value,
                is_override=actor.user_id not in awaiting
            ))
            total_amount += Decimal(str(expense.amount))

        return ManagerPendingRequestsResponse(
            pending_reviews=reviews,
            total_count=len(reviews),
            total_amount=total_amount
        )

    @staticmethod
    def _check_required(amount, category, description):
        errors = {}
        if amount is None:
            errors["amount"] = "required"
        elif Decimal(str(amount)) < 0:
            errors["amount"] = "must not be negative"
        if not category or not str(category).strip():
            errors["category"] = "required"
        if not description or not str(description).strip():
            errors["description"] = "required"
        if errors:
            raise ValidationError("Expense is missing required fields", details=errors)

    @staticmethod
    def _check_policy(amount, category, policy: TenantPolicy):
        if category not in policy.expense_categories:
            raise ValidationError(
                f"Category '{category}' is not allowed for this company",
                details={"category": "not allowed", "allowed": list(policy.expense_categories)}
            )
        if policy.max_expense_amount is not None and Decimal(str(amount)) > policy.max_expense_amount:
            raise PolicyViolation(
                f"Amount {amount} exceeds the company limit of {policy.max_expense_amount}",
                details={"amount": str(amount), "max_expense_amount": str(policy.max_expense_amount)}
            )

    @staticmethod
    def _check_editable(actor: Actor, expense: Expense):
        if expense.employee_id != actor.user_id and not actor.is_admin:
            raise AuthorizationError(f"Only the submitter or an admin can change expense {expense.id}")
        if expense.status != ExpenseStatus.PENDING.value or expense.approval_history:
            raise StateError(f"Expense {expense.id} can no longer be changed")

    @staticmethod
    def _load_submitter(db: Session, company_id: int, employee_id: int) -> User:
        employee = db.query(User).filter(
            User.id == employee_id,
            User.company_id == company_id,
            User.is_active.is_(True)
        ).first()
        if not employee:
            raise NotFoundError(f"User with ID {employee_id} not found")
        return employee

    @staticmethod
    def _check_active_actor(db: Session, actor: Actor):
        user = db.query(User).filter(User.id == actor.user_id, User.company_id == actor.company_id).first()
        if not user or not user.is_active:
            raise AuthorizationError(f"User {actor.user_id} is not an active member of this company")

    @staticmethod
    def _context(db: Session, employee: User, amount: Decimal, category: str) -> SubmissionContext:
        inactive = db.query(User.id).filter(
            User.company_id == employee.company_id,
            User.is_active.is_(False)
        ).all()
        return SubmissionContext(
            employee_id=employee.id,
            amount=amount,
            category=category,
            department=employee.department,
            manager_id=employee.manager_id,
            inactive_user_ids=frozenset(user_id for (user_id,) in inactive),
        )

    @staticmethod
    def _plan(db: Session, company_id: int, context: SubmissionContext, policy: TenantPolicy) -> ApprovalPlan:
        try:
            rules = [parse_rule(rule) for rule in ApprovalRuleService.get_active_rules(db, company_id)]
            return select_approvers(context, rules, policy)
        except ConfigurationError as e:
            config_logger.error("Company %s: %s %s", company_id, e.message, e.details or "")
            raise

    @staticmethod
    def _apply_plan(expense: Expense, plan: ApprovalPlan, now):
        expense.rule_id = plan.rule_id
        expense.approval_history = []
        expense.current_approver_index = 0
        if plan.auto_approved:
            expense.status = ExpenseStatus.APPROVED.value
            expense.approvers = []
            expense.approver_links = []
            expense.completion_policy = None
            expense.final_decision = FinalDecision.APPROVED.value
            expense.final_decision_by = None
            expense.final_decision_at = now
        else:
            expense.status = ExpenseStatus.PENDING.value
            expense.approvers = list(plan.approvers)
            expense.approver_links = [
                ExpenseApprover(user_id=user_id, position=position)
                for position, user_id in enumerate(plan.approvers)
            ]
            expense.completion_policy = plan.policy.to_dict()
            expense.final_decision = FinalDecision.PENDING.value
            expense.final_decision_by = None
            expense.final_decision_at = None

    @staticmethod
    def _commit(db: Session, expense_id: int, verb: str):
        try:
            db.commit()
        except StaleDataError:
            db.rollback()
            logger.warning("Concurrent modification of expense %s detected", expense_id)
            raise ConflictError(f"Expense {expense_id} was modified concurrently; reload and retry")
        except Exception as e:
            db.rollback()
            raise DatabaseError(f"Failed to {verb} expense {expense_id}: {str(e)}")

    @staticmethod
    def _snapshot(expense: Expense) -> dict:
        return {
            "amount": expense.amount,
            "currency": expense.currency,
            "category": expense.category,
            "description": expense.description,
            "status": expense.status,
            "approvers": list(expense.approvers or []),
            "history_length": len(expense.approval_history or []),
            "final_decision": expense.final_decision,
            "final_decision_by": expense.final_decision_by,
            "version": expense.version,
        }
