from enum import Enum


class UserRole(str, Enum):
    EMPLOYEE = "employee"
    MANAGER = "manager"
    ADMIN = "admin"
    FINANCE = "finance"
    DIRECTOR = "director"


class ExpenseStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    REIMBURSED = "reimbursed"


class FinalDecision(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class DecisionAction(str, Enum):
    """What an approver asks for; recorded in history as approved/rejected"""
    APPROVE = "approve"
    REJECT = "reject"

    @property
    def recorded_as(self) -> str:
        return "approved" if self is DecisionAction.APPROVE else "rejected"


class RuleType(str, Enum):
    SEQUENCE = "sequence"
    PERCENTAGE = "percentage"
    SPECIFIC = "specific"
    HYBRID = "hybrid"
    AMOUNT_BASED = "amount-based"


class AuditAction(str, Enum):
    EXPENSE_CREATED = "expense_created"
    EXPENSE_UPDATED = "expense_updated"
    EXPENSE_DELETED = "expense_deleted"
    EXPENSE_APPROVED = "expense_approved"
    EXPENSE_REJECTED = "expense_rejected"
    APPROVAL_STEP_RECORDED = "approval_step_recorded"
    USER_CREATED = "user_created"
    USER_UPDATED = "user_updated"
    ROLE_CHANGED = "role_changed"
    APPROVAL_RULE_CREATED = "approval_rule_created"
    APPROVAL_RULE_UPDATED = "approval_rule_updated"
    APPROVAL_RULE_DELETED = "approval_rule_deleted"
    COMPANY_SETTINGS_UPDATED = "company_settings_updated"


class AuditSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ResourceType(str, Enum):
    EXPENSE = "Expense"
    USER = "User"
    COMPANY = "Company"
    APPROVAL_RULE = "ApprovalRule"


DEFAULT_EXPENSE_CATEGORIES = [
    "Travel",
    "Meals",
    "Accommodation",
    "Transportation",
    "Office Supplies",
    "Software",
    "Marketing",
    "Training",
    "Entertainment",
    "Other",
]

DEFAULT_MAX_EXPENSE_AMOUNT = 10000
