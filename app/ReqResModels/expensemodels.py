from pydantic import BaseModel, Field, ConfigDict, field_validator
from typing import Optional, List
from datetime import date, datetime
from decimal import Decimal

# Request Models
class ExpenseSubmitRequest(BaseModel):
    # amount, category and description are checked by the workflow engine so
    # that a missing field reports the same VALIDATION_ERROR as a business check
    amount: Optional[Decimal] = Field(None, description="Amount of the expense")
    currency: Optional[str] = Field(None, min_length=3, max_length=3, description="ISO currency code; company default if omitted")
    category: Optional[str] = Field(None, max_length=100, description="Expense category")
    description: Optional[str] = Field(None, max_length=500, description="Expense description")
    expense_date: Optional[date] = Field(None, description="Date when the expense occurred; today if omitted")
    tags: List[str] = Field(default_factory=list, description="Free-form tags")
    notes: Optional[str] = Field(None, max_length=1000, description="Additional notes")

    @field_validator('currency', mode='before')
    @classmethod
    def upper_currency(cls, v):
        if isinstance(v, str):
            return v.strip().upper()
        return v

class ExpenseUpdateRequest(BaseModel):
    amount: Optional[Decimal] = None
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    category: Optional[str] = Field(None, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    expense_date: Optional[date] = None
    tags: Optional[List[str]] = None
    notes: Optional[str] = Field(None, max_length=1000)

    @field_validator('currency', mode='before')
    @classmethod
    def upper_currency(cls, v):
        if isinstance(v, str):
            return v.strip().upper()
        return v

class ExpenseDecisionRequest(BaseModel):
    comment: Optional[str] = Field(None, max_length=500, description="Optional decision comment")

# Response Models
class ApprovalHistoryEntryResponse(BaseModel):
    approver_id: int
    decision: str
    comment: str = ""
    decided_at: datetime
    override: bool = False
    on_behalf_of: Optional[int] = None

class CompletionPolicyResponse(BaseModel):
    mode: str
    threshold: Optional[Decimal] = None
    decisive_approver_id: Optional[int] = None

class ExpenseResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    employee_id: int
    employee_name: Optional[str] = None
    company_id: int
    amount: Decimal
    currency: str
    category: str
    description: str
    expense_date: date
    tags: List[str] = []
    notes: Optional[str] = None

    status: str
    rule_id: Optional[int] = None
    completion_policy: Optional[CompletionPolicyResponse] = None
    approvers: List[int] = []
    approval_history: List[ApprovalHistoryEntryResponse] = []
    current_approver_index: int = 0
    final_decision: str
    final_decision_by: Optional[int] = None
    final_decision_at: Optional[datetime] = None

    created_at: datetime
    updated_at: Optional[datetime] = None
    version: int

class ExpenseListResponse(BaseModel):
    expenses: List[ExpenseResponse]
    total_count: int
    page: int
    page_size: int
    total_pages: int

class ExpenseStatsResponse(BaseModel):
    total_expenses: int
    pending_expenses: int
    approved_expenses: int
    rejected_expenses: int
    reimbursed_expenses: int
    total_amount: Decimal
    pending_amount: Decimal
    approved_amount: Decimal

class ExpenseQueryParams(BaseModel):
    page: int = Field(default=1, ge=1, description="Page number")
    page_size: int = Field(default=10, ge=1, le=100, description="Number of items per page")
    employee_id: Optional[int] = Field(None, description="Filter by submitter user ID")
    status: Optional[str] = Field(None, description="Filter by expense status")
    category: Optional[str] = Field(None, description="Filter by expense category")
    date_from: Optional[date] = Field(None, description="Filter expenses from this date")
    date_to: Optional[date] = Field(None, description="Filter expenses to this date")
    amount_min: Optional[Decimal] = Field(None, ge=0, description="Minimum amount filter")
    amount_max: Optional[Decimal] = Field(None, ge=0, description="Maximum amount filter")
