from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator
from datetime import date, datetime
from decimal import Decimal
from typing import Optional, List

from app.logic.constants import RuleType

# Rule payload models
class RuleConditionsModel(BaseModel):
    categories: List[str] = Field(default_factory=list, description="Allowed categories; empty means any")
    departments: List[str] = Field(default_factory=list, description="Allowed submitter departments; empty means any")
    min_amount: Optional[Decimal] = Field(None, ge=0, description="Inclusive lower bound")
    max_amount: Optional[Decimal] = Field(None, ge=0, description="Inclusive upper bound")

    @model_validator(mode='after')
    def check_bounds(self):
        if self.min_amount is not None and self.max_amount is not None and self.max_amount < self.min_amount:
            raise ValueError('max_amount must not be lower than min_amount')
        return self

class ApproverStepModel(BaseModel):
    user_id: Optional[int] = Field(None, gt=0, description="Approver user ID")
    role: Optional[str] = Field(None, description="'manager' routes to the submitter's direct manager")
    level: int = Field(..., ge=1, description="Order in the approval sequence")

    @field_validator('user_id', 'level', mode='before')
    @classmethod
    def parse_int_fields(cls, v):
        if isinstance(v, str):
            return int(v)
        return v

class AmountBandModel(BaseModel):
    min_amount: Decimal = Field(default=Decimal("0"), ge=0)
    max_amount: Optional[Decimal] = Field(None, ge=0)
    approvers: List[int] = Field(default_factory=list)
    requires_all_approvals: bool = True

class AutoApproveModel(BaseModel):
    enabled: bool = False
    max_amount: Optional[Decimal] = Field(None, ge=0)
    trusted_employees: List[int] = Field(default_factory=list)

# Request Models
class CreateApprovalRuleRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255, description="Rule name")
    description: Optional[str] = Field(None, max_length=500)
    rule_type: RuleType = Field(default=RuleType.SEQUENCE, alias="type")
    conditions: RuleConditionsModel = Field(default_factory=RuleConditionsModel)
    approver_sequence: List[ApproverStepModel] = Field(default_factory=list)
    percentage_threshold: Optional[Decimal] = Field(None, gt=0, le=100)
    specific_approver_id: Optional[int] = Field(None, gt=0)
    amount_thresholds: List[AmountBandModel] = Field(default_factory=list)
    priority: int = 0
    is_active: bool = True
    auto_approve: AutoApproveModel = Field(default_factory=AutoApproveModel)

    model_config = ConfigDict(populate_by_name=True)

class UpdateApprovalRuleRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=500)
    rule_type: Optional[RuleType] = Field(None, alias="type")
    conditions: Optional[RuleConditionsModel] = None
    approver_sequence: Optional[List[ApproverStepModel]] = None
    percentage_threshold: Optional[Decimal] = Field(None, gt=0, le=100)
    specific_approver_id: Optional[int] = Field(None, gt=0)
    amount_thresholds: Optional[List[AmountBandModel]] = None
    priority: Optional[int] = None
    is_active: Optional[bool] = None
    auto_approve: Optional[AutoApproveModel] = None

    model_config = ConfigDict(populate_by_name=True)

class ApprovalRuleQueryParams(BaseModel):
    page: int = Field(default=1, ge=1, description="Page number")
    limit: int = Field(default=10, ge=1, le=100, description="Items per page")
    rule_type: Optional[RuleType] = Field(None, description="Filter by rule type")
    is_active: Optional[bool] = Field(None, description="Filter by active flag")

# Response Models
class ApprovalRuleResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    company_id: int
    name: str
    description: Optional[str] = None
    rule_type: str
    conditions: RuleConditionsModel
    approver_sequence: List[ApproverStepModel]
    percentage_threshold: Optional[Decimal] = None
    specific_approver_id: Optional[int] = None
    amount_thresholds: List[AmountBandModel]
    priority: int
    is_active: bool
    auto_approve: AutoApproveModel
    created_at: datetime
    updated_at: Optional[datetime] = None

class ApprovalRuleListResponse(BaseModel):
    rules: List[ApprovalRuleResponse]
    total: int
    page: int
    limit: int
    total_pages: int

# Expense approval status models
class ExpenseApprovalStatusResponse(BaseModel):
    expense_id: int
    current_status: str
    completion_mode: Optional[str] = None
    approvers: List[int]
    awaiting_approvers: List[int]
    approved_count: int
    rejected_count: int
    approval_percentage: float
    required_percentage: Optional[float] = None
    is_final: bool

class PendingReviewRequest(BaseModel):
    """Expense pending review from the approver's perspective"""
    expense_id: int
    employee_id: int
    employee_name: Optional[str] = None
    amount: Decimal
    currency: str
    category: str
    description: str
    expense_date: date
    submitted_date: datetime
    completion_mode: Optional[str] = None
    is_override: bool = False

class ManagerPendingRequestsResponse(BaseModel):
    """Response for manager/admin's pending reviews"""
    pending_reviews: List[PendingReviewRequest]
    total_count: int
    total_amount: Decimal
