from pydantic import BaseModel, Field, EmailStr, ConfigDict, field_validator
from datetime import datetime
from decimal import Decimal
from typing import Optional, List

# Request Models
class CreateCompanyRequest(BaseModel):
    """Company signup: the company and its first admin are created together"""
    name: str = Field(..., min_length=1, max_length=255, description="Company name")
    country: str = Field(..., min_length=2, max_length=100, description="Country name")
    currency_code: str = Field(default="USD", min_length=3, max_length=3, description="Currency code (ISO 4217)")
    admin_name: str = Field(..., min_length=1, max_length=255, description="Name of the first admin user")
    admin_email: EmailStr = Field(..., description="Email of the first admin user")
    admin_password: str = Field(..., min_length=8, max_length=100, description="Password of the first admin user")

    @field_validator('currency_code', mode='before')
    @classmethod
    def upper_currency(cls, v):
        if isinstance(v, str):
            return v.strip().upper()
        return v

class UpdateCompanySettingsRequest(BaseModel):
    max_expense_amount: Optional[Decimal] = Field(None, ge=0, description="Ceiling for a single expense")
    approval_required: Optional[bool] = Field(None, description="Route expenses that match no rule to a fallback approver")
    expense_categories: Optional[List[str]] = Field(None, min_length=1, description="Allowed expense categories")
    default_approver_id: Optional[int] = Field(None, gt=0, description="Fallback approver when no rule matches")
    fallback_to_manager: Optional[bool] = Field(None, description="Use the submitter's manager when no default approver is set")

# Response Models
class CompanySettingsResponse(BaseModel):
    max_expense_amount: Optional[Decimal] = None
    approval_required: bool
    expense_categories: List[str]
    default_approver_id: Optional[int] = None
    fallback_to_manager: bool

class CompanyResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    country: str
    currency_code: str
    settings: CompanySettingsResponse
    created_at: datetime
    updated_at: Optional[datetime] = None
    user_count: int = 0

class CreateCompanyResponse(CompanyResponse):
    admin_user_id: int

# Error Response Models
class ErrorResponse(BaseModel):
    error: str
    message: str
    details: Optional[dict] = None
