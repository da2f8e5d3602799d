from pydantic import BaseModel, Field, EmailStr, ConfigDict
from datetime import datetime
from typing import Optional, List

from app.logic.constants import UserRole

# Request Models
class CreateUserRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255, description="User full name")
    email: EmailStr = Field(..., description="User email address")
    password: str = Field(..., min_length=8, max_length=100, description="User password")
    role: UserRole = Field(default=UserRole.EMPLOYEE, description="User role")
    department: Optional[str] = Field(None, max_length=100, description="Department, used by approval rule conditions")
    manager_id: Optional[int] = Field(None, gt=0, description="Manager ID (optional)")

class UpdateUserRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    role: Optional[UserRole] = None
    department: Optional[str] = Field(None, max_length=100)
    manager_id: Optional[int] = Field(None, gt=0)
    is_active: Optional[bool] = None

class UserQueryParams(BaseModel):
    page: int = Field(default=1, ge=1, description="Page number")
    limit: int = Field(default=10, ge=1, le=100, description="Items per page")
    search: Optional[str] = Field(None, max_length=255, description="Search term")
    role: Optional[UserRole] = Field(None, description="Filter by role")
    department: Optional[str] = Field(None, description="Filter by department")
    manager_id: Optional[int] = Field(None, gt=0, description="Filter by manager")

# Response Models
class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    company_id: int
    name: str
    email: str
    role: str
    department: Optional[str] = None
    manager_id: Optional[int] = None
    is_active: bool = True
    created_at: datetime
    updated_at: Optional[datetime] = None

class UserListResponse(BaseModel):
    users: List[UserResponse]
    total: int
    page: int
    limit: int
    total_pages: int
