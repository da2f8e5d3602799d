from fastapi import APIRouter, Depends, Query, status as http_status
from sqlalchemy.orm import Session
from typing import Optional

from app.api.dependencies import get_current_actor
from app.database.databse import get_db
from app.database.services.user_service import UserService
from app.ReqResModels.companymodels import ErrorResponse
from app.ReqResModels.usermodels import (
    CreateUserRequest,
    UpdateUserRequest,
    UserQueryParams,
    UserResponse,
    UserListResponse
)
from app.logic.actor import Actor
from app.logic.constants import UserRole

router = APIRouter(
    prefix="/users",
    tags=["users"],
    responses={
        403: {"model": ErrorResponse, "description": "Not allowed"},
        404: {"model": ErrorResponse, "description": "User not found"},
        422: {"model": ErrorResponse, "description": "Validation error"}
    }
)

@router.post(
    "/",
    response_model=UserResponse,
    status_code=http_status.HTTP_201_CREATED,
    summary="Create a new user",
    description="Create a user in the caller's company (admin only)"
)
def create_user(
    request: CreateUserRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    return UserService.create_user(db, actor, request)

@router.get(
    "/",
    response_model=UserListResponse,
    summary="List users",
    description="Paginated list of the company's users with optional filters"
)
def get_users(
    page: int = Query(1, ge=1, description="Page number"),
    limit: int = Query(10, ge=1, le=100, description="Items per page"),
    search: Optional[str] = Query(None, description="Search in name or email"),
    role: Optional[UserRole] = Query(None, description="Filter by role"),
    department: Optional[str] = Query(None, description="Filter by department"),
    manager_id: Optional[int] = Query(None, description="Filter by manager ID"),
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    params = UserQueryParams(
        page=page,
        limit=limit,
        search=search,
        role=role,
        department=department,
        manager_id=manager_id
    )
    return UserService.get_users(db, actor, params)

@router.get(
    "/{user_id}",
    response_model=UserResponse,
    summary="Get user by ID"
)
def get_user(
    user_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    return UserService.get_user(db, actor, user_id)

@router.put(
    "/{user_id}",
    response_model=UserResponse,
    summary="Update user",
    description="Update name, role, department, manager or active flag (admin only)"
)
def update_user(
    user_id: int,
    request: UpdateUserRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    return UserService.update_user(db, actor, user_id, request)
