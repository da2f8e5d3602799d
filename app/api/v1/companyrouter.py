from fastapi import APIRouter, Depends, status as http_status
from sqlalchemy.orm import Session

from app.api.dependencies import get_current_actor
from app.database.databse import get_db
from app.database.services.company_service import CompanyService
from app.ReqResModels.companymodels import (
    CreateCompanyRequest,
    UpdateCompanySettingsRequest,
    CompanyResponse,
    CreateCompanyResponse,
    ErrorResponse
)
from app.logic.actor import Actor

router = APIRouter(
    prefix="/companies",
    tags=["companies"],
    responses={
        404: {"model": ErrorResponse, "description": "Company not found"},
        422: {"model": ErrorResponse, "description": "Validation error"},
        500: {"model": ErrorResponse, "description": "Internal server error"}
    }
)

@router.post(
    "/",
    response_model=CreateCompanyResponse,
    status_code=http_status.HTTP_201_CREATED,
    summary="Sign up a company",
    description="Create a company together with its first admin user"
)
def create_company(
    request: CreateCompanyRequest,
    db: Session = Depends(get_db)
):
    return CompanyService.create_company(db, request)

@router.get(
    "/{company_id}",
    response_model=CompanyResponse,
    summary="Get company by ID",
    description="Retrieve the caller's company with its approval settings"
)
def get_company(
    company_id: int,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    return CompanyService.get_company(db, actor, company_id)

@router.put(
    "/{company_id}/settings",
    response_model=CompanyResponse,
    summary="Update company settings",
    description="Change the expense limit, categories and fallback approver (admin only)"
)
def update_company_settings(
    company_id: int,
    request: UpdateCompanySettingsRequest,
    actor: Actor = Depends(get_current_actor),
    db: Session = Depends(get_db)
):
    return CompanyService.update_settings(db, actor, company_id, request)
