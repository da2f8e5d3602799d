from sqlalchemy.orm import Session
from sqlalchemy import func
from decimal import Decimal
import bcrypt
import logging

from app.database.databse import utcnow
from app.database.models.users import Company, User
from app.database.services.audit_service import AuditLogService
from app.ReqResModels.companymodels import (
    CreateCompanyRequest,
    UpdateCompanySettingsRequest,
    CompanyResponse,
    CompanySettingsResponse,
    CreateCompanyResponse
)
from app.logic.actor import Actor
from app.logic.approval_rules import TenantPolicy
from app.logic.constants import (
    AuditAction,
    AuditSeverity,
    DEFAULT_EXPENSE_CATEGORIES,
    DEFAULT_MAX_EXPENSE_AMOUNT,
    ResourceType,
    UserRole
)
from app.logic.exceptions import (
    AuthorizationError,
    BaseCustomError,
    DatabaseError,
    NotFoundError,
    ValidationError
)

logger = logging.getLogger(__name__)

REQUIRED_SETTINGS = ("approval_required", "expense_categories", "fallback_to_manager")

class CompanyService:

    @staticmethod
    def create_company(db: Session, request: CreateCompanyRequest) -> CreateCompanyResponse:
        """Create a company together with its first admin user"""
        try:
            if db.query(Company).filter(Company.name == request.name).first():
                raise ValidationError(
                    f"Company with name '{request.name}' already exists",
                    details={"name": "already exists"}
                )
            if db.query(User).filter(User.email == request.admin_email).first():
                raise ValidationError(
                    f"User with email '{request.admin_email}' already exists",
                    details={"admin_email": "already exists"}
                )

            now = utcnow()
            db_company = Company(
                name=request.name,
                country=request.country,
                currency_code=request.currency_code,
                max_expense_amount=Decimal(DEFAULT_MAX_EXPENSE_AMOUNT),
                approval_required=True,
                expense_categories=list(DEFAULT_EXPENSE_CATEGORIES),
                fallback_to_manager=True,
                created_at=now
            )
            db.add(db_company)
            db.flush()

            password_hash = bcrypt.hashpw(request.admin_password.encode('utf-8'), bcrypt.gensalt()).decode('utf-8')
            admin = User(
                company_id=db_company.id,
                name=request.admin_name,
                email=request.admin_email,
                password_hash=password_hash,
                role=UserRole.ADMIN.value,
                created_at=now
            )
            db.add(admin)
            db.commit()
            db.refresh(db_company)
            db.refresh(admin)

            logger.info("Company %s created with admin user %s", db_company.id, admin.id)

            AuditLogService.record(
                db, db_company.id, admin.id, AuditAction.USER_CREATED, ResourceType.USER, admin.id,
                after={"name": admin.name, "email": admin.email, "role": admin.role},
                severity=AuditSeverity.MEDIUM,
                description=f"Company '{db_company.name}' signed up with admin {admin.email}"
            )

            response = CompanyService._model_to_response(db, db_company)
            return CreateCompanyResponse(**response.model_dump(), admin_user_id=admin.id)

        except Exception as e:
            db.rollback()
            if isinstance(e, BaseCustomError):
                raise
            raise DatabaseError(f"Failed to create company: {str(e)}")

    @staticmethod
    def get_company(db: Session, actor: Actor, company_id: int) -> CompanyResponse:
        """Get the actor's own company"""
        company = CompanyService._get_tenant_company(db, actor, company_id)
        return CompanyService._model_to_response(db, company)

    @staticmethod
    def update_settings(db: Session, actor: Actor, company_id: int, request: UpdateCompanySettingsRequest) -> CompanyResponse:
        """Update the approval policy settings of the actor's company (admin only)"""
        company = CompanyService._get_tenant_company(db, actor, company_id)
        if not actor.is_admin:
            raise AuthorizationError("Only admins can change company settings")

        update_data = request.model_dump(exclude_unset=True)

        # max_expense_amount and default_approver_id may be cleared, the rest may not
        cleared = sorted(field for field in REQUIRED_SETTINGS if field in update_data and update_data[field] is None)
        if cleared:
            raise ValidationError(
                "Required settings cannot be cleared",
                details={field: "must not be null" for field in cleared}
            )

        if update_data.get("default_approver_id") is not None:
            approver = db.query(User).filter(
                User.id == update_data["default_approver_id"],
                User.company_id == company.id,
                User.is_active.is_(True)
            ).first()
            if not approver:
                raise ValidationError(
                    f"Default approver {update_data['default_approver_id']} is not an active user of this company",
                    details={"default_approver_id": "unknown or inactive user"}
                )

        if "expense_categories" in update_data and update_data["expense_categories"] is not None:
            categories = [category.strip() for category in update_data["expense_categories"] if category.strip()]
            if not categories:
                raise ValidationError(
                    "At least one expense category is required",
                    details={"expense_categories": "empty"}
                )
            update_data["expense_categories"] = categories

        before = CompanyService._settings_snapshot(company)
        try:
            for field, value in update_data.items():
                setattr(company, field, value)
            company.updated_at = utcnow()
            db.commit()
            db.refresh(company)
        except Exception as e:
            db.rollback()
            raise DatabaseError(f"Failed to update company settings: {str(e)}")

        AuditLogService.record(
            db, company.id, actor.user_id, AuditAction.COMPANY_SETTINGS_UPDATED, ResourceType.COMPANY, company.id,
            before=before,
            after=CompanyService._settings_snapshot(company),
            severity=AuditSeverity.HIGH,
            description="Company approval settings updated"
        )
        return CompanyService._model_to_response(db, company)

    @staticmethod
    def get_policy(db: Session, company_id: int) -> TenantPolicy:
        """Tenant settings as read by the workflow engine"""
        company = db.query(Company).filter(Company.id == company_id).first()
        if not company:
            raise NotFoundError(f"Company with ID {company_id} not found")
        return CompanyService.to_policy(company)

    @staticmethod
    def to_policy(company: Company) -> TenantPolicy:
        max_amount = company.max_expense_amount
        return TenantPolicy(
            max_expense_amount=Decimal(str(max_amount)) if max_amount is not None else None,
            approval_required=bool(company.approval_required),
            expense_categories=tuple(company.expense_categories or DEFAULT_EXPENSE_CATEGORIES),
            default_approver_id=company.default_approver_id,
            fallback_to_manager=bool(company.fallback_to_manager),
            currency_code=company.currency_code,
        )

    @staticmethod
    def _get_tenant_company(db: Session, actor: Actor, company_id: int) -> Company:
        # Other tenants' companies are reported as missing
        company = None
        if company_id == actor.company_id:
            company = db.query(Company).filter(Company.id == company_id).first()
        if not company:
            raise NotFoundError(f"Company with ID {company_id} not found")
        return company

    @staticmethod
    def _settings_snapshot(company: Company) -> dict:
        return {
            "max_expense_amount": company.max_expense_amount,
            "approval_required": company.approval_required,
            "expense_categories": list(company.expense_categories or []),
            "default_approver_id": company.default_approver_id,
            "fallback_to_manager": company.fallback_to_manager,
        }

    @staticmethod
    def _model_to_response(db: Session, company: Company) -> CompanyResponse:
        user_count = db.query(func.count(User.id)).filter(User.company_id == company.id).scalar() or 0
        policy = CompanyService.to_policy(company)
        return CompanyResponse(
            id=company.id,
            name=company.name,
            country=company.country,
            currency_code=company.currency_code,
            settings=CompanySettingsResponse(
                max_expense_amount=policy.max_expense_amount,
                approval_required=policy.approval_required,
                expense_categories=list(policy.expense_categories),
                default_approver_id=policy.default_approver_id,
                fallback_to_manager=policy.fallback_to_manager
            ),
            created_at=company.created_at,
            updated_at=company.updated_at,
            user_count=user_count
        )
