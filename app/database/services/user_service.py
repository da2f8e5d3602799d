from sqlalchemy.orm import Session
from sqlalchemy import or_
import bcrypt
import logging

from app.database.databse import utcnow
from app.database.models.users import User
from app.database.services.audit_service import AuditLogService
from app.ReqResModels.usermodels import (
    CreateUserRequest,
    UpdateUserRequest,
    UserQueryParams,
    UserResponse,
    UserListResponse
)
from app.logic.actor import Actor
from app.logic.constants import AuditAction, AuditSeverity, ResourceType
from app.logic.exceptions import (
    AuthorizationError,
    BaseCustomError,
    DatabaseError,
    NotFoundError,
    ValidationError
)

logger = logging.getLogger(__name__)

class UserService:

    @staticmethod
    def create_user(db: Session, actor: Actor, request: CreateUserRequest) -> UserResponse:
        """Create a new user in the actor's company (admin only)"""
        if not actor.is_admin:
            raise AuthorizationError("Only admins can create users")
        try:
            # Check if user with same email already exists
            if db.query(User).filter(User.email == request.email).first():
                raise ValidationError(
                    f"User with email '{request.email}' already exists",
                    details={"email": "already exists"}
                )

            if request.manager_id is not None:
                UserService._get_tenant_user(db, actor.company_id, request.manager_id, field="manager_id")

            password_hash = bcrypt.hashpw(request.password.encode('utf-8'), bcrypt.gensalt()).decode('utf-8')

            db_user = User(
                company_id=actor.company_id,
                name=request.name,
                email=request.email,
                password_hash=password_hash,
                role=request.role.value,
                department=request.department,
                manager_id=request.manager_id,
                created_at=utcnow()
            )
            db.add(db_user)
            db.commit()
            db.refresh(db_user)

        except Exception as e:
            db.rollback()
            if isinstance(e, BaseCustomError):
                raise
            raise DatabaseError(f"Failed to create user: {str(e)}")

        logger.info("User %s created in company %s", db_user.id, actor.company_id)
        AuditLogService.record(
            db, actor.company_id, actor.user_id, AuditAction.USER_CREATED, ResourceType.USER, db_user.id,
            after=UserService._snapshot(db_user),
            severity=AuditSeverity.MEDIUM,
            description=f"User {db_user.email} created with role {db_user.role}"
        )
        return UserResponse.model_validate(db_user)

    @staticmethod
    def get_user(db: Session, actor: Actor, user_id: int) -> UserResponse:
        """Get a user of the actor's company"""
        user = db.query(User).filter(User.id == user_id, User.company_id == actor.company_id).first()
        if not user:
            raise NotFoundError(f"User with ID {user_id} not found")
        return UserResponse.model_validate(user)

    @staticmethod
    def get_users(db: Session, actor: Actor, params: UserQueryParams) -> UserListResponse:
        """Get paginated list of users with filters"""
        query = db.query(User).filter(User.company_id == actor.company_id)

        if params.search:
            search_term = f"%{params.search}%"
            query = query.filter(or_(User.name.ilike(search_term), User.email.ilike(search_term)))

        if params.role:
            query = query.filter(User.role == params.role.value)

        if params.department:
            query = query.filter(User.department == params.department)

        if params.manager_id:
            query = query.filter(User.manager_id == params.manager_id)

        total = query.count()

        offset = (params.page - 1) * params.limit
        users = query.order_by(User.id.asc()).offset(offset).limit(params.limit).all()

        total_pages = (total + params.limit - 1) // params.limit

        return UserListResponse(
            users=[UserResponse.model_validate(user) for user in users],
            total=total,
            page=params.page,
            limit=params.limit,
            total_pages=total_pages
        )

    @staticmethod
    def update_user(db: Session, actor: Actor, user_id: int, request: UpdateUserRequest) -> UserResponse:
        """Update user information (admin only)"""
        if not actor.is_admin:
            raise AuthorizationError("Only admins can update users")

        user = db.query(User).filter(User.id == user_id, User.company_id == actor.company_id).first()
        if not user:
            raise NotFoundError(f"User with ID {user_id} not found")

        update_data = request.model_dump(exclude_unset=True)

        cleared = sorted(field for field in ("name", "role", "is_active") if field in update_data and update_data[field] is None)
        if cleared:
            raise ValidationError(
                "Required user fields cannot be cleared",
                details={field: "must not be null" for field in cleared}
            )

        if update_data.get("manager_id") is not None:
            if update_data["manager_id"] == user.id:
                raise ValidationError("User cannot be their own manager", details={"manager_id": "self"})
            UserService._get_tenant_user(db, actor.company_id, update_data["manager_id"], field="manager_id")

        if update_data.get("role") is not None:
            update_data["role"] = update_data["role"].value

        before = UserService._snapshot(user)
        try:
            for field, value in update_data.items():
                setattr(user, field, value)
            user.updated_at = utcnow()
            db.commit()
            db.refresh(user)
        except Exception as e:
            db.rollback()
            raise DatabaseError(f"Failed to update user: {str(e)}")

        after = UserService._snapshot(user)
        role_changed = before["role"] != after["role"]
        AuditLogService.record(
            db, actor.company_id, actor.user_id,
            AuditAction.ROLE_CHANGED if role_changed else AuditAction.USER_UPDATED,
            ResourceType.USER, user.id,
            before=before,
            after=after,
            severity=AuditSeverity.HIGH if role_changed else AuditSeverity.LOW,
            description=(
                f"Role of user {user.id} changed from {before['role']} to {after['role']}"
                if role_changed else f"User {user.id} updated"
            )
        )
        return UserResponse.model_validate(user)

    @staticmethod
    def _get_tenant_user(db: Session, company_id: int, user_id: int, field: str = "user_id") -> User:
        user = db.query(User).filter(
            User.id == user_id,
            User.company_id == company_id,
            User.is_active.is_(True)
        ).first()
        if not user:
            raise ValidationError(
                f"User with ID {user_id} is not an active member of the same company",
                details={field: "unknown or inactive user"}
            )
        return user

    @staticmethod
    def _snapshot(user: User) -> dict:
        return {
            "name": user.name,
            "email": user.email,
            "role": user.role,
            "department": user.department,
            "manager_id": user.manager_id,
            "is_active": user.is_active,
        }
