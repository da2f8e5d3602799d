from enum import Enum
from typing import Any, Optional
from sqlalchemy.orm import Session
import logging

from app.database.databse import utcnow
from app.database.models.audit import AuditLog
from app.ReqResModels.auditmodels import (
    AuditLogQueryParams,
    AuditLogResponse,
    AuditLogListResponse
)
from app.logic.actor import Actor
from app.logic.constants import AuditAction, AuditSeverity, ResourceType
from app.logic.exceptions import AuthorizationError

logger = logging.getLogger(__name__)

class AuditLogService:

    @staticmethod
    def record(
        db: Session,
        company_id: int,
        user_id: Optional[int],
        action: AuditAction,
        resource_type: ResourceType,
        resource_id: Optional[int],
        before: Optional[dict] = None,
        after: Optional[dict] = None,
        severity: AuditSeverity = AuditSeverity.LOW,
        description: str = "",
    ) -> Optional[AuditLog]:
        """Write one audit row in its own commit.

        Called after the business change is committed. A failure here is
        logged and the row is dropped; the caller's change stands.
        """
        entry = AuditLog(
            company_id=company_id,
            user_id=user_id,
            action=action.value,
            resource_type=resource_type.value,
            resource_id=resource_id,
            changes={"before": _jsonable(before), "after": _jsonable(after)},
            severity=severity.value,
            description=description or f"{action.value} on {resource_type.value} {resource_id}",
            timestamp=utcnow(),
        )
        try:
            db.add(entry)
            db.commit()
            return entry
        except Exception:
            db.rollback()
            logger.exception(
                "Failed to write audit log %s for %s %s",
                action.value, resource_type.value, resource_id,
            )
            return None

    @staticmethod
    def list_logs(db: Session, actor: Actor, params: AuditLogQueryParams) -> AuditLogListResponse:
        """Tenant audit trail, newest first (admin only)"""
        if not actor.is_admin:
            raise AuthorizationError("Only admins can read the audit trail")

        query = db.query(AuditLog).filter(AuditLog.company_id == actor.company_id)

        if params.user_id is not None:
            query = query.filter(AuditLog.user_id == params.user_id)
        if params.action:
            query = query.filter(AuditLog.action == params.action)
        if params.resource_type:
            query = query.filter(AuditLog.resource_type == params.resource_type)
        if params.resource_id is not None:
            query = query.filter(AuditLog.resource_id == params.resource_id)
        if params.severity:
            query = query.filter(AuditLog.severity == params.severity)
        if params.start_date:
            query = query.filter(AuditLog.timestamp >= params.start_date)
        if params.end_date:
            query = query.filter(AuditLog.timestamp <= params.end_date)

        total = query.count()
        offset = (params.page - 1) * params.limit
        logs = query.order_by(AuditLog.timestamp.desc(), AuditLog.id.desc()).offset(offset).limit(params.limit).all()

        return AuditLogListResponse(
            logs=[AuditLogResponse.model_validate(log) for log in logs],
            total=total,
            page=params.page,
            limit=params.limit,
            total_pages=(total + params.limit - 1) // params.limit
        )


def _jsonable(value: Any) -> Any:
    """Snapshots may hold Decimals, dates and enums; JSON columns need plain values."""
    if value is None:
        return None
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (str, int, float, bool)):
        return value
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)
