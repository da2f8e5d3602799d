from types import SimpleNamespace
from typing import Iterable, List, Set
from sqlalchemy.orm import Session
import logging

from app.database.databse import utcnow
from app.database.models.approval import ApprovalRule
from app.database.models.users import User
from app.database.services.audit_service import AuditLogService
from app.ReqResModels.approvalmodels import (
    CreateApprovalRuleRequest,
    UpdateApprovalRuleRequest,
    ApprovalRuleQueryParams,
    ApprovalRuleResponse,
    ApprovalRuleListResponse
)
from app.logic.actor import Actor
from app.logic.approval_rules import parse_rule, to_decimal
from app.logic.constants import AuditAction, AuditSeverity, ResourceType
from app.logic.exceptions import (
    AuthorizationError,
    DatabaseError,
    NotFoundError,
    ValidationError
)

logger = logging.getLogger(__name__)

RULE_FIELDS = (
    "name",
    "description",
    "rule_type",
    "conditions",
    "approver_sequence",
    "percentage_threshold",
    "specific_approver_id",
    "amount_thresholds",
    "priority",
    "is_active",
    "auto_approve",
)

# Columns an update may not clear
REQUIRED_FIELDS = (
    "name",
    "rule_type",
    "conditions",
    "approver_sequence",
    "amount_thresholds",
    "priority",
    "is_active",
    "auto_approve",
)

class ApprovalRuleService:

    @staticmethod
    def create_approval_rule(db: Session, actor: Actor, request: CreateApprovalRuleRequest) -> ApprovalRuleResponse:
        """Create a new approval rule for the actor's company"""
        ApprovalRuleService._require_admin(actor)

        values = ApprovalRuleService._column_values(request.model_dump(mode="json"))
        ApprovalRuleService._validate(db, actor.company_id, values)

        try:
            now = utcnow()
            rule = ApprovalRule(company_id=actor.company_id, created_at=now, **values)
            db.add(rule)
            db.commit()
            db.refresh(rule)
        except Exception as e:
            db.rollback()
            raise DatabaseError(f"Failed to create approval rule: {str(e)}")

        logger.info("Approval rule %s (%s) created for company %s", rule.id, rule.rule_type, actor.company_id)
        AuditLogService.record(
            db, actor.company_id, actor.user_id, AuditAction.APPROVAL_RULE_CREATED, ResourceType.APPROVAL_RULE, rule.id,
            after=ApprovalRuleService._snapshot(rule),
            severity=AuditSeverity.MEDIUM,
            description=f"Approval rule '{rule.name}' created"
        )
        return ApprovalRuleResponse.model_validate(rule)

    @staticmethod
    def get_approval_rule(db: Session, actor: Actor, rule_id: int) -> ApprovalRuleResponse:
        ApprovalRuleService._require_admin(actor)
        return ApprovalRuleResponse.model_validate(ApprovalRuleService._get_tenant_rule(db, actor, rule_id))

    @staticmethod
    def get_approval_rules(db: Session, actor: Actor, params: ApprovalRuleQueryParams) -> ApprovalRuleListResponse:
        """Get paginated list of the company's approval rules"""
        ApprovalRuleService._require_admin(actor)

        query = db.query(ApprovalRule).filter(ApprovalRule.company_id == actor.company_id)
        if params.rule_type:
            query = query.filter(ApprovalRule.rule_type == params.rule_type.value)
        if params.is_active is not None:
            query = query.filter(ApprovalRule.is_active == params.is_active)

        total = query.count()
        offset = (params.page - 1) * params.limit
        rules = query.order_by(
            ApprovalRule.priority.desc(), ApprovalRule.created_at.asc(), ApprovalRule.id.asc()
        ).offset(offset).limit(params.limit).all()

        return ApprovalRuleListResponse(
            rules=[ApprovalRuleResponse.model_validate(rule) for rule in rules],
            total=total,
            page=params.page,
            limit=params.limit,
            total_pages=(total + params.limit - 1) // params.limit
        )

    @staticmethod
    def update_approval_rule(db: Session, actor: Actor, rule_id: int, request: UpdateApprovalRuleRequest) -> ApprovalRuleResponse:
        """Update an approval rule; the merged rule must still be valid"""
        ApprovalRuleService._require_admin(actor)
        rule = ApprovalRuleService._get_tenant_rule(db, actor, rule_id)

        payload = request.model_dump(mode="json", exclude_unset=True)
        cleared = sorted(field for field in REQUIRED_FIELDS if field in payload and payload[field] is None)
        if cleared:
            raise ValidationError(
                "Required rule fields cannot be cleared",
                details={field: "must not be null" for field in cleared}
            )
        changes = ApprovalRuleService._column_values(payload)
        merged = {field: getattr(rule, field) for field in RULE_FIELDS}
        merged.update(changes)
        ApprovalRuleService._validate(db, actor.company_id, merged)

        before = ApprovalRuleService._snapshot(rule)
        try:
            for field, value in changes.items():
                setattr(rule, field, value)
            rule.updated_at = utcnow()
            db.commit()
            db.refresh(rule)
        except Exception as e:
            db.rollback()
            raise DatabaseError(f"Failed to update approval rule: {str(e)}")

        AuditLogService.record(
            db, actor.company_id, actor.user_id, AuditAction.APPROVAL_RULE_UPDATED, ResourceType.APPROVAL_RULE, rule.id,
            before=before,
            after=ApprovalRuleService._snapshot(rule),
            severity=AuditSeverity.MEDIUM,
            description=f"Approval rule '{rule.name}' updated"
        )
        return ApprovalRuleResponse.model_validate(rule)

    @staticmethod
    def deactivate_approval_rule(db: Session, actor: Actor, rule_id: int) -> ApprovalRuleResponse:
        """Soft delete: the rule stays referenced by the expenses it routed"""
        ApprovalRuleService._require_admin(actor)
        rule = ApprovalRuleService._get_tenant_rule(db, actor, rule_id)

        before = ApprovalRuleService._snapshot(rule)
        try:
            rule.is_active = False
            rule.updated_at = utcnow()
            db.commit()
            db.refresh(rule)
        except Exception as e:
            db.rollback()
            raise DatabaseError(f"Failed to deactivate approval rule: {str(e)}")

        AuditLogService.record(
            db, actor.company_id, actor.user_id, AuditAction.APPROVAL_RULE_DELETED, ResourceType.APPROVAL_RULE, rule.id,
            before=before,
            after=ApprovalRuleService._snapshot(rule),
            severity=AuditSeverity.HIGH,
            description=f"Approval rule '{rule.name}' deactivated"
        )
        return ApprovalRuleResponse.model_validate(rule)

    @staticmethod
    def get_active_rules(db: Session, company_id: int) -> List[ApprovalRule]:
        """Active rules of a company in creation order; the evaluator applies priority"""
        return db.query(ApprovalRule).filter(
            ApprovalRule.company_id == company_id,
            ApprovalRule.is_active.is_(True)
        ).order_by(ApprovalRule.created_at.asc(), ApprovalRule.id.asc()).all()

    @staticmethod
    def _require_admin(actor: Actor):
        if not actor.is_admin:
            raise AuthorizationError("Only admins can manage approval rules")

    @staticmethod
    def _get_tenant_rule(db: Session, actor: Actor, rule_id: int) -> ApprovalRule:
        rule = db.query(ApprovalRule).filter(
            ApprovalRule.id == rule_id,
            ApprovalRule.company_id == actor.company_id
        ).first()
        if not rule:
            raise NotFoundError(f"Approval rule with ID {rule_id} not found")
        return rule

    @staticmethod
    def _column_values(payload: dict) -> dict:
        values = {field: payload[field] for field in RULE_FIELDS if field in payload}
        if values.get("conditions") is not None:
            # Unset bounds are dropped so the stored document stays minimal
            values["conditions"] = {k: v for k, v in values["conditions"].items() if v not in (None, [])}
        if "percentage_threshold" in values:
            values["percentage_threshold"] = to_decimal(values["percentage_threshold"], "percentage threshold")
        return values

    @staticmethod
    def _validate(db: Session, company_id: int, values: dict):
        """Parse the rule the way the evaluator will, then check every referenced user"""
        draft = SimpleNamespace(id=None, created_at=None, **{
            "name": values.get("name"),
            "rule_type": values.get("rule_type"),
            "priority": values.get("priority") or 0,
            "conditions": values.get("conditions") or {},
            "auto_approve": values.get("auto_approve") or {},
            "approver_sequence": values.get("approver_sequence") or [],
            "specific_approver_id": values.get("specific_approver_id"),
            "amount_thresholds": values.get("amount_thresholds") or [],
            "percentage_threshold": values.get("percentage_threshold"),
        })
        parse_rule(draft)

        referenced = ApprovalRuleService._referenced_users(draft)
        if not referenced:
            return
        found = dict(db.query(User.id, User.is_active).filter(
            User.company_id == company_id,
            User.id.in_(referenced)
        ).all())
        details = {}
        missing = sorted(referenced - set(found))
        if missing:
            details["unknown_user_ids"] = missing
        inactive = sorted(user_id for user_id, active in found.items() if not active)
        if inactive:
            details["inactive_user_ids"] = inactive
        if details:
            raise ValidationError(
                "The rule references users who are not active members of this company",
                details=details
            )

    @staticmethod
    def _referenced_users(draft) -> Set[int]:
        ids: Set[int] = set()

        def add(values: Iterable):
            ids.update(int(value) for value in values if value is not None)

        add(step.get("user_id") for step in draft.approver_sequence)
        add([draft.specific_approver_id])
        for band in draft.amount_thresholds:
            add(band.get("approvers") or [])
        add(draft.auto_approve.get("trusted_employees") or [])
        return ids

    @staticmethod
    def _snapshot(rule: ApprovalRule) -> dict:
        return {field: getattr(rule, field) for field in RULE_FIELDS}
