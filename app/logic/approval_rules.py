"""Approval rule evaluation.

Stored approval rules are parsed into one frozen dataclass per rule type.
``select_approvers`` picks exactly one rule for an expense (or the company's
explicit fallback) and turns it into an ``ApprovalPlan``: the ordered approver
list plus the completion policy that decides when the expense is resolved.
"""
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Optional, Sequence, Tuple, Union

from app.logic.completion import CompletionMode, CompletionPolicy
from app.logic.constants import RuleType, UserRole
from app.logic.exceptions import ConfigurationError


def to_decimal(value: Any, label: str = "amount") -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ConfigurationError(f"Invalid {label}: {value!r}")


@dataclass(frozen=True)
class SubmissionContext:
    """What the evaluator needs to know about an expense and its submitter."""
    employee_id: int
    amount: Decimal
    category: str
    department: Optional[str] = None
    manager_id: Optional[int] = None
    inactive_user_ids: FrozenSet[int] = frozenset()


@dataclass(frozen=True)
class TenantPolicy:
    max_expense_amount: Optional[Decimal]
    approval_required: bool
    expense_categories: Tuple[str, ...]
    default_approver_id: Optional[int] = None
    fallback_to_manager: bool = True
    currency_code: Optional[str] = None


@dataclass(frozen=True)
class RuleConditions:
    categories: Tuple[str, ...] = ()
    departments: Tuple[str, ...] = ()
    min_amount: Optional[Decimal] = None
    max_amount: Optional[Decimal] = None

    def matches(self, context: SubmissionContext) -> bool:
        if self.categories and context.category not in self.categories:
            return False
        if self.departments and context.department not in self.departments:
            return False
        if self.min_amount is not None and context.amount < self.min_amount:
            return False
        if self.max_amount is not None and context.amount > self.max_amount:
            return False
        return True


@dataclass(frozen=True)
class AutoApprove:
    enabled: bool = False
    max_amount: Optional[Decimal] = None
    trusted_employees: Tuple[int, ...] = ()

    def allows(self, context: SubmissionContext) -> bool:
        return (
            self.enabled
            and self.max_amount is not None
            and context.amount <= self.max_amount
            and context.employee_id in self.trusted_employees
        )


@dataclass(frozen=True)
class SequenceStep:
    level: int
    user_id: Optional[int] = None
    role: Optional[str] = None

    def resolve(self, context: SubmissionContext) -> int:
        if self.user_id is not None:
            return self.user_id
        if context.manager_id is None:
            raise ConfigurationError(
                f"Approval step at level {self.level} routes to the submitter's manager, "
                f"but employee {context.employee_id} has no manager"
            )
        return context.manager_id


@dataclass(frozen=True)
class AmountBand:
    min_amount: Decimal
    max_amount: Optional[Decimal]
    approvers: Tuple[int, ...]
    requires_all_approvals: bool = True

    def contains(self, amount: Decimal) -> bool:
        return self.min_amount <= amount and (self.max_amount is None or amount <= self.max_amount)


@dataclass(frozen=True)
class SequenceRule:
    rule_id: Optional[int]
    name: str
    priority: int
    created_at: Optional[datetime]
    conditions: RuleConditions
    auto_approve: AutoApprove
    steps: Tuple[SequenceStep, ...]


@dataclass(frozen=True)
class SpecificRule:
    rule_id: Optional[int]
    name: str
    priority: int
    created_at: Optional[datetime]
    conditions: RuleConditions
    auto_approve: AutoApprove
    approver_id: int


@dataclass(frozen=True)
class AmountBasedRule:
    rule_id: Optional[int]
    name: str
    priority: int
    created_at: Optional[datetime]
    conditions: RuleConditions
    auto_approve: AutoApprove
    bands: Tuple[AmountBand, ...]


@dataclass(frozen=True)
class PercentageRule:
    rule_id: Optional[int]
    name: str
    priority: int
    created_at: Optional[datetime]
    conditions: RuleConditions
    auto_approve: AutoApprove
    steps: Tuple[SequenceStep, ...]
    threshold: Decimal


@dataclass(frozen=True)
class HybridRule:
    rule_id: Optional[int]
    name: str
    priority: int
    created_at: Optional[datetime]
    conditions: RuleConditions
    auto_approve: AutoApprove
    steps: Tuple[SequenceStep, ...]
    threshold: Decimal
    specific_approver_id: int


ApprovalRuleSpec = Union[SequenceRule, SpecificRule, AmountBasedRule, PercentageRule, HybridRule]


@dataclass(frozen=True)
class ApprovalPlan:
    approvers: Tuple[int, ...]
    policy: Optional[CompletionPolicy]
    rule_id: Optional[int] = None
    auto_approved: bool = False
    reason: str = ""

    @classmethod
    def auto(cls, reason: str, rule_id: Optional[int] = None) -> "ApprovalPlan":
        return cls(approvers=(), policy=None, rule_id=rule_id, auto_approved=True, reason=reason)


# Parsing -------------------------------------------------------------------

def _parse_conditions(raw: Optional[dict]) -> RuleConditions:
    raw = raw or {}
    return RuleConditions(
        categories=tuple(raw.get("categories") or ()),
        departments=tuple(raw.get("departments") or ()),
        min_amount=to_decimal(raw.get("min_amount"), "condition min_amount"),
        max_amount=to_decimal(raw.get("max_amount"), "condition max_amount"),
    )


def _parse_auto_approve(raw: Optional[dict]) -> AutoApprove:
    raw = raw or {}
    return AutoApprove(
        enabled=bool(raw.get("enabled", False)),
        max_amount=to_decimal(raw.get("max_amount"), "auto-approve max_amount"),
        trusted_employees=tuple(int(user_id) for user_id in raw.get("trusted_employees") or ()),
    )


def _parse_steps(raw: Optional[Iterable[dict]], rule_name: str) -> Tuple[SequenceStep, ...]:
    steps = []
    for position, item in enumerate(raw or ()):
        user_id = item.get("user_id")
        role = item.get("role")
        if user_id is None and role != UserRole.MANAGER.value:
            raise ConfigurationError(
                f"Rule '{rule_name}': approver step {position + 1} needs a user_id "
                f"(only the 'manager' role can be resolved automatically)"
            )
        level = item.get("level")
        steps.append(SequenceStep(
            level=int(level) if level is not None else position + 1,
            user_id=int(user_id) if user_id is not None else None,
            role=role,
        ))
    if not steps:
        raise ConfigurationError(f"Rule '{rule_name}' has an empty approver sequence")
    # sorted() is stable, so equal levels keep their configured order
    return tuple(sorted(steps, key=lambda step: step.level))


def _parse_threshold(value: Any, rule_name: str) -> Decimal:
    threshold = to_decimal(value, "percentage threshold")
    if threshold is None or not (0 < threshold <= 100):
        raise ConfigurationError(
            f"Rule '{rule_name}' needs a percentage threshold greater than 0 and at most 100"
        )
    return threshold


def _parse_bands(raw: Optional[Iterable[dict]], rule_name: str) -> Tuple[AmountBand, ...]:
    bands = []
    for item in raw or ():
        approvers = tuple(int(user_id) for user_id in item.get("approvers") or ())
        if not approvers:
            raise ConfigurationError(f"Rule '{rule_name}' has an amount band without approvers")
        min_amount = to_decimal(item.get("min_amount"), "band min_amount") or Decimal("0")
        max_amount = to_decimal(item.get("max_amount"), "band max_amount")
        if max_amount is not None and max_amount < min_amount:
            raise ConfigurationError(f"Rule '{rule_name}' has a band with max_amount below min_amount")
        bands.append(AmountBand(
            min_amount=min_amount,
            max_amount=max_amount,
            approvers=approvers,
            requires_all_approvals=bool(item.get("requires_all_approvals", True)),
        ))
    if not bands:
        raise ConfigurationError(f"Rule '{rule_name}' has no amount thresholds")
    return tuple(bands)


def _common(record: Any) -> Dict[str, Any]:
    return {
        "rule_id": getattr(record, "id", None),
        "name": record.name,
        "priority": record.priority or 0,
        "created_at": getattr(record, "created_at", None),
        "conditions": _parse_conditions(record.conditions),
        "auto_approve": _parse_auto_approve(record.auto_approve),
    }


def _build_sequence(record: Any) -> SequenceRule:
    return SequenceRule(**_common(record), steps=_parse_steps(record.approver_sequence, record.name))


def _build_specific(record: Any) -> SpecificRule:
    if record.specific_approver_id is None:
        raise ConfigurationError(f"Rule '{record.name}' is missing its specific approver")
    return SpecificRule(**_common(record), approver_id=int(record.specific_approver_id))


def _build_amount_based(record: Any) -> AmountBasedRule:
    return AmountBasedRule(**_common(record), bands=_parse_bands(record.amount_thresholds, record.name))


def _build_percentage(record: Any) -> PercentageRule:
    return PercentageRule(
        **_common(record),
        steps=_parse_steps(record.approver_sequence, record.name),
        threshold=_parse_threshold(record.percentage_threshold, record.name),
    )


def _build_hybrid(record: Any) -> HybridRule:
    if record.specific_approver_id is None:
        raise ConfigurationError(f"Rule '{record.name}' is missing its specific approver")
    return HybridRule(
        **_common(record),
        steps=_parse_steps(record.approver_sequence, record.name),
        threshold=_parse_threshold(record.percentage_threshold, record.name),
        specific_approver_id=int(record.specific_approver_id),
    )


_BUILDERS: Dict[RuleType, Callable[[Any], ApprovalRuleSpec]] = {
    RuleType.SEQUENCE: _build_sequence,
    RuleType.SPECIFIC: _build_specific,
    RuleType.AMOUNT_BASED: _build_amount_based,
    RuleType.PERCENTAGE: _build_percentage,
    RuleType.HYBRID: _build_hybrid,
}


def parse_rule(record: Any) -> ApprovalRuleSpec:
    """Turn a stored rule (ORM row or anything with the same attributes) into its typed form."""
    try:
        rule_type = RuleType(record.rule_type)
    except ValueError:
        raise ConfigurationError(f"Rule '{record.name}' has unknown type {record.rule_type!r}")
    return _BUILDERS[rule_type](record)


# Evaluation ----------------------------------------------------------------

def _unique(approvers: Iterable[int]) -> Tuple[int, ...]:
    seen = []
    for approver in approvers:
        if approver not in seen:
            seen.append(approver)
    return tuple(seen)


def _resolve_steps(steps: Sequence[SequenceStep], context: SubmissionContext) -> Tuple[int, ...]:
    return _unique(step.resolve(context) for step in steps)


def find_band(bands: Sequence[AmountBand], amount: Decimal) -> Optional[AmountBand]:
    for band in bands:
        if band.contains(amount):
            return band
    return None


def _routable(approvers: Sequence[int], context: SubmissionContext, label: str) -> Tuple[int, ...]:
    """Reject deactivated approvers and take the submitter out of their own chain."""
    inactive = [approver for approver in approvers if approver in context.inactive_user_ids]
    if inactive:
        raise ConfigurationError(
            f"{label} routes to deactivated users",
            details={"inactive_user_ids": inactive},
        )
    remaining = tuple(approver for approver in approvers if approver != context.employee_id)
    if not remaining:
        raise ConfigurationError(
            f"{label} leaves no approver other than the submitter",
            details={"employee_id": context.employee_id},
        )
    return remaining


def plan_for(rule: ApprovalRuleSpec, context: SubmissionContext) -> ApprovalPlan:
    if isinstance(rule, SequenceRule):
        approvers = _resolve_steps(rule.steps, context)
        policy = CompletionPolicy(CompletionMode.SEQUENTIAL)
    elif isinstance(rule, SpecificRule):
        approvers = (rule.approver_id,)
        policy = CompletionPolicy(CompletionMode.ANY)
    elif isinstance(rule, AmountBasedRule):
        band = find_band(rule.bands, context.amount)
        if band is None:
            raise ConfigurationError(
                f"Rule '{rule.name}' has no amount band covering {context.amount}"
            )
        approvers = _unique(band.approvers)
        policy = CompletionPolicy(CompletionMode.ALL if band.requires_all_approvals else CompletionMode.ANY)
    elif isinstance(rule, PercentageRule):
        approvers = _resolve_steps(rule.steps, context)
        policy = CompletionPolicy(CompletionMode.PERCENTAGE, threshold=rule.threshold)
    elif isinstance(rule, HybridRule):
        if rule.specific_approver_id == context.employee_id:
            raise ConfigurationError(
                f"Rule '{rule.name}' makes the submitter the decisive approver of their own expense"
            )
        approvers = _unique(_resolve_steps(rule.steps, context) + (rule.specific_approver_id,))
        policy = CompletionPolicy(
            CompletionMode.HYBRID,
            threshold=rule.threshold,
            decisive_approver_id=rule.specific_approver_id,
        )
    else:
        raise ConfigurationError(f"Unsupported approval rule {type(rule).__name__}")

    if not approvers:
        raise ConfigurationError(f"Rule '{rule.name}' produced no approvers")
    approvers = _routable(approvers, context, f"Rule '{rule.name}'")
    return ApprovalPlan(approvers=approvers, policy=policy, rule_id=rule.rule_id, reason=f"rule:{rule.name}")


def _priority_order(rules: Iterable[ApprovalRuleSpec]) -> List[ApprovalRuleSpec]:
    return sorted(
        rules,
        key=lambda rule: (
            -rule.priority,
            rule.created_at or datetime.min,
            rule.rule_id if rule.rule_id is not None else 0,
        ),
    )


def fallback_plan(context: SubmissionContext, policy: TenantPolicy) -> ApprovalPlan:
    candidates = []
    if policy.default_approver_id is not None:
        candidates.append((policy.default_approver_id, "fallback:default_approver"))
    if policy.fallback_to_manager and context.manager_id is not None:
        candidates.append((context.manager_id, "fallback:manager"))

    # The submitter never approves their own expense
    candidates = [(approver_id, reason) for approver_id, reason in candidates if approver_id != context.employee_id]
    if not candidates:
        raise ConfigurationError(
            "No approval rule matches this expense and the company has no fallback approver configured",
            details={"employee_id": context.employee_id, "category": context.category},
        )
    approver_id, reason = candidates[0]
    approvers = _routable((approver_id,), context, f"Fallback ({reason})")
    return ApprovalPlan(approvers=approvers, policy=CompletionPolicy(CompletionMode.ANY), reason=reason)


def select_approvers(
    context: SubmissionContext,
    rules: Iterable[ApprovalRuleSpec],
    policy: TenantPolicy,
) -> ApprovalPlan:
    """Pick approvers and completion policy for an expense, or auto-approve it."""
    ordered = _priority_order(rules)

    for rule in ordered:
        if rule.auto_approve.allows(context):
            return ApprovalPlan.auto(reason=f"auto_approve:{rule.name}", rule_id=rule.rule_id)

    for rule in ordered:
        if rule.conditions.matches(context):
            return plan_for(rule, context)

    if not policy.approval_required:
        return ApprovalPlan.auto(reason="approval_not_required")

    return fallback_plan(context, policy)
