from datetime import datetime
from decimal import Decimal
from types import SimpleNamespace

import pytest

from app.logic.approval_rules import (
    AmountBasedRule,
    HybridRule,
    SequenceRule,
    SubmissionContext,
    TenantPolicy,
    parse_rule,
    select_approvers,
)
from app.logic.completion import CompletionMode
from app.logic.exceptions import ConfigurationError

EMPLOYEE = 10
MANAGER = 20


def record(rule_id=1, name="rule", rule_type="sequence", priority=0, created_at=None, **payload):
    return SimpleNamespace(
        id=rule_id,
        name=name,
        rule_type=rule_type,
        priority=priority,
        created_at=created_at or datetime(2024, 1, rule_id),
        conditions=payload.get("conditions", {}),
        auto_approve=payload.get("auto_approve", {}),
        approver_sequence=payload.get("approver_sequence", []),
        specific_approver_id=payload.get("specific_approver_id"),
        amount_thresholds=payload.get("amount_thresholds", []),
        percentage_threshold=payload.get("percentage_threshold"),
    )


def context(amount, category="Travel", department=None, manager_id=MANAGER, employee_id=EMPLOYEE, inactive=()):
    return SubmissionContext(
        employee_id=employee_id,
        amount=Decimal(str(amount)),
        category=category,
        department=department,
        manager_id=manager_id,
        inactive_user_ids=frozenset(inactive),
    )


def policy(**overrides):
    values = dict(
        max_expense_amount=Decimal("10000"),
        approval_required=True,
        expense_categories=("Travel", "Meals"),
        default_approver_id=None,
        fallback_to_manager=True,
    )
    values.update(overrides)
    return TenantPolicy(**values)


def select(amount, *records, tenant=None, **ctx):
    rules = [parse_rule(r) for r in records]
    return select_approvers(context(amount, **ctx), rules, tenant or policy())


class TestParsing:
    def test_sequence_steps_are_ordered_by_level(self):
        rule = parse_rule(record(approver_sequence=[
            {"user_id": 3, "level": 2},
            {"user_id": 1, "level": 1},
            {"user_id": 2, "level": 2},
        ]))
        assert isinstance(rule, SequenceRule)
        assert [step.user_id for step in rule.steps] == [1, 3, 2]

    def test_amount_based_rule_parses_bands(self):
        rule = parse_rule(record(rule_type="amount-based", amount_thresholds=[
            {"min_amount": "0", "max_amount": "999.99", "approvers": [1]},
        ]))
        assert isinstance(rule, AmountBasedRule)
        assert rule.bands[0].max_amount == Decimal("999.99")

    def test_hybrid_rule_keeps_specific_approver(self):
        rule = parse_rule(record(
            rule_type="hybrid",
            approver_sequence=[{"user_id": 1, "level": 1}],
            percentage_threshold=Decimal("50"),
            specific_approver_id=7,
        ))
        assert isinstance(rule, HybridRule)
        assert rule.specific_approver_id == 7

    @pytest.mark.parametrize("bad", [
        record(rule_type="unknown"),
        record(rule_type="sequence", approver_sequence=[]),
        record(rule_type="sequence", approver_sequence=[{"role": "director", "level": 1}]),
        record(rule_type="specific"),
        record(rule_type="amount-based", amount_thresholds=[]),
        record(rule_type="amount-based", amount_thresholds=[{"min_amount": 0, "approvers": []}]),
        record(rule_type="percentage", approver_sequence=[{"user_id": 1, "level": 1}]),
        record(rule_type="percentage", approver_sequence=[{"user_id": 1, "level": 1}], percentage_threshold=150),
        record(rule_type="hybrid", approver_sequence=[{"user_id": 1, "level": 1}], percentage_threshold=50),
    ])
    def test_incomplete_payloads_raise_configuration_error(self, bad):
        with pytest.raises(ConfigurationError):
            parse_rule(bad)


class TestAmountBands:
    band_rule = record(rule_type="amount-based", amount_thresholds=[
        {"min_amount": "1000", "max_amount": "5000", "approvers": [1, 2], "requires_all_approvals": True},
        {"min_amount": "0", "max_amount": None, "approvers": [3], "requires_all_approvals": False},
    ])

    @pytest.mark.parametrize("amount", ["1000", "5000"])
    def test_band_bounds_are_inclusive(self, amount):
        plan = select(amount, self.band_rule)
        assert plan.approvers == (1, 2)
        assert plan.policy.mode is CompletionMode.ALL

    @pytest.mark.parametrize("amount", ["999.99", "5000.01"])
    def test_amounts_outside_band_fall_through(self, amount):
        plan = select(amount, self.band_rule)
        assert plan.approvers == (3,)
        assert plan.policy.mode is CompletionMode.ANY

    def test_no_covering_band_is_a_configuration_error(self):
        rule = record(rule_type="amount-based", amount_thresholds=[
            {"min_amount": "1000", "max_amount": "5000", "approvers": [1]},
        ])
        with pytest.raises(ConfigurationError):
            select("50", rule)


class TestSelection:
    def test_highest_priority_matching_rule_wins(self):
        low = record(rule_id=1, name="low", priority=1, approver_sequence=[{"user_id": 1, "level": 1}])
        high = record(rule_id=2, name="high", priority=5, approver_sequence=[{"user_id": 2, "level": 1}])
        assert select("100", low, high).approvers == (2,)

    def test_priority_tie_goes_to_earliest_created(self):
        older = record(rule_id=1, name="older", approver_sequence=[{"user_id": 1, "level": 1}],
                       created_at=datetime(2023, 6, 1))
        newer = record(rule_id=2, name="newer", approver_sequence=[{"user_id": 2, "level": 1}],
                       created_at=datetime(2024, 6, 1))
        assert select("100", newer, older).approvers == (1,)

    def test_conditions_filter_rules(self):
        meals_only = record(rule_id=1, name="meals", priority=10,
                            conditions={"categories": ["Meals"]},
                            approver_sequence=[{"user_id": 1, "level": 1}])
        engineering = record(rule_id=2, name="eng",
                             conditions={"departments": ["Engineering"], "min_amount": "100", "max_amount": "500"},
                             approver_sequence=[{"user_id": 2, "level": 1}])
        plan = select("500", meals_only, engineering, department="Engineering")
        assert plan.approvers == (2,)
        assert plan.rule_id == 2

    def test_manager_role_resolves_to_direct_manager(self):
        rule = record(approver_sequence=[{"role": "manager", "level": 1}, {"user_id": 5, "level": 2}])
        plan = select("100", rule)
        assert plan.approvers == (MANAGER, 5)
        assert plan.policy.mode is CompletionMode.SEQUENTIAL

    def test_manager_role_without_manager_is_a_configuration_error(self):
        rule = record(approver_sequence=[{"role": "manager", "level": 1}])
        with pytest.raises(ConfigurationError):
            select("100", rule, manager_id=None)

    def test_duplicate_approvers_keep_first_occurrence(self):
        rule = record(approver_sequence=[
            {"user_id": 1, "level": 1}, {"user_id": 2, "level": 2}, {"user_id": 1, "level": 3},
        ])
        assert select("100", rule).approvers == (1, 2)

    def test_hybrid_appends_specific_approver(self):
        rule = record(
            rule_type="hybrid",
            approver_sequence=[{"user_id": 1, "level": 1}, {"user_id": 2, "level": 2}],
            percentage_threshold=Decimal("50"),
            specific_approver_id=9,
        )
        plan = select("100", rule)
        assert plan.approvers == (1, 2, 9)
        assert plan.policy.decisive_approver_id == 9

    def test_specific_rule_has_single_approver(self):
        plan = select("100", record(rule_type="specific", specific_approver_id=4))
        assert plan.approvers == (4,)
        assert plan.policy.mode is CompletionMode.ANY


class TestAutoApprove:
    trusted = {"enabled": True, "max_amount": "50", "trusted_employees": [EMPLOYEE]}

    def test_trusted_employee_under_limit_is_auto_approved(self):
        rule = record(auto_approve=self.trusted, approver_sequence=[{"user_id": 1, "level": 1}])
        plan = select("40", rule)
        assert plan.auto_approved
        assert plan.approvers == ()

    def test_limit_is_inclusive(self):
        rule = record(auto_approve=self.trusted, approver_sequence=[{"user_id": 1, "level": 1}])
        assert select("50", rule).auto_approved
        assert not select("50.01", rule).auto_approved

    def test_untrusted_employee_is_routed(self):
        rule = record(auto_approve=self.trusted, approver_sequence=[{"user_id": 1, "level": 1}])
        assert not select("40", rule, employee_id=99).auto_approved

    def test_auto_approve_fires_even_when_conditions_do_not_match(self):
        rule = record(auto_approve=self.trusted, conditions={"categories": ["Meals"]},
                      approver_sequence=[{"user_id": 1, "level": 1}])
        assert select("40", rule, category="Travel").auto_approved


class TestFallback:
    def test_default_approver_is_used_first(self):
        plan = select("100", tenant=policy(default_approver_id=77))
        assert plan.approvers == (77,)
        assert plan.reason == "fallback:default_approver"

    def test_manager_fallback(self):
        plan = select("100")
        assert plan.approvers == (MANAGER,)
        assert plan.policy.mode is CompletionMode.ANY

    def test_no_fallback_is_a_configuration_error(self):
        with pytest.raises(ConfigurationError):
            select("100", tenant=policy(fallback_to_manager=False))
        with pytest.raises(ConfigurationError):
            select("100", manager_id=None)

    def test_approval_not_required_auto_approves(self):
        plan = select("100", tenant=policy(approval_required=False))
        assert plan.auto_approved
        assert plan.reason == "approval_not_required"


class TestRoutability:
    def test_submitter_is_dropped_from_their_own_sequence(self):
        rule = record(approver_sequence=[{"user_id": EMPLOYEE, "level": 1}, {"user_id": 5, "level": 2}])
        assert select("100", rule).approvers == (5,)

    def test_submitter_as_only_approver_is_a_configuration_error(self):
        with pytest.raises(ConfigurationError):
            select("100", record(rule_type="specific", specific_approver_id=EMPLOYEE))

    def test_submitter_cannot_be_decisive_hybrid_approver(self):
        rule = record(
            rule_type="hybrid",
            approver_sequence=[{"user_id": 1, "level": 1}],
            percentage_threshold=Decimal("50"),
            specific_approver_id=EMPLOYEE,
        )
        with pytest.raises(ConfigurationError):
            select("100", rule)

    def test_default_approver_who_submitted_falls_through_to_manager(self):
        plan = select("100", tenant=policy(default_approver_id=EMPLOYEE))
        assert plan.approvers == (MANAGER,)
        assert plan.reason == "fallback:manager"

    def test_inactive_rule_approver_is_a_configuration_error(self):
        rule = record(approver_sequence=[{"user_id": 1, "level": 1}, {"user_id": 2, "level": 2}])
        with pytest.raises(ConfigurationError) as excinfo:
            select("100", rule, inactive=[2])
        assert excinfo.value.details == {"inactive_user_ids": [2]}

    def test_inactive_fallback_manager_is_a_configuration_error(self):
        with pytest.raises(ConfigurationError):
            select("100", inactive=[MANAGER])
