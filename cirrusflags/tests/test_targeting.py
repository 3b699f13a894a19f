# CirrusFlags/cirrusflags/tests/test_targeting.py
"""
Unit tests for the targeting rules engine (priority order, disabled and
scheduled rules, debug traces).
"""


from datetime import datetime, timezone

from cirrusflags.models import (
    ConditionGroup,
    EvaluationContext,
    RuleSchedule,
    TargetingCondition,
    TargetingRule,
    UserAttributes,
)
from cirrusflags.services.targeting_service import TargetingRulesEngine


def _rule(rule_id, variant_id, priority=0, **kwargs):
    kwargs.setdefault(
        "conditions",
        ConditionGroup("and", [TargetingCondition("user.plan", "equals", "pro")]),
    )
    return TargetingRule(id=rule_id, variant_id=variant_id, priority=priority, **kwargs)


PRO = EvaluationContext(user=UserAttributes(id="u-1", plan="pro"))


# ---------- Matching ----------


def test_lowest_priority_number_wins_regardless_of_order():
    rules = [_rule("late", "b", priority=10), _rule("early", "a", priority=1)]
    result = TargetingRulesEngine().evaluate(rules, PRO)
    assert result.matched is True
    assert result.rule_id == "early"
    assert result.variant_id == "a"


def test_equal_priorities_keep_declaration_order():
    rules = [_rule("first", "a"), _rule("second", "b")]
    assert TargetingRulesEngine().evaluate(rules, PRO).rule_id == "first"


def test_no_match():
    free = EvaluationContext(user=UserAttributes(id="u-2", plan="free"))
    result = TargetingRulesEngine().evaluate([_rule("r", "a")], free)
    assert result.matched is False
    assert result.variant_id is None


def test_rule_name_defaults_to_id():
    assert _rule("r-1", "a").name == "r-1"


# ---------- Skipped rules ----------


def test_disabled_rule_is_skipped():
    engine = TargetingRulesEngine()
    evaluation = engine.evaluate_rule(_rule("r", "a", enabled=False), PRO)
    assert evaluation.skipped is True
    assert evaluation.skip_reason == "Rule is disabled"
    assert engine.evaluate([_rule("r", "a", enabled=False)], PRO).matched is False


def test_rule_outside_schedule_is_skipped():
    schedule = RuleSchedule(end_time=datetime(2020, 1, 1, tzinfo=timezone.utc))
    ctx = EvaluationContext(
        user=UserAttributes(id="u-1", plan="pro"),
        timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )
    evaluation = TargetingRulesEngine().evaluate_rule(
        _rule("r", "a", schedule=schedule), ctx
    )
    assert evaluation.skipped is True
    assert evaluation.skip_reason == "Outside schedule"


# ---------- Debug details ----------


def test_details_only_in_debug_mode():
    rules = [_rule("r", "a")]
    assert TargetingRulesEngine().evaluate(rules, PRO).details is None

    details = TargetingRulesEngine(debug=True).evaluate(rules, PRO).details
    assert details is not None
    assert details.evaluated_rules[0].condition_results[0].actual_value == "pro"
