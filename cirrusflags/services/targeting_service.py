# CirrusFlags/cirrusflags/services/targeting_service.py
"""Targeting rules engine for CirrusFlags.

Rules are evaluated in ascending ``priority`` order (a stable sort, so equal
priorities keep their declaration order). The first enabled rule whose
schedule contains the evaluation time and whose conditions hold wins.
"""


from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from cirrusflags.models import EvaluationContext, TargetingRule
from cirrusflags.services.condition_service import (
    ConditionResult,
    evaluate_group,
    is_within_schedule,
)


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RuleEvaluation:
    rule_id: str
    rule_name: Optional[str]
    matched: bool
    skipped: bool = False
    skip_reason: Optional[str] = None
    condition_results: List[ConditionResult] = field(default_factory=list)


@dataclass(frozen=True)
class TargetingDetails:
    evaluated_rules: List[RuleEvaluation]
    evaluation_time_ms: float


@dataclass(frozen=True)
class TargetingResult:
    matched: bool
    variant_id: Optional[str] = None
    rule_id: Optional[str] = None
    rule_name: Optional[str] = None
    details: Optional[TargetingDetails] = None


class TargetingRulesEngine:
    """Match an evaluation context against a flag's targeting rules.

    Args:
        debug: When true, results carry per-rule and per-condition traces.
    """

    def __init__(self, debug: bool = False) -> None:
        self.debug = debug

    def evaluate(
        self, rules: Sequence[TargetingRule], context: EvaluationContext
    ) -> TargetingResult:
        """Return the first matching rule, or ``matched=False``."""
        started = time.perf_counter()
        evaluated: List[RuleEvaluation] = []

        for rule in sorted(rules, key=lambda r: r.priority):
            evaluation = self.evaluate_rule(rule, context)
            evaluated.append(evaluation)
            if evaluation.matched:
                if self.debug:
                    logger.debug(
                        "Rule %s matched after %d rule(s)", rule.id, len(evaluated)
                    )
                return TargetingResult(
                    matched=True,
                    variant_id=rule.variant_id,
                    rule_id=rule.id,
                    rule_name=rule.name,
                    details=self._details(evaluated, started),
                )

        return TargetingResult(
            matched=False, details=self._details(evaluated, started)
        )

    def evaluate_rule(
        self, rule: TargetingRule, context: EvaluationContext
    ) -> RuleEvaluation:
        if not rule.enabled:
            return RuleEvaluation(
                rule_id=rule.id,
                rule_name=rule.name,
                matched=False,
                skipped=True,
                skip_reason="Rule is disabled",
            )

        now = context.timestamp or datetime.now(timezone.utc)
        if rule.schedule is not None and not is_within_schedule(
            rule.schedule, now
        ):
            return RuleEvaluation(
                rule_id=rule.id,
                rule_name=rule.name,
                matched=False,
                skipped=True,
                skip_reason="Outside schedule",
            )

        trace: Optional[List[ConditionResult]] = [] if self.debug else None
        matched = evaluate_group(rule.conditions, context, trace)
        return RuleEvaluation(
            rule_id=rule.id,
            rule_name=rule.name,
            matched=matched,
            condition_results=trace or [],
        )

    def _details(
        self, evaluated: List[RuleEvaluation], started: float
    ) -> Optional[TargetingDetails]:
        if not self.debug:
            return None
        return TargetingDetails(
            evaluated_rules=evaluated,
            evaluation_time_ms=(time.perf_counter() - started) * 1000,
        )
