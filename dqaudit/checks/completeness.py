from __future__ import annotations

from dqaudit.checks.primitives import Measurement
from dqaudit.domain import Rule
from dqaudit.executor import Not, NotBlank, NotNull, QueryExecutor
from dqaudit.models import RuleType


def evaluate(rule: Rule, executor: QueryExecutor, settings=None) -> Measurement:
    """NULL_CHECK counts non-null values; EMPTY_CHECK and REQUIRED also reject blanks."""
    column = rule.target_column
    if rule.rule_type is RuleType.NULL_CHECK:
        populated = NotNull(column)
        reason = "value is null"
    else:
        populated = NotBlank(column)
        reason = "value is null or blank"

    total = executor.count_where(rule.target_schema, rule.target_table)
    passed = executor.count_where(rule.target_schema, rule.target_table, populated)
    return Measurement(total=total, passed=passed, violations=Not(populated), reason=reason)
