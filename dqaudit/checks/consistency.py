from __future__ import annotations

from dqaudit.checks.primitives import Measurement
from dqaudit.domain import Rule
from dqaudit.errors import InvalidRule
from dqaudit.executor import Compare, MissingFrom, Not, NotNull, QueryExecutor, all_of
from dqaudit.models import CheckStatus, RuleType


def _referential(rule: Rule, executor: QueryExecutor, binary: bool) -> Measurement:
    column = rule.target_column
    total = executor.count_where(rule.target_schema, rule.target_table, NotNull(column))
    orphans = executor.count_anti_join(
        rule.target_schema,
        rule.target_table,
        column,
        rule.parent_schema,
        rule.reference_table,
        rule.reference_column,
    )
    forced = CheckStatus.FAIL if binary and orphans > 0 else None
    missing = MissingFrom(column, rule.parent_schema, rule.reference_table, rule.reference_column)
    return Measurement(
        total=total,
        passed=total - orphans,
        forced_status=forced,
        violations=all_of(NotNull(column), missing),
        reason=f"no matching {rule.reference_table}.{rule.reference_column}",
    )


def _cross_field(rule: Rule, executor: QueryExecutor) -> Measurement:
    # Rows with either side null are excluded: the comparison is undefined there.
    both_present = (NotNull(rule.target_column), NotNull(rule.related_column))
    holds = Compare(rule.target_column, rule.comparison_operator, rule.related_column)
    total = executor.count_where(rule.target_schema, rule.target_table, all_of(*both_present))
    passed = executor.count_where(rule.target_schema, rule.target_table, all_of(*both_present, holds))
    return Measurement(
        total=total,
        passed=passed,
        violations=all_of(*both_present, Not(holds)),
        reason=f"{rule.target_column} {rule.comparison_operator} {rule.related_column} does not hold",
    )


def evaluate(rule: Rule, executor: QueryExecutor, settings=None) -> Measurement:
    if rule.rule_type is RuleType.FK_CHECK:
        return _referential(rule, executor, binary=True)
    if rule.rule_type is RuleType.CROSS_TABLE:
        return _referential(rule, executor, binary=False)
    if rule.rule_type is RuleType.CROSS_FIELD:
        return _cross_field(rule, executor)
    raise InvalidRule(f"{rule.rule_type.value} is not a consistency rule")
