from __future__ import annotations

from dqaudit.checks.primitives import Measurement
from dqaudit.domain import Rule
from dqaudit.executor import Duplicated, NotNull, QueryExecutor
from dqaudit.models import CheckStatus


def evaluate(rule: Rule, executor: QueryExecutor, settings=None) -> Measurement:
    """Every record beyond the first occurrence of a value counts as a duplicate.

    Nulls are not values and are left to completeness rules. The status is
    binary: any duplicate fails regardless of the configured threshold, while
    the pass rate is still recorded for trend comparison.
    """
    column = rule.target_column
    total = executor.count_where(rule.target_schema, rule.target_table, NotNull(column))
    duplicates = executor.count_grouped_duplicates(rule.target_schema, rule.target_table, column)
    return Measurement(
        total=total,
        passed=total - duplicates,
        forced_status=CheckStatus.PASS if duplicates == 0 else CheckStatus.FAIL,
        violations=Duplicated(column),
        reason="value is duplicated",
    )
