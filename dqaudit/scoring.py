"""Roll one run's check results up into per-table quality scores.

Each dimension contributes a 0-25 subscore: the mean pass rate of that
dimension's results divided by four. A dimension with no scorable result is
assumed clean and gets the full 25. ERROR results are excluded from the mean
under the default policy; the ``fail`` policy counts them as a 0% pass rate
instead, so a persistently broken rule cannot silently drop out.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from datetime import date
from typing import Collection, Iterable

from dqaudit.checks.primitives import clamp
from dqaudit.config import SETTINGS, AuditSettings
from dqaudit.domain import CheckResult, Scope, TableScore
from dqaudit.models import CheckStatus, Dimension
from dqaudit.store import STORE, SqlStore

logger = logging.getLogger(__name__)


DIMENSION_MAX_SCORE = 25.0
SCORE_PRECISION = 2

# (lower bound, grade), highest first.
GRADE_BREAKPOINTS: tuple[tuple[float, str], ...] = (
    (95.0, "A"),
    (85.0, "B"),
    (70.0, "C"),
    (60.0, "D"),
)


def grade(overall_score: float) -> str:
    for lower_bound, letter in GRADE_BREAKPOINTS:
        if overall_score >= lower_bound:
            return letter
    return "F"


def _mean(values: list[float]) -> float | None:
    if not values:
        return None
    return sum(values) / len(values)


def _scorable_rate(result: CheckResult, error_policy: str) -> float | None:
    if result.status is CheckStatus.ERROR or result.pass_rate is None:
        return 0.0 if error_policy == "fail" else None
    return result.pass_rate


def dimension_score(results: Iterable[CheckResult], error_policy: str = "exclude") -> float:
    rates = [rate for rate in (_scorable_rate(result, error_policy) for result in results) if rate is not None]
    average = _mean(rates)
    if average is None:
        return DIMENSION_MAX_SCORE
    return round(clamp(average, 0.0, 100.0) / 4.0, SCORE_PRECISION)


def compute_table_score(
    target_schema: str,
    target_table: str,
    run_id: str,
    run_date: date,
    results: list[CheckResult],
    error_policy: str = "exclude",
) -> TableScore:
    by_dimension: dict[Dimension, list[CheckResult]] = defaultdict(list)
    for result in results:
        by_dimension[result.dimension].append(result)

    subscores = {dimension: dimension_score(by_dimension[dimension], error_policy) for dimension in Dimension}
    overall = round(sum(subscores.values()), SCORE_PRECISION)

    statuses = [result.status for result in results]
    return TableScore(
        target_schema=target_schema,
        target_table=target_table,
        run_date=run_date,
        run_id=run_id,
        completeness_score=subscores[Dimension.COMPLETENESS],
        uniqueness_score=subscores[Dimension.UNIQUENESS],
        validity_score=subscores[Dimension.VALIDITY],
        consistency_score=subscores[Dimension.CONSISTENCY],
        overall_score=overall,
        grade=grade(overall),
        total_rules=len(results),
        passed_rules=statuses.count(CheckStatus.PASS),
        failed_rules=statuses.count(CheckStatus.FAIL),
        warned_rules=statuses.count(CheckStatus.WARN),
        errored_rules=statuses.count(CheckStatus.ERROR),
    )


class ScoringEngine:
    def __init__(self, store: SqlStore | None = None, settings: AuditSettings | None = None) -> None:
        self.store = store or STORE
        self.settings = settings or SETTINGS

    def score(
        self,
        run_id: str,
        scope: Scope,
        exclude: Collection[tuple[str, str]] = (),
    ) -> list[TableScore]:
        """Score every table in *scope* that has results for *run_id*.

        Must only be called once every dispatched rule of the run has reported.
        Tables in *exclude* (``(schema, table)`` pairs whose rule set did not
        finish, e.g. after cancellation) are left alone so their stored score
        for the day is not replaced by a partial one. Re-scoring the same table
        on the same day overwrites the earlier row.
        """
        results = self.store.results_for_run(run_id, schema=scope.schema, table=scope.table)
        grouped: dict[tuple[str, str], list[CheckResult]] = defaultdict(list)
        for result in results:
            key = (result.target_schema, result.target_table)
            if key in exclude:
                continue
            grouped[key].append(result)

        scores: list[TableScore] = []
        for (schema, table_name), table_results in sorted(grouped.items()):
            table_score = compute_table_score(
                schema,
                table_name,
                run_id,
                table_results[0].run_date,
                table_results,
                error_policy=self.settings.error_policy,
            )
            self.store.upsert_table_score(table_score)
            logger.info(
                "Scored %s.%s for run %s: %.2f (%s)",
                schema,
                table_name,
                run_id,
                table_score.overall_score,
                table_score.grade,
            )
            scores.append(table_score)
        return scores
