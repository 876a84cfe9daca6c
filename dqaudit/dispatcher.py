"""Fan rules out to their evaluators and record one result per rule.

A failure while evaluating one rule never aborts the batch: it becomes an
ERROR result carrying the caught message, and the remaining rules still run.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from dqaudit.checks import completeness, consistency, uniqueness, validity
from dqaudit.checks.primitives import Measurement, classify
from dqaudit.config import SETTINGS, AuditSettings
from dqaudit.domain import CheckResult, Rule, Violation
from dqaudit.errors import AuditError
from dqaudit.executor import QueryExecutor
from dqaudit.identifiers import validate_rule_identifiers
from dqaudit.models import CheckStatus, Dimension
from dqaudit.store import ResultSink

logger = logging.getLogger(__name__)


Evaluator = Callable[[Rule, QueryExecutor, AuditSettings], Measurement]
EventListener = Callable[[str, dict[str, Any]], None]

EVALUATORS: dict[Dimension, Evaluator] = {
    Dimension.COMPLETENESS: completeness.evaluate,
    Dimension.UNIQUENESS: uniqueness.evaluate,
    Dimension.VALIDITY: validity.evaluate,
    Dimension.CONSISTENCY: consistency.evaluate,
}


@dataclass(frozen=True)
class DispatchOutcome:
    results: list[CheckResult]
    skipped: list[str] = field(default_factory=list)
    # (schema, table) pairs with at least one skipped rule; their scores would be partial.
    skipped_tables: frozenset[tuple[str, str]] = frozenset()

    @property
    def errored(self) -> list[CheckResult]:
        return [result for result in self.results if result.status is CheckStatus.ERROR]


def _error_message(exc: BaseException) -> str:
    if isinstance(exc, AuditError):
        return str(exc)
    return f"{exc.__class__.__name__}: {exc}"


def _elapsed_ms(started: float) -> int:
    return int(round((time.perf_counter() - started) * 1000))


def _ignore_event(event_type: str, payload: dict[str, Any]) -> None:
    return None


class CheckDispatcher:
    def __init__(
        self,
        executor: QueryExecutor,
        sink: ResultSink,
        settings: AuditSettings | None = None,
        listener: EventListener | None = None,
        max_workers: int | None = None,
    ) -> None:
        self.executor = executor
        self.sink = sink
        self.settings = settings or SETTINGS
        self.listener = listener or _ignore_event
        self.max_workers = max(1, max_workers or self.settings.max_workers)

    def run(
        self,
        rules: list[Rule],
        run_id: str,
        run_timestamp: datetime,
        cancel_event: threading.Event | None = None,
    ) -> DispatchOutcome:
        """Evaluate *rules* on a bounded pool; results keep the input order."""
        cancel = cancel_event or threading.Event()
        if not rules:
            return DispatchOutcome(results=[])

        workers = min(self.max_workers, len(rules))
        logger.info("Dispatching %d rules for run %s with %d workers", len(rules), run_id, workers)

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="dq-check") as pool:
            futures = [
                pool.submit(self._run_one, rule, run_id, run_timestamp, cancel)
                for rule in rules
            ]
            # Sink failures are infrastructure errors and propagate to the caller.
            outcomes = [future.result() for future in futures]

        results: list[CheckResult] = []
        skipped: list[str] = []
        skipped_tables: set[tuple[str, str]] = set()
        for rule, outcome in zip(rules, outcomes):
            if outcome is None:
                skipped.append(rule.id)
                skipped_tables.add((rule.target_schema, rule.target_table))
            else:
                results.append(outcome)

        if skipped:
            logger.warning("Run %s cancelled; %d rules skipped", run_id, len(skipped))
        return DispatchOutcome(results=results, skipped=skipped, skipped_tables=frozenset(skipped_tables))

    def _run_one(
        self,
        rule: Rule,
        run_id: str,
        run_timestamp: datetime,
        cancel: threading.Event,
    ) -> CheckResult | None:
        # Cooperative cancellation: a rule that has not started yet is skipped.
        if cancel.is_set():
            return None
        result, violations = self.evaluate_rule(rule, run_id, run_timestamp)
        return self.sink.append(result, violations)

    def evaluate_rule(
        self,
        rule: Rule,
        run_id: str,
        run_timestamp: datetime,
    ) -> tuple[CheckResult, list[Violation]]:
        self.listener(
            "rule_started",
            {
                "run_id": run_id,
                "rule_id": rule.id,
                "rule_name": rule.rule_name,
                "rule_type": rule.rule_type.value,
            },
        )
        started = time.perf_counter()
        try:
            validate_rule_identifiers(rule)
            measurement = EVALUATORS[rule.dimension](rule, self.executor, self.settings)
            pass_rate, status = classify(measurement, rule.threshold_pct, rule.warning_pct)
        except Exception as exc:  # noqa: BLE001
            result = self._result(
                rule,
                run_id,
                run_timestamp,
                total=0,
                passed=0,
                pass_rate=None,
                status=CheckStatus.ERROR,
                execution_ms=_elapsed_ms(started),
                error_message=_error_message(exc),
            )
            logger.warning("Rule %s (%s) errored: %s", rule.id, rule.rule_name, result.error_message)
            self.listener(
                "rule_errored",
                {
                    "run_id": run_id,
                    "rule_id": rule.id,
                    "error_code": getattr(exc, "code", "UNEXPECTED_ERROR"),
                    "error_message": result.error_message,
                    "execution_ms": result.execution_ms,
                },
            )
            return result, []

        result = self._result(
            rule,
            run_id,
            run_timestamp,
            total=measurement.total,
            passed=measurement.passed,
            pass_rate=pass_rate,
            status=status,
            execution_ms=_elapsed_ms(started),
        )
        violations = self._sample(rule, measurement)
        logger.debug("Rule %s evaluated: %s at %.2f%%", rule.id, status.value, pass_rate)
        self.listener(
            "rule_evaluated",
            {
                "run_id": run_id,
                "rule_id": rule.id,
                "status": status.value,
                "pass_rate": pass_rate,
                "total": result.total,
                "passed": result.passed,
                "failed": result.failed,
                "execution_ms": result.execution_ms,
            },
        )
        return result, violations

    def _sample(self, rule: Rule, measurement: Measurement) -> list[Violation]:
        limit = self.settings.exception_sample_size
        if limit <= 0 or measurement.violations is None or measurement.failed <= 0:
            return []
        try:
            rows = self.executor.sample_where(
                rule.target_schema,
                rule.target_table,
                rule.target_column,
                measurement.violations,
                limit,
            )
        except AuditError as exc:
            # The counts are already final; a failed sample only loses examples.
            logger.warning("Could not sample exceptions for rule %s: %s", rule.id, exc)
            return []
        return [Violation(primary_key_value=key, column_value=value, reason=measurement.reason) for key, value in rows]

    @staticmethod
    def _result(
        rule: Rule,
        run_id: str,
        run_timestamp: datetime,
        *,
        total: int,
        passed: int,
        pass_rate: float | None,
        status: CheckStatus,
        execution_ms: int,
        error_message: str | None = None,
    ) -> CheckResult:
        return CheckResult(
            run_id=run_id,
            run_timestamp=run_timestamp,
            rule_id=rule.id,
            target_schema=rule.target_schema,
            target_table=rule.target_table,
            target_column=rule.target_column,
            rule_type=rule.rule_type,
            dimension=rule.dimension,
            total=total,
            passed=passed,
            failed=total - passed,
            pass_rate=pass_rate,
            status=status,
            threshold_used=rule.threshold_pct,
            warning_used=rule.warning_pct,
            execution_ms=execution_ms,
            error_message=error_message,
        )
