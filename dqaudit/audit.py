"""Top-level entry point: run a scoped audit from rule selection to scores.

A run moves INITIATED -> DISPATCHING -> SCORING -> COMPLETE. It only ends in
FAILED when the engine itself cannot work: no run id, an unreadable rule set,
or a store that rejects results or scores. Rules that error are part of a
complete run and are reported in the summary.
"""

from __future__ import annotations

import logging
import threading
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError

from dqaudit.config import SETTINGS, AuditSettings
from dqaudit.db import source_engine
from dqaudit.dispatcher import CheckDispatcher, DispatchOutcome
from dqaudit.domain import Scope, TableScore
from dqaudit.errors import OrchestratorFailure
from dqaudit.executor import QueryExecutor, SqlQueryExecutor
from dqaudit.registry import RuleRegistry
from dqaudit.scoring import ScoringEngine
from dqaudit.store import STORE, ResultSink, SqlResultSink, SqlStore

logger = logging.getLogger(__name__)


class AuditState(str, Enum):
    INITIATED = "INITIATED"
    DISPATCHING = "DISPATCHING"
    SCORING = "SCORING"
    COMPLETE = "COMPLETE"
    FAILED = "FAILED"


@dataclass
class RunSummary:
    run_id: str
    run_timestamp: datetime
    scope: Scope
    state: AuditState = AuditState.INITIATED
    rules_evaluated: int = 0
    errored: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    status_counts: dict[str, int] = field(default_factory=dict)
    table_scores: list[TableScore] = field(default_factory=list)
    errors: list[dict[str, Any]] = field(default_factory=list)
    cancelled: bool = False
    unscored_tables: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "run_timestamp": self.run_timestamp.isoformat(),
            "scope": self.scope.as_dict(),
            "state": self.state.value,
            "rules_evaluated": self.rules_evaluated,
            "errored_count": len(self.errored),
            "skipped_count": len(self.skipped),
            "errored": list(self.errored),
            "skipped": list(self.skipped),
            "status_counts": dict(self.status_counts),
            "cancelled": self.cancelled,
            "unscored_tables": list(self.unscored_tables),
            "errors": list(self.errors),
            "table_scores": [
                {
                    "target_schema": score.target_schema,
                    "target_table": score.target_table,
                    "run_date": score.run_date.isoformat(),
                    "completeness_score": score.completeness_score,
                    "uniqueness_score": score.uniqueness_score,
                    "validity_score": score.validity_score,
                    "consistency_score": score.consistency_score,
                    "overall_score": score.overall_score,
                    "grade": score.grade,
                    "total_rules": score.total_rules,
                    "passed_rules": score.passed_rules,
                    "failed_rules": score.failed_rules,
                    "warned_rules": score.warned_rules,
                    "errored_rules": score.errored_rules,
                }
                for score in self.table_scores
            ],
        }


def _new_run_id() -> str:
    return str(uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditOrchestrator:
    def __init__(
        self,
        store: SqlStore | None = None,
        executor: QueryExecutor | None = None,
        settings: AuditSettings | None = None,
        registry: RuleRegistry | None = None,
        scoring: ScoringEngine | None = None,
        sink: ResultSink | None = None,
        run_id_factory: Callable[[], str] = _new_run_id,
    ) -> None:
        self.store = store or STORE
        self.settings = settings or SETTINGS
        self.executor = executor or SqlQueryExecutor(source_engine())
        self.registry = registry or RuleRegistry(self.store, self.settings)
        self.scoring = scoring or ScoringEngine(self.store, self.settings)
        self.sink = sink or SqlResultSink(self.store)
        self.run_id_factory = run_id_factory

    def run_audit(self, scope: Scope, cancel_event: threading.Event | None = None) -> RunSummary:
        try:
            run_id = self.run_id_factory()
        except Exception as exc:  # noqa: BLE001
            logger.error("Could not allocate a run id for %s: %s", scope.as_dict(), exc)
            raise OrchestratorFailure("Could not allocate a run id") from exc

        summary = RunSummary(run_id=run_id, run_timestamp=_utcnow(), scope=scope)
        try:
            self._emit(summary, "audit_started", {"scope": scope.as_dict()})
            rules = self.registry.get(scope)
        except (SQLAlchemyError, LookupError) as exc:
            self._fail(summary, "Could not read the rule set", exc)

        summary.state = AuditState.DISPATCHING
        logger.info("Run %s: %d active rules in %s", run_id, len(rules), scope.as_dict())
        dispatcher = CheckDispatcher(
            self.executor,
            self.sink,
            settings=self.settings,
            listener=lambda event_type, payload: self._emit(summary, event_type, payload),
        )
        try:
            outcome = dispatcher.run(rules, run_id, summary.run_timestamp, cancel_event=cancel_event)
        except SQLAlchemyError as exc:
            self._fail(summary, "Could not record check results", exc)
        self._absorb(summary, outcome)

        # Every dispatched rule has reported at this point; scoring may start.
        # Tables with skipped rules keep whatever score they already had today.
        summary.state = AuditState.SCORING
        summary.unscored_tables = [f"{schema}.{table}" for schema, table in sorted(outcome.skipped_tables)]
        try:
            summary.table_scores = self.scoring.score(run_id, scope, exclude=outcome.skipped_tables)
        except SQLAlchemyError as exc:
            self._fail(summary, "Could not write table scores", exc)

        summary.state = AuditState.COMPLETE
        self._emit(
            summary,
            "audit_completed",
            {
                "rules_evaluated": summary.rules_evaluated,
                "errored": len(summary.errored),
                "skipped": len(summary.skipped),
                "cancelled": summary.cancelled,
                "status_counts": summary.status_counts,
                "tables_scored": len(summary.table_scores),
                "tables_unscored": len(summary.unscored_tables),
            },
        )
        logger.info(
            "Run %s complete: %d evaluated, %d errored, %d skipped",
            run_id,
            summary.rules_evaluated,
            len(summary.errored),
            len(summary.skipped),
        )
        return summary

    @staticmethod
    def _absorb(summary: RunSummary, outcome: DispatchOutcome) -> None:
        summary.rules_evaluated = len(outcome.results)
        summary.skipped = list(outcome.skipped)
        summary.cancelled = bool(outcome.skipped)
        summary.status_counts = dict(Counter(result.status.value for result in outcome.results))
        summary.errored = [result.rule_id for result in outcome.errored]
        summary.errors = [
            {
                "rule_id": result.rule_id,
                "target": f"{result.target_schema}.{result.target_table}.{result.target_column or '*'}",
                "rule_type": result.rule_type.value,
                "error_message": result.error_message,
            }
            for result in outcome.errored
        ]

    def _emit(self, summary: RunSummary, event_type: str, payload: dict[str, Any]) -> None:
        rule_id = payload.get("rule_id")
        entity_type = "rule" if rule_id else "run"
        logger.debug("%s %s %s", event_type, summary.run_id, payload)
        self.store.record_event(
            event_type=event_type,
            entity_type=entity_type,
            entity_id=rule_id or summary.run_id,
            payload=payload,
            run_id=summary.run_id,
        )

    def _fail(self, summary: RunSummary, message: str, exc: Exception) -> None:
        summary.state = AuditState.FAILED
        logger.error("Run %s failed: %s: %s", summary.run_id, message, exc)
        try:
            self._emit(summary, "audit_failed", {"message": message, "error": exc.__class__.__name__})
        except SQLAlchemyError:
            logger.exception("Could not record audit_failed for run %s", summary.run_id)
        raise OrchestratorFailure(message) from exc


def run_audit(
    schema: str,
    table: str | None = None,
    cancel_event: threading.Event | None = None,
) -> RunSummary:
    return AuditOrchestrator().run_audit(Scope(schema=schema, table=table), cancel_event=cancel_event)
