from __future__ import annotations

import threading
from dataclasses import replace
from datetime import date, datetime, timezone
from typing import Any, Protocol

from sqlalchemy import select

from dqaudit.db import SessionLocal, init_db, reset_db
from dqaudit.domain import CheckResult, Rule, TableScore, Violation
from dqaudit.errors import ExceptionNotFound, RuleNotFound
from dqaudit.models import (
    CheckResultModel,
    EventLogModel,
    ExceptionRecordModel,
    RuleModel,
    RuleType,
    Severity,
    TableScoreModel,
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _aware(ts: datetime) -> datetime:
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts


def _iso(ts: datetime | None) -> str | None:
    if ts is None:
        return None
    return _aware(ts).isoformat()


def _rule_from_model(model: RuleModel) -> Rule:
    return Rule(
        id=model.id,
        rule_name=model.rule_name,
        target_schema=model.target_schema,
        target_table=model.target_table,
        target_column=model.target_column,
        rule_type=model.rule_type,
        threshold_pct=model.threshold_pct,
        warning_pct=model.warning_pct,
        severity=model.severity,
        is_active=model.is_active,
        description=model.description,
        min_value=model.min_value,
        max_value=model.max_value,
        allowed_values=tuple(model.allowed_values) if model.allowed_values is not None else None,
        regex_pattern=model.regex_pattern,
        reference_schema=model.reference_schema,
        reference_table=model.reference_table,
        reference_column=model.reference_column,
        related_column=model.related_column,
        comparison_operator=model.comparison_operator,
    )


def _result_from_model(model: CheckResultModel) -> CheckResult:
    return CheckResult(
        id=model.id,
        run_id=model.run_id,
        run_timestamp=_aware(model.run_timestamp),
        rule_id=model.rule_id,
        target_schema=model.target_schema,
        target_table=model.target_table,
        target_column=model.target_column,
        rule_type=model.rule_type,
        dimension=model.dimension,
        total=model.total,
        passed=model.passed,
        failed=model.failed,
        pass_rate=model.pass_rate,
        status=model.status,
        threshold_used=model.threshold_used,
        warning_used=model.warning_used,
        execution_ms=model.execution_ms,
        error_message=model.error_message,
    )


def rule_to_dict(rule: Rule) -> dict[str, Any]:
    return {
        "id": rule.id,
        "rule_name": rule.rule_name,
        "target_schema": rule.target_schema,
        "target_table": rule.target_table,
        "target_column": rule.target_column,
        "rule_type": rule.rule_type.value,
        "dimension": rule.dimension.value,
        "description": rule.description,
        "threshold_pct": rule.threshold_pct,
        "warning_pct": rule.warning_pct,
        "min_value": rule.min_value,
        "max_value": rule.max_value,
        "allowed_values": list(rule.allowed_values) if rule.allowed_values is not None else None,
        "regex_pattern": rule.regex_pattern,
        "reference_schema": rule.reference_schema,
        "reference_table": rule.reference_table,
        "reference_column": rule.reference_column,
        "related_column": rule.related_column,
        "comparison_operator": rule.comparison_operator,
        "severity": rule.severity.value,
        "is_active": rule.is_active,
    }


def result_to_dict(result: CheckResult) -> dict[str, Any]:
    return {
        "id": result.id,
        "run_id": result.run_id,
        "run_timestamp": _iso(result.run_timestamp),
        "run_date": result.run_date.isoformat(),
        "rule_id": result.rule_id,
        "target_schema": result.target_schema,
        "target_table": result.target_table,
        "target_column": result.target_column,
        "rule_type": result.rule_type.value,
        "dimension": result.dimension.value,
        "total": result.total,
        "passed": result.passed,
        "failed": result.failed,
        "pass_rate": result.pass_rate,
        "status": result.status.value,
        "threshold_used": result.threshold_used,
        "warning_used": result.warning_used,
        "execution_ms": result.execution_ms,
        "error_message": result.error_message,
    }


def _exception_to_dict(model: ExceptionRecordModel) -> dict[str, Any]:
    return {
        "id": model.id,
        "result_id": model.result_id,
        "rule_id": model.rule_id,
        "run_id": model.run_id,
        "primary_key_value": model.primary_key_value,
        "column_value": model.column_value,
        "reason": model.reason,
        "is_resolved": model.is_resolved,
        "resolved_by": model.resolved_by,
        "resolved_at": _iso(model.resolved_at),
        "notes": model.notes,
        "created_at": _iso(model.created_at),
        "updated_at": _iso(model.updated_at),
    }


def _score_to_dict(model: TableScoreModel) -> dict[str, Any]:
    return {
        "id": model.id,
        "target_schema": model.target_schema,
        "target_table": model.target_table,
        "run_date": model.run_date.isoformat(),
        "run_id": model.run_id,
        "completeness_score": model.completeness_score,
        "uniqueness_score": model.uniqueness_score,
        "validity_score": model.validity_score,
        "consistency_score": model.consistency_score,
        "overall_score": model.overall_score,
        "grade": model.grade,
        "total_rules": model.total_rules,
        "passed_rules": model.passed_rules,
        "failed_rules": model.failed_rules,
        "warned_rules": model.warned_rules,
        "errored_rules": model.errored_rules,
        "scored_at": _iso(model.scored_at),
    }


def _event_to_dict(model: EventLogModel) -> dict[str, Any]:
    return {
        "id": model.id,
        "run_id": model.run_id,
        "entity_type": model.entity_type,
        "entity_id": model.entity_id,
        "event_type": model.event_type,
        "payload": model.payload or {},
        "created_at": _iso(model.created_at),
    }


class SqlStore:
    def __init__(self) -> None:
        init_db()

    def reset(self) -> None:
        reset_db()

    # -- rules --------------------------------------------------------------

    def create_rule(self, payload: dict[str, Any]) -> Rule:
        with SessionLocal.begin() as session:
            rule = RuleModel(
                rule_name=payload["rule_name"],
                target_schema=payload["target_schema"],
                target_table=payload["target_table"],
                target_column=payload.get("target_column"),
                rule_type=RuleType(payload["rule_type"]),
                description=payload.get("description"),
                threshold_pct=payload["threshold_pct"],
                warning_pct=payload["warning_pct"],
                min_value=payload.get("min_value"),
                max_value=payload.get("max_value"),
                allowed_values=payload.get("allowed_values"),
                regex_pattern=payload.get("regex_pattern"),
                reference_schema=payload.get("reference_schema"),
                reference_table=payload.get("reference_table"),
                reference_column=payload.get("reference_column"),
                related_column=payload.get("related_column"),
                comparison_operator=payload.get("comparison_operator"),
                severity=Severity(payload["severity"]),
                is_active=payload.get("is_active", True),
                created_by=payload.get("created_by") or "system",
            )
            session.add(rule)
            session.flush()
            return _rule_from_model(rule)

    def get_rule(self, rule_id: str) -> Rule | None:
        with SessionLocal() as session:
            rule = session.get(RuleModel, rule_id)
            if rule is None:
                return None
            return _rule_from_model(rule)

    def list_rules(
        self,
        schema: str | None = None,
        table: str | None = None,
        include_inactive: bool = True,
    ) -> list[Rule]:
        stmt = select(RuleModel)
        if schema is not None:
            stmt = stmt.where(RuleModel.target_schema == schema)
        if table is not None:
            stmt = stmt.where(RuleModel.target_table == table)
        if not include_inactive:
            stmt = stmt.where(RuleModel.is_active.is_(True))
        stmt = stmt.order_by(RuleModel.target_table, RuleModel.rule_type, RuleModel.id)
        with SessionLocal() as session:
            return [_rule_from_model(row) for row in session.execute(stmt).scalars().all()]

    def set_rule_active(self, rule_id: str, active: bool) -> Rule:
        with SessionLocal.begin() as session:
            rule = session.get(RuleModel, rule_id)
            if rule is None:
                raise RuleNotFound(f"Rule {rule_id} not found")
            if rule.is_active != active:
                rule.is_active = active
                rule.updated_at = _now()
            session.flush()
            return _rule_from_model(rule)

    # -- results ------------------------------------------------------------

    def append_result(self, result: CheckResult, violations: list[Violation] | None = None) -> CheckResult:
        """Insert one result and its sampled exceptions in a single transaction."""
        with SessionLocal.begin() as session:
            model = CheckResultModel(
                run_id=result.run_id,
                run_date=result.run_date,
                run_timestamp=result.run_timestamp,
                rule_id=result.rule_id,
                target_schema=result.target_schema,
                target_table=result.target_table,
                target_column=result.target_column,
                rule_type=result.rule_type,
                dimension=result.dimension,
                total=result.total,
                passed=result.passed,
                failed=result.failed,
                pass_rate=result.pass_rate,
                status=result.status,
                threshold_used=result.threshold_used,
                warning_used=result.warning_used,
                execution_ms=result.execution_ms,
                error_message=result.error_message,
            )
            session.add(model)
            session.flush()
            if violations:
                self._add_exceptions(session, model.id, result.rule_id, result.run_id, violations)
            return replace(result, id=model.id)

    def _add_exceptions(
        self,
        session,
        result_id: str,
        rule_id: str,
        run_id: str,
        violations: list[Violation],
    ) -> list[ExceptionRecordModel]:
        rows = [
            ExceptionRecordModel(
                result_id=result_id,
                rule_id=rule_id,
                run_id=run_id,
                primary_key_value=violation.primary_key_value,
                column_value=violation.column_value,
                reason=violation.reason,
            )
            for violation in violations
        ]
        session.add_all(rows)
        session.flush()
        return rows

    def results_for_run(
        self,
        run_id: str,
        schema: str | None = None,
        table: str | None = None,
    ) -> list[CheckResult]:
        stmt = select(CheckResultModel).where(CheckResultModel.run_id == run_id)
        if schema is not None:
            stmt = stmt.where(CheckResultModel.target_schema == schema)
        if table is not None:
            stmt = stmt.where(CheckResultModel.target_table == table)
        stmt = stmt.order_by(CheckResultModel.target_table, CheckResultModel.rule_type, CheckResultModel.rule_id)
        with SessionLocal() as session:
            return [_result_from_model(row) for row in session.execute(stmt).scalars().all()]

    def results_for_table_day(self, schema: str, table: str, run_date: date) -> list[CheckResult]:
        stmt = (
            select(CheckResultModel)
            .where(
                CheckResultModel.target_schema == schema,
                CheckResultModel.target_table == table,
                CheckResultModel.run_date == run_date,
            )
            .order_by(CheckResultModel.run_timestamp, CheckResultModel.rule_type, CheckResultModel.rule_id)
        )
        with SessionLocal() as session:
            return [_result_from_model(row) for row in session.execute(stmt).scalars().all()]

    # -- exceptions ---------------------------------------------------------

    def list_exceptions(
        self,
        rule_id: str | None = None,
        run_id: str | None = None,
        is_resolved: bool | None = None,
        limit: int = 100,
    ) -> list[dict[str, Any]]:
        stmt = select(ExceptionRecordModel)
        if rule_id is not None:
            stmt = stmt.where(ExceptionRecordModel.rule_id == rule_id)
        if run_id is not None:
            stmt = stmt.where(ExceptionRecordModel.run_id == run_id)
        if is_resolved is not None:
            stmt = stmt.where(ExceptionRecordModel.is_resolved.is_(is_resolved))
        stmt = stmt.order_by(ExceptionRecordModel.created_at, ExceptionRecordModel.id).limit(limit)
        with SessionLocal() as session:
            return [_exception_to_dict(row) for row in session.execute(stmt).scalars().all()]

    def resolve_exception(self, exception_id: str, resolved_by: str, notes: str | None = None) -> dict[str, Any]:
        # Operator-driven and unversioned: the last write wins.
        with SessionLocal.begin() as session:
            record = session.get(ExceptionRecordModel, exception_id)
            if record is None:
                raise ExceptionNotFound(f"Exception {exception_id} not found")
            now = _now()
            record.is_resolved = True
            record.resolved_by = resolved_by
            record.resolved_at = now
            if notes is not None:
                record.notes = notes
            record.updated_at = now
            session.flush()
            return _exception_to_dict(record)

    def reopen_exception(self, exception_id: str, notes: str | None = None) -> dict[str, Any]:
        with SessionLocal.begin() as session:
            record = session.get(ExceptionRecordModel, exception_id)
            if record is None:
                raise ExceptionNotFound(f"Exception {exception_id} not found")
            record.is_resolved = False
            record.resolved_by = None
            record.resolved_at = None
            if notes is not None:
                record.notes = notes
            record.updated_at = _now()
            session.flush()
            return _exception_to_dict(record)

    # -- scores -------------------------------------------------------------

    def upsert_table_score(self, score: TableScore) -> dict[str, Any]:
        with SessionLocal.begin() as session:
            existing = session.execute(
                select(TableScoreModel).where(
                    TableScoreModel.target_schema == score.target_schema,
                    TableScoreModel.target_table == score.target_table,
                    TableScoreModel.run_date == score.run_date,
                )
            ).scalar_one_or_none()

            if existing is None:
                existing = TableScoreModel(
                    target_schema=score.target_schema,
                    target_table=score.target_table,
                    run_date=score.run_date,
                )
                session.add(existing)

            existing.run_id = score.run_id
            existing.completeness_score = score.completeness_score
            existing.uniqueness_score = score.uniqueness_score
            existing.validity_score = score.validity_score
            existing.consistency_score = score.consistency_score
            existing.overall_score = score.overall_score
            existing.grade = score.grade
            existing.total_rules = score.total_rules
            existing.passed_rules = score.passed_rules
            existing.failed_rules = score.failed_rules
            existing.warned_rules = score.warned_rules
            existing.errored_rules = score.errored_rules
            existing.scored_at = _now()
            session.flush()
            return _score_to_dict(existing)

    def list_table_scores(
        self,
        schema: str | None = None,
        table: str | None = None,
        since: date | None = None,
    ) -> list[dict[str, Any]]:
        stmt = select(TableScoreModel)
        if schema is not None:
            stmt = stmt.where(TableScoreModel.target_schema == schema)
        if table is not None:
            stmt = stmt.where(TableScoreModel.target_table == table)
        if since is not None:
            stmt = stmt.where(TableScoreModel.run_date >= since)
        stmt = stmt.order_by(
            TableScoreModel.target_schema,
            TableScoreModel.target_table,
            TableScoreModel.run_date,
        )
        with SessionLocal() as session:
            return [_score_to_dict(row) for row in session.execute(stmt).scalars().all()]

    # -- events -------------------------------------------------------------

    def record_event(
        self,
        event_type: str,
        entity_type: str,
        entity_id: str | None = None,
        payload: dict[str, Any] | None = None,
        run_id: str | None = None,
    ) -> dict[str, Any]:
        with SessionLocal.begin() as session:
            event = EventLogModel(
                run_id=run_id,
                entity_type=entity_type,
                entity_id=entity_id,
                event_type=event_type,
                payload=payload or {},
            )
            session.add(event)
            session.flush()
            return _event_to_dict(event)

    def list_events(self, run_id: str | None = None, event_type: str | None = None) -> list[dict[str, Any]]:
        stmt = select(EventLogModel)
        if run_id is not None:
            stmt = stmt.where(EventLogModel.run_id == run_id)
        if event_type is not None:
            stmt = stmt.where(EventLogModel.event_type == event_type)
        stmt = stmt.order_by(EventLogModel.id)
        with SessionLocal() as session:
            return [_event_to_dict(row) for row in session.execute(stmt).scalars().all()]


# ---------------------------------------------------------------------------
# Result sinks
# ---------------------------------------------------------------------------


class ResultSink(Protocol):
    def append(self, result: CheckResult, violations: list[Violation] | None = None) -> CheckResult:
        ...


class MemoryResultSink:
    """Collects results in process; used by tests and dry runs."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.results: list[CheckResult] = []
        self.violations: dict[str, list[Violation]] = {}

    def append(self, result: CheckResult, violations: list[Violation] | None = None) -> CheckResult:
        with self._lock:
            stored = replace(result, id=result.id or f"{result.run_id}:{result.rule_id}")
            self.results.append(stored)
            self.violations[stored.id] = list(violations or [])
            return stored


class SqlResultSink:
    def __init__(self, store: SqlStore) -> None:
        self.store = store
        # Shared by every worker of a run; appends are serialized.
        self._lock = threading.Lock()

    def append(self, result: CheckResult, violations: list[Violation] | None = None) -> CheckResult:
        with self._lock:
            return self.store.append_result(result, violations)


STORE = SqlStore()
