"""Plain value objects passed between the registry, evaluators and scorer."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

from dqaudit.models import CheckStatus, Dimension, RuleType, Severity


DIMENSION_BY_RULE_TYPE: dict[RuleType, Dimension] = {
    RuleType.NULL_CHECK: Dimension.COMPLETENESS,
    RuleType.EMPTY_CHECK: Dimension.COMPLETENESS,
    RuleType.REQUIRED: Dimension.COMPLETENESS,
    RuleType.DUPLICATE: Dimension.UNIQUENESS,
    RuleType.PK_VIOLATION: Dimension.UNIQUENESS,
    RuleType.RANGE_CHECK: Dimension.VALIDITY,
    RuleType.DOMAIN_CHECK: Dimension.VALIDITY,
    RuleType.REGEX_MATCH: Dimension.VALIDITY,
    RuleType.FORMAT_EMAIL: Dimension.VALIDITY,
    RuleType.FORMAT_PHONE: Dimension.VALIDITY,
    RuleType.FK_CHECK: Dimension.CONSISTENCY,
    RuleType.CROSS_FIELD: Dimension.CONSISTENCY,
    RuleType.CROSS_TABLE: Dimension.CONSISTENCY,
}


@dataclass(frozen=True)
class Scope:
    schema: str
    table: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {"schema": self.schema, "table": self.table}


@dataclass(frozen=True)
class Rule:
    id: str
    rule_name: str
    target_schema: str
    target_table: str
    target_column: str | None
    rule_type: RuleType
    threshold_pct: float
    warning_pct: float
    severity: Severity
    is_active: bool = True
    description: str | None = None
    min_value: str | None = None
    max_value: str | None = None
    allowed_values: tuple[str, ...] | None = None
    regex_pattern: str | None = None
    reference_schema: str | None = None
    reference_table: str | None = None
    reference_column: str | None = None
    related_column: str | None = None
    comparison_operator: str | None = None

    @property
    def dimension(self) -> Dimension:
        return DIMENSION_BY_RULE_TYPE[self.rule_type]

    @property
    def parent_schema(self) -> str:
        return self.reference_schema or self.target_schema


@dataclass(frozen=True)
class CheckResult:
    run_id: str
    run_timestamp: datetime
    rule_id: str
    target_schema: str
    target_table: str
    target_column: str | None
    rule_type: RuleType
    dimension: Dimension
    total: int
    passed: int
    failed: int
    pass_rate: float | None
    status: CheckStatus
    threshold_used: float
    warning_used: float
    execution_ms: int = 0
    error_message: str | None = None
    id: str | None = None

    @property
    def run_date(self) -> date:
        return self.run_timestamp.date()


@dataclass(frozen=True)
class Violation:
    primary_key_value: str | None
    column_value: str | None
    reason: str


@dataclass(frozen=True)
class TableScore:
    target_schema: str
    target_table: str
    run_date: date
    run_id: str
    completeness_score: float
    uniqueness_score: float
    validity_score: float
    consistency_score: float
    overall_score: float
    grade: str
    total_rules: int
    passed_rules: int
    failed_rules: int = 0
    warned_rules: int = 0
    errored_rules: int = 0
