from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field


class ApiError(BaseModel):
    code: str
    message: str
    retryable: bool = False
    details: dict[str, Any] | None = None


class ErrorResponse(BaseModel):
    error: ApiError


class CreateRuleRequest(BaseModel):
    target_schema: str | None = None
    target_table: str = Field(min_length=1)
    target_column: str | None = None
    rule_type: str = Field(min_length=1)
    description: str | None = None
    threshold_pct: float | None = None
    warning_pct: float | None = None
    min_value: str | float | int | None = None
    max_value: str | float | int | None = None
    allowed_values: list[str] | None = None
    regex_pattern: str | None = None
    reference_schema: str | None = None
    reference_table: str | None = None
    reference_column: str | None = None
    related_column: str | None = None
    comparison_operator: str | None = None
    severity: str | None = None
    is_active: bool = True
    created_by: str | None = None


class Rule(BaseModel):
    id: str
    rule_name: str
    target_schema: str
    target_table: str
    target_column: str | None = None
    rule_type: str
    dimension: str
    description: str | None = None
    threshold_pct: float
    warning_pct: float
    min_value: str | None = None
    max_value: str | None = None
    allowed_values: list[str] | None = None
    regex_pattern: str | None = None
    reference_schema: str | None = None
    reference_table: str | None = None
    reference_column: str | None = None
    related_column: str | None = None
    comparison_operator: str | None = None
    severity: str
    is_active: bool


class ListRulesResponse(BaseModel):
    items: list[Rule]


class RunAuditRequest(BaseModel):
    target_schema: str | None = None
    target_table: str | None = None


class TableScore(BaseModel):
    id: str | None = None
    target_schema: str
    target_table: str
    run_date: str
    run_id: str | None = None
    completeness_score: float
    uniqueness_score: float
    validity_score: float
    consistency_score: float
    overall_score: float
    grade: Literal["A", "B", "C", "D", "F"]
    total_rules: int
    passed_rules: int
    failed_rules: int = 0
    warned_rules: int = 0
    errored_rules: int = 0
    scored_at: str | None = None


class RuleError(BaseModel):
    rule_id: str
    target: str
    rule_type: str
    error_message: str | None = None


class RunSummary(BaseModel):
    run_id: str
    run_timestamp: str
    scope: dict[str, str | None]
    state: str
    rules_evaluated: int
    errored_count: int
    skipped_count: int
    errored: list[str]
    skipped: list[str]
    status_counts: dict[str, int]
    cancelled: bool = False
    unscored_tables: list[str] = Field(default_factory=list)
    errors: list[RuleError] = Field(default_factory=list)
    table_scores: list[TableScore]


class CheckResult(BaseModel):
    id: str | None = None
    run_id: str
    run_timestamp: str
    run_date: str
    rule_id: str
    target_schema: str
    target_table: str
    target_column: str | None = None
    rule_type: str
    dimension: str
    total: int
    passed: int
    failed: int
    pass_rate: float | None = None
    status: Literal["PASS", "WARN", "FAIL", "ERROR"]
    threshold_used: float
    warning_used: float
    execution_ms: int
    error_message: str | None = None


class RunResultsResponse(BaseModel):
    run_id: str
    items: list[CheckResult]


class ListTableScoresResponse(BaseModel):
    items: list[TableScore]


class ExceptionRecord(BaseModel):
    id: str
    result_id: str
    rule_id: str
    run_id: str
    primary_key_value: str | None = None
    column_value: str | None = None
    reason: str
    is_resolved: bool
    resolved_by: str | None = None
    resolved_at: str | None = None
    notes: str | None = None
    created_at: str
    updated_at: str


class ListExceptionsResponse(BaseModel):
    items: list[ExceptionRecord]


class ResolveExceptionRequest(BaseModel):
    resolved_by: str = Field(min_length=1)
    notes: str | None = None


class ReopenExceptionRequest(BaseModel):
    notes: str | None = None
