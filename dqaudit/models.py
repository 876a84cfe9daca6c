from __future__ import annotations

from datetime import date, datetime, timezone
from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Enum as SAEnum,
    Float,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _new_id() -> str:
    return str(uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class Dimension(str, Enum):
    COMPLETENESS = "COMPLETENESS"
    UNIQUENESS = "UNIQUENESS"
    VALIDITY = "VALIDITY"
    CONSISTENCY = "CONSISTENCY"


class RuleType(str, Enum):
    NULL_CHECK = "NULL_CHECK"
    EMPTY_CHECK = "EMPTY_CHECK"
    REQUIRED = "REQUIRED"
    DUPLICATE = "DUPLICATE"
    PK_VIOLATION = "PK_VIOLATION"
    RANGE_CHECK = "RANGE_CHECK"
    DOMAIN_CHECK = "DOMAIN_CHECK"
    REGEX_MATCH = "REGEX_MATCH"
    FORMAT_EMAIL = "FORMAT_EMAIL"
    FORMAT_PHONE = "FORMAT_PHONE"
    FK_CHECK = "FK_CHECK"
    CROSS_FIELD = "CROSS_FIELD"
    CROSS_TABLE = "CROSS_TABLE"


class Severity(str, Enum):
    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    INFO = "INFO"


class CheckStatus(str, Enum):
    PASS = "PASS"
    WARN = "WARN"
    FAIL = "FAIL"
    ERROR = "ERROR"


class ComparisonOperator(str, Enum):
    GT = ">"
    LT = "<"
    GE = ">="
    LE = "<="
    EQ = "="
    NE = "<>"


UUID_TEXT = Uuid(as_uuid=False)
JSON_VALUE = JSON().with_variant(JSONB, "postgresql")


def _enum_values(enum_cls):
    return [member.value for member in enum_cls]


class RuleModel(Base):
    __tablename__ = "dq_rule"
    __table_args__ = (
        Index("ix_dq_rule_target", "target_schema", "target_table", "is_active"),
    )

    id: Mapped[str] = mapped_column(UUID_TEXT, primary_key=True, default=_new_id)
    rule_name: Mapped[str] = mapped_column(Text, nullable=False)
    target_schema: Mapped[str] = mapped_column(Text, nullable=False)
    target_table: Mapped[str] = mapped_column(Text, nullable=False)
    target_column: Mapped[str | None] = mapped_column(Text, nullable=True)
    rule_type: Mapped[RuleType] = mapped_column(
        SAEnum(RuleType, values_callable=_enum_values, native_enum=False, length=20), nullable=False
    )
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    threshold_pct: Mapped[float] = mapped_column(Float, nullable=False, default=95.0)
    warning_pct: Mapped[float] = mapped_column(Float, nullable=False, default=90.0)
    min_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    max_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    allowed_values: Mapped[list[str] | None] = mapped_column(JSON_VALUE, nullable=True)
    regex_pattern: Mapped[str | None] = mapped_column(Text, nullable=True)
    reference_schema: Mapped[str | None] = mapped_column(Text, nullable=True)
    reference_table: Mapped[str | None] = mapped_column(Text, nullable=True)
    reference_column: Mapped[str | None] = mapped_column(Text, nullable=True)
    related_column: Mapped[str | None] = mapped_column(Text, nullable=True)
    comparison_operator: Mapped[str | None] = mapped_column(String(2), nullable=True)
    severity: Mapped[Severity] = mapped_column(
        SAEnum(Severity, values_callable=_enum_values, native_enum=False, length=10),
        nullable=False,
        default=Severity.MEDIUM,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_by: Mapped[str] = mapped_column(Text, nullable=False, default="system")
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)


class CheckResultModel(Base):
    __tablename__ = "dq_check_result"
    __table_args__ = (
        UniqueConstraint("run_id", "rule_id", name="uq_dq_check_result_run_rule"),
        Index("ix_dq_check_result_table_day", "target_schema", "target_table", "run_date"),
    )

    id: Mapped[str] = mapped_column(UUID_TEXT, primary_key=True, default=_new_id)
    run_id: Mapped[str] = mapped_column(UUID_TEXT, nullable=False, index=True)
    run_date: Mapped[date] = mapped_column(Date, nullable=False)
    run_timestamp: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    rule_id: Mapped[str] = mapped_column(
        UUID_TEXT, ForeignKey("dq_rule.id", ondelete="RESTRICT"), nullable=False
    )
    target_schema: Mapped[str] = mapped_column(Text, nullable=False)
    target_table: Mapped[str] = mapped_column(Text, nullable=False)
    target_column: Mapped[str | None] = mapped_column(Text, nullable=True)
    rule_type: Mapped[RuleType] = mapped_column(
        SAEnum(RuleType, values_callable=_enum_values, native_enum=False, length=20), nullable=False
    )
    dimension: Mapped[Dimension] = mapped_column(
        SAEnum(Dimension, values_callable=_enum_values, native_enum=False, length=20), nullable=False
    )
    total: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    passed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    pass_rate: Mapped[float | None] = mapped_column(Float, nullable=True)
    status: Mapped[CheckStatus] = mapped_column(
        SAEnum(CheckStatus, values_callable=_enum_values, native_enum=False, length=10), nullable=False
    )
    threshold_used: Mapped[float] = mapped_column(Float, nullable=False)
    warning_used: Mapped[float] = mapped_column(Float, nullable=False)
    execution_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)


class ExceptionRecordModel(Base):
    __tablename__ = "dq_exception"
    __table_args__ = (
        Index("ix_dq_exception_rule_resolved", "rule_id", "is_resolved"),
    )

    id: Mapped[str] = mapped_column(UUID_TEXT, primary_key=True, default=_new_id)
    result_id: Mapped[str] = mapped_column(
        UUID_TEXT, ForeignKey("dq_check_result.id", ondelete="RESTRICT"), nullable=False
    )
    rule_id: Mapped[str] = mapped_column(
        UUID_TEXT, ForeignKey("dq_rule.id", ondelete="RESTRICT"), nullable=False
    )
    run_id: Mapped[str] = mapped_column(UUID_TEXT, nullable=False)
    primary_key_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    column_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    is_resolved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    resolved_by: Mapped[str | None] = mapped_column(Text, nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)


class TableScoreModel(Base):
    __tablename__ = "dq_table_score"
    __table_args__ = (
        UniqueConstraint("target_schema", "target_table", "run_date", name="uq_dq_table_score_key"),
    )

    id: Mapped[str] = mapped_column(UUID_TEXT, primary_key=True, default=_new_id)
    target_schema: Mapped[str] = mapped_column(Text, nullable=False)
    target_table: Mapped[str] = mapped_column(Text, nullable=False)
    run_date: Mapped[date] = mapped_column(Date, nullable=False)
    run_id: Mapped[str] = mapped_column(UUID_TEXT, nullable=False)
    completeness_score: Mapped[float] = mapped_column(Float, nullable=False)
    uniqueness_score: Mapped[float] = mapped_column(Float, nullable=False)
    validity_score: Mapped[float] = mapped_column(Float, nullable=False)
    consistency_score: Mapped[float] = mapped_column(Float, nullable=False)
    overall_score: Mapped[float] = mapped_column(Float, nullable=False)
    grade: Mapped[str] = mapped_column(String(1), nullable=False)
    total_rules: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    passed_rules: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed_rules: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    warned_rules: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    errored_rules: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    scored_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)


class EventLogModel(Base):
    __tablename__ = "event_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    run_id: Mapped[str | None] = mapped_column(UUID_TEXT, nullable=True, index=True)
    entity_type: Mapped[str] = mapped_column(Text, nullable=False)
    entity_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    event_type: Mapped[str] = mapped_column(Text, nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=_utcnow)
