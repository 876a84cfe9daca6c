from __future__ import annotations

from sqlalchemy import create_engine, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from dqaudit.config import SETTINGS
from dqaudit.models import Base


def _engine_kwargs(url: str) -> dict:
    if url.startswith("sqlite"):
        kwargs: dict = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url:
            kwargs["poolclass"] = StaticPool
        return kwargs
    return {"pool_pre_ping": True}


DATABASE_URL = SETTINGS.database_url
ENGINE = create_engine(DATABASE_URL, future=True, **_engine_kwargs(DATABASE_URL))
SessionLocal = sessionmaker(bind=ENGINE, autoflush=False, autocommit=False, expire_on_commit=False)

_SOURCE_ENGINE: Engine | None = None


def source_engine() -> Engine:
    """Engine for the audited data source; shares the store engine when the URLs match."""
    global _SOURCE_ENGINE
    if _SOURCE_ENGINE is None:
        url = SETTINGS.source_database_url
        if url == DATABASE_URL:
            _SOURCE_ENGINE = ENGINE
        else:
            _SOURCE_ENGINE = create_engine(url, future=True, **_engine_kwargs(url))
    return _SOURCE_ENGINE


REQUIRED_SCHEMA: dict[str, set[str]] = {
    "dq_rule": {
        "id",
        "rule_name",
        "target_schema",
        "target_table",
        "target_column",
        "rule_type",
        "threshold_pct",
        "warning_pct",
        "severity",
        "is_active",
        "created_at",
        "updated_at",
    },
    "dq_check_result": {
        "id",
        "run_id",
        "run_date",
        "run_timestamp",
        "rule_id",
        "total",
        "passed",
        "failed",
        "pass_rate",
        "status",
        "execution_ms",
        "error_message",
    },
    "dq_exception": {
        "id",
        "result_id",
        "rule_id",
        "primary_key_value",
        "column_value",
        "reason",
        "is_resolved",
        "resolved_by",
        "resolved_at",
        "notes",
    },
    "dq_table_score": {
        "id",
        "target_schema",
        "target_table",
        "run_date",
        "completeness_score",
        "uniqueness_score",
        "validity_score",
        "consistency_score",
        "overall_score",
        "grade",
        "total_rules",
        "passed_rules",
    },
    "event_log": {"id", "entity_type", "event_type", "payload", "created_at"},
}


def verify_schema(engine: Engine, required: dict[str, set[str]] | None = None) -> None:
    inspector = inspect(engine)
    required_schema = required or REQUIRED_SCHEMA
    existing_tables = set(inspector.get_table_names())
    missing_columns: list[str] = []
    for table_name, required_columns in required_schema.items():
        if table_name not in existing_tables:
            missing_columns.extend(f"{table_name}.{column}" for column in sorted(required_columns))
            continue
        existing_columns = {column["name"] for column in inspector.get_columns(table_name)}
        for required_column in sorted(required_columns):
            if required_column not in existing_columns:
                missing_columns.append(f"{table_name}.{required_column}")
    if missing_columns:
        detail = ", ".join(missing_columns)
        raise RuntimeError(f"Schema verification failed; missing columns: {detail}")


def init_db() -> None:
    Base.metadata.create_all(bind=ENGINE)
    verify_schema(ENGINE)


def reset_db() -> None:
    Base.metadata.drop_all(bind=ENGINE)
    Base.metadata.create_all(bind=ENGINE)
