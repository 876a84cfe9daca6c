from datetime import date

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from dqaudit.audit import AuditOrchestrator
from dqaudit.config import SETTINGS
from dqaudit.domain import Scope
from dqaudit.errors import AuditError, ExceptionNotFound, InvalidRule, OrchestratorFailure, RuleNotFound
from dqaudit.registry import RuleRegistry
from dqaudit.schemas import (
    CheckResult,
    CreateRuleRequest,
    ErrorResponse,
    ExceptionRecord,
    ListExceptionsResponse,
    ListRulesResponse,
    ListTableScoresResponse,
    ReopenExceptionRequest,
    ResolveExceptionRequest,
    Rule,
    RunAuditRequest,
    RunResultsResponse,
    RunSummary,
    TableScore,
)
from dqaudit.store import STORE, result_to_dict, rule_to_dict


app = FastAPI(title="dq-audit")


@app.exception_handler(HTTPException)
async def http_exception_handler(_: Request, exc: HTTPException) -> JSONResponse:
    if isinstance(exc.detail, dict) and "error" in exc.detail:
        return JSONResponse(status_code=exc.status_code, content=exc.detail)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


def _error(status_code: int, exc: AuditError, retryable: bool = False) -> HTTPException:
    return HTTPException(
        status_code=status_code,
        detail=ErrorResponse(
            error={"code": exc.code, "message": exc.message, "retryable": retryable}
        ).model_dump(),
    )


def _registry() -> RuleRegistry:
    return RuleRegistry(STORE, SETTINGS)


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/v1/rules", response_model=Rule, status_code=status.HTTP_201_CREATED)
def create_rule(payload: CreateRuleRequest) -> Rule:
    registry = _registry()
    try:
        rule_id = registry.add(payload.model_dump())
    except InvalidRule as exc:
        raise _error(422, exc)
    return Rule(**rule_to_dict(registry.get_rule(rule_id)))


@app.get("/v1/rules", response_model=ListRulesResponse)
def list_rules(
    target_schema: str | None = None,
    target_table: str | None = None,
    include_inactive: bool = False,
) -> ListRulesResponse:
    rules = _registry().list_rules(schema=target_schema, table=target_table, include_inactive=include_inactive)
    return ListRulesResponse(items=[Rule(**rule_to_dict(rule)) for rule in rules])


@app.get("/v1/rules/{rule_id}", response_model=Rule)
def get_rule(rule_id: str) -> Rule:
    try:
        rule = _registry().get_rule(rule_id)
    except RuleNotFound as exc:
        raise _error(404, exc)
    return Rule(**rule_to_dict(rule))


@app.post("/v1/rules/{rule_id}/activate", response_model=Rule)
def activate_rule(rule_id: str) -> Rule:
    try:
        rule = _registry().activate(rule_id)
    except RuleNotFound as exc:
        raise _error(404, exc)
    return Rule(**rule_to_dict(rule))


@app.post("/v1/rules/{rule_id}/deactivate", response_model=Rule)
def deactivate_rule(rule_id: str) -> Rule:
    try:
        rule = _registry().deactivate(rule_id)
    except RuleNotFound as exc:
        raise _error(404, exc)
    return Rule(**rule_to_dict(rule))


@app.post("/v1/audits", response_model=RunSummary, status_code=status.HTTP_201_CREATED)
def run_audit(payload: RunAuditRequest) -> RunSummary:
    scope = Scope(schema=payload.target_schema or SETTINGS.default_schema, table=payload.target_table)
    try:
        summary = AuditOrchestrator().run_audit(scope)
    except OrchestratorFailure as exc:
        raise _error(503, exc, retryable=True)
    return RunSummary(**summary.as_dict())


@app.get("/v1/runs/{run_id}/results", response_model=RunResultsResponse)
def get_run_results(
    run_id: str,
    target_schema: str | None = None,
    target_table: str | None = None,
) -> RunResultsResponse:
    results = STORE.results_for_run(run_id, schema=target_schema, table=target_table)
    return RunResultsResponse(
        run_id=run_id,
        items=[CheckResult(**result_to_dict(result)) for result in results],
    )


@app.get("/v1/scores", response_model=ListTableScoresResponse)
def list_table_scores(
    target_schema: str | None = None,
    target_table: str | None = None,
    since: date | None = None,
) -> ListTableScoresResponse:
    scores = STORE.list_table_scores(schema=target_schema, table=target_table, since=since)
    return ListTableScoresResponse(items=[TableScore(**item) for item in scores])


@app.get("/v1/exceptions", response_model=ListExceptionsResponse)
def list_exceptions(
    rule_id: str | None = None,
    run_id: str | None = None,
    is_resolved: bool | None = None,
    limit: int = 100,
) -> ListExceptionsResponse:
    items = STORE.list_exceptions(rule_id=rule_id, run_id=run_id, is_resolved=is_resolved, limit=limit)
    return ListExceptionsResponse(items=[ExceptionRecord(**item) for item in items])


@app.post("/v1/exceptions/{exception_id}/resolve", response_model=ExceptionRecord)
def resolve_exception(exception_id: str, payload: ResolveExceptionRequest) -> ExceptionRecord:
    try:
        record = STORE.resolve_exception(exception_id, resolved_by=payload.resolved_by, notes=payload.notes)
    except ExceptionNotFound as exc:
        raise _error(404, exc)
    except SQLAlchemyError:
        raise HTTPException(
            status_code=503,
            detail=ErrorResponse(
                error={"code": "DB_ERROR", "message": "Database operation failed", "retryable": True}
            ).model_dump(),
        )
    return ExceptionRecord(**record)


@app.post("/v1/exceptions/{exception_id}/reopen", response_model=ExceptionRecord)
def reopen_exception(exception_id: str, payload: ReopenExceptionRequest | None = None) -> ExceptionRecord:
    notes = payload.notes if payload is not None else None
    try:
        record = STORE.reopen_exception(exception_id, notes=notes)
    except ExceptionNotFound as exc:
        raise _error(404, exc)
    except SQLAlchemyError:
        raise HTTPException(
            status_code=503,
            detail=ErrorResponse(
                error={"code": "DB_ERROR", "message": "Database operation failed", "retryable": True}
            ).model_dump(),
        )
    return ExceptionRecord(**record)
