"""Delivery scheduler API endpoints."""

from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, HTTPException, Query, status
from pydantic import BaseModel, EmailStr

from junto.core.exceptions import StorageUnavailable, UserNotFound
from junto.core.logging import get_logger
from junto.core.scheduler import get_job_schedules
from junto.dependencies import AuditLogDep, CronAuth, Dispatcher

logger = get_logger(__name__)

router = APIRouter(dependencies=[CronAuth])


class UserResultResponse(BaseModel):
    """Response model for one user's outcome in a run."""

    user_id: str
    email: str
    outcome: str
    error: str | None = None
    send_id: str | None = None
    local_date: str | None = None
    warning: str | None = None


class CheckScheduledResponse(BaseModel):
    """Response model for a scheduler run."""

    run_id: str | None
    status: str
    candidates_checked: int
    matched_count: int
    sent_count: int
    error_count: int
    results: list[UserResultResponse]


class GateResponse(BaseModel):
    name: str
    passed: bool
    detail: str


class EvaluationResponse(BaseModel):
    """Response model for one user's due-now evaluation."""

    user_id: str
    email: str
    verdict: str
    reason: str | None
    timezone: str
    timezone_fallback: bool
    local_time: str
    local_date: str
    weekday: str
    preferred_send_time: str | None
    send_frequency: str | None
    weekend_delivery: bool
    last_sent_date: str | None
    gates: list[GateResponse]


class DiagnosticsResponse(BaseModel):
    now: datetime
    due_count: int
    users: list[EvaluationResponse]


class SchedulingRunResponse(BaseModel):
    """Response model for a scheduling run audit row."""

    id: str
    started_at: datetime
    finished_at: datetime | None
    duration_seconds: float | None
    status: str
    candidates_checked: int
    matched_count: int
    sent_count: int
    error_count: int
    per_user_results: list[dict[str, Any]]
    error: str | None


class SendNowRequest(BaseModel):
    email: EmailStr


class ScheduleResponse(BaseModel):
    """Response model for an in-process job schedule."""

    id: str
    task_id: str
    trigger: str
    next_fire_time: str | None
    last_fire_time: str | None


def _storage_unavailable(e: StorageUnavailable) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=f"Storage unavailable: {e}",
    )


@router.api_route(
    "/cron/check-scheduled",
    methods=["GET", "POST"],
    response_model=CheckScheduledResponse,
)
async def check_scheduled(dispatcher: Dispatcher) -> CheckScheduledResponse:
    """
    Run one delivery pass.

    Called every few minutes by an external cron. Takes no parameters:
    every subscribed user is evaluated against the current instant in their
    own timezone and due users are sent their digest.
    """
    try:
        summary = await dispatcher.run()
    except StorageUnavailable as e:
        logger.bind(error=str(e)).error("check_scheduled_storage_unavailable")
        raise _storage_unavailable(e) from e

    return CheckScheduledResponse(**summary.to_dict())


@router.get("/scheduling/diagnostics", response_model=DiagnosticsResponse)
async def diagnostics(
    dispatcher: Dispatcher,
    user_id: str | None = Query(default=None, description="Only evaluate this user"),
) -> DiagnosticsResponse:
    """
    Show how every candidate evaluates right now, without sending.

    Uses the same evaluator as the scheduled run.
    """
    now = datetime.now(UTC)
    try:
        evaluations = await dispatcher.diagnose(now=now, user_id=user_id)
    except StorageUnavailable as e:
        raise _storage_unavailable(e) from e

    return DiagnosticsResponse(
        now=now,
        due_count=sum(1 for e in evaluations if e.is_due),
        users=[EvaluationResponse(**e.to_dict()) for e in evaluations],
    )


@router.post("/scheduling/send-now", response_model=UserResultResponse)
async def send_now(body: SendNowRequest, dispatcher: Dispatcher) -> UserResultResponse:
    """
    Send a digest to one user immediately, bypassing the schedule.

    The send marker is still recorded.
    """
    try:
        result = await dispatcher.send_now(body.email)
    except UserNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except StorageUnavailable as e:
        raise _storage_unavailable(e) from e

    return UserResultResponse(**result.to_dict())


@router.get("/scheduling/runs", response_model=list[SchedulingRunResponse])
async def list_runs(
    audit: AuditLogDep,
    status_filter: str | None = Query(default=None, alias="status"),
    limit: int = Query(default=20, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
) -> list[SchedulingRunResponse]:
    """
    List scheduler run history, most recent first.
    """
    try:
        runs = await audit.list_runs(limit=limit, offset=offset, status=status_filter or None)
    except StorageUnavailable as e:
        raise _storage_unavailable(e) from e

    return [
        SchedulingRunResponse(
            id=run.id,
            started_at=run.started_at,
            finished_at=run.finished_at,
            duration_seconds=(
                (run.finished_at - run.started_at).total_seconds() if run.finished_at else None
            ),
            status=run.status,
            candidates_checked=run.candidates_checked,
            matched_count=run.matched_count,
            sent_count=run.sent_count,
            error_count=run.error_count,
            per_user_results=run.per_user_results or [],
            error=run.error,
        )
        for run in runs
    ]


@router.get("/scheduling/schedules", response_model=list[ScheduleResponse])
async def list_schedules() -> list[ScheduleResponse]:
    """
    List in-process job schedules.

    Empty unless SCHEDULER_ENABLED is set.
    """
    schedules = await get_job_schedules()
    return [ScheduleResponse(**s) for s in schedules]
