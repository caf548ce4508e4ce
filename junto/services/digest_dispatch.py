"""Timezone-aware digest dispatch service.

Handles sending digests to users based on their local delivery time
preferences. Designed to be invoked every few minutes by an external
trigger: nothing is kept in memory between runs, and whether a user is due
is recomputed from scratch each time. The per-user `last_sent_date` marker
is the only guard against double sends.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from junto.config import SchedulerConfig, get_config
from junto.core.datetime_utils import utc_now
from junto.core.exceptions import PipelineFailure, StorageUnavailable, UserNotFound
from junto.core.logging import get_logger
from junto.core.retry import RetryConfig, retry_with_backoff
from junto.scheduling.evaluator import Evaluation, UserSchedule, Verdict, evaluate
from junto.services.digest_pipeline import DigestPipeline, DigestSender, PreparedDigest
from junto.services.stores import (
    AuditLog,
    MarkerStore,
    SQLAuditLog,
    SQLMarkerStore,
    SQLUserDirectory,
    UserDirectory,
)

logger = get_logger(__name__)


class Outcome(StrEnum):
    SENT = "sent"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    INVALID = "invalid"
    DEFERRED = "deferred"
    # Listed only for evaluations that carry a warning
    NOT_DUE = "not_due"
    # Email went out but the marker write failed; the next run may resend
    SENT_UNRECORDED = "sent_unrecorded"


SENT_OUTCOMES = {Outcome.SENT, Outcome.SENT_UNRECORDED}
ERROR_OUTCOMES = {Outcome.FAILED, Outcome.TIMED_OUT, Outcome.INVALID, Outcome.SENT_UNRECORDED}


@dataclass
class UserResult:
    user_id: str
    email: str
    outcome: Outcome
    error: str | None = None
    send_id: str | None = None
    local_date: str | None = None
    warning: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "user_id": self.user_id,
            "email": self.email,
            "outcome": self.outcome.value,
        }
        if self.error is not None:
            data["error"] = self.error
        if self.send_id is not None:
            data["send_id"] = self.send_id
        if self.local_date is not None:
            data["local_date"] = self.local_date
        if self.warning is not None:
            data["warning"] = self.warning
        return data


@dataclass
class RunSummary:
    """Aggregate result of one scheduler run."""

    started_at: datetime
    run_id: str | None = None
    status: str = "running"
    finished_at: datetime | None = None
    candidates_checked: int = 0
    matched_count: int = 0
    results: list[UserResult] = field(default_factory=list)
    error: str | None = None

    @property
    def sent_count(self) -> int:
        return sum(1 for r in self.results if r.outcome in SENT_OUTCOMES)

    @property
    def error_count(self) -> int:
        return sum(1 for r in self.results if r.outcome in ERROR_OUTCOMES)

    def to_dict(self) -> dict[str, Any]:
        return {
            "run_id": self.run_id,
            "status": self.status,
            "candidates_checked": self.candidates_checked,
            "matched_count": self.matched_count,
            "sent_count": self.sent_count,
            "error_count": self.error_count,
            "results": [r.to_dict() for r in self.results],
        }


class RunRecorder:
    """Collects per-user results from concurrent workers."""

    def __init__(self, summary: RunSummary) -> None:
        self._summary = summary
        self._lock = asyncio.Lock()

    async def record(self, result: UserResult) -> None:
        async with self._lock:
            self._summary.results.append(result)

        log = logger.bind(
            run_id=self._summary.run_id,
            user_id=result.user_id,
            email=result.email,
            outcome=result.outcome.value,
        )
        if result.outcome == Outcome.SENT:
            log.bind(send_id=result.send_id, local_date=result.local_date).info("digest_delivered")
        elif result.outcome == Outcome.SENT_UNRECORDED:
            log.bind(send_id=result.send_id, error=result.error).critical("digest_sent_unrecorded")
        elif result.outcome == Outcome.DEFERRED:
            log.warning("digest_deferred")
        else:
            log.bind(error=result.error).error("digest_delivery_failed")


class DigestDispatcher:
    """
    Polling scheduler invoker.

    One call to `run()` is one batch pass: evaluate every candidate, send to
    those due, record the marker after each confirmed send and write an
    audit row for the run.

    Example:
        ```python
        dispatcher = create_dispatcher()
        summary = await dispatcher.run()
        ```
    """

    def __init__(
        self,
        directory: UserDirectory,
        pipeline: DigestSender,
        markers: MarkerStore,
        audit: AuditLog,
        config: SchedulerConfig | None = None,
    ) -> None:
        self.directory = directory
        self.pipeline = pipeline
        self.markers = markers
        self.audit = audit
        self.config = config or get_config().scheduler

    async def run(self, now: datetime | None = None) -> RunSummary:
        """
        Run one scheduling pass.

        Args:
            now: Instant to evaluate users against. Only tests pass this;
                production runs use the current time.

        Returns:
            RunSummary with counts and per-user results

        Raises:
            StorageUnavailable: If the run cannot be started or candidates
                cannot be loaded
        """
        instant = now or datetime.now(UTC)
        summary = RunSummary(started_at=utc_now())

        try:
            summary.run_id = await self.audit.start_run(summary.started_at)
        except StorageUnavailable as e:
            logger.bind(error=str(e)).error("scheduling_run_start_failed")
            raise

        log = logger.bind(run_id=summary.run_id)
        log.bind(now=instant.isoformat()).info("scheduling_run_started")

        # The audit row is finalized on every exit path, including cancellation
        try:
            candidates = await self.directory.list_candidates()
            due = self._evaluate_candidates(candidates, instant, summary)
            summary.matched_count = len(due)
            await self._dispatch(due, summary)
        except asyncio.CancelledError:
            summary.status = "failed"
            summary.error = "run cancelled"
            log.error("scheduling_run_cancelled")
            raise
        except StorageUnavailable as e:
            summary.status = "failed"
            summary.error = str(e)
            log.bind(error=summary.error).error("scheduling_run_failed")
            raise
        except Exception as e:
            summary.status = "failed"
            summary.error = f"{type(e).__name__}: {e}"
            log.bind(error=summary.error).exception("scheduling_run_failed")
            raise
        else:
            summary.status = "completed"
        finally:
            await self._finish(summary)

        log.bind(
            candidates_checked=summary.candidates_checked,
            matched_count=summary.matched_count,
            sent_count=summary.sent_count,
            error_count=summary.error_count,
        ).info("scheduling_run_complete")

        return summary

    def _evaluate_candidates(
        self,
        candidates: list[UserSchedule],
        instant: datetime,
        summary: RunSummary,
    ) -> list[tuple[UserSchedule, Evaluation]]:
        due: list[tuple[UserSchedule, Evaluation]] = []

        for schedule in candidates:
            summary.candidates_checked += 1
            try:
                evaluation = evaluate(schedule, instant)
            except Exception as e:
                logger.bind(user_id=schedule.user_id, error=str(e)).exception("evaluation_error")
                summary.results.append(
                    UserResult(
                        user_id=schedule.user_id,
                        email=schedule.email,
                        outcome=Outcome.INVALID,
                        error=f"evaluation error: {e}",
                    )
                )
                continue

            if evaluation.verdict == Verdict.INVALID:
                summary.results.append(
                    self._result(
                        schedule,
                        evaluation,
                        Outcome.INVALID,
                        error=evaluation.reason.value if evaluation.reason else "invalid",
                    )
                )
                logger.bind(
                    user_id=schedule.user_id,
                    reason=evaluation.reason,
                ).warning("user_schedule_invalid")
            elif evaluation.is_due:
                due.append((schedule, evaluation))
                logger.bind(
                    user_id=schedule.user_id,
                    email=schedule.email,
                    timezone=evaluation.timezone,
                    local_time=evaluation.local_time.isoformat(),
                    preferred_send_time=schedule.preferred_send_time,
                ).debug("user_ready_for_delivery")
            elif evaluation.timezone_fallback:
                summary.results.append(self._result(schedule, evaluation, Outcome.NOT_DUE))

        return due

    @staticmethod
    def _result(
        schedule: UserSchedule,
        evaluation: Evaluation,
        outcome: Outcome,
        **kwargs: Any,
    ) -> UserResult:
        warning = None
        if evaluation.timezone_fallback:
            warning = f"invalid timezone {schedule.timezone!r}, evaluated in UTC"
        return UserResult(
            user_id=schedule.user_id,
            email=schedule.email,
            outcome=outcome,
            local_date=evaluation.local_date.isoformat(),
            warning=warning,
            **kwargs,
        )

    async def _dispatch(
        self,
        due: list[tuple[UserSchedule, Evaluation]],
        summary: RunSummary,
    ) -> None:
        if not due:
            logger.debug("no_users_ready_for_delivery")
            return

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.run_budget_seconds
        semaphore = asyncio.Semaphore(max(1, self.config.max_concurrency))
        recorder = RunRecorder(summary)

        async def worker(schedule: UserSchedule, evaluation: Evaluation) -> None:
            async with semaphore:
                if loop.time() >= deadline:
                    await recorder.record(
                        self._result(
                            schedule,
                            evaluation,
                            Outcome.DEFERRED,
                            error="run budget exhausted",
                        )
                    )
                    return
                await recorder.record(await self._deliver(schedule, evaluation))

        outcomes = await asyncio.gather(
            *(worker(schedule, evaluation) for schedule, evaluation in due),
            return_exceptions=True,
        )
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome

    async def _deliver(self, schedule: UserSchedule, evaluation: Evaluation) -> UserResult:
        """Generate under the per-user timeout, then send and record the marker."""
        try:
            prepared = await asyncio.wait_for(
                self.pipeline.generate(schedule, evaluation.local_date),
                timeout=self.config.per_user_timeout_seconds,
            )
        except TimeoutError:
            return self._result(
                schedule,
                evaluation,
                Outcome.TIMED_OUT,
                error=f"generation exceeded {self.config.per_user_timeout_seconds}s",
            )
        except PipelineFailure as e:
            return self._result(
                schedule, evaluation, Outcome.FAILED, error=f"{type(e).__name__}: {e}"
            )
        except Exception as e:
            logger.bind(user_id=schedule.user_id, error=str(e)).exception("digest_pipeline_error")
            return self._result(
                schedule, evaluation, Outcome.FAILED, error=f"{type(e).__name__}: {e}"
            )

        # Send and marker write run to completion even if this worker is cancelled
        return await asyncio.shield(self._send_and_record(schedule, evaluation, prepared))

    async def _send_and_record(
        self,
        schedule: UserSchedule,
        evaluation: Evaluation,
        prepared: PreparedDigest,
    ) -> UserResult:
        try:
            receipt = await self.pipeline.deliver(prepared)
        except PipelineFailure as e:
            return self._result(
                schedule, evaluation, Outcome.FAILED, error=f"{type(e).__name__}: {e}"
            )
        except Exception as e:
            logger.bind(user_id=schedule.user_id, error=str(e)).exception("digest_pipeline_error")
            return self._result(
                schedule, evaluation, Outcome.FAILED, error=f"{type(e).__name__}: {e}"
            )

        if not receipt.success:
            return self._result(
                schedule, evaluation, Outcome.FAILED, error="sender reported failure"
            )

        try:
            await self._record_marker(schedule, evaluation)
        except StorageUnavailable as e:
            return self._result(
                schedule,
                evaluation,
                Outcome.SENT_UNRECORDED,
                send_id=receipt.send_id,
                error=str(e),
            )
        except Exception as e:
            logger.bind(user_id=schedule.user_id, error=str(e)).exception("send_marker_error")
            return self._result(
                schedule,
                evaluation,
                Outcome.SENT_UNRECORDED,
                send_id=receipt.send_id,
                error=f"{type(e).__name__}: {e}",
            )

        return self._result(schedule, evaluation, Outcome.SENT, send_id=receipt.send_id)

    async def _record_marker(self, schedule: UserSchedule, evaluation: Evaluation) -> None:
        """Write last_sent_date with retries."""
        retry_config = RetryConfig(
            max_attempts=self.config.marker_write_attempts,
            backoff_base=self.config.marker_retry_backoff_seconds,
            backoff_max=10.0,
            retryable_exceptions=(StorageUnavailable,),
        )

        written = await retry_with_backoff(
            lambda: self.markers.mark_sent(schedule.user_id, evaluation.local_date),
            config=retry_config,
            operation_name=f"mark_sent:{schedule.user_id}",
        )
        if not written:
            logger.bind(
                user_id=schedule.user_id,
                local_date=evaluation.local_date.isoformat(),
            ).warning("send_marker_not_advanced")

    async def _finish(self, summary: RunSummary) -> None:
        """Finalize the audit row. Failures here never change the run's outcome."""
        summary.finished_at = utc_now()
        if summary.run_id is None:
            return
        try:
            await self.audit.finish_run(summary.run_id, summary)
        except StorageUnavailable as e:
            logger.bind(run_id=summary.run_id, error=str(e)).error("scheduling_run_finish_failed")
        except Exception as e:
            logger.bind(run_id=summary.run_id, error=str(e)).exception(
                "scheduling_run_finish_failed"
            )

    async def diagnose(
        self,
        now: datetime | None = None,
        user_id: str | None = None,
    ) -> list[Evaluation]:
        """Evaluate candidates without sending anything.

        Uses the same evaluator as `run()`, so the verdicts shown here are
        the ones a run at the same instant would act on.
        """
        instant = now or datetime.now(UTC)
        candidates = await self.directory.list_candidates()
        if user_id is not None:
            candidates = [c for c in candidates if c.user_id == user_id]
        return [evaluate(schedule, instant) for schedule in candidates]

    async def send_now(self, email: str) -> UserResult:
        """
        Send a digest to one user immediately, ignoring the schedule gates.

        The marker is still written, so a scheduled run later the same local
        day sees the user as already sent.

        Raises:
            UserNotFound: If no user has this email
        """
        schedule = await self.directory.get_by_email(email)
        if schedule is None:
            raise UserNotFound(email)

        evaluation = evaluate(schedule)
        logger.bind(
            user_id=schedule.user_id,
            email=schedule.email,
            verdict=evaluation.verdict.value,
        ).info("manual_send_requested")

        result = await self._deliver(schedule, evaluation)
        logger.bind(
            user_id=schedule.user_id,
            outcome=result.outcome.value,
            send_id=result.send_id,
            error=result.error,
        ).info("manual_send_complete")
        return result


def create_dispatcher(
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    config: SchedulerConfig | None = None,
    pipeline: DigestSender | None = None,
) -> DigestDispatcher:
    """Build a dispatcher wired to the SQL stores and the default pipeline."""
    if session_factory is None:
        from junto.core.database import AsyncSessionLocal

        session_factory = AsyncSessionLocal

    return DigestDispatcher(
        directory=SQLUserDirectory(session_factory),
        pipeline=pipeline or DigestPipeline(session_factory),
        markers=SQLMarkerStore(session_factory),
        audit=SQLAuditLog(session_factory),
        config=config,
    )
