"""Decide whether a user's digest is due at a given instant.

The decision is recomputed from scratch on every scheduler invocation. Gates
run in a fixed order and the first failing gate decides the verdict:

    time_of_day -> weekend -> frequency

Every gate is still evaluated so diagnostics can show the complete picture,
but only the first failure is reported as the reason.
"""

from dataclasses import dataclass, field
from datetime import UTC, date, datetime, time
from enum import StrEnum
from typing import Any
from zoneinfo import ZoneInfo

from junto.core.datetime_utils import (
    DEFAULT_TIMEZONE,
    has_time_of_day_passed,
    is_weekend,
    local_date_now,
    local_time_now,
    normalize_date,
    resolve_timezone,
)
from junto.core.exceptions import InvalidTimeFormat, InvalidTimezone
from junto.core.logging import get_logger

logger = get_logger(__name__)

WEEKLY_INTERVAL_DAYS = 7


class SendFrequency(StrEnum):
    DAILY = "daily"
    WEEKLY = "weekly"


class Verdict(StrEnum):
    DUE = "due"
    NOT_DUE = "not_due"
    INVALID = "invalid"


class Reason(StrEnum):
    """Why a user is not due (or cannot be evaluated)."""

    TIME_NOT_REACHED = "time-not-reached"
    WEEKEND_SKIPPED = "weekend-skipped"
    ALREADY_SENT_TODAY = "already-sent-today"
    WEEKLY_INTERVAL_NOT_ELAPSED = "weekly-interval-not-elapsed"
    INVALID_TIME_FORMAT = "invalid-time-format"
    UNKNOWN_FREQUENCY = "unknown-frequency"


@dataclass(frozen=True)
class UserSchedule:
    """The scheduling-relevant slice of a user row."""

    user_id: str
    email: str
    timezone: str | None
    preferred_send_time: str | None
    send_frequency: str | None = SendFrequency.DAILY
    weekend_delivery: bool = True
    last_sent_date: str | None = None


@dataclass(frozen=True)
class GateResult:
    name: str
    passed: bool
    detail: str
    verdict: Verdict = Verdict.NOT_DUE
    reason: Reason | None = None


@dataclass
class Evaluation:
    """Outcome of evaluating one user, with the trace behind it."""

    user_id: str
    email: str
    verdict: Verdict
    reason: Reason | None
    timezone: str
    timezone_fallback: bool
    local_time: time
    local_date: date
    weekday: str
    preferred_send_time: str | None
    send_frequency: str | None
    weekend_delivery: bool
    last_sent_date: date | None
    gates: list[GateResult] = field(default_factory=list)

    @property
    def is_due(self) -> bool:
        return self.verdict == Verdict.DUE

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "email": self.email,
            "verdict": self.verdict.value,
            "reason": self.reason.value if self.reason else None,
            "timezone": self.timezone,
            "timezone_fallback": self.timezone_fallback,
            "local_time": self.local_time.isoformat(),
            "local_date": self.local_date.isoformat(),
            "weekday": self.weekday,
            "preferred_send_time": self.preferred_send_time,
            "send_frequency": self.send_frequency,
            "weekend_delivery": self.weekend_delivery,
            "last_sent_date": self.last_sent_date.isoformat() if self.last_sent_date else None,
            "gates": [
                {"name": g.name, "passed": g.passed, "detail": g.detail} for g in self.gates
            ],
        }


def _resolve_zone(schedule: UserSchedule) -> tuple[ZoneInfo, bool]:
    try:
        return resolve_timezone(schedule.timezone), False
    except InvalidTimezone:
        logger.bind(user_id=schedule.user_id, timezone=schedule.timezone).warning(
            "timezone_fallback_to_utc"
        )
        return ZoneInfo(DEFAULT_TIMEZONE), True


def _time_of_day_gate(preferred: str | None, observed: time) -> GateResult:
    try:
        passed = has_time_of_day_passed(preferred, observed)  # type: ignore[arg-type]
    except InvalidTimeFormat:
        return GateResult(
            name="time_of_day",
            passed=False,
            detail=f"cannot parse preferred send time {preferred!r}",
            verdict=Verdict.INVALID,
            reason=Reason.INVALID_TIME_FORMAT,
        )

    clock = observed.strftime("%H:%M")
    if passed:
        return GateResult("time_of_day", True, f"local {clock} is at or past {preferred}")
    return GateResult(
        "time_of_day",
        False,
        f"local {clock} is before {preferred}",
        reason=Reason.TIME_NOT_REACHED,
    )


def _weekend_gate(weekend: bool, weekend_delivery: bool) -> GateResult:
    if not weekend:
        return GateResult("weekend", True, "weekday")
    if weekend_delivery:
        return GateResult("weekend", True, "weekend, delivery enabled")
    return GateResult(
        "weekend", False, "weekend, delivery disabled", reason=Reason.WEEKEND_SKIPPED
    )


def _frequency_gate(frequency: str | None, last: date | None, today: date) -> GateResult:
    freq = (frequency or SendFrequency.DAILY).strip().lower()

    if freq not in (SendFrequency.DAILY, SendFrequency.WEEKLY):
        return GateResult(
            "frequency",
            False,
            f"unknown frequency {frequency!r}",
            verdict=Verdict.INVALID,
            reason=Reason.UNKNOWN_FREQUENCY,
        )

    if last is None:
        return GateResult("frequency", True, "never sent")

    if freq == SendFrequency.DAILY:
        if last < today:
            return GateResult("frequency", True, f"last sent {last.isoformat()}")
        return GateResult(
            "frequency",
            False,
            f"already sent on {last.isoformat()}",
            reason=Reason.ALREADY_SENT_TODAY,
        )

    elapsed = (today - last).days
    if elapsed >= WEEKLY_INTERVAL_DAYS:
        return GateResult("frequency", True, f"{elapsed} days since last send")
    return GateResult(
        "frequency",
        False,
        f"{elapsed} days since last send, need {WEEKLY_INTERVAL_DAYS}",
        reason=Reason.WEEKLY_INTERVAL_NOT_ELAPSED,
    )


def evaluate(schedule: UserSchedule, now: datetime | None = None) -> Evaluation:
    """Evaluate whether `schedule` is due at `now`.

    An unknown timezone falls back to UTC and is flagged rather than
    failing. A malformed send time or unknown frequency yields an INVALID
    verdict so the caller can report it without sending.

    Args:
        schedule: The user's delivery preferences and last send marker
        now: Instant to evaluate (defaults to the current time)

    Returns:
        Evaluation with the verdict, first failing reason and gate trace
    """
    zone, fell_back = _resolve_zone(schedule)
    instant = now or datetime.now(UTC)
    observed = local_time_now(zone, instant)
    today = local_date_now(zone, instant)

    last = normalize_date(schedule.last_sent_date)
    if last is None and schedule.last_sent_date and schedule.last_sent_date.strip():
        logger.bind(user_id=schedule.user_id, last_sent_date=schedule.last_sent_date).warning(
            "unparseable_last_sent_date"
        )

    gates = [
        _time_of_day_gate(schedule.preferred_send_time, observed),
        _weekend_gate(is_weekend(zone, instant), schedule.weekend_delivery),
        _frequency_gate(schedule.send_frequency, last, today),
    ]

    failed = next((g for g in gates if not g.passed), None)

    return Evaluation(
        user_id=schedule.user_id,
        email=schedule.email,
        verdict=failed.verdict if failed else Verdict.DUE,
        reason=failed.reason if failed else None,
        timezone=zone.key,
        timezone_fallback=fell_back,
        local_time=observed,
        local_date=today,
        weekday=today.strftime("%A"),
        preferred_send_time=schedule.preferred_send_time,
        send_frequency=schedule.send_frequency,
        weekend_delivery=schedule.weekend_delivery,
        last_sent_date=last,
        gates=gates,
    )
