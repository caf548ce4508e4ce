"""Storage ports used by the delivery scheduler, with SQLAlchemy implementations.

The scheduler only talks to these protocols. Each SQL implementation takes
an `async_sessionmaker` and opens a fresh session per call, so users
processed concurrently never share a session.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import TYPE_CHECKING, Protocol

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from junto.core.datetime_utils import normalize_date
from junto.core.exceptions import StorageUnavailable
from junto.core.logging import get_logger
from junto.models.scheduling_run import SchedulingRun
from junto.models.user import User
from junto.scheduling.evaluator import UserSchedule

if TYPE_CHECKING:
    from junto.services.digest_dispatch import RunSummary

logger = get_logger(__name__)


class UserDirectory(Protocol):
    """Read access to users with delivery preferences."""

    async def list_candidates(self) -> list[UserSchedule]:
        """Subscribed users with an email, timezone and preferred send time."""
        ...

    async def get_by_email(self, email: str) -> UserSchedule | None: ...


class MarkerStore(Protocol):
    """Durable per-user last-sent marker."""

    async def mark_sent(self, user_id: str, sent_date: date) -> bool:
        """Record a confirmed send. Returns False if a later date is already stored."""
        ...


class AuditLog(Protocol):
    """One row per scheduler run."""

    async def start_run(self, started_at: datetime) -> str: ...

    async def finish_run(self, run_id: str, summary: RunSummary) -> None: ...


def to_schedule(user: User) -> UserSchedule:
    """Project a user row onto the fields the evaluator reads."""
    return UserSchedule(
        user_id=str(user.id),
        email=user.email,
        timezone=user.timezone,
        preferred_send_time=user.preferred_send_time,
        send_frequency=user.send_frequency,
        weekend_delivery=bool(user.weekend_delivery),
        last_sent_date=user.last_sent_date,
    )


class _SQLStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self, operation: str) -> AsyncIterator[AsyncSession]:
        try:
            async with self._session_factory() as session:
                yield session
        except SQLAlchemyError as e:
            logger.bind(operation=operation, error=str(e)).error("storage_unavailable")
            raise StorageUnavailable(f"{operation} failed: {e}") from e


class SQLUserDirectory(_SQLStore):
    async def list_candidates(self) -> list[UserSchedule]:
        async with self._session("list_candidates") as session:
            result = await session.execute(
                select(User)
                .where(
                    User.is_subscribed == True,  # noqa: E712
                    User.timezone.is_not(None),
                    User.timezone != "",
                    User.preferred_send_time.is_not(None),
                    User.preferred_send_time != "",
                )
                .order_by(User.created_at, User.email)
            )
            return [to_schedule(user) for user in result.scalars().all()]

    async def get_by_email(self, email: str) -> UserSchedule | None:
        async with self._session("get_by_email") as session:
            result = await session.execute(
                select(User).where(func.lower(User.email) == email.strip().lower())
            )
            user = result.scalar_one_or_none()
            return to_schedule(user) if user else None


class SQLMarkerStore(_SQLStore):
    async def mark_sent(self, user_id: str, sent_date: date) -> bool:
        async with self._session("mark_sent") as session:
            result = await session.execute(
                select(User).where(User.id == uuid.UUID(user_id)).with_for_update()
            )
            user = result.scalar_one_or_none()
            if user is None:
                logger.bind(user_id=user_id).warning("mark_sent_user_missing")
                return False

            # Stored values may be legacy formats, so compare as dates
            current = normalize_date(user.last_sent_date)
            if current is not None and current > sent_date:
                logger.bind(
                    user_id=user_id,
                    current=current.isoformat(),
                    attempted=sent_date.isoformat(),
                ).warning("mark_sent_refused_older_date")
                return False

            user.last_sent_date = sent_date.isoformat()
            await session.commit()
            return True


class SQLAuditLog(_SQLStore):
    async def start_run(self, started_at: datetime) -> str:
        async with self._session("start_run") as session:
            run = SchedulingRun(started_at=started_at, status="running")
            session.add(run)
            await session.commit()
            return run.id

    async def finish_run(self, run_id: str, summary: RunSummary) -> None:
        async with self._session("finish_run") as session:
            run = await session.get(SchedulingRun, run_id)
            if run is None:
                logger.bind(run_id=run_id).warning("scheduling_run_missing")
                return
            run.status = summary.status
            run.finished_at = summary.finished_at
            run.candidates_checked = summary.candidates_checked
            run.matched_count = summary.matched_count
            run.sent_count = summary.sent_count
            run.error_count = summary.error_count
            run.per_user_results = [r.to_dict() for r in summary.results]
            run.error = summary.error
            await session.commit()

    async def list_runs(
        self,
        limit: int = 20,
        offset: int = 0,
        status: str | None = None,
    ) -> list[SchedulingRun]:
        """Most recent runs first, optionally only those with `status`."""
        query = select(SchedulingRun)
        if status is not None:
            query = query.where(SchedulingRun.status == status)
        async with self._session("list_runs") as session:
            result = await session.execute(
                query.order_by(SchedulingRun.started_at.desc()).limit(limit).offset(offset)
            )
            return list(result.scalars().all())
