"""
Pytest configuration and fixtures for Junto tests.

Provides:
- Async test database with SQLite
- Test client for API testing
- Factory fixtures for creating test data
- In-memory fakes for the scheduler's storage ports
"""

import asyncio
import uuid
from collections.abc import AsyncGenerator
from dataclasses import replace
from datetime import date, datetime, timedelta

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import StaticPool
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from junto.config import SchedulerConfig, Settings, get_settings
from junto.core.datetime_utils import normalize_date, utc_now
from junto.core.exceptions import StorageUnavailable
from junto.dependencies import get_audit_log, get_dispatcher
from junto.main import app
from junto.models import Base
from junto.models.source import SourcePost, UserSource
from junto.models.user import User
from junto.scheduling.evaluator import UserSchedule
from junto.schemas.llm import DigestSection, DigestSynthesis
from junto.services.digest_dispatch import DigestDispatcher, create_dispatcher
from junto.services.digest_pipeline import PreparedDigest, SendReceipt
from junto.services.stores import SQLAuditLog

# Test database URL (in-memory SQLite)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

CRON_SECRET = "test-cron-secret"


# Override settings for testing
class TestSettings(Settings):
    database_url: str = TEST_DATABASE_URL
    debug: bool = True
    openai_api_key: str = "test-key"
    resend_api_key: str = "test-key"
    base_url: str = "http://localhost:8000"
    cron_secret: str = CRON_SECRET
    scheduler_enabled: bool = False


def make_scheduler_config(**overrides) -> SchedulerConfig:
    """Scheduler config with no retry delays."""
    data = {"marker_retry_backoff_seconds": 0, **overrides}
    return SchedulerConfig(data)


@pytest_asyncio.fixture
async def db_engine():
    """Create async test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test engine, as the SQL stores expect."""
    return async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def fake_sender():
    """DigestSender that records calls and returns a receipt."""
    return RecordingSender()


@pytest_asyncio.fixture
async def client(session_factory, fake_sender) -> AsyncGenerator[AsyncClient, None]:
    """Create async test client with database and dispatcher overrides."""

    def override_get_settings():
        return TestSettings()

    def override_get_dispatcher():
        return create_dispatcher(
            session_factory,
            config=make_scheduler_config(max_concurrency=1),
            pipeline=fake_sender,
        )

    def override_get_audit_log():
        return SQLAuditLog(session_factory)

    app.dependency_overrides[get_settings] = override_get_settings
    app.dependency_overrides[get_dispatcher] = override_get_dispatcher
    app.dependency_overrides[get_audit_log] = override_get_audit_log

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {CRON_SECRET}"}


# ============================================================================
# Factory Fixtures
# ============================================================================


@pytest_asyncio.fixture
async def user_factory(db_session: AsyncSession):
    """Factory for creating committed test users."""

    async def _create_user(
        email: str | None = None,
        timezone: str | None = "America/New_York",
        preferred_send_time: str | None = "07:00:00",
        send_frequency: str | None = "daily",
        weekend_delivery: bool = False,
        last_sent_date: str | None = None,
        is_subscribed: bool = True,
        keywords: list[str] | None = None,
    ) -> User:
        if email is None:
            email = f"test-{uuid.uuid4().hex[:8]}@example.com"

        user = User(
            email=email,
            timezone=timezone,
            preferred_send_time=preferred_send_time,
            send_frequency=send_frequency,
            weekend_delivery=weekend_delivery,
            last_sent_date=last_sent_date,
            is_subscribed=is_subscribed,
            keywords=keywords or [],
        )
        db_session.add(user)
        await db_session.commit()
        return user

    return _create_user


@pytest_asyncio.fixture
async def post_factory(db_session: AsyncSession):
    """Factory for creating source posts, optionally followed by a user."""

    async def _create_post(
        handle: str = "simonw",
        content: str = "Shipped a new release with streaming support",
        hours_ago: int = 2,
        likes: int = 10,
        reposts: int = 1,
        follower: User | None = None,
    ) -> SourcePost:
        post = SourcePost(
            handle=handle,
            external_id=uuid.uuid4().hex,
            content=content,
            url=f"https://x.com/{handle}/status/{uuid.uuid4().int % 10**12}",
            posted_at=utc_now() - timedelta(hours=hours_ago),
            likes=likes,
            reposts=reposts,
        )
        db_session.add(post)
        if follower is not None:
            db_session.add(UserSource(user_id=follower.id, handle=handle))
        await db_session.commit()
        return post

    return _create_post


@pytest.fixture
def load_user(session_factory):
    """Read a user back in a fresh session."""

    async def _load(user_id: uuid.UUID) -> User | None:
        async with session_factory() as session:
            return await session.get(User, user_id)

    return _load


# ============================================================================
# In-Memory Port Fakes (no DB)
# ============================================================================


class RecordingSender:
    """DigestSender fake: succeeds unless told otherwise, and records calls."""

    def __init__(
        self,
        error: Exception | None = None,
        delay: float = 0,
        deliver_error: Exception | None = None,
        deliver_delay: float = 0,
    ) -> None:
        self.error = error
        self.delay = delay
        self.deliver_error = deliver_error
        self.deliver_delay = deliver_delay
        self.calls: list[UserSchedule] = []
        self.local_dates: list[date] = []
        self.delivered: list[PreparedDigest] = []

    async def generate(self, user: UserSchedule, local_date: date) -> PreparedDigest:
        self.calls.append(user)
        self.local_dates.append(local_date)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return PreparedDigest(
            user_id=user.user_id,
            email=user.email,
            name=None,
            digest=DigestSynthesis(
                subject="Your digest",
                intro="Here is what happened.",
                sections=[
                    DigestSection(title="News", summary="Things shipped.", highlights=["A release"])
                ],
            ),
            digest_date=local_date.isoformat(),
            post_count=1,
            newsletter_id=f"newsletter-{len(self.calls)}",
        )

    async def deliver(self, prepared: PreparedDigest) -> SendReceipt:
        if self.deliver_delay:
            await asyncio.sleep(self.deliver_delay)
        if self.deliver_error is not None:
            raise self.deliver_error
        self.delivered.append(prepared)
        return SendReceipt(
            success=True,
            send_id=f"email-{len(self.calls)}",
            newsletter_id=prepared.newsletter_id,
        )


class InMemoryDirectory:
    def __init__(self, users: list[UserSchedule] | None = None, error: Exception | None = None):
        self.users = {u.user_id: u for u in users or []}
        self.error = error

    async def list_candidates(self) -> list[UserSchedule]:
        if self.error is not None:
            raise self.error
        return list(self.users.values())

    async def get_by_email(self, email: str) -> UserSchedule | None:
        return next((u for u in self.users.values() if u.email == email), None)


class InMemoryMarkers:
    """MarkerStore fake that writes back into the directory, like the users table."""

    def __init__(self, directory: InMemoryDirectory, failures: int = 0) -> None:
        self.directory = directory
        self.failures = failures
        self.attempts = 0

    async def mark_sent(self, user_id: str, sent_date: date) -> bool:
        self.attempts += 1
        if self.failures:
            self.failures -= 1
            raise StorageUnavailable("marker write failed")

        user = self.directory.users[user_id]
        current = normalize_date(user.last_sent_date)
        if current is not None and current > sent_date:
            return False
        self.directory.users[user_id] = replace(user, last_sent_date=sent_date.isoformat())
        return True


class InMemoryAudit:
    def __init__(self, fail_start: bool = False) -> None:
        self.fail_start = fail_start
        self.runs: dict[str, dict] = {}

    async def start_run(self, started_at: datetime) -> str:
        if self.fail_start:
            raise StorageUnavailable("audit unavailable")
        run_id = str(uuid.uuid4())
        self.runs[run_id] = {"status": "running", "started_at": started_at}
        return run_id

    async def finish_run(self, run_id: str, summary) -> None:
        self.runs[run_id] = {
            "status": summary.status,
            "sent_count": summary.sent_count,
            "error_count": summary.error_count,
            "results": [r.to_dict() for r in summary.results],
            "error": summary.error,
        }


@pytest.fixture
def make_schedule():
    """Factory for in-memory UserSchedule objects."""

    def _make(
        user_id: str | None = None,
        email: str | None = None,
        timezone: str | None = "America/New_York",
        preferred_send_time: str | None = "07:00:00",
        send_frequency: str | None = "daily",
        weekend_delivery: bool = False,
        last_sent_date: str | None = None,
    ) -> UserSchedule:
        user_id = user_id or str(uuid.uuid4())
        return UserSchedule(
            user_id=user_id,
            email=email or f"{user_id[:8]}@example.com",
            timezone=timezone,
            preferred_send_time=preferred_send_time,
            send_frequency=send_frequency,
            weekend_delivery=weekend_delivery,
            last_sent_date=last_sent_date,
        )

    return _make


@pytest.fixture
def make_dispatcher():
    """Build a dispatcher over in-memory ports."""

    def _make(
        users: list[UserSchedule],
        sender: RecordingSender | None = None,
        marker_failures: int = 0,
        **config,
    ) -> tuple[DigestDispatcher, InMemoryDirectory, InMemoryMarkers, InMemoryAudit]:
        directory = InMemoryDirectory(users)
        markers = InMemoryMarkers(directory, failures=marker_failures)
        audit = InMemoryAudit()
        dispatcher = DigestDispatcher(
            directory=directory,
            pipeline=sender or RecordingSender(),
            markers=markers,
            audit=audit,
            config=make_scheduler_config(**config),
        )
        return dispatcher, directory, markers, audit

    return _make


@pytest.fixture
def make_sender():
    """Factory for RecordingSender fakes."""
    return RecordingSender
