"""Tests for the optional in-process scheduler."""

from datetime import datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from junto.core import scheduler as scheduler_module
from junto.core.scheduler import (
    build_trigger,
    check_scheduled_job,
    get_job_schedules,
    start_scheduler,
)
from junto.services.digest_dispatch import RunSummary

pytestmark = pytest.mark.asyncio


class TestStartScheduler:
    """Tests for start_scheduler."""

    async def test_disabled_by_default(self):
        settings = MagicMock(scheduler_enabled=False)

        with patch("junto.core.scheduler.get_settings", return_value=settings):
            result = await start_scheduler()

        assert result is None
        assert scheduler_module.scheduler is None

    async def test_no_schedules_when_not_running(self):
        assert await get_job_schedules() == []


class TestBuildTrigger:
    """Tests for build_trigger."""

    def test_every_five_minutes(self):
        assert build_trigger(5).minute == "*/5"

    def test_interval_is_clamped(self):
        assert build_trigger(0).minute == "*/1"
        assert build_trigger(500).minute == "*/59"


class TestCheckScheduledJob:
    """Tests for check_scheduled_job."""

    async def test_runs_dispatcher(self):
        dispatcher = MagicMock()
        summary = RunSummary(started_at=datetime(2026, 1, 13, 12, 0))
        dispatcher.run = AsyncMock(return_value=summary)

        with patch(
            "junto.services.digest_dispatch.create_dispatcher", return_value=dispatcher
        ):
            await check_scheduled_job()

        dispatcher.run.assert_awaited_once_with()

    async def test_reraises_failures(self):
        dispatcher = MagicMock()
        dispatcher.run = AsyncMock(side_effect=RuntimeError("boom"))

        with (
            patch("junto.services.digest_dispatch.create_dispatcher", return_value=dispatcher),
            pytest.raises(RuntimeError),
        ):
            await check_scheduled_job()
