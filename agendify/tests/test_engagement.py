"""Tests for the engagement metrics trigger."""
import asyncio
import logging
import sys
from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

from agendify.engagement import (
    OUTCOME_FAILED,
    OUTCOME_SUCCESS,
    OUTCOME_TIMEOUT,
    EngagementTrigger,
    build_engagement_trigger,
)

TZ = ZoneInfo("Asia/Jerusalem")


def _next(now: datetime) -> datetime:
    return build_engagement_trigger(TZ).get_next_fire_time(None, now)


def test_fires_at_1330_then_2000_local_time():
    assert _next(datetime(2026, 10, 19, 9, 0, tzinfo=TZ)) == datetime(2026, 10, 19, 13, 30, tzinfo=TZ)
    assert _next(datetime(2026, 10, 19, 13, 31, tzinfo=TZ)) == datetime(2026, 10, 19, 20, 0, tzinfo=TZ)
    assert _next(datetime(2026, 10, 19, 20, 1, tzinfo=TZ)) == datetime(2026, 10, 20, 13, 30, tzinfo=TZ)


def test_fire_times_are_local_not_utc():
    fire = _next(datetime(2026, 1, 5, 0, 0, tzinfo=TZ))
    assert fire.utcoffset().total_seconds() == 2 * 3600  # IST in winter
    assert (fire.hour, fire.minute) == (13, 30)


def test_run_update_success_logs_output(caplog):
    trigger = EngagementTrigger([sys.executable, "-c", "print('updated 3 posts')"], tz="Asia/Jerusalem", timeout=30)
    with caplog.at_level(logging.INFO, logger="agendify.engagement"):
        assert asyncio.run(trigger.run_update()) == OUTCOME_SUCCESS
    assert "updated 3 posts" in caplog.text


def test_run_update_nonzero_exit_is_logged_not_raised(caplog):
    trigger = EngagementTrigger(
        [sys.executable, "-c", "import sys; sys.stderr.write('db down'); sys.exit(3)"],
        tz="Asia/Jerusalem",
        timeout=30,
    )
    with caplog.at_level(logging.ERROR, logger="agendify.engagement"):
        assert asyncio.run(trigger.run_update()) == OUTCOME_FAILED
    assert "exit code 3" in caplog.text
    assert "db down" in caplog.text


def test_run_update_missing_executable():
    trigger = EngagementTrigger(["definitely-not-a-real-binary-xyz"], tz="Asia/Jerusalem", timeout=30)
    assert asyncio.run(trigger.run_update()) == OUTCOME_FAILED


def test_run_update_timeout_kills_process():
    trigger = EngagementTrigger([sys.executable, "-c", "import time; time.sleep(30)"], tz="Asia/Jerusalem", timeout=0.5)
    assert asyncio.run(trigger.run_update()) == OUTCOME_TIMEOUT


def test_failed_run_does_not_prevent_next():
    trigger = EngagementTrigger([sys.executable, "-c", "import sys; sys.exit(1)"], tz="Asia/Jerusalem", timeout=30)
    assert asyncio.run(trigger.run_update()) == OUTCOME_FAILED
    assert asyncio.run(trigger.run_update()) == OUTCOME_FAILED


def test_start_arms_next_fire_and_shutdown():
    trigger = EngagementTrigger(["true"], tz="Asia/Jerusalem")

    async def scenario():
        trigger.start()
        try:
            return trigger.next_fire_time()
        finally:
            trigger.shutdown()

    fire = asyncio.run(scenario())
    local = fire.astimezone(TZ)
    assert (local.hour, local.minute) in ((13, 30), (20, 0))
    assert trigger.next_fire_time() is None


def test_empty_command_rejected_at_construction():
    with pytest.raises(ValueError):
        EngagementTrigger([], tz="Asia/Jerusalem")
