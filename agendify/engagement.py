"""
Engagement metrics trigger: runs the external update procedure at 13:30 and 20:00 in the
configured timezone. Not persisted; it is re-armed on every start, so a restart around a
fire time can miss or repeat one run.

Each fire runs the command as a subprocess bounded by a timeout and logs the outcome.
There are no retries; a failed run does not affect the next fire.
"""
import asyncio
import logging
from zoneinfo import ZoneInfo

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.combining import OrTrigger
from apscheduler.triggers.cron import CronTrigger

from agendify.config import ENGAGEMENT_UPDATE_COMMAND, ENGAGEMENT_UPDATE_TIMEOUT, TIMEZONE
from agendify.errors import TriggerError

logger = logging.getLogger(__name__)

ENGAGEMENT_JOB_ID = "engagement-update"

OUTCOME_SUCCESS = "success"
OUTCOME_FAILED = "failed"
OUTCOME_TIMEOUT = "timeout"


def build_engagement_trigger(tz: ZoneInfo) -> OrTrigger:
    """Fires daily at 13:30 and 20:00 local time in `tz`."""
    return OrTrigger(
        [
            CronTrigger(hour=13, minute=30, timezone=tz),
            CronTrigger(hour=20, minute=0, timezone=tz),
        ]
    )


class EngagementTrigger:
    def __init__(
        self,
        command: list[str] = ENGAGEMENT_UPDATE_COMMAND,
        *,
        tz: str = TIMEZONE,
        timeout: float = ENGAGEMENT_UPDATE_TIMEOUT,
    ) -> None:
        if not command:
            raise ValueError("engagement update command is empty")
        self._command = list(command)
        self._tz = ZoneInfo(tz)
        self._timeout = timeout
        self._scheduler: AsyncIOScheduler | None = None

    def start(self) -> None:
        """Arm the timer on the running event loop."""
        if self._scheduler is not None:
            raise RuntimeError("EngagementTrigger already started")
        self._scheduler = AsyncIOScheduler(timezone=self._tz)
        self._scheduler.add_job(
            self.run_update,
            build_engagement_trigger(self._tz),
            id=ENGAGEMENT_JOB_ID,
            coalesce=True,
            misfire_grace_time=300,
        )
        self._scheduler.start()
        logger.info("Engagement update armed; next run at %s", self.next_fire_time())

    def shutdown(self) -> None:
        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None

    def next_fire_time(self):
        if self._scheduler is None:
            return None
        job = self._scheduler.get_job(ENGAGEMENT_JOB_ID)
        return job.next_run_time if job else None

    async def _run_command(self) -> str:
        try:
            proc = await asyncio.create_subprocess_exec(
                *self._command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise TriggerError(f"could not start {self._command!r}: {e}") from e
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), self._timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            raise
        if proc.returncode != 0:
            detail = stderr.decode("utf-8", errors="replace").strip()
            raise TriggerError(f"exit code {proc.returncode}: {detail}")
        return stdout.decode("utf-8", errors="replace").strip()

    async def run_update(self) -> str:
        """One supervised run of the update procedure. Never raises; returns the outcome."""
        logger.info("Running engagement update script (13:30 or 20:00)")
        try:
            output = await self._run_command()
        except asyncio.TimeoutError:
            logger.error("Engagement update timed out after %ss and was killed", self._timeout)
            return OUTCOME_TIMEOUT
        except TriggerError as e:
            logger.error("Engagement update script error: %s", e)
            return OUTCOME_FAILED
        if output:
            logger.info("Engagement update output: %s", output)
        return OUTCOME_SUCCESS
