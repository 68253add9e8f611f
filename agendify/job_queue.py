"""
Durable job queue backed by the scheduled_jobs table.

Handlers are registered by name with define(); jobs are persisted with schedule(), now()
or every() and survive restarts. A poll loop claims due jobs (status -> running), runs
them concurrently on the event loop and records completed/failed. Failures are logged
and kept on the row; they are never retried automatically.

The plain scheduling methods (schedule, now, every, jobs) block on the database; code
running on the event loop uses their async variants (aschedule, anow, aevery, ajobs).

Execution is at-least-once: a job left "running" by a crash (or whose lock outlives
lock_lifetime) runs again, so handlers must be idempotent.
"""
import asyncio
import functools
import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable
from zoneinfo import ZoneInfo

from apscheduler.triggers.cron import CronTrigger
from sqlalchemy import or_
from sqlalchemy.orm import sessionmaker

from agendify.config import JOB_LOCK_LIFETIME, JOB_POLL_INTERVAL, TIMEZONE
from agendify.errors import JobHandlerError
from agendify.models import (
    KIND_CRON,
    KIND_INTERVAL,
    KIND_ONCE,
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_RUNNING,
    STATUS_SCHEDULED,
    ScheduledJob,
    utc_now,
)

logger = logging.getLogger(__name__)

Handler = Callable[[dict[str, Any]], Awaitable[Any]]


@dataclass
class JobDefinition:
    name: str
    handler: Handler
    timeout: float | None = None


@dataclass
class ClaimedJob:
    id: int
    name: str
    data: dict[str, Any]


def to_utc_naive(dt: datetime) -> datetime:
    """Aware datetimes are converted to UTC; naive ones are taken as UTC already."""
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(timezone.utc).replace(tzinfo=None)


class JobQueue:
    def __init__(
        self,
        session_factory: sessionmaker,
        *,
        poll_interval: float = JOB_POLL_INTERVAL,
        lock_lifetime: float = JOB_LOCK_LIFETIME,
        tz: str = TIMEZONE,
    ) -> None:
        self._session_factory = session_factory
        self._poll_interval = poll_interval
        self._lock_lifetime = lock_lifetime
        self._tz = ZoneInfo(tz)
        self._definitions: dict[str, JobDefinition] = {}
        self._poll_task: asyncio.Task | None = None
        self._running: set[asyncio.Task] = set()
        self._db_lock: asyncio.Lock | None = None
        self._db_lock_loop: asyncio.AbstractEventLoop | None = None

    # --- registration and scheduling -------------------------------------------------

    def define(self, name: str, handler: Handler, *, timeout: float | None = None) -> None:
        """Register the handler for jobs called `name`. Re-defining replaces the handler."""
        self._definitions[name] = JobDefinition(name=name, handler=handler, timeout=timeout)
        logger.debug("Job handler defined: %s", name)

    @property
    def definitions(self) -> list[str]:
        return sorted(self._definitions)

    def schedule(self, name: str, when: datetime | timedelta, data: dict[str, Any] | None = None) -> int:
        """Persist a one-time job due at `when` (datetime, or timedelta from now). Returns the job id."""
        run_at = utc_now() + when if isinstance(when, timedelta) else to_utc_naive(when)
        with self._session_factory() as db:
            job = ScheduledJob(
                name=name,
                schedule_kind=KIND_ONCE,
                data=json.dumps(data or {}),
                status=STATUS_SCHEDULED,
                next_run_at=run_at,
                fail_count=0,
                run_count=0,
            )
            db.add(job)
            db.commit()
            logger.info("Scheduled job %s (id=%s) at %s", name, job.id, run_at.isoformat())
            return job.id

    def now(self, name: str, data: dict[str, Any] | None = None) -> int:
        return self.schedule(name, timedelta(0), data)

    def every(self, name: str, interval: float | timedelta | str, data: dict[str, Any] | None = None) -> int:
        """
        Persist the recurring job `name`: seconds, timedelta, or a 5-field cron expression
        (evaluated in the queue timezone). One recurring job per name; calling again updates
        it, keeping next_run_at when the schedule itself is unchanged.
        """
        kind, seconds, cron = self._parse_interval(interval)
        now = utc_now()
        with self._session_factory() as db:
            job = (
                db.query(ScheduledJob)
                .filter(ScheduledJob.name == name, ScheduledJob.schedule_kind.in_((KIND_INTERVAL, KIND_CRON)))
                .first()
            )
            if job is None:
                job = ScheduledJob(name=name, status=STATUS_SCHEDULED, fail_count=0, run_count=0)
                db.add(job)
                changed = True
            else:
                changed = (job.schedule_kind, job.interval_seconds, job.cron) != (kind, seconds, cron)
            job.schedule_kind = kind
            job.interval_seconds = seconds
            job.cron = cron
            job.data = json.dumps(data or {})
            if changed or job.next_run_at is None:
                job.next_run_at = now if kind == KIND_INTERVAL else self._next_cron(cron, now)
            db.commit()
            logger.info("Recurring job %s (id=%s) every %s", name, job.id, cron or f"{seconds}s")
            return job.id

    def jobs(self, *, name: str | None = None, status: str | None = None, limit: int = 100) -> list[dict[str, Any]]:
        """Persisted jobs, most recent first."""
        with self._session_factory() as db:
            q = db.query(ScheduledJob).order_by(ScheduledJob.created_at.desc(), ScheduledJob.id.desc())
            if name:
                q = q.filter(ScheduledJob.name == name)
            if status:
                q = q.filter(ScheduledJob.status == status)
            return [_job_to_dict(j) for j in q.limit(min(limit, 500)).all()]

    # Event-loop callers (job handlers, async routes) use these: same as above, run in a
    # worker thread under the queue's database lock.

    async def aschedule(self, name: str, when: datetime | timedelta, data: dict[str, Any] | None = None) -> int:
        return await self._db(self.schedule, name, when, data)

    async def anow(self, name: str, data: dict[str, Any] | None = None) -> int:
        return await self._db(self.now, name, data)

    async def aevery(self, name: str, interval: float | timedelta | str, data: dict[str, Any] | None = None) -> int:
        return await self._db(self.every, name, interval, data)

    async def ajobs(self, *, name: str | None = None, status: str | None = None, limit: int = 100) -> list[dict[str, Any]]:
        return await self._db(functools.partial(self.jobs, name=name, status=status, limit=limit))

    def _parse_interval(self, interval: float | timedelta | str) -> tuple[str, float | None, str | None]:
        if isinstance(interval, str):
            expr = " ".join(interval.split())
            CronTrigger.from_crontab(expr, timezone=self._tz)  # ValueError on bad expression
            return KIND_CRON, None, expr
        seconds = interval.total_seconds() if isinstance(interval, timedelta) else float(interval)
        if seconds <= 0:
            raise ValueError("interval must be positive")
        return KIND_INTERVAL, seconds, None

    def _next_cron(self, expr: str, after: datetime) -> datetime:
        """First cron fire time strictly after `after` (naive UTC in, naive UTC out)."""
        trigger = CronTrigger.from_crontab(expr, timezone=self._tz)
        start = after.replace(tzinfo=timezone.utc) + timedelta(microseconds=1)
        return to_utc_naive(trigger.get_next_fire_time(None, start))

    def _following_run(self, job: ScheduledJob, now: datetime) -> datetime | None:
        if job.schedule_kind == KIND_INTERVAL:
            return (job.last_run_at or now) + timedelta(seconds=job.interval_seconds)
        if job.schedule_kind == KIND_CRON:
            return self._next_cron(job.cron, now)
        return None

    # --- database steps (run in a worker thread) --------------------------------------

    def _claim_due(self, now: datetime) -> list[ClaimedJob]:
        names = list(self._definitions)
        if not names:
            return []
        stale_before = now - timedelta(seconds=self._lock_lifetime)
        with self._session_factory() as db:
            rows = (
                db.query(ScheduledJob)
                .filter(
                    ScheduledJob.name.in_(names),
                    ScheduledJob.next_run_at.is_not(None),
                    ScheduledJob.next_run_at <= now,
                    or_(
                        ScheduledJob.status != STATUS_RUNNING,
                        ScheduledJob.locked_at.is_(None),
                        ScheduledJob.locked_at < stale_before,
                    ),
                )
                .order_by(ScheduledJob.next_run_at)
                .all()
            )
            claimed = []
            for row in rows:
                if row.status == STATUS_RUNNING:
                    logger.warning("Job %s (id=%s) lock expired; running it again", row.name, row.id)
                row.status = STATUS_RUNNING
                row.locked_at = now
                row.last_run_at = now
                row.run_count = (row.run_count or 0) + 1
                claimed.append(ClaimedJob(id=row.id, name=row.name, data=json.loads(row.data or "{}")))
            db.commit()
            return claimed

    def _finish(self, job_id: int, error: str | None) -> None:
        now = utc_now()
        with self._session_factory() as db:
            job = db.get(ScheduledJob, job_id)
            if job is None:
                return
            job.locked_at = None
            job.last_finished_at = now
            if error is None:
                job.status = STATUS_COMPLETED
                job.last_succeeded_at = now
            else:
                job.status = STATUS_FAILED
                job.failed_at = now
                job.fail_reason = error
                job.fail_count = (job.fail_count or 0) + 1
            job.next_run_at = self._following_run(job, now)
            db.commit()

    def _release_abandoned(self) -> int:
        """Jobs still marked running belong to a previous process; make them claimable."""
        with self._session_factory() as db:
            count = (
                db.query(ScheduledJob)
                .filter(ScheduledJob.status == STATUS_RUNNING)
                .update({ScheduledJob.status: STATUS_SCHEDULED, ScheduledJob.locked_at: None})
            )
            db.commit()
            return count

    async def _db(self, fn, *args):
        loop = asyncio.get_running_loop()
        if self._db_lock is None or self._db_lock_loop is not loop:
            self._db_lock = asyncio.Lock()
            self._db_lock_loop = loop
        async with self._db_lock:
            return await asyncio.to_thread(fn, *args)

    # --- execution --------------------------------------------------------------------

    async def _execute(self, job: ClaimedJob) -> None:
        definition = self._definitions.get(job.name)
        error = None
        try:
            if definition is None:
                raise JobHandlerError(f"No handler defined for {job.name!r}")
            if definition.timeout:
                try:
                    await asyncio.wait_for(definition.handler(job.data), definition.timeout)
                except asyncio.TimeoutError as e:
                    raise JobHandlerError(f"Timed out after {definition.timeout}s") from e
            else:
                await definition.handler(job.data)
        except Exception as e:
            error = f"{type(e).__name__}: {e}"
            logger.exception("Job %s (id=%s) failed", job.name, job.id)
        else:
            logger.info("Job %s (id=%s) completed", job.name, job.id)
        await self._db(self._finish, job.id, error)

    async def run_due(self, now: datetime | None = None) -> int:
        """One poll pass: claim every due job, run them concurrently, wait for all. Returns the count."""
        claimed = await self._db(self._claim_due, to_utc_naive(now) if now else utc_now())
        if claimed:
            await asyncio.gather(*(self._execute(job) for job in claimed))
        return len(claimed)

    async def _poll_loop(self) -> None:
        while True:
            try:
                claimed = await self._db(self._claim_due, utc_now())
            except Exception:
                logger.exception("Job queue poll failed")
                claimed = []
            for job in claimed:
                task = asyncio.create_task(self._execute(job))
                self._running.add(task)
                task.add_done_callback(self._running.discard)
            await asyncio.sleep(self._poll_interval)

    async def start(self) -> None:
        """Start polling. Call once, after all define() calls."""
        if self._poll_task is not None:
            raise RuntimeError("JobQueue already started")
        released = await self._db(self._release_abandoned)
        if released:
            logger.warning("Released %d job(s) left running by a previous process", released)
        self._poll_task = asyncio.create_task(self._poll_loop())
        logger.info("Job queue started; handlers=%s poll every %ss", self.definitions, self._poll_interval)

    async def stop(self) -> None:
        """Stop polling and wait for handlers already running."""
        if self._poll_task is None:
            return
        self._poll_task.cancel()
        try:
            await self._poll_task
        except asyncio.CancelledError:
            pass
        self._poll_task = None
        if self._running:
            await asyncio.gather(*self._running, return_exceptions=True)
        logger.info("Job queue stopped")

    @property
    def started(self) -> bool:
        return self._poll_task is not None


def _job_to_dict(job: ScheduledJob) -> dict[str, Any]:
    def iso(dt: datetime | None) -> str | None:
        return dt.isoformat() if dt else None

    return {
        "id": job.id,
        "name": job.name,
        "schedule_kind": job.schedule_kind,
        "interval_seconds": job.interval_seconds,
        "cron": job.cron,
        "data": json.loads(job.data or "{}"),
        "status": job.status,
        "next_run_at": iso(job.next_run_at),
        "last_run_at": iso(job.last_run_at),
        "last_finished_at": iso(job.last_finished_at),
        "last_succeeded_at": iso(job.last_succeeded_at),
        "failed_at": iso(job.failed_at),
        "fail_reason": job.fail_reason,
        "fail_count": job.fail_count,
        "run_count": job.run_count,
        "created_at": iso(job.created_at),
    }
