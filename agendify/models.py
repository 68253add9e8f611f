"""
SQLAlchemy models: durable job queue rows (ScheduledJob).
All datetimes are stored as naive UTC.
"""
from datetime import datetime, timezone

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

STATUS_SCHEDULED = "scheduled"
STATUS_RUNNING = "running"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"

KIND_ONCE = "once"
KIND_INTERVAL = "interval"
KIND_CRON = "cron"


def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Base(DeclarativeBase):
    pass


class ScheduledJob(Base):
    __tablename__ = "scheduled_jobs"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    schedule_kind: Mapped[str] = mapped_column(String(16), nullable=False)  # once | interval | cron
    interval_seconds: Mapped[float | None] = mapped_column(nullable=True)
    cron: Mapped[str | None] = mapped_column(String(255), nullable=True)
    data: Mapped[str] = mapped_column(Text, nullable=False, default="{}")  # JSON object
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=STATUS_SCHEDULED, index=True)
    # None = nothing further to run
    next_run_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True, index=True)
    locked_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    last_run_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    last_finished_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    # Watermark of the last successful run
    last_succeeded_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    failed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    fail_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    fail_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    run_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utc_now)

    @property
    def is_recurring(self) -> bool:
        return self.schedule_kind in (KIND_INTERVAL, KIND_CRON)
