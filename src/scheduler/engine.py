"""SchedulerEngine — APScheduler lifecycle and job management."""

from __future__ import annotations

import contextlib
import logging
import zoneinfo
from datetime import datetime
from typing import TYPE_CHECKING

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger

from src.config import settings
from src.notifications.notifier import DeliveryError
from src.scheduler.errors import DuplicateIdError, InvalidScheduleError, PersistenceError
from src.scheduler.models import ONE_TIME, RECURRING, ScheduledJob

if TYPE_CHECKING:
    from apscheduler.triggers.base import BaseTrigger

    from src.notifications.notifier import Notifier
    from src.scheduler.store import JobStore

logger = logging.getLogger(__name__)

_CRON_FIELDS = ("second", "minute", "hour", "day", "month", "day_of_week")

# Crontab weekday numbering: 0 and 7 are Sunday.
_CRON_WEEKDAYS = ("sun", "mon", "tue", "wed", "thu", "fri", "sat")


def _weekday_number(token: str) -> int:
    name = token.lower()
    if name in _CRON_WEEKDAYS:
        return _CRON_WEEKDAYS.index(name)
    value = int(token)
    if not 0 <= value <= 7:
        msg = f"day of week {value} is out of range (0-7)"
        raise ValueError(msg)
    return value


def _convert_day_of_week(field: str) -> str:
    """Translate a crontab day-of-week field into APScheduler weekday names.

    APScheduler counts weekdays from Monday=0, so numbers are expanded to
    explicit names (``1-5`` becomes ``mon,tue,wed,thu,fri``).
    """
    if field in ("*", "?"):
        return "*"

    days: list[str] = []
    for part in field.split(","):
        span, _, step_text = part.partition("/")
        step = int(step_text) if step_text else 1
        if step < 1:
            msg = f"invalid step in day of week: {part}"
            raise ValueError(msg)
        if span == "*":
            first, last = 0, 6
        elif "-" in span:
            start, _, end = span.partition("-")
            first, last = _weekday_number(start), _weekday_number(end)
        else:
            first = _weekday_number(span)
            last = 6 if step_text else first
        if first > last:
            msg = f"invalid day of week range: {part}"
            raise ValueError(msg)
        for value in range(first, last + 1, step):
            name = _CRON_WEEKDAYS[value % 7]
            if name not in days:
                days.append(name)
    return ",".join(days)


def build_cron_trigger(expression: str, timezone: str) -> CronTrigger:
    """Parse a 5-field crontab (or 6 fields with leading seconds) into a CronTrigger.

    Day-of-week values use crontab numbering (0 or 7 is Sunday).
    Raises InvalidScheduleError if the expression does not parse.
    """
    if not expression or not expression.strip():
        msg = "Cron expression is required"
        raise InvalidScheduleError(msg)

    fields = expression.split()
    if len(fields) == 5:
        fields = ["0", *fields]
    if len(fields) != 6:
        msg = f"Invalid cron expression '{expression}': expected 5 or 6 fields, got {len(fields)}"
        raise InvalidScheduleError(msg)

    try:
        fields[5] = _convert_day_of_week(fields[5])
        return CronTrigger(timezone=timezone, **dict(zip(_CRON_FIELDS, fields, strict=True)))
    except (TypeError, ValueError) as exc:
        msg = f"Invalid cron expression '{expression}': {exc}"
        raise InvalidScheduleError(msg) from exc


class SchedulerEngine:
    """Owns the live job registry and maps ScheduledJobs to APScheduler jobs.

    The registry is only touched through this class's methods. Every
    mutation is written to the job store before the method returns; a store
    failure is logged as a warning and the in-memory change stands.

    Each job runs at most one firing at a time. If a send is still in flight
    when the same recurring job comes due again, that occurrence is skipped
    with a warning from APScheduler; other jobs are unaffected.

    Args:
        store: JobStore for persistence.
        notifier: Delivery backend invoked when a job fires.
        timezone: IANA timezone string (default from settings).
    """

    def __init__(
        self,
        store: JobStore,
        notifier: Notifier,
        timezone: str | None = None,
    ) -> None:
        self._store = store
        self._notifier = notifier
        self._timezone = timezone or settings.scheduler_timezone
        self._tz = zoneinfo.ZoneInfo(self._timezone)
        self._scheduler = AsyncIOScheduler(timezone=self._timezone)
        self._jobs: dict[str, ScheduledJob] = {}
        self._initialized = False

    @property
    def running(self) -> bool:
        return self._scheduler.running

    @property
    def timezone(self) -> zoneinfo.ZoneInfo:
        return self._tz

    # -- Lifecycle -------------------------------------------------------------

    async def initialize(self) -> None:
        """Restore persisted jobs and start the scheduler.

        Past-due one-time jobs are dropped without firing. Recurring jobs are
        always re-armed. Calling this again after it has run is a no-op.
        """
        if self._initialized:
            return

        try:
            jobs = await self._store.load_all()
        except PersistenceError:
            logger.exception("Failed to load persisted jobs; starting with none")
            jobs = []

        now = datetime.now(self._tz)
        stale: list[str] = []
        for job in jobs:
            if job.id in self._jobs:
                continue
            if job.is_one_time and job.fire_at <= now:
                logger.info("Dropping past-due one-time job: %s (was due %s)", job.id, job.fire_at)
                stale.append(job.id)
                continue
            try:
                self._arm(job)
            except InvalidScheduleError:
                logger.warning("Dropping persisted job with invalid schedule: %s", job.id)
                stale.append(job.id)
                continue
            logger.info("Restored %s job: %s", job.kind, job.id)

        for job_id in stale:
            await self._delete_from_store(job_id)

        self._scheduler.start()
        self._initialized = True
        logger.info(
            "Scheduler started with %d live job(s) (tz=%s)",
            len(self._jobs),
            self._timezone,
        )

    async def shutdown(self) -> None:
        """Stop the scheduler. Jobs stay in the store for the next start."""
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Scheduler stopped")
        self._initialized = False

    # -- Job management --------------------------------------------------------

    async def schedule_one_time(
        self,
        job_id: str,
        fire_at: datetime,
        recipient: str,
        message: str | None = None,
    ) -> ScheduledJob:
        """Schedule a single send at *fire_at*, which must be in the future.

        Naive datetimes are interpreted in the engine's timezone.
        """
        if fire_at.tzinfo is None:
            fire_at = fire_at.replace(tzinfo=self._tz)
        if fire_at <= datetime.now(self._tz):
            msg = "Scheduled time must be in the future"
            raise InvalidScheduleError(msg)

        job = self._new_job(job_id, ONE_TIME, recipient, message, fire_at=fire_at)
        self._arm(job)
        await self._save_to_store(job)
        logger.info(
            "One-time message scheduled: %s for %s",
            job_id,
            fire_at.astimezone(self._tz).strftime("%Y-%m-%d %H:%M:%S %Z"),
        )
        return job

    async def schedule_recurring(
        self,
        job_id: str,
        cron_expression: str,
        recipient: str,
        message: str | None = None,
    ) -> ScheduledJob:
        """Schedule a send on every occurrence of *cron_expression*."""
        build_cron_trigger(cron_expression, self._timezone)

        job = self._new_job(job_id, RECURRING, recipient, message, cron_expression=cron_expression)
        self._arm(job)
        await self._save_to_store(job)
        logger.info("Recurring message scheduled: %s with cron '%s'", job_id, cron_expression)
        return job

    async def cancel_job(self, job_id: str) -> bool:
        """Stop a job's trigger and remove it. Returns False if no such job is live."""
        job = self._jobs.pop(job_id, None)
        if job is None:
            logger.debug("Cancel requested for unknown job: %s", job_id)
            return False

        with contextlib.suppress(JobLookupError):
            self._scheduler.remove_job(job_id)
        await self._delete_from_store(job_id)
        logger.info("Job cancelled: %s", job_id)
        return True

    def get_all_jobs(self) -> tuple[ScheduledJob, ...]:
        """Snapshot of live jobs in creation order."""
        return tuple(self._jobs.values())

    def get_job_info(self, job_id: str) -> ScheduledJob | None:
        return self._jobs.get(job_id)

    def next_run_time(self, job_id: str) -> datetime | None:
        """Next planned fire time, or None if the job is not armed."""
        if job_id not in self._jobs:
            return None
        aps_job = self._scheduler.get_job(job_id)
        # Jobs added before start() have no next_run_time yet.
        return getattr(aps_job, "next_run_time", None)

    # -- Internal --------------------------------------------------------------

    def _new_job(
        self,
        job_id: str,
        kind: str,
        recipient: str,
        message: str | None,
        **timing,
    ) -> ScheduledJob:
        if not recipient or not recipient.strip():
            msg = "Recipient is required"
            raise InvalidScheduleError(msg)
        if job_id in self._jobs:
            raise DuplicateIdError(job_id)
        return ScheduledJob(
            id=job_id,
            kind=kind,
            recipient=recipient,
            message=message or None,
            **timing,
        )

    def _arm(self, job: ScheduledJob) -> None:
        """Register the APScheduler job and record *job* as live."""
        self._scheduler.add_job(
            self._fire,
            trigger=self._build_trigger(job),
            id=job.id,
            name=f"{job.kind}:{job.recipient}",
            args=[job.id],
            misfire_grace_time=None,
            coalesce=True,
            max_instances=1,
            replace_existing=True,
        )
        self._jobs[job.id] = job

    def _build_trigger(self, job: ScheduledJob) -> BaseTrigger:
        if job.is_one_time:
            return DateTrigger(run_date=job.fire_at, timezone=self._timezone)
        return build_cron_trigger(job.cron_expression, self._timezone)

    async def _fire(self, job_id: str) -> None:
        """Callback invoked by APScheduler. Never raises."""
        job = self._jobs.get(job_id)
        if job is None:
            logger.debug("Job %s fired after cancellation; skipping", job_id)
            return

        logger.info("Executing %s job: %s (to=%s)", job.kind, job_id, job.recipient)
        try:
            if job.message:
                result = await self._notifier.send_text(job.recipient, job.message)
            else:
                result = await self._notifier.send_template(job.recipient)
            logger.info("Scheduled message sent: %s (message_id=%s)", job_id, result.message_id)
        except DeliveryError as exc:
            logger.error("Failed to send scheduled message %s: %s", job_id, exc)
        except Exception:
            logger.exception("Unexpected error sending scheduled message %s", job_id)

        # A cancel during the send already removed it.
        if job.is_one_time and self._jobs.get(job_id) is job:
            del self._jobs[job_id]
            await self._delete_from_store(job_id)

    async def _save_to_store(self, job: ScheduledJob) -> None:
        try:
            await self._store.upsert(job)
        except PersistenceError as exc:
            logger.warning("Job %s is live but was not persisted: %s", job.id, exc)

    async def _delete_from_store(self, job_id: str) -> None:
        try:
            await self._store.delete(job_id)
        except PersistenceError as exc:
            logger.warning("Job %s was removed but is still in the store: %s", job_id, exc)
