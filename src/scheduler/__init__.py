"""Message scheduling: job model, job stores, and the SchedulerEngine."""

from src.scheduler.engine import SchedulerEngine
from src.scheduler.errors import (
    DuplicateIdError,
    InvalidScheduleError,
    PersistenceError,
    SchedulerError,
)
from src.scheduler.models import ScheduledJob, make_job_id
from src.scheduler.store import JobStore, JsonJobStore, SqliteJobStore, create_job_store

__all__ = [
    "DuplicateIdError",
    "InvalidScheduleError",
    "JobStore",
    "JsonJobStore",
    "PersistenceError",
    "ScheduledJob",
    "SchedulerEngine",
    "SchedulerError",
    "SqliteJobStore",
    "create_job_store",
    "make_job_id",
]
