"""Scheduler exceptions."""


class SchedulerError(Exception):
    """Base class for scheduling engine errors."""


class InvalidScheduleError(SchedulerError):
    """A cron expression did not parse, or a one-time fire time is not in the future."""


class DuplicateIdError(SchedulerError):
    """A job with the supplied ID is already live."""

    def __init__(self, job_id: str) -> None:
        self.job_id = job_id
        super().__init__(f"Job already exists: {job_id}")


class PersistenceError(SchedulerError):
    """The job store could not be read or written."""
