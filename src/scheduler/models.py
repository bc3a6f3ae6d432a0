"""ScheduledJob data model."""

from __future__ import annotations

import secrets
import string
import time
from dataclasses import dataclass, field
from datetime import UTC, datetime, tzinfo
from typing import Any

ONE_TIME = "one-time"
RECURRING = "recurring"
JOB_KINDS = (ONE_TIME, RECURRING)

_ID_ALPHABET = string.digits + string.ascii_lowercase


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _parse_timestamp(value: str) -> datetime:
    """Parse an ISO 8601 timestamp, treating naive values as UTC."""
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


@dataclass(frozen=True)
class ScheduledJob:
    """A message to be sent once or on a recurring schedule.

    Instances never carry live trigger handles, so they can be handed out
    to callers as-is.

    Attributes:
        id: Unique identifier (see :func:`make_job_id`).
        kind: Either ``"one-time"`` or ``"recurring"``.
        recipient: Destination phone number.
        message: Free text body; ``None`` sends the default template.
        fire_at: Timezone-aware fire time (one-time jobs only).
        cron_expression: Cron schedule (recurring jobs only).
        created_at: Timezone-aware creation time.
    """

    id: str
    kind: str
    recipient: str
    message: str | None = None
    fire_at: datetime | None = None
    cron_expression: str | None = None
    created_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self) -> None:
        if self.kind not in JOB_KINDS:
            msg = f"Unknown job kind: {self.kind}"
            raise ValueError(msg)
        if self.kind == ONE_TIME and (self.fire_at is None or self.cron_expression):
            msg = "one-time jobs need fire_at and no cron_expression"
            raise ValueError(msg)
        if self.kind == RECURRING and (not self.cron_expression or self.fire_at is not None):
            msg = "recurring jobs need cron_expression and no fire_at"
            raise ValueError(msg)

    # -- Convenience properties ------------------------------------------------

    @property
    def is_one_time(self) -> bool:
        return self.kind == ONE_TIME

    @property
    def is_recurring(self) -> bool:
        return self.kind == RECURRING

    # -- Serialization ---------------------------------------------------------

    def to_record(self) -> dict[str, Any]:
        """Serialize for the job store. Timestamps are stored in UTC."""
        return {
            "id": self.id,
            "type": self.kind,
            "recipient": self.recipient,
            "message": self.message,
            "scheduled_time": (
                self.fire_at.astimezone(UTC).isoformat() if self.fire_at else None
            ),
            "cron_expression": self.cron_expression,
            "created_at": self.created_at.astimezone(UTC).isoformat(),
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> ScheduledJob:
        """Deserialize a job store record. Raises KeyError/ValueError if malformed."""
        scheduled_time = record.get("scheduled_time")
        return cls(
            id=record["id"],
            kind=record["type"],
            recipient=record["recipient"],
            message=record.get("message"),
            fire_at=_parse_timestamp(scheduled_time) if scheduled_time else None,
            cron_expression=record.get("cron_expression"),
            created_at=_parse_timestamp(record["created_at"]),
        )

    def to_dict(self, display_tz: tzinfo | None = None) -> dict[str, Any]:
        """Render for API responses, with timestamps in *display_tz*."""
        tz = display_tz or UTC
        return {
            "id": self.id,
            "type": self.kind,
            "recipient": self.recipient,
            "message": self.message,
            "scheduled_time": self.fire_at.astimezone(tz).isoformat() if self.fire_at else None,
            "cron_expression": self.cron_expression,
            "created_at": self.created_at.astimezone(tz).isoformat(),
        }


def make_job_id() -> str:
    """Generate a new job ID from the current epoch milliseconds and a random base36 suffix."""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"job_{int(time.time() * 1000)}_{suffix}"
