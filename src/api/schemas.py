"""Request models for the messages API."""

from __future__ import annotations

import re
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# E.164: optional +, then 2-15 digits with no leading zero.
E164_PATTERN = re.compile(r"^\+?[1-9]\d{1,14}$")


def clean_phone_number(value: str | None) -> str:
    """Strip spaces and dashes and check the result is an E.164 number."""
    cleaned = re.sub(r"[\s-]", "", "" if value is None else str(value))
    if not cleaned:
        msg = "Phone number is required"
        raise ValueError(msg)
    if not E164_PATTERN.match(cleaned):
        msg = "Invalid phone number format. Use E.164 format (e.g., 15551234567)"
        raise ValueError(msg)
    return cleaned


class SendMessageRequest(BaseModel):
    """Body of ``POST /api/messages/send``. ``to`` falls back to DEFAULT_RECIPIENT."""

    to: str | None = Field(default=None, description="Recipient phone number")
    message: str | None = Field(default=None, description="Text body; omit to send the template")

    @field_validator("to")
    @classmethod
    def _clean_to(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        return clean_phone_number(value)


class ScheduleMessageRequest(BaseModel):
    """Body of ``POST /api/messages/schedule``.

    Exactly one of ``scheduledTime`` (ISO 8601) or ``cronExpression`` is required.
    """

    model_config = ConfigDict(populate_by_name=True)

    to: str = Field(description="Recipient phone number")
    message: str | None = Field(default=None, description="Text body; omit to send the template")
    scheduled_time: datetime | None = Field(default=None, alias="scheduledTime")
    cron_expression: str | None = Field(default=None, alias="cronExpression")

    @field_validator("to", mode="before")
    @classmethod
    def _clean_to(cls, value: str | None) -> str:
        return clean_phone_number(value)

    @model_validator(mode="after")
    def _one_schedule(self) -> ScheduleMessageRequest:
        if self.scheduled_time is None and not self.cron_expression:
            msg = "Either scheduledTime or cronExpression is required"
            raise ValueError(msg)
        if self.scheduled_time is not None and self.cron_expression:
            msg = "Provide either scheduledTime or cronExpression, not both"
            raise ValueError(msg)
        return self
