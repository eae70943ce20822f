"""
Pydantic schemas for the Love Story API.

Field names are camelCase to match the JSON the web frontend already uses.
"""

from __future__ import annotations

import datetime as dt
import re
from typing import Optional
from zoneinfo import ZoneInfo

from pydantic import BaseModel, Field, field_validator

from lovestory.config import get_settings
from lovestory.security import MIN_PASSWORD_LENGTH

EMAIL_PATTERN = re.compile(r"^\w+([.-]?\w+)*@\w+([.-]?\w+)*(\.\w{2,})+$")
MAX_REMINDER_DAYS = 30


class RegisterRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: str
    password: str = Field(..., min_length=MIN_PASSWORD_LENGTH, max_length=72)

    @field_validator("email")
    @classmethod
    def _valid_email(cls, value: str) -> str:
        value = value.strip().lower()
        if not EMAIL_PATTERN.match(value):
            raise ValueError("Please provide a valid email")
        return value


class LoginRequest(BaseModel):
    email: str
    password: str


class UserResponse(BaseModel):
    id: str
    name: str
    email: str
    isAdmin: bool


class AuthResponse(BaseModel):
    token: str
    user: UserResponse


class RegistrationStatusResponse(BaseModel):
    registrationAllowed: bool
    message: str


class MessageResponse(BaseModel):
    message: str


def local_calendar_day(value):
    """
    Reduce a timestamp to its calendar day in the reminder timezone.

    Browsers send local midnight as a UTC instant (toISOString), so an aware
    timestamp is converted before the time is dropped. Naive timestamps
    keep their own day; anything else is left for pydantic to parse.
    """
    if isinstance(value, str) and "T" in value:
        try:
            value = dt.datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            raise ValueError("Please add a valid date")
    if isinstance(value, dt.datetime):
        if value.tzinfo is not None:
            value = value.astimezone(ZoneInfo(get_settings().reminder_timezone))
        return value.date()
    return value


def _stripped_title(value: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError("Please add a title")
    return value


class AnniversaryPayload(BaseModel):
    title: str = Field(..., min_length=1, max_length=100)
    date: dt.date
    reminderDays: Optional[int] = 1

    @field_validator("title")
    @classmethod
    def _strip_title(cls, value: str) -> str:
        return _stripped_title(value)

    @field_validator("date", mode="before")
    @classmethod
    def _calendar_day(cls, value):
        return local_calendar_day(value)

    @field_validator("reminderDays")
    @classmethod
    def _clamp_reminder_days(cls, value: Optional[int]) -> int:
        if value is None:
            return 1
        return max(0, min(MAX_REMINDER_DAYS, value))


class AnniversaryResponse(BaseModel):
    id: str
    title: str
    date: dt.date
    reminderDays: int
    createdAt: dt.datetime
    updatedAt: dt.datetime


class MemoryPayload(BaseModel):
    title: str = Field(..., min_length=1, max_length=100)
    description: str = Field(..., min_length=1)
    date: dt.date

    @field_validator("title")
    @classmethod
    def _strip_title(cls, value: str) -> str:
        return _stripped_title(value)

    @field_validator("description")
    @classmethod
    def _require_description(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Please add a description")
        return value

    @field_validator("date", mode="before")
    @classmethod
    def _calendar_day(cls, value):
        return local_calendar_day(value)


class MemoryAuthor(BaseModel):
    id: str
    name: str
    email: str


class MemoryResponse(BaseModel):
    id: str
    title: str
    description: str
    date: dt.date
    userId: str
    user: Optional[MemoryAuthor] = None
    createdAt: dt.datetime
    updatedAt: dt.datetime


class HealthResponse(BaseModel):
    status: str
    message: str
    timestamp: str
    database: Optional[str] = None


class RecipientErrorResponse(BaseModel):
    email: str
    error: str


class DailyRunResponse(BaseModel):
    message: str
    asOf: dt.date
    anniversariesChecked: int
    anniversariesTriggered: int
    usersNotified: int
    totalSent: int
    totalFailed: int
    failedAnniversaries: list[str]


class SingleReminderResponse(BaseModel):
    message: str
    anniversaryId: str
    successful: int
    failed: int
    totalRecipients: int
    isToday: bool
    daysUntil: Optional[int] = None
    errors: list[RecipientErrorResponse]


class ManualRunResponse(BaseModel):
    message: str
    asOf: dt.date
    windowDays: int
    checkedAnniversaries: int
    testedAnniversaries: int
    totalUsers: int
    sent: int
    failed: int
    failedAnniversaries: list[str]
