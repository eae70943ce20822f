"""
Notification dispatcher: one templated e-mail per recipient for a due anniversary.

Sends are serial. A token bucket paces them so consecutive provider calls
are at least one interval apart; a failed recipient is recorded and the
batch moves on.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Callable, Iterable, Optional

from lovestory.db import Recipient
from lovestory.mailer import EmailJsConfig, EmailProvider

logger = logging.getLogger(__name__)

WEEKDAYS_ZH = ("星期一", "星期二", "星期三", "星期四", "星期五", "星期六", "星期日")


def as_calendar_date(value: date | datetime) -> date:
    """Drop time-of-day; datetimes keep their own calendar day."""
    if isinstance(value, datetime):
        return value.date()
    return value


def format_weekday_zh(value: date) -> str:
    return WEEKDAYS_ZH[value.weekday()]


def format_date_zh(value: date) -> str:
    """Long zh-CN form, e.g. 2025年10月19日星期日."""
    return f"{value.year}年{value.month}月{value.day}日{format_weekday_zh(value)}"


class RateLimiter:
    """
    Token bucket: `capacity` sends may go out back to back, then one token
    is refilled every `interval_seconds`.
    """

    def __init__(
        self,
        interval_seconds: float = 1.0,
        capacity: int = 1,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.interval_seconds = interval_seconds
        self.capacity = capacity
        self._clock = clock
        self._sleep = sleep
        self._tokens = float(capacity)
        self._updated = clock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = max(0.0, now - self._updated)
        self._tokens = min(
            float(self.capacity), self._tokens + elapsed / self.interval_seconds
        )
        self._updated = now

    def acquire(self) -> float:
        """Take one token, sleeping first if none is available. Returns seconds slept."""
        if self.interval_seconds <= 0:
            return 0.0
        self._refill()
        waited = 0.0
        if self._tokens < 1:
            waited = (1 - self._tokens) * self.interval_seconds
            self._sleep(waited)
            self._tokens = 1.0
            self._updated = self._clock()
        self._tokens -= 1
        return waited


@dataclass(frozen=True)
class RecipientError:
    email: str
    error: str

    def as_dict(self) -> dict:
        return {"email": self.email, "error": self.error}


@dataclass
class DispatchResult:
    successful: int = 0
    failed: int = 0
    errors: list[RecipientError] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return self.successful + self.failed

    def as_dict(self) -> dict:
        return {
            "successful": self.successful,
            "failed": self.failed,
            "errors": [error.as_dict() for error in self.errors],
        }


class NotificationDispatcher:
    """Sends one anniversary's reminder to every recipient through an EmailProvider."""

    def __init__(
        self,
        config: EmailJsConfig,
        provider: EmailProvider,
        rate_limiter: Optional[RateLimiter] = None,
    ):
        self.config = config
        self.provider = provider
        self.rate_limiter = rate_limiter or RateLimiter()

    def build_template_params(
        self,
        anniversary_title: str,
        anniversary_date: date,
        is_today: bool,
        as_of: date,
    ) -> dict:
        params = {
            "anniversary_name": anniversary_title,
            "anniversary_date_formatted": format_date_zh(anniversary_date),
            "anniversary_weekday": format_weekday_zh(anniversary_date),
            "current_date": format_date_zh(as_of),
        }
        if not is_today:
            params["days_left"] = str((anniversary_date - as_of).days)
        return params

    def dispatch(
        self,
        recipients: Iterable[Recipient],
        anniversary_title: str,
        anniversary_date: date | datetime,
        is_today: bool,
        as_of: date | datetime,
    ) -> DispatchResult:
        anniversary_date = as_calendar_date(anniversary_date)
        as_of = as_calendar_date(as_of)
        template_id = self.config.template_for(is_today)
        base_params = self.build_template_params(
            anniversary_title, anniversary_date, is_today, as_of
        )
        result = DispatchResult()
        for recipient in recipients:
            self.rate_limiter.acquire()
            params = dict(base_params, name=recipient.name, email=recipient.email)
            try:
                self.provider.send(template_id, params)
            except Exception as exc:
                # Any per-recipient failure is recorded; the batch continues.
                message = str(exc) or exc.__class__.__name__
                logger.warning(
                    "Reminder for %r to %s failed: %s",
                    anniversary_title,
                    recipient.email,
                    message,
                )
                result.failed += 1
                result.errors.append(RecipientError(email=recipient.email, error=message))
                continue
            result.successful += 1
        logger.info(
            "Dispatched %r (%s): %d successful, %d failed",
            anniversary_title,
            "same-day" if is_today else "advance",
            result.successful,
            result.failed,
        )
        return result
