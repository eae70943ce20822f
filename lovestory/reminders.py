"""
Anniversary reminder evaluation and the run orchestrator.

A run loads anniversaries and recipients once, decides which anniversaries
are due for the as-of date, dispatches one batch per due anniversary and
returns the aggregated counts. Runs are stateless: nothing records that a
reminder already went out, so invoking the same mode twice on one day
sends twice.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Callable, Optional, Protocol
from zoneinfo import ZoneInfo

from lovestory.db import AnniversaryRecord, DbClient, Recipient
from lovestory.dispatcher import NotificationDispatcher, as_calendar_date

logger = logging.getLogger(__name__)

TEST_WINDOW_DAYS = 7


class ReminderError(Exception):
    """Base class for reminder run failures."""


class AnniversaryNotFoundError(ReminderError):
    def __init__(self, anniversary_id: str):
        super().__init__(f"Anniversary not found: {anniversary_id}")
        self.anniversary_id = anniversary_id


class ReminderRunError(ReminderError):
    """Anniversaries or recipients could not be loaded."""


class HasReminderDate(Protocol):
    date: date
    reminder_days: int


@dataclass(frozen=True)
class ReminderDecision:
    due: bool
    is_today: bool
    days_until: int


def days_until(as_of: date | datetime, target: date | datetime) -> int:
    """Whole calendar days from as_of to target; negative once target has passed."""
    return (as_calendar_date(target) - as_calendar_date(as_of)).days


def evaluate(
    as_of: date | datetime,
    anniversary: HasReminderDate,
    *,
    include_same_day: bool = True,
) -> ReminderDecision:
    """
    Decide whether an anniversary's reminder fires on as_of.

    Due when the lead time matches exactly. With include_same_day (the cron
    rule) the anniversary day itself is always due as well; the in-process
    daily scheduler historically used the strict rule only.
    """
    delta = days_until(as_of, anniversary.date)
    is_today = delta == 0
    due = delta == anniversary.reminder_days or (include_same_day and is_today)
    return ReminderDecision(due=due, is_today=is_today, days_until=delta)


def today_in(timezone_name: str) -> date:
    return datetime.now(ZoneInfo(timezone_name)).date()


@dataclass
class DailyRunSummary:
    as_of: date
    anniversaries_checked: int = 0
    anniversaries_triggered: int = 0
    users_notified: int = 0
    total_sent: int = 0
    total_failed: int = 0
    failed_anniversaries: list[str] = field(default_factory=list)
    message: str = ""

    def as_dict(self) -> dict:
        return {
            "message": self.message,
            "asOf": self.as_of.isoformat(),
            "anniversariesChecked": self.anniversaries_checked,
            "anniversariesTriggered": self.anniversaries_triggered,
            "usersNotified": self.users_notified,
            "totalSent": self.total_sent,
            "totalFailed": self.total_failed,
            "failedAnniversaries": list(self.failed_anniversaries),
        }


@dataclass
class SingleReminderSummary:
    anniversary_id: str
    successful: int = 0
    failed: int = 0
    total_recipients: int = 0
    errors: list[dict] = field(default_factory=list)
    is_today: bool = False
    days_until: Optional[int] = None
    message: str = ""

    def as_dict(self) -> dict:
        return {
            "message": self.message,
            "anniversaryId": self.anniversary_id,
            "successful": self.successful,
            "failed": self.failed,
            "totalRecipients": self.total_recipients,
            "isToday": self.is_today,
            "daysUntil": self.days_until,
            "errors": list(self.errors),
        }


@dataclass
class ManualRunSummary:
    as_of: date
    window_days: int = TEST_WINDOW_DAYS
    checked_anniversaries: int = 0
    tested_anniversaries: int = 0
    total_users: int = 0
    sent: int = 0
    failed: int = 0
    failed_anniversaries: list[str] = field(default_factory=list)
    message: str = ""

    def as_dict(self) -> dict:
        return {
            "message": self.message,
            "asOf": self.as_of.isoformat(),
            "windowDays": self.window_days,
            "checkedAnniversaries": self.checked_anniversaries,
            "testedAnniversaries": self.tested_anniversaries,
            "totalUsers": self.total_users,
            "sent": self.sent,
            "failed": self.failed,
            "failedAnniversaries": list(self.failed_anniversaries),
        }


@dataclass
class _BatchTotals:
    sent: int = 0
    failed: int = 0
    failed_titles: list[str] = field(default_factory=list)
    reached: set[str] = field(default_factory=set)


class ReminderService:
    """
    Orchestrates reminder runs in three modes: daily automatic, single
    anniversary (forced send) and the 0..7 day test window.

    The dispatcher factory is called at the start of every run, so missing
    provider credentials abort the run before anything is read or sent.
    """

    def __init__(
        self,
        db: DbClient,
        dispatcher_factory: Callable[[], NotificationDispatcher],
        timezone_name: str = "Asia/Shanghai",
    ):
        self.db = db
        self.dispatcher_factory = dispatcher_factory
        self.timezone_name = timezone_name

    def _resolve_as_of(self, as_of: date | datetime | None) -> date:
        if as_of is None:
            return today_in(self.timezone_name)
        return as_calendar_date(as_of)

    def _load_recipients(self) -> list[Recipient]:
        try:
            return self.db.list_recipients()
        except Exception as exc:
            raise ReminderRunError(f"Failed to load recipients: {exc}") from exc

    def _load_anniversaries(self) -> list[AnniversaryRecord]:
        try:
            return self.db.list_anniversaries()
        except Exception as exc:
            raise ReminderRunError(f"Failed to load anniversaries: {exc}") from exc

    def _dispatch_each(
        self,
        selected: list[tuple[AnniversaryRecord, bool]],
        recipients: list[Recipient],
        dispatcher: NotificationDispatcher,
        as_of: date,
    ) -> _BatchTotals:
        totals = _BatchTotals()
        for anniversary, is_today in selected:
            try:
                result = dispatcher.dispatch(
                    recipients,
                    anniversary.title,
                    anniversary.date,
                    is_today,
                    as_of,
                )
            except Exception:
                logger.exception(
                    "Dispatch for anniversary %r crashed", anniversary.title
                )
                totals.failed += 1
                totals.failed_titles.append(anniversary.title)
                continue
            totals.sent += result.successful
            totals.failed += result.failed
            if result.failed:
                totals.failed_titles.append(anniversary.title)
            failed_emails = {error.email for error in result.errors}
            totals.reached.update(
                r.email for r in recipients if r.email not in failed_emails
            )
        return totals

    def run_daily(
        self,
        as_of: date | datetime | None = None,
        *,
        include_same_day: bool = True,
    ) -> DailyRunSummary:
        """Daily automatic mode: dispatch every anniversary due on as_of."""
        dispatcher = self.dispatcher_factory()
        as_of = self._resolve_as_of(as_of)
        summary = DailyRunSummary(as_of=as_of)
        logger.info("Daily reminder run for %s started", as_of.isoformat())

        recipients = self._load_recipients()
        if not recipients:
            summary.message = "No users found, skipped reminder process"
            logger.info(summary.message)
            return summary

        anniversaries = self._load_anniversaries()
        summary.anniversaries_checked = len(anniversaries)
        if not anniversaries:
            summary.message = "No anniversaries found, skipped reminder process"
            logger.info(summary.message)
            return summary

        selected: list[tuple[AnniversaryRecord, bool]] = []
        for anniversary in anniversaries:
            decision = evaluate(as_of, anniversary, include_same_day=include_same_day)
            logger.debug(
                "Anniversary %r: days_until=%d reminder_days=%d due=%s",
                anniversary.title,
                decision.days_until,
                anniversary.reminder_days,
                decision.due,
            )
            if decision.due:
                selected.append((anniversary, decision.is_today))
        summary.anniversaries_triggered = len(selected)

        totals = self._dispatch_each(selected, recipients, dispatcher, as_of)
        summary.total_sent = totals.sent
        summary.total_failed = totals.failed
        summary.failed_anniversaries = totals.failed_titles
        summary.users_notified = len(totals.reached)
        summary.message = "Automatic anniversary reminder check completed"
        logger.info(
            "Daily reminder run for %s finished: %d checked, %d triggered, %d sent, %d failed",
            as_of.isoformat(),
            summary.anniversaries_checked,
            summary.anniversaries_triggered,
            summary.total_sent,
            summary.total_failed,
        )
        return summary

    def send_for_anniversary(
        self,
        anniversary_id: str,
        as_of: date | datetime | None = None,
    ) -> SingleReminderSummary:
        """
        Single-anniversary mode: send regardless of the due decision.

        Today's decision only picks the template (same-day vs advance).
        """
        dispatcher = self.dispatcher_factory()
        as_of = self._resolve_as_of(as_of)
        summary = SingleReminderSummary(anniversary_id=anniversary_id)

        recipients = self._load_recipients()
        if not recipients:
            summary.message = "No users found, skipped reminder process"
            logger.info(summary.message)
            return summary

        try:
            anniversary = self.db.get_anniversary(anniversary_id)
        except Exception as exc:
            raise ReminderRunError(f"Failed to load anniversary: {exc}") from exc
        if anniversary is None:
            raise AnniversaryNotFoundError(anniversary_id)

        decision = evaluate(as_of, anniversary)
        summary.is_today = decision.is_today
        summary.days_until = decision.days_until
        summary.total_recipients = len(recipients)
        logger.info(
            "Forced reminder for %r to %d recipients (days_until=%d)",
            anniversary.title,
            len(recipients),
            decision.days_until,
        )
        result = dispatcher.dispatch(
            recipients, anniversary.title, anniversary.date, decision.is_today, as_of
        )
        summary.successful = result.successful
        summary.failed = result.failed
        summary.errors = [error.as_dict() for error in result.errors]
        summary.message = "Anniversary reminders sent"
        return summary

    def run_test_window(
        self,
        as_of: date | datetime | None = None,
        window_days: int = TEST_WINDOW_DAYS,
    ) -> ManualRunSummary:
        """Test mode: dispatch every anniversary 0..window_days days away."""
        dispatcher = self.dispatcher_factory()
        as_of = self._resolve_as_of(as_of)
        summary = ManualRunSummary(as_of=as_of, window_days=window_days)
        logger.info(
            "Test reminder run for %s (window %d days) started",
            as_of.isoformat(),
            window_days,
        )

        recipients = self._load_recipients()
        summary.total_users = len(recipients)
        if not recipients:
            summary.message = "No users found, skipped reminder process"
            logger.info(summary.message)
            return summary

        anniversaries = self._load_anniversaries()
        summary.checked_anniversaries = len(anniversaries)
        if not anniversaries:
            summary.message = "No anniversaries found, skipped reminder process"
            logger.info(summary.message)
            return summary

        selected: list[tuple[AnniversaryRecord, bool]] = []
        for anniversary in anniversaries:
            delta = days_until(as_of, anniversary.date)
            if 0 <= delta <= window_days:
                selected.append((anniversary, delta == 0))
            else:
                logger.debug(
                    "Anniversary %r outside test window (%d days)",
                    anniversary.title,
                    delta,
                )
        summary.tested_anniversaries = len(selected)

        totals = self._dispatch_each(selected, recipients, dispatcher, as_of)
        summary.sent = totals.sent
        summary.failed = totals.failed
        summary.failed_anniversaries = totals.failed_titles
        summary.message = "Manual anniversary reminder check completed"
        logger.info(
            "Test reminder run finished: %d tested, %d sent, %d failed",
            summary.tested_anniversaries,
            summary.sent,
            summary.failed,
        )
        return summary
