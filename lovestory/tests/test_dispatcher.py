import unittest
from datetime import date, datetime

from lovestory.db import Recipient
from lovestory.dispatcher import (
    NotificationDispatcher,
    RateLimiter,
    format_date_zh,
    format_weekday_zh,
)
from lovestory.mailer import EmailJsConfig, InMemoryEmailProvider


class FakeClock:
    def __init__(self):
        self.now = 100.0
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def _config() -> EmailJsConfig:
    return EmailJsConfig(
        service_id="service_love",
        template_id="template_advance",
        today_template_id="template_today",
        public_key="public",
        private_key="private",
    )


RECIPIENTS = [
    Recipient(name="Alice", email="alice@example.com"),
    Recipient(name="Bob", email="bob@example.com"),
    Recipient(name="Carol", email="carol@example.com"),
]


class FormattingTests(unittest.TestCase):
    def test_long_chinese_date(self):
        self.assertEqual(format_date_zh(date(2025, 10, 19)), "2025年10月19日星期日")
        self.assertEqual(format_date_zh(date(2024, 2, 29)), "2024年2月29日星期四")

    def test_weekday(self):
        self.assertEqual(format_weekday_zh(date(2025, 10, 13)), "星期一")


class RateLimiterTests(unittest.TestCase):
    def test_first_acquire_does_not_wait(self):
        clock = FakeClock()
        limiter = RateLimiter(interval_seconds=1.0, clock=clock, sleep=clock.sleep)
        self.assertEqual(limiter.acquire(), 0.0)
        self.assertEqual(clock.sleeps, [])

    def test_back_to_back_acquires_are_spaced(self):
        clock = FakeClock()
        limiter = RateLimiter(interval_seconds=1.0, clock=clock, sleep=clock.sleep)
        for _ in range(3):
            limiter.acquire()
        self.assertEqual(clock.sleeps, [1.0, 1.0])

    def test_elapsed_time_counts_toward_next_token(self):
        clock = FakeClock()
        limiter = RateLimiter(interval_seconds=1.0, clock=clock, sleep=clock.sleep)
        limiter.acquire()
        clock.now += 0.4
        waited = limiter.acquire()
        self.assertAlmostEqual(waited, 0.6)

    def test_idle_bucket_does_not_overfill(self):
        clock = FakeClock()
        limiter = RateLimiter(interval_seconds=1.0, clock=clock, sleep=clock.sleep)
        limiter.acquire()
        clock.now += 60
        self.assertEqual(limiter.acquire(), 0.0)
        self.assertEqual(limiter.acquire(), 1.0)

    def test_zero_interval_never_sleeps(self):
        clock = FakeClock()
        limiter = RateLimiter(interval_seconds=0, clock=clock, sleep=clock.sleep)
        for _ in range(5):
            limiter.acquire()
        self.assertEqual(clock.sleeps, [])

    def test_capacity_must_be_positive(self):
        with self.assertRaises(ValueError):
            RateLimiter(capacity=0)


class NotificationDispatcherTests(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.provider = InMemoryEmailProvider()
        self.dispatcher = NotificationDispatcher(
            config=_config(),
            provider=self.provider,
            rate_limiter=RateLimiter(
                interval_seconds=1.0, clock=self.clock, sleep=self.clock.sleep
            ),
        )

    def test_partial_failure_continues_batch(self):
        self.provider.fail_for.add("bob@example.com")

        result = self.dispatcher.dispatch(
            RECIPIENTS, "Wedding", date(2025, 10, 19), False, date(2025, 10, 14)
        )

        self.assertEqual(result.successful, 2)
        self.assertEqual(result.failed, 1)
        self.assertEqual(result.attempted, len(RECIPIENTS))
        self.assertEqual(len(result.errors), 1)
        self.assertEqual(result.errors[0].email, "bob@example.com")
        self.assertIn("bob@example.com", result.errors[0].error)
        sent_to = [params["email"] for _, params in self.provider.sent]
        self.assertEqual(sent_to, ["alice@example.com", "carol@example.com"])

    def test_sends_are_paced(self):
        self.dispatcher.dispatch(
            RECIPIENTS, "Wedding", date(2025, 10, 19), False, date(2025, 10, 14)
        )
        self.assertEqual(self.clock.sleeps, [1.0, 1.0])

    def test_failed_sends_still_take_a_slot(self):
        self.provider.fail_for.update(r.email for r in RECIPIENTS)
        result = self.dispatcher.dispatch(
            RECIPIENTS, "Wedding", date(2025, 10, 19), False, date(2025, 10, 14)
        )
        self.assertEqual(result.failed, 3)
        self.assertEqual(len(self.clock.sleeps), 2)

    def test_same_day_template_and_params(self):
        self.dispatcher.dispatch(
            RECIPIENTS[:1],
            "Wedding",
            datetime(2025, 10, 19, 8, 30),
            True,
            datetime(2025, 10, 19, 7, 0),
        )
        template_id, params = self.provider.sent[0]
        self.assertEqual(template_id, "template_today")
        self.assertEqual(
            params,
            {
                "anniversary_name": "Wedding",
                "anniversary_date_formatted": "2025年10月19日星期日",
                "anniversary_weekday": "星期日",
                "current_date": "2025年10月19日星期日",
                "name": "Alice",
                "email": "alice@example.com",
            },
        )

    def test_advance_params_include_days_left(self):
        params = self.dispatcher.build_template_params(
            "Wedding", date(2025, 10, 19), False, date(2025, 10, 14)
        )
        self.assertEqual(params["days_left"], "5")

    def test_empty_recipients(self):
        result = self.dispatcher.dispatch(
            [], "Wedding", date(2025, 10, 19), False, date(2025, 10, 14)
        )
        self.assertEqual(result.as_dict(), {"successful": 0, "failed": 0, "errors": []})
        self.assertEqual(self.provider.sent, [])


if __name__ == "__main__":
    unittest.main()
