import unittest
from datetime import date

from lovestory.db import (
    DuplicateEmailError,
    DuplicateTitleError,
    PostgresDbClient,
    Recipient,
    RegistrationClosedError,
)


class PostgresDbClientTests(unittest.TestCase):
    """
    Uses SQLite via SQLAlchemy URL for fast/local testing of the Postgres client logic.
    """

    def setUp(self):
        self.db = PostgresDbClient("sqlite+pysqlite:///:memory:")

    def test_ping(self):
        self.assertTrue(self.db.ping())

    def test_anniversary_crud(self):
        record = self.db.create_anniversary("Wedding", date(2025, 10, 19), 5)
        fetched = self.db.get_anniversary(record.anniversary_id)
        self.assertEqual(fetched.title, "Wedding")
        self.assertEqual(fetched.date, date(2025, 10, 19))
        self.assertEqual(fetched.reminder_days, 5)

        updated = self.db.update_anniversary(
            record.anniversary_id,
            title="Our Wedding",
            anniversary_date=date(2025, 10, 20),
            reminder_days=3,
        )
        self.assertEqual(updated.title, "Our Wedding")
        self.assertEqual(updated.reminder_days, 3)

        self.assertTrue(self.db.delete_anniversary(record.anniversary_id))
        self.assertIsNone(self.db.get_anniversary(record.anniversary_id))
        self.assertFalse(self.db.delete_anniversary(record.anniversary_id))

    def test_update_missing_anniversary(self):
        self.assertIsNone(
            self.db.update_anniversary(
                "missing",
                title="Wedding",
                anniversary_date=date(2025, 10, 19),
                reminder_days=1,
            )
        )

    def test_duplicate_title_rejected(self):
        self.db.create_anniversary("Wedding", date(2025, 10, 19), 5)
        other = self.db.create_anniversary("First Date", date(2020, 5, 20), 1)
        with self.assertRaises(DuplicateTitleError):
            self.db.create_anniversary("Wedding", date(2026, 1, 1), 1)
        with self.assertRaises(DuplicateTitleError):
            self.db.update_anniversary(
                other.anniversary_id,
                title="Wedding",
                anniversary_date=date(2020, 5, 20),
                reminder_days=1,
            )

    def test_anniversaries_sorted_newest_first(self):
        self.db.create_anniversary("First Date", date(2020, 5, 20), 1)
        self.db.create_anniversary("Wedding", date(2025, 10, 19), 5)
        self.db.create_anniversary("Engagement", date(2023, 2, 14), 2)
        titles = [record.title for record in self.db.list_anniversaries()]
        self.assertEqual(titles, ["Wedding", "Engagement", "First Date"])

    def test_first_user_becomes_admin(self):
        first = self.db.create_user("Alice", "Alice@Example.com", "hash")
        second = self.db.create_user("Bob", "bob@example.com", "hash")
        self.assertTrue(first.is_admin)
        self.assertFalse(second.is_admin)
        self.assertEqual(first.email, "alice@example.com")
        self.assertEqual(self.db.count_users(), 2)

    def test_registration_closed_after_first_user(self):
        self.db.create_user("Alice", "alice@example.com", "hash", allow_additional=False)
        with self.assertRaises(RegistrationClosedError):
            self.db.create_user(
                "Bob", "bob@example.com", "hash", allow_additional=False
            )
        self.assertEqual(self.db.count_users(), 1)

    def test_duplicate_email_is_case_insensitive(self):
        self.db.create_user("Alice", "alice@example.com", "hash")
        with self.assertRaises(DuplicateEmailError):
            self.db.create_user("Alice Again", "ALICE@example.com", "hash")
        self.assertIsNotNone(self.db.get_user_by_email("ALICE@EXAMPLE.COM"))

    def test_recipients_projection(self):
        self.db.create_user("Alice", "alice@example.com", "hash")
        self.db.create_user("Bob", "bob@example.com", "hash")
        self.assertCountEqual(
            self.db.list_recipients(),
            [
                Recipient(name="Alice", email="alice@example.com"),
                Recipient(name="Bob", email="bob@example.com"),
            ],
        )

    def test_memory_crud(self):
        user = self.db.create_user("Alice", "alice@example.com", "hash")
        older = self.db.create_memory("Picnic", "Sunny", date(2024, 6, 1), user.user_id)
        newer = self.db.create_memory("Trip", "West Lake", date(2024, 9, 1), user.user_id)

        self.assertEqual(
            [m.memory_id for m in self.db.list_memories()],
            [newer.memory_id, older.memory_id],
        )
        fetched = self.db.get_memory(older.memory_id)
        self.assertEqual(fetched.user_id, user.user_id)
        self.assertEqual(fetched.date, date(2024, 6, 1))

        updated = self.db.update_memory(
            older.memory_id,
            title="Picnic",
            description="Windy",
            memory_date=date(2024, 6, 2),
        )
        self.assertEqual(updated.description, "Windy")
        self.assertIsNone(
            self.db.update_memory(
                "missing", title="x", description="y", memory_date=date(2024, 1, 1)
            )
        )

        self.assertTrue(self.db.delete_memory(older.memory_id))
        self.assertFalse(self.db.delete_memory(older.memory_id))
        self.assertIsNone(self.db.get_memory(older.memory_id))

    def test_delete_user(self):
        user = self.db.create_user("Alice", "alice@example.com", "hash")
        self.assertTrue(self.db.delete_user(user.user_id))
        self.assertIsNone(self.db.get_user(user.user_id))
        self.assertEqual(self.db.list_users(), [])


if __name__ == "__main__":
    unittest.main()
