"""
Backend package for the Love Story API.

This package provides a FastAPI application for shared anniversaries,
the reminder engine that e-mails every registered user ahead of them,
and database/e-mail abstractions with in-memory doubles for tests.
"""
