"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

from fastapi import Depends, Header, HTTPException

from lovestory.config import get_settings
from lovestory.db import DbClient, InMemoryDbClient, PostgresDbClient, UserRecord
from lovestory.dispatcher import NotificationDispatcher, RateLimiter
from lovestory.mailer import EmailJsClient, EmailJsConfig, EmailProvider, InMemoryEmailProvider
from lovestory.reminders import ReminderService
from lovestory.security import InvalidTokenError, decode_access_token

_db_client: DbClient | None = None
_email_provider: EmailProvider | None = None


def get_db_client() -> DbClient:
    """
    Return a singleton DB client so state persists across requests.
    """
    global _db_client
    if _db_client:
        return _db_client

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.database_url:
        _db_client = InMemoryDbClient()
    else:
        _db_client = PostgresDbClient(settings.database_url)
    return _db_client


def get_email_provider() -> EmailProvider:
    """
    Return the provider used by reminder dispatch. Raises EmailConfigurationError
    when EmailJS credentials are incomplete.
    """
    global _email_provider
    if _email_provider:
        return _email_provider

    settings = get_settings()
    if settings.use_in_memory_backends:
        _email_provider = InMemoryEmailProvider()
    else:
        _email_provider = EmailJsClient(EmailJsConfig.from_settings(settings))
    return _email_provider


def build_dispatcher() -> NotificationDispatcher:
    settings = get_settings()
    config = EmailJsConfig.from_settings(settings)
    return NotificationDispatcher(
        config=config,
        provider=get_email_provider(),
        rate_limiter=RateLimiter(interval_seconds=settings.reminder_send_interval_seconds),
    )


def get_reminder_service(db: DbClient = Depends(get_db_client)) -> ReminderService:
    settings = get_settings()
    return ReminderService(
        db=db,
        dispatcher_factory=build_dispatcher,
        timezone_name=settings.reminder_timezone,
    )


def _bearer_token(authorization: str | None) -> str | None:
    raw = (authorization or "").strip()
    if not raw.lower().startswith("bearer "):
        return None
    token = raw.split(" ", 1)[1].strip()
    return token or None


def get_current_user(
    authorization: str | None = Header(default=None),
    db: DbClient = Depends(get_db_client),
) -> UserRecord:
    token = _bearer_token(authorization)
    if not token:
        raise HTTPException(status_code=401, detail="Authorization token required")
    try:
        user_id = decode_access_token(token, get_settings().jwt_secret)
    except InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid or expired token")
    user = db.get_user(user_id)
    if not user:
        raise HTTPException(status_code=401, detail="User no longer exists")
    return user


def get_admin_user(user: UserRecord = Depends(get_current_user)) -> UserRecord:
    if not user.is_admin:
        raise HTTPException(
            status_code=403, detail="Access denied - admin privileges required"
        )
    return user


def require_cron_token(authorization: str | None = Header(default=None)) -> None:
    expected = get_settings().cron_auth_token
    provided = _bearer_token(authorization)
    if not expected or provided != expected:
        raise HTTPException(
            status_code=401,
            detail="Unauthorized: Invalid or missing cron authentication token",
        )
