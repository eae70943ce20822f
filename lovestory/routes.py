"""
HTTP routes for the Love Story API.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException

from lovestory.config import get_settings
from lovestory.db import (
    DbClient,
    DuplicateEmailError,
    DuplicateTitleError,
    MemoryRecord,
    RegistrationClosedError,
    UserRecord,
)
from lovestory.dependencies import (
    get_admin_user,
    get_current_user,
    get_db_client,
    get_reminder_service,
    require_cron_token,
)
from lovestory.mailer import EmailConfigurationError
from lovestory.reminders import (
    AnniversaryNotFoundError,
    ReminderRunError,
    ReminderService,
)
from lovestory.schemas import (
    AnniversaryPayload,
    AnniversaryResponse,
    AuthResponse,
    DailyRunResponse,
    HealthResponse,
    LoginRequest,
    ManualRunResponse,
    MemoryAuthor,
    MemoryPayload,
    MemoryResponse,
    MessageResponse,
    RegisterRequest,
    RegistrationStatusResponse,
    SingleReminderResponse,
    UserResponse,
)
from lovestory.security import create_access_token, hash_password, verify_password

logger = logging.getLogger(__name__)

router = APIRouter()


def _auth_response(user: UserRecord) -> AuthResponse:
    settings = get_settings()
    token = create_access_token(
        user.user_id, settings.jwt_secret, expires_days=settings.jwt_expires_days
    )
    return AuthResponse(token=token, user=UserResponse(**user.as_dict()))


def _reminder_failure(exc: Exception) -> HTTPException:
    """Map a run-level reminder failure to an HTTP error."""
    if isinstance(exc, AnniversaryNotFoundError):
        return HTTPException(status_code=404, detail="Anniversary not found")
    if isinstance(exc, EmailConfigurationError):
        logger.error("Reminder run aborted: %s", exc)
        return HTTPException(status_code=500, detail=str(exc))
    logger.error("Reminder run failed: %s", exc)
    return HTTPException(status_code=500, detail="Reminder run failed")


@router.get("/health", response_model=HealthResponse)
def health(db: DbClient = Depends(get_db_client)):
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        db.ping()
    except Exception as exc:
        logger.exception("Health check failed: %s", exc)
        raise HTTPException(status_code=500, detail="Love Story API is unhealthy!")
    return HealthResponse(
        status="OK",
        message="Love Story API is healthy!",
        timestamp=timestamp,
        database="connected",
    )


# --- auth ---


@router.post("/auth/register", response_model=AuthResponse, status_code=201)
def register(payload: RegisterRequest, db: DbClient = Depends(get_db_client)):
    settings = get_settings()
    try:
        user = db.create_user(
            payload.name,
            payload.email,
            hash_password(payload.password),
            allow_additional=settings.allow_open_registration,
        )
    except RegistrationClosedError:
        raise HTTPException(status_code=403, detail="Registration not allowed")
    except DuplicateEmailError:
        raise HTTPException(
            status_code=400, detail="User with this email already exists"
        )
    logger.info("Registered user %s (admin=%s)", user.email, user.is_admin)
    return _auth_response(user)


@router.post("/auth/login", response_model=AuthResponse)
def login(payload: LoginRequest, db: DbClient = Depends(get_db_client)):
    user = db.get_user_by_email(payload.email)
    if not user or not verify_password(payload.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid email or password")
    return _auth_response(user)


@router.get("/auth/profile", response_model=UserResponse)
def profile(user: UserRecord = Depends(get_current_user)):
    return UserResponse(**user.as_dict())


@router.get("/auth/check-registration", response_model=RegistrationStatusResponse)
def check_registration(db: DbClient = Depends(get_db_client)):
    if db.count_users() == 0:
        return RegistrationStatusResponse(
            registrationAllowed=True,
            message="Registration allowed for first admin user",
        )
    if get_settings().allow_open_registration:
        return RegistrationStatusResponse(
            registrationAllowed=True, message="Registration allowed"
        )
    return RegistrationStatusResponse(
        registrationAllowed=False, message="Registration not allowed"
    )


@router.get("/auth/users", response_model=list[UserResponse])
def list_users(
    admin: UserRecord = Depends(get_admin_user),
    db: DbClient = Depends(get_db_client),
):
    return [UserResponse(**user.as_dict()) for user in db.list_users()]


@router.delete("/auth/users/{user_id}", response_model=MessageResponse)
def delete_user(
    user_id: str,
    admin: UserRecord = Depends(get_admin_user),
    db: DbClient = Depends(get_db_client),
):
    if user_id == admin.user_id:
        raise HTTPException(status_code=400, detail="Cannot delete your own account")
    if not db.delete_user(user_id):
        raise HTTPException(status_code=404, detail="User not found")
    logger.info("Admin %s deleted user %s", admin.email, user_id)
    return MessageResponse(message="User deleted successfully")


# --- anniversaries ---


@router.get("/anniversaries", response_model=list[AnniversaryResponse])
def list_anniversaries(
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    return [AnniversaryResponse(**a.as_dict()) for a in db.list_anniversaries()]


@router.post("/anniversaries", response_model=AnniversaryResponse, status_code=201)
def create_anniversary(
    payload: AnniversaryPayload,
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    try:
        record = db.create_anniversary(payload.title, payload.date, payload.reminderDays)
    except DuplicateTitleError:
        raise HTTPException(
            status_code=400, detail="Anniversary with this title already exists"
        )
    return AnniversaryResponse(**record.as_dict())


@router.post("/anniversaries/test-reminders", response_model=ManualRunResponse)
def test_reminders(
    user: UserRecord = Depends(get_current_user),
    service: ReminderService = Depends(get_reminder_service),
):
    logger.info("Test reminder run requested by %s", user.email)
    try:
        summary = service.run_test_window()
    except (ReminderRunError, EmailConfigurationError) as exc:
        raise _reminder_failure(exc)
    return ManualRunResponse(**summary.as_dict())


@router.get("/anniversaries/{anniversary_id}", response_model=AnniversaryResponse)
def get_anniversary(
    anniversary_id: str,
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    record = db.get_anniversary(anniversary_id)
    if not record:
        raise HTTPException(status_code=404, detail="Anniversary not found")
    return AnniversaryResponse(**record.as_dict())


@router.put("/anniversaries/{anniversary_id}", response_model=AnniversaryResponse)
def update_anniversary(
    anniversary_id: str,
    payload: AnniversaryPayload,
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    try:
        record = db.update_anniversary(
            anniversary_id,
            title=payload.title,
            anniversary_date=payload.date,
            reminder_days=payload.reminderDays,
        )
    except DuplicateTitleError:
        raise HTTPException(
            status_code=400, detail="Anniversary with this title already exists"
        )
    if not record:
        raise HTTPException(status_code=404, detail="Anniversary not found")
    return AnniversaryResponse(**record.as_dict())


@router.delete("/anniversaries/{anniversary_id}", response_model=MessageResponse)
def delete_anniversary(
    anniversary_id: str,
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    if not db.delete_anniversary(anniversary_id):
        raise HTTPException(status_code=404, detail="Anniversary not found")
    return MessageResponse(message="Anniversary removed")


@router.post(
    "/anniversaries/{anniversary_id}/remind", response_model=SingleReminderResponse
)
def send_reminder(
    anniversary_id: str,
    user: UserRecord = Depends(get_current_user),
    service: ReminderService = Depends(get_reminder_service),
):
    logger.info(
        "Reminder for anniversary %s requested by %s", anniversary_id, user.email
    )
    try:
        summary = service.send_for_anniversary(anniversary_id)
    except (ReminderRunError, AnniversaryNotFoundError, EmailConfigurationError) as exc:
        raise _reminder_failure(exc)
    return SingleReminderResponse(**summary.as_dict())


# --- cron ---


@router.get(
    "/cron/anniversary-reminders",
    response_model=DailyRunResponse,
    dependencies=[Depends(require_cron_token)],
)
def cron_anniversary_reminders(
    service: ReminderService = Depends(get_reminder_service),
):
    try:
        summary = service.run_daily(include_same_day=True)
    except (ReminderRunError, EmailConfigurationError) as exc:
        raise _reminder_failure(exc)
    return DailyRunResponse(**summary.as_dict())


# --- memories ---


def _memory_response(record: MemoryRecord, db: DbClient) -> MemoryResponse:
    author = db.get_user(record.user_id)
    return MemoryResponse(
        **record.as_dict(),
        user=MemoryAuthor(id=author.user_id, name=author.name, email=author.email)
        if author
        else None,
    )


def _owned_memory(memory_id: str, user: UserRecord, db: DbClient) -> MemoryRecord:
    """Fetch a memory the caller may change: its creator or an admin."""
    record = db.get_memory(memory_id)
    if not record:
        raise HTTPException(status_code=404, detail="Memory not found")
    if record.user_id != user.user_id and not user.is_admin:
        logger.info("User %s denied change to memory %s", user.email, memory_id)
        raise HTTPException(
            status_code=403,
            detail="Not authorized - only the creator or admin can change this memory",
        )
    return record


@router.get("/memories", response_model=list[MemoryResponse])
def list_memories(
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    return [_memory_response(record, db) for record in db.list_memories()]


@router.post("/memories", response_model=MemoryResponse, status_code=201)
def create_memory(
    payload: MemoryPayload,
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    record = db.create_memory(
        payload.title, payload.description, payload.date, user.user_id
    )
    logger.info("Memory %s created by %s", record.memory_id, user.email)
    return _memory_response(record, db)


@router.get("/memories/{memory_id}", response_model=MemoryResponse)
def get_memory(
    memory_id: str,
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    record = db.get_memory(memory_id)
    if not record:
        raise HTTPException(status_code=404, detail="Memory not found")
    return _memory_response(record, db)


@router.put("/memories/{memory_id}", response_model=MemoryResponse)
def update_memory(
    memory_id: str,
    payload: MemoryPayload,
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    _owned_memory(memory_id, user, db)
    record = db.update_memory(
        memory_id,
        title=payload.title,
        description=payload.description,
        memory_date=payload.date,
    )
    if not record:
        raise HTTPException(status_code=404, detail="Memory not found")
    return _memory_response(record, db)


@router.delete("/memories/{memory_id}", response_model=MessageResponse)
def delete_memory(
    memory_id: str,
    user: UserRecord = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    _owned_memory(memory_id, user, db)
    if not db.delete_memory(memory_id):
        raise HTTPException(status_code=404, detail="Memory not found")
    return MessageResponse(message="Memory removed")
