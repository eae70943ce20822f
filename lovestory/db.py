"""
Database abstraction for Postgres and an in-memory test implementation.

The reminder engine only reads through this layer: anniversaries are the
"repository" side and users, projected to (name, email), are the recipient
directory. Everything else here is plain CRUD for the HTTP routes.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Dict, Optional, Protocol

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Integer,
    String,
    Text,
    create_engine,
    func,
    select,
    text,
)
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, declarative_base, sessionmaker


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


class DuplicateTitleError(ValueError):
    """An anniversary with the same title already exists."""


class DuplicateEmailError(ValueError):
    """A user with the same e-mail already exists."""


class RegistrationClosedError(ValueError):
    """Registration is locked because the bootstrap admin already exists."""


@dataclass
class AnniversaryRecord:
    anniversary_id: str
    title: str
    date: date
    reminder_days: int = 1
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    def as_dict(self) -> dict:
        return {
            "id": self.anniversary_id,
            "title": self.title,
            "date": self.date.isoformat(),
            "reminderDays": self.reminder_days,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }


@dataclass
class UserRecord:
    user_id: str
    name: str
    email: str
    password_hash: str
    is_admin: bool = False
    created_at: datetime = field(default_factory=_utcnow)

    def as_dict(self) -> dict:
        # Never expose the password hash.
        return {
            "id": self.user_id,
            "name": self.name,
            "email": self.email,
            "isAdmin": self.is_admin,
        }


@dataclass
class MemoryRecord:
    memory_id: str
    title: str
    description: str
    date: date
    user_id: str
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    def as_dict(self) -> dict:
        return {
            "id": self.memory_id,
            "title": self.title,
            "description": self.description,
            "date": self.date.isoformat(),
            "userId": self.user_id,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }


@dataclass(frozen=True)
class Recipient:
    name: str
    email: str


class DbClient(Protocol):
    """Interface for database access."""

    def ping(self) -> bool:
        ...

    def list_anniversaries(self) -> list[AnniversaryRecord]:
        ...

    def get_anniversary(self, anniversary_id: str) -> Optional[AnniversaryRecord]:
        ...

    def create_anniversary(
        self, title: str, anniversary_date: date, reminder_days: int = 1
    ) -> AnniversaryRecord:
        ...

    def update_anniversary(
        self,
        anniversary_id: str,
        *,
        title: str,
        anniversary_date: date,
        reminder_days: int,
    ) -> Optional[AnniversaryRecord]:
        ...

    def delete_anniversary(self, anniversary_id: str) -> bool:
        ...

    def list_recipients(self) -> list[Recipient]:
        ...

    def count_users(self) -> int:
        ...

    def list_users(self) -> list[UserRecord]:
        ...

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        ...

    def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        ...

    def create_user(
        self,
        name: str,
        email: str,
        password_hash: str,
        *,
        allow_additional: bool = True,
    ) -> UserRecord:
        ...

    def delete_user(self, user_id: str) -> bool:
        ...

    def list_memories(self) -> list[MemoryRecord]:
        ...

    def get_memory(self, memory_id: str) -> Optional[MemoryRecord]:
        ...

    def create_memory(
        self, title: str, description: str, memory_date: date, user_id: str
    ) -> MemoryRecord:
        ...

    def update_memory(
        self,
        memory_id: str,
        *,
        title: str,
        description: str,
        memory_date: date,
    ) -> Optional[MemoryRecord]:
        ...

    def delete_memory(self, memory_id: str) -> bool:
        ...


class InMemoryDbClient:
    """Simple in-memory database for development and tests."""

    def __init__(self):
        self.anniversaries: Dict[str, AnniversaryRecord] = {}
        self.users: Dict[str, UserRecord] = {}
        self.memories: Dict[str, MemoryRecord] = {}

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        self.anniversaries.clear()
        self.users.clear()
        self.memories.clear()

    def ping(self) -> bool:
        return True

    def _title_taken(self, title: str, exclude_id: str | None = None) -> bool:
        return any(
            record.title == title and record.anniversary_id != exclude_id
            for record in self.anniversaries.values()
        )

    def list_anniversaries(self) -> list[AnniversaryRecord]:
        return sorted(
            self.anniversaries.values(), key=lambda record: record.date, reverse=True
        )

    def get_anniversary(self, anniversary_id: str) -> Optional[AnniversaryRecord]:
        return self.anniversaries.get(anniversary_id)

    def create_anniversary(
        self, title: str, anniversary_date: date, reminder_days: int = 1
    ) -> AnniversaryRecord:
        if self._title_taken(title):
            raise DuplicateTitleError(title)
        record = AnniversaryRecord(
            anniversary_id=uuid.uuid4().hex,
            title=title,
            date=anniversary_date,
            reminder_days=reminder_days,
        )
        self.anniversaries[record.anniversary_id] = record
        return record

    def update_anniversary(
        self,
        anniversary_id: str,
        *,
        title: str,
        anniversary_date: date,
        reminder_days: int,
    ) -> Optional[AnniversaryRecord]:
        record = self.anniversaries.get(anniversary_id)
        if not record:
            return None
        if self._title_taken(title, exclude_id=anniversary_id):
            raise DuplicateTitleError(title)
        record.title = title
        record.date = anniversary_date
        record.reminder_days = reminder_days
        record.updated_at = _utcnow()
        return record

    def delete_anniversary(self, anniversary_id: str) -> bool:
        return self.anniversaries.pop(anniversary_id, None) is not None

    def list_recipients(self) -> list[Recipient]:
        return [Recipient(name=user.name, email=user.email) for user in self.list_users()]

    def count_users(self) -> int:
        return len(self.users)

    def list_users(self) -> list[UserRecord]:
        return sorted(self.users.values(), key=lambda user: user.created_at)

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        return self.users.get(user_id)

    def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        wanted = normalize_email(email)
        for user in self.users.values():
            if user.email == wanted:
                return user
        return None

    def create_user(
        self,
        name: str,
        email: str,
        password_hash: str,
        *,
        allow_additional: bool = True,
    ) -> UserRecord:
        existing = len(self.users)
        if existing and not allow_additional:
            raise RegistrationClosedError("Registration is closed")
        if self.get_user_by_email(email):
            raise DuplicateEmailError(normalize_email(email))
        user = UserRecord(
            user_id=uuid.uuid4().hex,
            name=name,
            email=normalize_email(email),
            password_hash=password_hash,
            is_admin=existing == 0,
        )
        self.users[user.user_id] = user
        return user

    def delete_user(self, user_id: str) -> bool:
        return self.users.pop(user_id, None) is not None

    def list_memories(self) -> list[MemoryRecord]:
        return sorted(
            self.memories.values(), key=lambda record: record.date, reverse=True
        )

    def get_memory(self, memory_id: str) -> Optional[MemoryRecord]:
        return self.memories.get(memory_id)

    def create_memory(
        self, title: str, description: str, memory_date: date, user_id: str
    ) -> MemoryRecord:
        record = MemoryRecord(
            memory_id=uuid.uuid4().hex,
            title=title,
            description=description,
            date=memory_date,
            user_id=user_id,
        )
        self.memories[record.memory_id] = record
        return record

    def update_memory(
        self,
        memory_id: str,
        *,
        title: str,
        description: str,
        memory_date: date,
    ) -> Optional[MemoryRecord]:
        record = self.memories.get(memory_id)
        if not record:
            return None
        record.title = title
        record.description = description
        record.date = memory_date
        record.updated_at = _utcnow()
        return record

    def delete_memory(self, memory_id: str) -> bool:
        return self.memories.pop(memory_id, None) is not None


class PostgresDbClient:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for PostgresDbClient")
        self.engine = create_engine(
            database_url,
            future=True,
            pool_pre_ping=True,
            pool_recycle=1800,
        )
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    def _to_anniversary_record(self, row: "AnniversaryRow") -> AnniversaryRecord:
        return AnniversaryRecord(
            anniversary_id=row.anniversary_id,
            title=row.title,
            date=row.date,
            reminder_days=row.reminder_days,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def _to_user_record(self, row: "UserRow") -> UserRecord:
        return UserRecord(
            user_id=row.user_id,
            name=row.name,
            email=row.email,
            password_hash=row.password_hash,
            is_admin=row.is_admin,
            created_at=row.created_at,
        )

    def ping(self) -> bool:
        with self.Session() as session:
            session.execute(select(1))
        return True

    def list_anniversaries(self) -> list[AnniversaryRecord]:
        with self.Session() as session:
            rows = session.scalars(
                select(AnniversaryRow).order_by(AnniversaryRow.date.desc())
            ).all()
            return [self._to_anniversary_record(row) for row in rows]

    def get_anniversary(self, anniversary_id: str) -> Optional[AnniversaryRecord]:
        with self.Session() as session:
            row = session.get(AnniversaryRow, anniversary_id)
            if not row:
                return None
            return self._to_anniversary_record(row)

    def create_anniversary(
        self, title: str, anniversary_date: date, reminder_days: int = 1
    ) -> AnniversaryRecord:
        now = _utcnow()
        with self.Session() as session:
            taken = session.scalar(
                select(AnniversaryRow.anniversary_id).where(AnniversaryRow.title == title)
            )
            if taken:
                raise DuplicateTitleError(title)
            row = AnniversaryRow(
                anniversary_id=uuid.uuid4().hex,
                title=title,
                date=anniversary_date,
                reminder_days=reminder_days,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise DuplicateTitleError(title) from exc
            session.refresh(row)
            return self._to_anniversary_record(row)

    def update_anniversary(
        self,
        anniversary_id: str,
        *,
        title: str,
        anniversary_date: date,
        reminder_days: int,
    ) -> Optional[AnniversaryRecord]:
        with self.Session() as session:
            row = session.get(AnniversaryRow, anniversary_id)
            if not row:
                return None
            taken = session.scalar(
                select(AnniversaryRow.anniversary_id).where(
                    AnniversaryRow.title == title,
                    AnniversaryRow.anniversary_id != anniversary_id,
                )
            )
            if taken:
                raise DuplicateTitleError(title)
            row.title = title
            row.date = anniversary_date
            row.reminder_days = reminder_days
            row.updated_at = _utcnow()
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise DuplicateTitleError(title) from exc
            session.refresh(row)
            return self._to_anniversary_record(row)

    def delete_anniversary(self, anniversary_id: str) -> bool:
        with self.Session() as session:
            row = session.get(AnniversaryRow, anniversary_id)
            if not row:
                return False
            session.delete(row)
            session.commit()
            return True

    def list_recipients(self) -> list[Recipient]:
        with self.Session() as session:
            rows = session.execute(
                select(UserRow.name, UserRow.email).order_by(UserRow.created_at.asc())
            ).all()
            return [Recipient(name=name, email=email) for name, email in rows]

    def count_users(self) -> int:
        with self.Session() as session:
            return session.scalar(select(func.count()).select_from(UserRow)) or 0

    def list_users(self) -> list[UserRecord]:
        with self.Session() as session:
            rows = session.scalars(
                select(UserRow).order_by(UserRow.created_at.asc())
            ).all()
            return [self._to_user_record(row) for row in rows]

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        with self.Session() as session:
            row = session.get(UserRow, user_id)
            return self._to_user_record(row) if row else None

    def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        with self.Session() as session:
            row = session.scalars(
                select(UserRow).where(UserRow.email == normalize_email(email))
            ).first()
            return self._to_user_record(row) if row else None

    def create_user(
        self,
        name: str,
        email: str,
        password_hash: str,
        *,
        allow_additional: bool = True,
    ) -> UserRecord:
        """
        Count, lock check, admin bootstrap and insert happen in one transaction.
        """
        email = normalize_email(email)
        with self.Session() as session:
            with session.begin():
                if self.engine.dialect.name == "postgresql":
                    # Serialize concurrent registrations so only one user can see count == 0.
                    session.execute(text("LOCK TABLE users IN SHARE ROW EXCLUSIVE MODE"))
                existing = session.scalar(select(func.count()).select_from(UserRow)) or 0
                if existing and not allow_additional:
                    raise RegistrationClosedError("Registration is closed")
                if session.scalar(select(UserRow.user_id).where(UserRow.email == email)):
                    raise DuplicateEmailError(email)
                row = UserRow(
                    user_id=uuid.uuid4().hex,
                    name=name,
                    email=email,
                    password_hash=password_hash,
                    is_admin=existing == 0,
                    created_at=_utcnow(),
                )
                session.add(row)
            session.refresh(row)
            return self._to_user_record(row)

    def delete_user(self, user_id: str) -> bool:
        with self.Session() as session:
            row = session.get(UserRow, user_id)
            if not row:
                return False
            session.delete(row)
            session.commit()
            return True

    def _to_memory_record(self, row: "MemoryRow") -> MemoryRecord:
        return MemoryRecord(
            memory_id=row.memory_id,
            title=row.title,
            description=row.description,
            date=row.date,
            user_id=row.user_id,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def list_memories(self) -> list[MemoryRecord]:
        with self.Session() as session:
            rows = session.scalars(
                select(MemoryRow).order_by(MemoryRow.date.desc())
            ).all()
            return [self._to_memory_record(row) for row in rows]

    def get_memory(self, memory_id: str) -> Optional[MemoryRecord]:
        with self.Session() as session:
            row = session.get(MemoryRow, memory_id)
            return self._to_memory_record(row) if row else None

    def create_memory(
        self, title: str, description: str, memory_date: date, user_id: str
    ) -> MemoryRecord:
        now = _utcnow()
        with self.Session() as session:
            row = MemoryRow(
                memory_id=uuid.uuid4().hex,
                title=title,
                description=description,
                date=memory_date,
                user_id=user_id,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return self._to_memory_record(row)

    def update_memory(
        self,
        memory_id: str,
        *,
        title: str,
        description: str,
        memory_date: date,
    ) -> Optional[MemoryRecord]:
        with self.Session() as session:
            row = session.get(MemoryRow, memory_id)
            if not row:
                return None
            row.title = title
            row.description = description
            row.date = memory_date
            row.updated_at = _utcnow()
            session.commit()
            session.refresh(row)
            return self._to_memory_record(row)

    def delete_memory(self, memory_id: str) -> bool:
        with self.Session() as session:
            row = session.get(MemoryRow, memory_id)
            if not row:
                return False
            session.delete(row)
            session.commit()
            return True


Base = declarative_base()


class AnniversaryRow(Base):
    __tablename__ = "anniversaries"

    anniversary_id = Column(String, primary_key=True)
    title = Column(String(100), nullable=False, unique=True)
    date = Column(Date, nullable=False, index=True)
    reminder_days = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class UserRow(Base):
    __tablename__ = "users"

    user_id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    email = Column(String, nullable=False, unique=True, index=True)
    password_hash = Column(String, nullable=False)
    is_admin = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), nullable=False)


class MemoryRow(Base):
    __tablename__ = "memories"

    memory_id = Column(String, primary_key=True)
    title = Column(String(100), nullable=False)
    description = Column(Text, nullable=False)
    date = Column(Date, nullable=False, index=True)
    # Plain column: memories outlive a deleted author.
    user_id = Column(String, nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)
