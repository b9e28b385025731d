"""
Database abstraction: an in-memory implementation for development/tests and a
SQLAlchemy-backed one for real deployments.

Password entries and documents share one ownership-scoped table shape
(``OwnedTable``); the owner id is part of every lookup predicate, so a record
belonging to someone else is simply not found.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import asdict, dataclass, field, fields, replace
from typing import Dict, Generic, Iterable, Optional, Protocol, Type, TypeVar

from sqlalchemy import Column, Float, Integer, String, Text, create_engine, delete, select
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool


def new_id() -> str:
    return uuid.uuid4().hex


@dataclass
class UserRecord:
    id: str
    email: str
    password_hash: str
    display_name: Optional[str] = None
    avatar: Optional[str] = None
    created_at: float = field(default_factory=lambda: time.time())
    updated_at: float = field(default_factory=lambda: time.time())

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "email": self.email,
            "display_name": self.display_name,
            "avatar": self.avatar,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass
class PasswordEntry:
    id: str
    owner_id: str
    title: str
    secret: str
    username: Optional[str] = None
    website: Optional[str] = None
    category: str = "other"
    notes: Optional[str] = None
    created_at: float = field(default_factory=lambda: time.time())
    updated_at: float = field(default_factory=lambda: time.time())

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass
class DocumentRecord:
    id: str
    owner_id: str
    stored_name: str
    original_name: str
    locator: str
    content_type: Optional[str]
    size_bytes: int
    created_at: float = field(default_factory=lambda: time.time())

    def as_dict(self) -> dict:
        return asdict(self)


R = TypeVar("R")

PROTECTED_FIELDS = frozenset({"id", "owner_id", "created_at"})


class OwnedTable(Protocol[R]):
    """CRUD over records that belong to exactly one owner."""

    def list(self, owner_id: str) -> list[R]:
        ...

    def get(self, record_id: str, owner_id: str) -> Optional[R]:
        ...

    def insert(self, record: R) -> R:
        ...

    def update(self, record_id: str, owner_id: str, changes: dict) -> Optional[R]:
        ...

    def delete(self, record_id: str, owner_id: str) -> bool:
        ...


def _check_changes(record_cls: type, changes: dict, write_once: Iterable[str]) -> None:
    allowed = {f.name for f in fields(record_cls)}
    blocked = PROTECTED_FIELDS.union(write_once)
    for name in changes:
        if name not in allowed:
            raise ValueError(f"Unknown field for {record_cls.__name__}: {name}")
        if name in blocked:
            raise ValueError(f"{name} cannot be changed after creation")


def _touch(record_cls: type) -> dict:
    if "updated_at" in {f.name for f in fields(record_cls)}:
        return {"updated_at": time.time()}
    return {}


class DbClient(Protocol):
    """Interface for database access."""

    passwords: OwnedTable[PasswordEntry]
    documents: OwnedTable[DocumentRecord]

    def create_user(self, user: UserRecord) -> UserRecord:
        ...

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        ...

    def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        ...

    def update_user(self, user_id: str, changes: dict) -> Optional[UserRecord]:
        ...


class InMemoryOwnedTable(Generic[R]):
    """Owner -> id -> record; dicts keep insertion order for tie-breaking."""

    def __init__(self, record_cls: Type[R], write_once: Iterable[str] = ()):
        self.record_cls = record_cls
        self.write_once = tuple(write_once)
        self._by_owner: Dict[str, Dict[str, R]] = {}

    def list(self, owner_id: str) -> list[R]:
        rows = list(self._by_owner.get(owner_id, {}).values())
        rows.reverse()
        # sort() is stable, so equal timestamps keep newest-inserted first.
        rows.sort(key=lambda r: r.created_at, reverse=True)
        return [replace(r) for r in rows]

    def get(self, record_id: str, owner_id: str) -> Optional[R]:
        record = self._by_owner.get(owner_id, {}).get(record_id)
        return replace(record) if record else None

    def insert(self, record: R) -> R:
        self._by_owner.setdefault(record.owner_id, {})[record.id] = replace(record)
        return record

    def update(self, record_id: str, owner_id: str, changes: dict) -> Optional[R]:
        _check_changes(self.record_cls, changes, self.write_once)
        owned = self._by_owner.get(owner_id, {})
        record = owned.get(record_id)
        if record is None:
            return None
        owned[record_id] = replace(record, **{**changes, **_touch(self.record_cls)})
        return replace(owned[record_id])

    def delete(self, record_id: str, owner_id: str) -> bool:
        return self._by_owner.get(owner_id, {}).pop(record_id, None) is not None

    def clear(self) -> None:
        self._by_owner.clear()


class InMemoryDbClient:
    """Simple in-memory database for development and tests."""

    def __init__(self):
        self.users: Dict[str, UserRecord] = {}
        self.passwords = InMemoryOwnedTable(PasswordEntry)
        self.documents = InMemoryOwnedTable(
            DocumentRecord, write_once=("locator", "stored_name")
        )

    def create_user(self, user: UserRecord) -> UserRecord:
        self.users[user.id] = replace(user)
        return user

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        user = self.users.get(user_id)
        return replace(user) if user else None

    def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        for user in self.users.values():
            if user.email == email:
                return replace(user)
        return None

    def update_user(self, user_id: str, changes: dict) -> Optional[UserRecord]:
        _check_changes(UserRecord, changes, ())
        user = self.users.get(user_id)
        if user is None:
            return None
        self.users[user_id] = replace(user, **{**changes, "updated_at": time.time()})
        return replace(self.users[user_id])

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        self.users.clear()
        self.passwords.clear()
        self.documents.clear()


class SqlOwnedTable(Generic[R]):
    """SQLAlchemy rendition of ``OwnedTable``; ``seq`` orders equal timestamps."""

    def __init__(
        self,
        session_factory: sessionmaker,
        row_cls: type,
        record_cls: Type[R],
        write_once: Iterable[str] = (),
    ):
        self.Session = session_factory
        self.row_cls = row_cls
        self.record_cls = record_cls
        self.write_once = tuple(write_once)

    def _to_record(self, row) -> R:
        return self.record_cls(
            **{f.name: getattr(row, f.name) for f in fields(self.record_cls)}
        )

    def _owned(self, record_id: str, owner_id: str):
        return select(self.row_cls).where(
            self.row_cls.id == record_id, self.row_cls.owner_id == owner_id
        )

    def list(self, owner_id: str) -> list[R]:
        with self.Session() as session:
            stmt = (
                select(self.row_cls)
                .where(self.row_cls.owner_id == owner_id)
                .order_by(self.row_cls.created_at.desc(), self.row_cls.seq.desc())
            )
            return [self._to_record(row) for row in session.execute(stmt).scalars()]

    def get(self, record_id: str, owner_id: str) -> Optional[R]:
        with self.Session() as session:
            row = session.execute(self._owned(record_id, owner_id)).scalar_one_or_none()
            return self._to_record(row) if row else None

    def insert(self, record: R) -> R:
        with self.Session() as session:
            row = self.row_cls(**asdict(record))
            session.add(row)
            session.commit()
            session.refresh(row)
            return self._to_record(row)

    def update(self, record_id: str, owner_id: str, changes: dict) -> Optional[R]:
        _check_changes(self.record_cls, changes, self.write_once)
        with self.Session() as session:
            row = session.execute(self._owned(record_id, owner_id)).scalar_one_or_none()
            if not row:
                return None
            for name, value in {**changes, **_touch(self.record_cls)}.items():
                setattr(row, name, value)
            session.commit()
            session.refresh(row)
            return self._to_record(row)

    def delete(self, record_id: str, owner_id: str) -> bool:
        with self.Session() as session:
            result = session.execute(
                delete(self.row_cls).where(
                    self.row_cls.id == record_id, self.row_cls.owner_id == owner_id
                )
            )
            session.commit()
            return (result.rowcount or 0) > 0


class SqlDbClient:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for SqlDbClient")
        engine_kwargs = {"future": True, "pool_pre_ping": True}
        if not database_url.startswith("sqlite"):
            engine_kwargs["pool_recycle"] = 1800
        elif ":memory:" in database_url:
            # One shared connection so every session sees the same in-memory database.
            engine_kwargs["poolclass"] = StaticPool
            engine_kwargs["connect_args"] = {"check_same_thread": False}
        self.engine = create_engine(database_url, **engine_kwargs)
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)
        self.passwords = SqlOwnedTable(self.Session, PasswordRow, PasswordEntry)
        self.documents = SqlOwnedTable(
            self.Session,
            DocumentRow,
            DocumentRecord,
            write_once=("locator", "stored_name"),
        )

    def _to_user(self, row: "UserRow") -> UserRecord:
        return UserRecord(
            id=row.id,
            email=row.email,
            password_hash=row.password_hash,
            display_name=row.display_name,
            avatar=row.avatar,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def create_user(self, user: UserRecord) -> UserRecord:
        with self.Session() as session:
            row = UserRow(**asdict(user))
            session.add(row)
            session.commit()
            session.refresh(row)
            return self._to_user(row)

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        with self.Session() as session:
            row = session.get(UserRow, user_id)
            return self._to_user(row) if row else None

    def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        with self.Session() as session:
            row = session.execute(
                select(UserRow).where(UserRow.email == email)
            ).scalar_one_or_none()
            return self._to_user(row) if row else None

    def update_user(self, user_id: str, changes: dict) -> Optional[UserRecord]:
        _check_changes(UserRecord, changes, ())
        with self.Session() as session:
            row = session.get(UserRow, user_id)
            if not row:
                return None
            for name, value in changes.items():
                setattr(row, name, value)
            row.updated_at = time.time()
            session.commit()
            session.refresh(row)
            return self._to_user(row)


Base = declarative_base()


class UserRow(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True)
    email = Column(String, nullable=False, unique=True, index=True)
    password_hash = Column(String, nullable=False)
    display_name = Column(String, nullable=True)
    avatar = Column(String, nullable=True)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)


class PasswordRow(Base):
    __tablename__ = "password_entries"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String, nullable=False, unique=True, index=True)
    owner_id = Column(String, nullable=False, index=True)
    title = Column(String, nullable=False)
    username = Column(String, nullable=True)
    secret = Column(Text, nullable=False)
    website = Column(String, nullable=True)
    category = Column(String, nullable=False, default="other")
    notes = Column(Text, nullable=True)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)


class DocumentRow(Base):
    __tablename__ = "documents"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String, nullable=False, unique=True, index=True)
    owner_id = Column(String, nullable=False, index=True)
    stored_name = Column(String, nullable=False)
    original_name = Column(String, nullable=False)
    locator = Column(String, nullable=False)
    content_type = Column(String, nullable=True)
    size_bytes = Column(Integer, nullable=False)
    created_at = Column(Float, nullable=False)
