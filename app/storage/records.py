"""Relational store for users and info views."""

from datetime import datetime
from typing import Callable, List, Optional, TypeVar

from sqlalchemy import DateTime, Integer, String, Text, create_engine, func, select
from sqlalchemy.exc import DataError, IntegrityError, InterfaceError, OperationalError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from ..errors import RecordNotFound, RecordStoreError, RecordStoreUnavailable
from .retry import call_with_retry
from .schema import utcnow

T = TypeVar("T")

MAX_NAME_LENGTH = 255


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(MAX_NAME_LENGTH), nullable=False, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )


class InfoView(Base):
    __tablename__ = "info_views"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    content: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)


def make_engine(database_url: str):
    kwargs = {"pool_pre_ping": True}
    if database_url.startswith("sqlite"):
        # the session factory is shared with the job threads
        kwargs["connect_args"] = {"check_same_thread": False}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
    return create_engine(database_url, **kwargs)


class UserRepository:
    def __init__(self, engine, attempts: int = 3, delay: float = 0.2):
        self.engine = engine
        self.sessions = sessionmaker(bind=engine, expire_on_commit=False)
        self.attempts = attempts
        self.delay = delay

    def create_schema(self) -> None:
        Base.metadata.create_all(self.engine)

    def _run(self, fn: Callable[[Session], T]) -> T:
        def attempt():
            with self.sessions.begin() as session:
                return fn(session)

        return call_with_retry(
            attempt,
            attempts=self.attempts,
            delay=self.delay,
            retry_on=(OperationalError, InterfaceError),
            give_up=lambda exc: RecordStoreUnavailable(f"Database unavailable: {exc.__class__.__name__}"),
        )

    @staticmethod
    def _filtered(stmt, name: Optional[str]):
        if name:
            stmt = stmt.where(func.lower(User.name).contains(name.lower(), autoescape=True))
        return stmt

    def count(self, name: Optional[str] = None) -> int:
        stmt = self._filtered(select(func.count(User.id)), name)
        return self._run(lambda s: s.scalar(stmt))

    def find(self, name: Optional[str] = None, offset: int = 0, limit: int = 100) -> List[User]:
        stmt = (
            self._filtered(select(User), name)
            .order_by(User.created_at.desc(), User.id.desc())
            .offset(offset)
            .limit(limit)
        )
        return self._run(lambda s: list(s.scalars(stmt)))

    def get(self, user_id: int) -> Optional[User]:
        return self._run(lambda s: s.get(User, user_id))

    def create(self, name: str) -> User:
        def insert(session: Session) -> User:
            user = User(name=name)
            session.add(user)
            try:
                session.flush()
            except (IntegrityError, DataError) as exc:
                raise RecordStoreError(f"rejected by database: {exc.orig}") from exc
            return user

        return self._run(insert)

    def delete(self, user_id: int) -> User:
        def remove(session: Session) -> User:
            user = session.get(User, user_id)
            if user is None:
                raise RecordNotFound(f"User {user_id} does not exist")
            session.delete(user)
            return user

        return self._run(remove)

    def list_info_views(self) -> List[InfoView]:
        return self._run(lambda s: list(s.scalars(select(InfoView).order_by(InfoView.id))))
