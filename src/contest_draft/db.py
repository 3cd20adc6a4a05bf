"""Relational storage - contests, rooms, entries, ledgers and the draft key/value tables."""

import logging
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, Optional

from sqlalchemy import (
    JSON,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    text,
)
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker

from src.contest_draft.config import DATABASE_URL, ROOM_CAPACITY

logger = logging.getLogger(__name__)

# Entries that still hold a seat in their room
ACTIVE_ENTRY_STATUSES = ("pending", "drafting")
# Rooms matchmaking may no longer place users into
CLOSED_ROOM_STATUSES = ("drafting", "completed")


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid.uuid4())


class Base(DeclarativeBase):
    pass


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    username: Mapped[str] = mapped_column(String(64), nullable=False)
    balance_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    tickets: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


class Contest(Base):
    __tablename__ = "contests"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=new_id)
    type: Mapped[str] = mapped_column(String(16), nullable=False, default="cash", index=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="open", index=True)
    entry_fee_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    prize_pool_cents: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_entries: Mapped[int] = mapped_column(Integer, nullable=False, default=ROOM_CAPACITY)
    current_entries: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_entries_per_user: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    player_board: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


class Room(Base):
    __tablename__ = "rooms"
    __table_args__ = (
        UniqueConstraint("contest_id", "number", name="uq_room_contest_number"),
    )

    id: Mapped[str] = mapped_column(String(96), primary_key=True)
    contest_id: Mapped[str] = mapped_column(ForeignKey("contests.id"), nullable=False, index=True)
    number: Mapped[int] = mapped_column(Integer, nullable=False)
    capacity: Mapped[int] = mapped_column(Integer, nullable=False, default=ROOM_CAPACITY)
    # waiting -> ready -> drafting -> completed
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="waiting")
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


class ContestEntry(Base):
    __tablename__ = "contest_entries"
    __table_args__ = (
        Index(
            "uq_entry_room_position_active",
            "room_id",
            "draft_position",
            unique=True,
            sqlite_where=text("status IN ('pending', 'drafting')"),
            postgresql_where=text("status IN ('pending', 'drafting')"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    contest_id: Mapped[str] = mapped_column(ForeignKey("contests.id"), nullable=False, index=True)
    room_id: Mapped[str] = mapped_column(ForeignKey("rooms.id"), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    username: Mapped[str] = mapped_column(String(64), nullable=False)
    draft_position: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    # pending -> drafting -> completed, or pending -> cancelled
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="pending", index=True)
    roster: Mapped[Optional[Any]] = mapped_column(JSON, nullable=True)
    total_spent: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    entered_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)


class LedgerTransaction(Base):
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_after_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    contest_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    description: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


class Lineup(Base):
    __tablename__ = "lineups"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    entry_id: Mapped[int] = mapped_column(ForeignKey("contest_entries.id"), nullable=False, unique=True)
    contest_id: Mapped[str] = mapped_column(String(64), nullable=False)
    contest_type: Mapped[str] = mapped_column(String(16), nullable=False)
    roster: Mapped[Any] = mapped_column(JSON, nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False, default="drafted")
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


class TicketTransaction(Base):
    __tablename__ = "ticket_transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), nullable=False, index=True)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_after: Mapped[int] = mapped_column(Integer, nullable=False)
    # One completion bonus per entry
    reference_entry_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, unique=True)
    reason: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)


class DraftStateRecord(Base):
    __tablename__ = "draft_states"

    room_id: Mapped[str] = mapped_column(String(96), primary_key=True)
    payload: Mapped[str] = mapped_column(Text, nullable=False)
    expires_at: Mapped[float] = mapped_column(Float, nullable=False, index=True)


class TurnRecord(Base):
    __tablename__ = "draft_turns"

    room_id: Mapped[str] = mapped_column(String(96), primary_key=True)
    turn: Mapped[int] = mapped_column(Integer, nullable=False)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    time_limit: Mapped[float] = mapped_column(Float, nullable=False)
    started_at: Mapped[float] = mapped_column(Float, nullable=False)
    expires_at: Mapped[float] = mapped_column(Float, nullable=False, index=True)


class LockLease(Base):
    __tablename__ = "lock_leases"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    token: Mapped[str] = mapped_column(String(64), nullable=False)
    expires_at: Mapped[float] = mapped_column(Float, nullable=False)


class Database:
    """Engine plus session factories.

    ``session()`` runs at the driver's default isolation; ``serializable()``
    is used wherever a read is re-validated before a write (admission,
    withdrawal, lock leases, draft finalization). SQLite ignores row locks,
    so there a serializable session opens with ``BEGIN IMMEDIATE`` and holds
    the database write lock from its first read.
    """

    def __init__(self, url: str = DATABASE_URL, echo: bool = False):
        self.url = url
        connect_args = {}
        sqlite_file = False
        if url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
            database = make_url(url).database
            if database and database != ":memory:":
                Path(database).parent.mkdir(parents=True, exist_ok=True)
                sqlite_file = True
        self.engine = create_engine(url, echo=echo, connect_args=connect_args)
        if sqlite_file:
            self._serializable_engine = create_engine(url, echo=echo, connect_args=connect_args)
            _begin_immediate(self._serializable_engine)
        else:
            self._serializable_engine = self.engine.execution_options(
                isolation_level="SERIALIZABLE"
            )
        self._sessions = sessionmaker(bind=self.engine, expire_on_commit=False)
        self._serializable_sessions = sessionmaker(
            bind=self._serializable_engine, expire_on_commit=False
        )

    def create_all(self):
        Base.metadata.create_all(self.engine)
        logger.info("Database schema ready at %s", make_url(self.url).render_as_string())

    def dispose(self):
        self._serializable_engine.dispose()
        self.engine.dispose()

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Session committed on success and rolled back on any exception."""
        with self._scope(self._sessions) as session:
            yield session

    @contextmanager
    def serializable(self) -> Iterator[Session]:
        """Like ``session()`` but at SERIALIZABLE isolation."""
        with self._scope(self._serializable_sessions) as session:
            yield session

    @staticmethod
    @contextmanager
    def _scope(factory: sessionmaker) -> Iterator[Session]:
        session = factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


def _begin_immediate(engine: Engine):
    """Make every transaction on a SQLite engine take the write lock up front."""

    @event.listens_for(engine, "connect")
    def _disable_driver_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")
