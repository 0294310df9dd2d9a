"""
Database engine, session management, and base model class.

This module sets up SQLAlchemy 2.0 with async support. Key components:

  - engine: The async database engine (connection pool for production DBs)
  - AsyncSessionLocal: Factory for creating async database sessions
  - Base: Declarative base class that all ORM models inherit from
  - make_session_factory(): builds a session factory for any engine, so
    tests can point a LedgerEngine at an isolated database

Session lifecycle:
  Sessions are not handed to request handlers directly. The LedgerEngine
  opens one session per operation and wraps it in a single database
  transaction, so a balance mutation and its paired transaction record
  commit or roll back together.
"""

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from payledger.config import settings


# echo=True in debug mode logs all SQL statements.
engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
)


def make_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """
    Create an AsyncSession factory bound to ``bind``.

    expire_on_commit=False keeps returned ORM objects readable after the
    unit of work commits; otherwise attribute access would trigger a lazy
    load, which fails in async context.
    """
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
    )


AsyncSessionLocal = make_session_factory(engine)


class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy ORM models.

    Provides metadata tracking for create_all() and migrations.
    """
    pass
