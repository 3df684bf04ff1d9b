"""Database bootstrap helpers for the record store."""

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker
from sqlalchemy.pool import StaticPool


class Base(DeclarativeBase):
    """Declarative base for SQLAlchemy models."""

    pass


def build_engine(dsn: str) -> Engine:
    """Create an engine for `dsn`.

    In-memory SQLite shares one connection across sessions so that every
    session sees the same database; everything else gets a pre-pinged pool.
    """

    if dsn == "sqlite://" or (dsn.startswith("sqlite") and ":memory:" in dsn):
        return create_engine(dsn, connect_args={"check_same_thread": False}, poolclass=StaticPool)
    return create_engine(dsn, pool_pre_ping=True)


def make_session_factory(engine: Engine) -> sessionmaker:
    # `expire_on_commit=False` keeps ORM objects readable after commit in handlers.
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


def create_schema(engine: Engine) -> None:
    """Create all tables for local development and tests (production uses Alembic)."""

    # Imported for side effects: registers every mapped table on Base.metadata.
    from cupfortune.services.notification import models as _notification_models  # noqa: F401
    from cupfortune.services.records import models as _record_models  # noqa: F401

    Base.metadata.create_all(engine)
