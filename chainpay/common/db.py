"""Database bootstrap helpers shared by all services."""

from decimal import Decimal

from sqlalchemy import JSON, Numeric, String, create_engine
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, sessionmaker
from sqlalchemy.types import TypeDecorator

from chainpay.common.config import settings


# Single SQLAlchemy engine per process.
engine = create_engine(settings.postgres_dsn, pool_pre_ping=True)
# `expire_on_commit=False` keeps ORM objects readable after commit in handlers.
SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests).
JsonPayload = JSON().with_variant(JSONB(), "postgresql")


class TokenAmount(TypeDecorator):
    """uint256-sized integer column.

    NUMERIC(78, 0) on PostgreSQL; SQLite has no exact wide integers, so the
    value is kept as a decimal string there. Python always sees an `int`.
    """

    impl = Numeric(78, 0)
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "sqlite":
            return dialect.type_descriptor(String(78))
        return dialect.type_descriptor(Numeric(78, 0))

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if dialect.name == "sqlite":
            return str(int(value))
        return Decimal(int(value))

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return int(value)


class Base(DeclarativeBase):
    """Declarative base for SQLAlchemy models."""

    pass
