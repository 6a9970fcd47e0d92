"""Shared column helpers."""

from datetime import datetime, timezone

from sqlalchemy import BigInteger, Column, DateTime, Integer

# SQLite only autoincrements INTEGER PRIMARY KEY.
BigId = BigInteger().with_variant(Integer(), "sqlite")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def id_column() -> Column:
    return Column("id", BigId, primary_key=True, autoincrement=True)


def created_at_column() -> Column:
    return Column("created_at", DateTime(timezone=True), nullable=False, default=utcnow)


def updated_at_column() -> Column:
    return Column(
        "updated_at", DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )
