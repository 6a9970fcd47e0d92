"""Dialect-aware INSERT ... ON CONFLICT / ON DUPLICATE KEY UPDATE."""

from collections.abc import Iterator, Sequence
from typing import Any, TypeVar

from sqlalchemy import Table
from sqlalchemy.dialects import mysql, postgresql, sqlite

from cips.models.columns import utcnow

WRITE_BATCH_SIZE = 200

T = TypeVar("T")


def chunk_rows(rows: Sequence[T], size: int = WRITE_BATCH_SIZE) -> Iterator[Sequence[T]]:
    """Split rows into statements of at most `size` rows."""
    for start in range(0, len(rows), size):
        yield rows[start : start + size]


def upsert(
    dialect: str,
    table: Table,
    rows: list[dict[str, Any]] | dict[str, Any],
    conflict_columns: Sequence[str],
    update_columns: Sequence[str],
):
    """Build an upsert that overwrites `update_columns` when `conflict_columns` collide.

    `updated_at` is refreshed on conflict when the table has one.
    """
    touch_updated = "updated_at" in table.c and "updated_at" not in update_columns
    if dialect == "mysql":
        stmt = mysql.insert(table).values(rows)
        values = {col: stmt.inserted[col] for col in update_columns}
        if touch_updated:
            values["updated_at"] = utcnow()
        return stmt.on_duplicate_key_update(**values)

    if dialect == "postgresql":
        stmt = postgresql.insert(table).values(rows)
    elif dialect == "sqlite":
        stmt = sqlite.insert(table).values(rows)
    else:
        raise ValueError(f"Unsupported dialect for upsert: {dialect}")
    values = {col: stmt.excluded[col] for col in update_columns}
    if touch_updated:
        values["updated_at"] = utcnow()
    return stmt.on_conflict_do_update(index_elements=list(conflict_columns), set_=values)
