"""Attachment and extraction tables."""

from sqlalchemy import (
    BigInteger,
    Boolean,
    Column,
    DateTime,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    text,
    true,
)

from cips.models.columns import BigId, created_at_column, id_column, updated_at_column


def message_resource_table(metadata: MetaData, prefix: str) -> Table:
    """One row per attachment; status follows pending -> downloading -> ready|too_large|failed."""
    name = f"{prefix}message_resource"
    return Table(
        name,
        metadata,
        id_column(),
        Column("tenant_key", String(64), nullable=False),
        Column("message_id", String(64), nullable=False),
        Column("chat_id", String(64), nullable=False),
        Column("resource_type", String(32), nullable=False),
        Column("file_key", String(128), nullable=False),
        Column("file_name", String(255), nullable=True),
        Column("mime_type", String(128), nullable=True),
        Column("size_bytes", BigInteger, nullable=True),
        Column("status", String(32), nullable=False),
        Column("storage_path", Text, nullable=True),
        Column("error", Text, nullable=True),
        Column("attempts", Integer, nullable=False, default=0, server_default=text("0")),
        Column("last_attempt_at", DateTime(timezone=True), nullable=True),
        created_at_column(),
        updated_at_column(),
        UniqueConstraint("tenant_key", "message_id", "file_key", name=f"uq_{name}_key"),
        Index(f"ix_{name}_status", "tenant_key", "status"),
        Index(f"ix_{name}_chat_id", "chat_id"),
    )


def content_extraction_table(metadata: MetaData, prefix: str) -> Table:
    """Derived text, at most one row per resource. Superseded in place on retry."""
    name = f"{prefix}content_extraction"
    return Table(
        name,
        metadata,
        id_column(),
        Column("tenant_key", String(64), nullable=False),
        Column("message_id", String(64), nullable=False),
        Column("resource_id", BigId, nullable=False),
        Column("resource_type", String(32), nullable=False),
        Column("language", String(32), nullable=True),
        Column("text", Text, nullable=True),
        Column("model", String(128), nullable=True),
        Column("status", String(32), nullable=False),
        Column("error", Text, nullable=True),
        Column("retryable", Boolean, nullable=False, default=True, server_default=true()),
        created_at_column(),
        updated_at_column(),
        UniqueConstraint("tenant_key", "resource_id", name=f"uq_{name}_resource"),
        Index(f"ix_{name}_message_id", "message_id"),
        Index(f"ix_{name}_status", "status"),
    )
