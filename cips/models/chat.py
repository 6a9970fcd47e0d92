"""Chat metadata and membership tables."""

from sqlalchemy import (
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
    false,
)

from cips.models.columns import created_at_column, id_column, updated_at_column


def im_chat_table(metadata: MetaData, prefix: str) -> Table:
    name = f"{prefix}im_chat"
    return Table(
        name,
        metadata,
        id_column(),
        Column("tenant_key", String(64), nullable=False),
        Column("chat_id", String(64), nullable=False),
        Column("name", String(255), nullable=True),
        Column("description", Text, nullable=True),
        Column("owner_id", String(64), nullable=True),
        Column("owner_id_type", String(32), nullable=True),
        Column("member_count", Integer, nullable=True),
        Column("chat_mode", String(32), nullable=True),
        Column("chat_type", String(32), nullable=True),
        Column("last_synced_at", DateTime(timezone=True), nullable=True),
        created_at_column(),
        updated_at_column(),
        UniqueConstraint("tenant_key", "chat_id", name=f"uq_{name}_chat"),
    )


def im_chat_member_table(metadata: MetaData, prefix: str) -> Table:
    """Per-chat member snapshot, replaced on every member sync."""
    name = f"{prefix}im_chat_member"
    return Table(
        name,
        metadata,
        id_column(),
        Column("tenant_key", String(64), nullable=False),
        Column("chat_id", String(64), nullable=False),
        Column("user_key", String(64), nullable=False),
        Column("open_id", String(64), nullable=True),
        Column("user_id", String(64), nullable=True),
        Column("union_id", String(64), nullable=True),
        Column("name", String(255), nullable=True),
        Column("role", String(32), nullable=True),
        Column("is_owner", Boolean, nullable=False, default=False, server_default=false()),
        Column("is_admin", Boolean, nullable=False, default=False, server_default=false()),
        Column("joined_at", DateTime(timezone=True), nullable=True),
        created_at_column(),
        updated_at_column(),
        UniqueConstraint("tenant_key", "chat_id", "user_key", name=f"uq_{name}_member"),
        Index(f"ix_{name}_user_key", "user_key"),
    )
