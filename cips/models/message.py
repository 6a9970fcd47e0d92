"""Chat, sender and message tables."""

from sqlalchemy import BigInteger, Column, Index, MetaData, String, Table, Text, UniqueConstraint

from cips.models.columns import created_at_column, id_column, updated_at_column


def chat_table(metadata: MetaData, prefix: str) -> Table:
    """Chats seen in inbound traffic."""
    name = f"{prefix}chat"
    return Table(
        name,
        metadata,
        id_column(),
        Column("tenant_key", String(64), nullable=False),
        Column("chat_id", String(64), nullable=False),
        Column("chat_type", String(32), nullable=False),
        Column("last_message_at_ms", BigInteger, nullable=True),
        created_at_column(),
        updated_at_column(),
        UniqueConstraint("tenant_key", "chat_id", name=f"uq_{name}_chat"),
    )


def sender_table(metadata: MetaData, prefix: str) -> Table:
    """Message senders keyed by their synthesized user key."""
    name = f"{prefix}sender"
    return Table(
        name,
        metadata,
        id_column(),
        Column("tenant_key", String(64), nullable=False),
        Column("user_key", String(64), nullable=False),
        Column("open_id", String(64), nullable=True),
        Column("user_id", String(64), nullable=True),
        Column("union_id", String(64), nullable=True),
        Column("sender_type", String(32), nullable=True),
        created_at_column(),
        updated_at_column(),
        UniqueConstraint("tenant_key", "user_key", name=f"uq_{name}_user"),
    )


def message_table(metadata: MetaData, prefix: str) -> Table:
    """Raw inbound messages. Upserted by message id, never deleted."""
    name = f"{prefix}message"
    return Table(
        name,
        metadata,
        id_column(),
        Column("tenant_key", String(64), nullable=False),
        Column("message_id", String(64), nullable=False),
        Column("chat_id", String(64), nullable=False),
        Column("chat_type", String(32), nullable=False),
        Column("message_type", String(32), nullable=False),
        Column("sender_type", String(32), nullable=True),
        Column("sender_open_id", String(64), nullable=True),
        Column("sender_user_id", String(64), nullable=True),
        Column("sender_union_id", String(64), nullable=True),
        Column("thread_id", String(64), nullable=True),
        Column("root_id", String(64), nullable=True),
        Column("content", Text, nullable=True),
        Column("text_content", Text, nullable=True),
        Column("create_time_ms", BigInteger, nullable=True),
        Column("dedupe_hash", String(64), nullable=False),
        Column("raw_event", Text, nullable=False),
        created_at_column(),
        updated_at_column(),
        UniqueConstraint("tenant_key", "message_id", name=f"uq_{name}_message"),
        Index(f"ix_{name}_chat_id", "chat_id"),
        Index(f"ix_{name}_create_time", "create_time_ms"),
    )
