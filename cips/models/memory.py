"""Memory items fed by messages and extractions."""

from sqlalchemy import Column, Index, MetaData, String, Table, Text

from cips.models.columns import created_at_column, id_column, updated_at_column


def memory_item_table(metadata: MetaData, prefix: str) -> Table:
    name = f"{prefix}memory_item"
    return Table(
        name,
        metadata,
        id_column(),
        Column("tenant_key", String(64), nullable=False),
        Column("scope_type", String(32), nullable=False),
        Column("scope_id", String(128), nullable=False),
        Column("message_id", String(64), nullable=True),
        Column("chat_id", String(64), nullable=True),
        Column("user_id", String(64), nullable=True),
        Column("content", Text, nullable=False),
        created_at_column(),
        updated_at_column(),
        Index(f"ix_{name}_scope", "tenant_key", "scope_type", "scope_id"),
        Index(f"ix_{name}_message_id", "message_id"),
    )
