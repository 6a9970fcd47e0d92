"""Org directory snapshot tables."""

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    UniqueConstraint,
    false,
)

from cips.models.columns import created_at_column, id_column, updated_at_column


def org_department_table(metadata: MetaData, prefix: str) -> Table:
    """Departments are upserted and never deleted."""
    name = f"{prefix}org_department"
    return Table(
        name,
        metadata,
        id_column(),
        Column("tenant_key", String(64), nullable=False),
        Column("department_id", String(64), nullable=False),
        Column("name", String(255), nullable=False),
        Column("parent_department_id", String(64), nullable=True),
        Column("leader_user_id", String(64), nullable=True),
        Column("status", String(32), nullable=True),
        Column("member_count", Integer, nullable=True),
        Column("synced_at", DateTime(timezone=True), nullable=True),
        created_at_column(),
        updated_at_column(),
        UniqueConstraint("tenant_key", "department_id", name=f"uq_{name}_department"),
        Index(f"ix_{name}_parent", "parent_department_id"),
    )


def org_user_table(metadata: MetaData, prefix: str) -> Table:
    name = f"{prefix}org_user"
    return Table(
        name,
        metadata,
        id_column(),
        Column("tenant_key", String(64), nullable=False),
        Column("user_key", String(64), nullable=False),
        Column("open_id", String(64), nullable=True),
        Column("user_id", String(64), nullable=True),
        Column("union_id", String(64), nullable=True),
        Column("name", String(255), nullable=True),
        Column("email", String(255), nullable=True),
        Column("mobile", String(64), nullable=True),
        Column("status", String(32), nullable=True),
        Column("job_title", String(128), nullable=True),
        Column("synced_at", DateTime(timezone=True), nullable=True),
        created_at_column(),
        updated_at_column(),
        UniqueConstraint("tenant_key", "user_key", name=f"uq_{name}_user"),
        Index(f"ix_{name}_open_id", "open_id"),
        Index(f"ix_{name}_user_id", "user_id"),
    )


def org_user_department_rel_table(metadata: MetaData, prefix: str) -> Table:
    """Full snapshot per tenant: replaced wholesale by every directory sync."""
    name = f"{prefix}org_user_department_rel"
    return Table(
        name,
        metadata,
        id_column(),
        Column("tenant_key", String(64), nullable=False),
        Column("user_key", String(64), nullable=False),
        Column("department_id", String(64), nullable=False),
        Column("is_primary", Boolean, nullable=False, default=False, server_default=false()),
        created_at_column(),
        UniqueConstraint("tenant_key", "user_key", "department_id", name=f"uq_{name}_pair"),
        Index(f"ix_{name}_tenant_user", "tenant_key", "user_key"),
        Index(f"ix_{name}_department", "department_id"),
    )
