"""Database tables.

Every table carries a configurable prefix so several deployments can share one
database, which is why they are built per prefix with SQLAlchemy Core instead of
declared once on a declarative base.
"""

from dataclasses import dataclass

from sqlalchemy import MetaData, Table

from cips.models.chat import im_chat_member_table, im_chat_table
from cips.models.directory import (
    org_department_table,
    org_user_department_rel_table,
    org_user_table,
)
from cips.models.memory import memory_item_table
from cips.models.message import chat_table, message_table, sender_table
from cips.models.resource import content_extraction_table, message_resource_table


@dataclass(frozen=True)
class Tables:
    """The fixed table namespace of one store."""

    metadata: MetaData
    chat: Table
    sender: Table
    message: Table
    org_department: Table
    org_user: Table
    org_user_department_rel: Table
    im_chat: Table
    im_chat_member: Table
    message_resource: Table
    content_extraction: Table
    memory_item: Table


def build_tables(prefix: str = "") -> Tables:
    """Build the table set for a (sanitized) prefix."""
    metadata = MetaData()
    return Tables(
        metadata=metadata,
        chat=chat_table(metadata, prefix),
        sender=sender_table(metadata, prefix),
        message=message_table(metadata, prefix),
        org_department=org_department_table(metadata, prefix),
        org_user=org_user_table(metadata, prefix),
        org_user_department_rel=org_user_department_rel_table(metadata, prefix),
        im_chat=im_chat_table(metadata, prefix),
        im_chat_member=im_chat_member_table(metadata, prefix),
        message_resource=message_resource_table(metadata, prefix),
        content_extraction=content_extraction_table(metadata, prefix),
        memory_item=memory_item_table(metadata, prefix),
    )


__all__ = ["Tables", "build_tables"]
