"""Initial schema - messages, resources, extractions, directory, chats, memory.

Tables carry the configured CIPS_TABLE_PREFIX, so they are created from the
same Core definitions the service uses for lazy schema creation.

Revision ID: 001
Revises:
Create Date: 2026-10-18

"""
from typing import Sequence, Union

from alembic import op

from cips.config import normalize_table_prefix, settings
from cips.models import build_tables

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _tables():
    return build_tables(normalize_table_prefix(settings.table_prefix))


def upgrade() -> None:
    _tables().metadata.create_all(op.get_bind(), checkfirst=True)


def downgrade() -> None:
    _tables().metadata.drop_all(op.get_bind(), checkfirst=True)
