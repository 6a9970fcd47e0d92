"""Repository functions for messages, resources, extractions, directory, chats and memory."""

from collections.abc import Iterable, Sequence
from typing import Any

from sqlalchemy import and_, delete, func, insert, or_, select, update

from cips.database import StoreContext
from cips.models.columns import utcnow
from cips.schemas.records import (
    EXTRACTION_FAILED,
    RESOURCE_DOWNLOADING,
    RESOURCE_FAILED,
    RESOURCE_PENDING,
    RESOURCE_READY,
    ChatInfo,
    ChatMember,
    Department,
    DirectoryUser,
    ExtractionTask,
    MemoryScope,
    MessageRecord,
    Relation,
    ResourceRef,
    ResourceRow,
)
from cips.storage.upsert import chunk_rows, upsert
from cips.utils.ids import resolve_user_key


# --- Messages ---


async def persist_message(store: StoreContext, record: MessageRecord) -> None:
    """Upsert chat, sender and message rows for one inbound message."""
    tables = store.tables
    async with store.engine.begin() as conn:
        await conn.execute(
            upsert(
                store.dialect,
                tables.chat,
                {
                    "tenant_key": record.tenant_key,
                    "chat_id": record.chat_id,
                    "chat_type": record.chat_type,
                    "last_message_at_ms": record.create_time_ms,
                },
                ["tenant_key", "chat_id"],
                ["chat_type", "last_message_at_ms"],
            )
        )

        user_key = resolve_user_key(
            {
                "user_id": record.sender_user_id,
                "open_id": record.sender_open_id,
                "union_id": record.sender_union_id,
            }
        )
        if user_key:
            await conn.execute(
                upsert(
                    store.dialect,
                    tables.sender,
                    {
                        "tenant_key": record.tenant_key,
                        "user_key": user_key,
                        "open_id": record.sender_open_id,
                        "user_id": record.sender_user_id,
                        "union_id": record.sender_union_id,
                        "sender_type": record.sender_type,
                    },
                    ["tenant_key", "user_key"],
                    ["open_id", "user_id", "union_id", "sender_type"],
                )
            )

        row = {
            "tenant_key": record.tenant_key,
            "message_id": record.message_id,
            "chat_id": record.chat_id,
            "chat_type": record.chat_type,
            "message_type": record.message_type,
            "sender_type": record.sender_type,
            "sender_open_id": record.sender_open_id,
            "sender_user_id": record.sender_user_id,
            "sender_union_id": record.sender_union_id,
            "thread_id": record.thread_id,
            "root_id": record.root_id,
            "content": record.content,
            "text_content": record.text_content,
            "create_time_ms": record.create_time_ms,
            "dedupe_hash": record.dedupe_hash,
            "raw_event": record.raw_event,
        }
        updatable = [col for col in row if col not in ("tenant_key", "message_id")]
        await conn.execute(
            upsert(store.dialect, tables.message, row, ["tenant_key", "message_id"], updatable)
        )


async def get_message(store: StoreContext, tenant_key: str, message_id: str) -> dict[str, Any] | None:
    """Find message by tenant + message id."""
    message = store.tables.message
    async with store.engine.connect() as conn:
        result = await conn.execute(
            select(message).where(
                message.c.tenant_key == tenant_key,
                message.c.message_id == message_id,
            )
        )
        row = result.mappings().first()
    return dict(row) if row else None


# --- Resources ---


async def upsert_resources(store: StoreContext, tenant_key: str, resources: Sequence[ResourceRef]) -> None:
    """Register attachments. Re-registration refreshes metadata, never status or attempts."""
    if not resources:
        return
    rows = [
        {
            "tenant_key": tenant_key,
            "message_id": ref.message_id,
            "chat_id": ref.chat_id,
            "resource_type": ref.resource_type,
            "file_key": ref.file_key,
            "file_name": ref.file_name,
            "mime_type": ref.mime_type,
            "size_bytes": ref.size_bytes,
            "status": ref.initial_status,
        }
        for ref in resources
    ]
    async with store.engine.begin() as conn:
        await conn.execute(
            upsert(
                store.dialect,
                store.tables.message_resource,
                rows,
                ["tenant_key", "message_id", "file_key"],
                ["file_name", "mime_type", "size_bytes"],
            )
        )


async def fetch_pending_resources(
    store: StoreContext, tenant_key: str, max_attempts: int, limit: int
) -> list[ResourceRow]:
    """Oldest pending/failed resources still under the attempt ceiling."""
    res = store.tables.message_resource
    async with store.engine.connect() as conn:
        result = await conn.execute(
            select(
                res.c.id,
                res.c.message_id,
                res.c.chat_id,
                res.c.resource_type,
                res.c.file_key,
                res.c.file_name,
                res.c.size_bytes,
                res.c.attempts,
            )
            .where(
                res.c.tenant_key == tenant_key,
                res.c.status.in_([RESOURCE_PENDING, RESOURCE_FAILED]),
                res.c.attempts < max_attempts,
            )
            .order_by(res.c.created_at.asc(), res.c.id.asc())
            .limit(limit)
        )
        rows = result.mappings().all()
    return [
        ResourceRow(
            id=int(row["id"]),
            message_id=row["message_id"],
            chat_id=row["chat_id"],
            resource_type=row["resource_type"],
            file_key=row["file_key"],
            file_name=row["file_name"],
            size_bytes=int(row["size_bytes"]) if row["size_bytes"] is not None else None,
            attempts=int(row["attempts"] or 0),
        )
        for row in rows
    ]


async def list_resource_tenants(store: StoreContext, statuses: Sequence[str]) -> list[str]:
    """Tenant keys that still have resources in one of `statuses`."""
    res = store.tables.message_resource
    async with store.engine.connect() as conn:
        result = await conn.execute(
            select(res.c.tenant_key).where(res.c.status.in_(list(statuses))).distinct().order_by(res.c.tenant_key)
        )
        return [row[0] for row in result]


async def mark_resource_downloading(store: StoreContext, tenant_key: str, resource_id: int) -> None:
    """Claim a resource and count the attempt in one statement."""
    res = store.tables.message_resource
    now = utcnow()
    async with store.engine.begin() as conn:
        await conn.execute(
            update(res)
            .where(res.c.tenant_key == tenant_key, res.c.id == resource_id)
            .values(
                status=RESOURCE_DOWNLOADING,
                attempts=res.c.attempts + 1,
                error=None,
                last_attempt_at=now,
                updated_at=now,
            )
        )


async def update_resource_status(
    store: StoreContext,
    tenant_key: str,
    resource_id: int,
    status: str,
    storage_path: str | None = None,
    error: str | None = None,
) -> None:
    res = store.tables.message_resource
    async with store.engine.begin() as conn:
        await conn.execute(
            update(res)
            .where(res.c.tenant_key == tenant_key, res.c.id == resource_id)
            .values(status=status, storage_path=storage_path, error=error, updated_at=utcnow())
        )


async def get_resource(store: StoreContext, tenant_key: str, resource_id: int) -> dict[str, Any] | None:
    res = store.tables.message_resource
    async with store.engine.connect() as conn:
        result = await conn.execute(
            select(res).where(res.c.tenant_key == tenant_key, res.c.id == resource_id)
        )
        row = result.mappings().first()
    return dict(row) if row else None


# --- Extractions ---


async def list_pending_extractions(
    store: StoreContext,
    tenant_key: str,
    resource_types: Iterable[str],
    file_suffixes: Iterable[str],
    exclude_ids: Iterable[int],
    limit: int,
) -> list[ExtractionTask]:
    """Ready resources with no extraction yet, or a retryable failed one.

    Only resources some capability handles are selected: `resource_types` are
    taken whole, `file` resources only when their name ends with one of
    `file_suffixes`.
    """
    res = store.tables.message_resource
    ext = store.tables.content_extraction
    handled = []
    types = list(resource_types)
    if types:
        handled.append(res.c.resource_type.in_(types))
    suffixes = list(file_suffixes)
    if suffixes:
        handled.append(
            and_(
                res.c.resource_type == "file",
                or_(*[func.lower(res.c.file_name).like(f"%{suffix}") for suffix in suffixes]),
            )
        )
    if not handled:
        return []

    stmt = (
        select(
            res.c.id.label("resource_id"),
            res.c.message_id,
            res.c.resource_type,
            res.c.storage_path,
            res.c.file_name,
        )
        .select_from(
            res.outerjoin(
                ext,
                and_(ext.c.tenant_key == res.c.tenant_key, ext.c.resource_id == res.c.id),
            )
        )
        .where(
            res.c.tenant_key == tenant_key,
            res.c.status == RESOURCE_READY,
            res.c.storage_path.is_not(None),
            or_(
                ext.c.id.is_(None),
                and_(ext.c.status == EXTRACTION_FAILED, ext.c.retryable.is_(True)),
            ),
            or_(*handled),
        )
        .order_by(res.c.updated_at.asc(), res.c.id.asc())
        .limit(limit)
    )
    excluded = list(exclude_ids)
    if excluded:
        stmt = stmt.where(res.c.id.not_in(excluded))

    async with store.engine.connect() as conn:
        result = await conn.execute(stmt)
        rows = result.mappings().all()
    return [
        ExtractionTask(
            resource_id=int(row["resource_id"]),
            message_id=row["message_id"],
            resource_type=row["resource_type"],
            storage_path=row["storage_path"],
            file_name=row["file_name"],
        )
        for row in rows
        if row["storage_path"]
    ]


async def upsert_extraction(
    store: StoreContext,
    tenant_key: str,
    message_id: str,
    resource_id: int,
    resource_type: str,
    status: str,
    text: str | None = None,
    language: str | None = None,
    model: str | None = None,
    error: str | None = None,
    retryable: bool = True,
) -> None:
    row = {
        "tenant_key": tenant_key,
        "message_id": message_id,
        "resource_id": resource_id,
        "resource_type": resource_type,
        "language": language,
        "text": text,
        "model": model,
        "status": status,
        "error": error,
        "retryable": retryable,
    }
    async with store.engine.begin() as conn:
        await conn.execute(
            upsert(
                store.dialect,
                store.tables.content_extraction,
                row,
                ["tenant_key", "resource_id"],
                ["resource_type", "language", "text", "model", "status", "error", "retryable"],
            )
        )


async def get_extraction(store: StoreContext, tenant_key: str, resource_id: int) -> dict[str, Any] | None:
    ext = store.tables.content_extraction
    async with store.engine.connect() as conn:
        result = await conn.execute(
            select(ext).where(ext.c.tenant_key == tenant_key, ext.c.resource_id == resource_id)
        )
        row = result.mappings().first()
    return dict(row) if row else None


# --- Directory ---


async def replace_directory_snapshot(
    store: StoreContext,
    tenant_key: str,
    departments: Sequence[Department],
    users: dict[str, DirectoryUser],
    relations: Sequence[Relation],
) -> None:
    """Upsert departments and users, then replace the tenant's relation set.

    Runs in a single transaction; any failure rolls everything back and the
    previous snapshot stays visible.
    """
    tables = store.tables
    now = utcnow()
    async with store.engine.begin() as conn:
        department_rows = [
            {
                "tenant_key": tenant_key,
                "department_id": dept.department_id,
                "name": (dept.name or "").strip() or dept.department_id,
                "parent_department_id": dept.parent_department_id,
                "leader_user_id": dept.leader_user_id,
                "status": dept.status,
                "member_count": dept.member_count,
                "synced_at": now,
            }
            for dept in departments
            if dept.department_id
        ]
        for batch in chunk_rows(department_rows):
            await conn.execute(
                upsert(
                    store.dialect,
                    tables.org_department,
                    list(batch),
                    ["tenant_key", "department_id"],
                    ["name", "parent_department_id", "leader_user_id", "status", "member_count", "synced_at"],
                )
            )

        user_rows = [
            {
                "tenant_key": tenant_key,
                "user_key": user_key,
                "open_id": user.open_id,
                "user_id": user.user_id,
                "union_id": user.union_id,
                "name": user.name,
                "email": user.email,
                "mobile": user.mobile,
                "status": user.status,
                "job_title": user.job_title,
                "synced_at": now,
            }
            for user_key, user in users.items()
        ]
        for batch in chunk_rows(user_rows):
            await conn.execute(
                upsert(
                    store.dialect,
                    tables.org_user,
                    list(batch),
                    ["tenant_key", "user_key"],
                    ["open_id", "user_id", "union_id", "name", "email", "mobile", "status", "job_title", "synced_at"],
                )
            )

        rel = tables.org_user_department_rel
        await conn.execute(delete(rel).where(rel.c.tenant_key == tenant_key))
        relation_rows = [
            {
                "tenant_key": tenant_key,
                "user_key": relation.user_key,
                "department_id": relation.department_id,
                "is_primary": relation.is_primary,
                "created_at": now,
            }
            for relation in relations
        ]
        for batch in chunk_rows(relation_rows):
            await conn.execute(insert(rel).values(list(batch)))


# --- Chats ---


async def upsert_chat_info(store: StoreContext, tenant_key: str, info: ChatInfo) -> None:
    async with store.engine.begin() as conn:
        await conn.execute(
            upsert(
                store.dialect,
                store.tables.im_chat,
                {
                    "tenant_key": tenant_key,
                    "chat_id": info.chat_id,
                    "name": info.name,
                    "description": info.description,
                    "owner_id": info.owner_key,
                    "owner_id_type": info.owner_id_type,
                    "member_count": info.member_count,
                    "chat_mode": info.chat_mode,
                    "chat_type": info.chat_type,
                    "last_synced_at": utcnow(),
                },
                ["tenant_key", "chat_id"],
                [
                    "name",
                    "description",
                    "owner_id",
                    "owner_id_type",
                    "member_count",
                    "chat_mode",
                    "chat_type",
                    "last_synced_at",
                ],
            )
        )


async def replace_chat_members(
    store: StoreContext, tenant_key: str, chat_id: str, members: Sequence[ChatMember]
) -> None:
    """Replace the member snapshot of one chat in a single transaction."""
    table = store.tables.im_chat_member
    rows = []
    seen: set[str] = set()
    for member in members:
        if not member.user_key or member.user_key in seen:
            continue
        seen.add(member.user_key)
        rows.append(
            {
                "tenant_key": tenant_key,
                "chat_id": chat_id,
                "user_key": member.user_key,
                "open_id": member.open_id,
                "user_id": member.user_id,
                "union_id": member.union_id,
                "name": member.name,
                "role": member.role,
                "is_owner": member.is_owner,
                "is_admin": member.is_admin,
                "joined_at": member.joined_at,
            }
        )
    async with store.engine.begin() as conn:
        await conn.execute(
            delete(table).where(table.c.tenant_key == tenant_key, table.c.chat_id == chat_id)
        )
        for batch in chunk_rows(rows):
            await conn.execute(insert(table).values(list(batch)))


# --- Memory ---


async def insert_memory_items(
    store: StoreContext,
    tenant_key: str,
    scopes: Sequence[MemoryScope],
    content: str,
    message_id: str | None = None,
    chat_id: str | None = None,
    user_id: str | None = None,
) -> None:
    if not scopes:
        return
    rows = [
        {
            "tenant_key": tenant_key,
            "scope_type": scope.scope_type,
            "scope_id": scope.scope_id,
            "message_id": message_id,
            "chat_id": chat_id,
            "user_id": user_id,
            "content": content,
        }
        for scope in scopes
    ]
    async with store.engine.begin() as conn:
        await conn.execute(insert(store.tables.memory_item).values(rows))
