"""Internal records passed between the engine and the repositories."""

from dataclasses import dataclass, field
from datetime import datetime

# message_resource.status
RESOURCE_PENDING = "pending"
RESOURCE_DOWNLOADING = "downloading"
RESOURCE_READY = "ready"
RESOURCE_TOO_LARGE = "too_large"
RESOURCE_FAILED = "failed"
RESOURCE_LINKED = "linked"

# content_extraction.status
EXTRACTION_PROCESSING = "processing"
EXTRACTION_READY = "ready"
EXTRACTION_EMPTY = "empty"
EXTRACTION_FAILED = "failed"

RESOURCE_KINDS = ("image", "file", "audio", "media", "doc")


@dataclass(frozen=True)
class ResourceRef:
    """An attachment found in a message payload."""

    message_id: str
    chat_id: str
    resource_type: str
    file_key: str
    file_name: str | None = None
    mime_type: str | None = None
    size_bytes: int | None = None

    @property
    def initial_status(self) -> str:
        # Documents are fetched live elsewhere and never downloaded.
        return RESOURCE_LINKED if self.resource_type == "doc" else RESOURCE_PENDING


@dataclass(frozen=True)
class ResourceRow:
    id: int
    message_id: str
    chat_id: str
    resource_type: str
    file_key: str
    file_name: str | None
    size_bytes: int | None
    attempts: int


@dataclass(frozen=True)
class ExtractionTask:
    resource_id: int
    message_id: str
    resource_type: str
    storage_path: str
    file_name: str | None = None


@dataclass(frozen=True)
class MessageRecord:
    tenant_key: str
    message_id: str
    chat_id: str
    chat_type: str
    message_type: str
    sender_type: str | None
    sender_open_id: str | None
    sender_user_id: str | None
    sender_union_id: str | None
    thread_id: str | None
    root_id: str | None
    content: str
    text_content: str | None
    create_time_ms: int | None
    dedupe_hash: str
    raw_event: str


@dataclass
class Department:
    department_id: str
    name: str | None = None
    parent_department_id: str | None = None
    leader_user_id: str | None = None
    status: str | None = None
    member_count: int | None = None


@dataclass
class DirectoryUser:
    user_id: str | None = None
    open_id: str | None = None
    union_id: str | None = None
    name: str | None = None
    email: str | None = None
    mobile: str | None = None
    job_title: str | None = None
    status: str | None = None
    department_ids: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class Relation:
    user_key: str
    department_id: str
    is_primary: bool


@dataclass
class ChatInfo:
    chat_id: str
    name: str | None = None
    description: str | None = None
    owner_key: str | None = None
    owner_id_type: str | None = None
    member_count: int | None = None
    chat_mode: str | None = None
    chat_type: str | None = None


@dataclass
class ChatMember:
    user_key: str
    open_id: str | None = None
    user_id: str | None = None
    union_id: str | None = None
    name: str | None = None
    role: str | None = None
    is_owner: bool = False
    is_admin: bool = False
    joined_at: datetime | None = None


@dataclass(frozen=True)
class MemoryScope:
    scope_type: str  # dm_user|group|group_user|tenant
    scope_id: str
