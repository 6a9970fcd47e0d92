"""Inbound event schemas (already verified and decrypted by the transport)."""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class SenderId(BaseModel):
    """The three id variants the platform may report for a user."""

    union_id: str | None = None
    user_id: str | None = None
    open_id: str | None = None


class Sender(BaseModel):
    sender_id: SenderId | None = None
    sender_type: str = "user"


class Message(BaseModel):
    """Message body - extra keys are kept so the stored payload stays complete."""

    model_config = ConfigDict(extra="allow")

    message_id: str
    chat_id: str
    chat_type: str = "group"
    message_type: str = "text"
    content: str = ""
    create_time: str | None = None
    thread_id: str | None = None
    root_id: str | None = None
    mentions: list[dict[str, Any]] | None = None


class MessageEvent(BaseModel):
    """im.message.receive event payload."""

    model_config = ConfigDict(extra="allow")

    tenant_key: str | None = None
    sender: Sender = Field(default_factory=Sender)
    message: Message

    def payload(self) -> dict[str, Any]:
        """Serializable payload used for storage and the dedupe hash."""
        return self.model_dump(mode="json", exclude_none=True)


class ChatEvent(BaseModel):
    """Chat updated / membership changed notification."""

    event_type: Literal["chat_updated", "member_changed"]
    chat_id: str
    tenant_key: str | None = None


class AcceptedResponse(BaseModel):
    accepted: bool = True
    account_id: str
    message_id: str | None = None
