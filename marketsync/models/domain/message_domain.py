from datetime import date, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class MessageKind(StrEnum):
    TEXT = "text"
    IMAGE = "image"


class MessageStatus(StrEnum):
    SENDING = "sending"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"


# Receipt progression for server-confirmed messages
DELIVERY_PROGRESS: dict[str, int] = {
    MessageStatus.SENT.value: 0,
    MessageStatus.DELIVERED.value: 1,
    MessageStatus.READ.value: 2,
}


class Message(BaseModel):
    """A chat message, either optimistic (temp id only) or server-confirmed."""

    id: str | None = None  # permanent server id
    temp_id: str | None = None
    conversation_id: str
    sender_id: str | None = None
    content: str = ""
    kind: MessageKind = MessageKind.TEXT
    status: MessageStatus = MessageStatus.SENT
    created_at: datetime
    retry_count: int = 0
    attachments: list[dict[str, Any]] = Field(default_factory=list)

    @property
    def is_optimistic(self) -> bool:
        return self.id is None and self.temp_id is not None

    def preview_text(self) -> str:
        """Text used for conversation list previews."""
        if self.kind == MessageKind.IMAGE:
            return "[Image]"
        return self.content


class DaySeparator(BaseModel):
    """Marker placed before the first message of each local calendar day."""

    day: date


class LastMessage(BaseModel):
    """Last-message preview for one conversation."""

    text: str
    timestamp: datetime
    sender_id: str
    message_id: str | None = None
    kind: MessageKind = MessageKind.TEXT
    updated_at: datetime
