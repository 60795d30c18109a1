from datetime import UTC, datetime, timedelta
from typing import Any

from pydantic import BaseModel, Field, model_validator

from marketsync.models.domain.message_domain import Message

ARCHIVE_RETENTION = timedelta(days=7)


class ArchivedConversation(BaseModel):
    """Read-only snapshot of a conversation that reached a terminal confirmation."""

    conversation_id: str
    conversation_snapshot: dict[str, Any] = Field(default_factory=dict)
    messages: list[Message] = Field(default_factory=list)
    archived_at: datetime
    expires_at: datetime
    archived_by: str

    @model_validator(mode="after")
    def _check_retention(self) -> "ArchivedConversation":
        if self.expires_at - self.archived_at != ARCHIVE_RETENTION:
            raise ValueError("expires_at must be exactly 7 days after archived_at")
        return self

    @classmethod
    def create(
        cls,
        conversation_id: str,
        snapshot: dict[str, Any],
        messages: list[Message],
        archived_by: str,
        now: datetime | None = None,
    ) -> "ArchivedConversation":
        archived_at = now or datetime.now(UTC)
        return cls(
            conversation_id=conversation_id,
            conversation_snapshot=snapshot,
            messages=messages,
            archived_at=archived_at,
            expires_at=archived_at + ARCHIVE_RETENTION,
            archived_by=archived_by,
        )

    def is_expired(self, now: datetime) -> bool:
        """Expired once now has reached expires_at."""
        return now >= self.expires_at

    def time_remaining(self, now: datetime) -> timedelta:
        return max(self.expires_at - now, timedelta(0))
