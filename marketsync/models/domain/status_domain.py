"""
Order/purchase status domain model.

Status is a client-side projection of an external order lifecycle:
initiated -> escrow_reserved -> shipped -> completed, or cancelled from any
non-terminal state. The cache only arbitrates which observation wins.
"""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict


class StatusSource(StrEnum):
    """Provenance of a status observation."""

    API = "api"
    WEBSOCKET = "websocket"
    LOCAL = "local"


class StatusCode(StrEnum):
    INITIATED = "initiated"
    ESCROW_RESERVED = "escrow_reserved"
    SHIPPED = "shipped"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


STATUS_RANK: dict[str, int] = {
    StatusCode.INITIATED.value: 0,
    StatusCode.ESCROW_RESERVED.value: 1,
    StatusCode.SHIPPED.value: 2,
    StatusCode.COMPLETED.value: 3,
    StatusCode.CANCELLED.value: 4,
}

TERMINAL_STATUSES = frozenset({StatusCode.COMPLETED.value, StatusCode.CANCELLED.value})


def status_rank(status: str) -> int | None:
    """Tie-break rank for same-source conflicts; None for unknown statuses."""
    return STATUS_RANK.get(str(status))


def is_terminal(status: str) -> bool:
    return str(status) in TERMINAL_STATUSES


class StatusPayload(BaseModel):
    """Side data carried with a status observation."""

    model_config = ConfigDict(frozen=True)

    buyer_id: str | None = None
    seller_id: str | None = None
    conversation_id: str | None = None
    delivery_method: str | None = None
    shipped_at: datetime | None = None
    delivered_at: datetime | None = None
    auto_release_at: datetime | None = None


class StatusEntry(BaseModel):
    """Latest accepted status observation for one order/purchase."""

    model_config = ConfigDict(frozen=True)

    entity_id: str
    status: str
    timestamp: datetime
    source: StatusSource
    payload: StatusPayload = StatusPayload()

    @property
    def rank(self) -> int | None:
        return status_rank(self.status)

    def age_seconds(self, now: datetime) -> float:
        return (now - self.timestamp).total_seconds()
