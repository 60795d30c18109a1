"""
Identifier and payload normalization.

Push events, REST responses and chat payloads describe the same entities with
different shapes: plain strings, wrapped object ids ({"$oid": ...}), nested
references ({"_id": ...}, {"userid": ...}, {"id": ...}). Every shape check
lives here; the rest of the package only ever sees canonical string ids.
"""

from collections.abc import Mapping
from datetime import UTC, datetime
from typing import Any, Union

from pydantic import ValidationError

from marketsync.models.domain.message_domain import Message, MessageKind, MessageStatus
from marketsync.models.domain.status_domain import StatusPayload

# Accepted identifier shapes; ObjectId-like objects are stringified.
RawId = Union[str, int, Mapping[str, Any], None]

_REFERENCE_KEYS = ("_id", "userid", "id")
_GENERIC_OBJECT_STRINGS = ("[object Object]",)
_MAX_DEPTH = 8


def normalize_id(raw: RawId, _depth: int = 0) -> str | None:
    """
    Reduce an identifier of any supported shape to a canonical string.

    Resolution order: scalar -> "$oid" -> recurse into "_id" / "userid" / "id"
    -> stringified fallback. Returns None when identity cannot be determined.
    """
    if raw is None or _depth > _MAX_DEPTH:
        return None

    if isinstance(raw, bool):
        return None

    if isinstance(raw, str):
        value = raw.strip()
        if not value or value in _GENERIC_OBJECT_STRINGS:
            return None
        return value

    if isinstance(raw, int):
        return str(raw)

    if isinstance(raw, Mapping):
        if "$oid" in raw:
            return normalize_id(raw["$oid"], _depth + 1)
        for key in _REFERENCE_KEYS:
            if key in raw:
                resolved = normalize_id(raw[key], _depth + 1)
                if resolved is not None:
                    return resolved
        return None

    if isinstance(raw, (list, tuple, set, float)):
        return None

    # ObjectId-like values stringify to their hex id
    text = str(raw)
    if _is_generic_object_string(text, raw):
        return None
    return normalize_id(text, _depth + 1)


def _is_generic_object_string(text: str, raw: Any) -> bool:
    if text in _GENERIC_OBJECT_STRINGS:
        return True
    # default object.__repr__ / __str__: "<module.Class object at 0x...>"
    return type(raw).__str__ is object.__str__ and type(raw).__repr__ is object.__repr__


def first_id(*candidates: Any) -> str | None:
    """Return the first candidate that resolves to an id."""
    for candidate in candidates:
        resolved = normalize_id(candidate)
        if resolved is not None:
            return resolved
    return None


def parse_timestamp(value: Any) -> datetime | None:
    """Parse ISO strings, epoch milliseconds, or datetimes into aware UTC datetimes."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=UTC)
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    return None


def _pick(data: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return None


def normalize_status_payload(raw: Mapping[str, Any] | None) -> StatusPayload:
    """Build a StatusPayload from camelCase or snake_case event/REST data."""
    if not raw:
        return StatusPayload()

    buyer = raw.get("buyer") if isinstance(raw.get("buyer"), Mapping) else {}
    seller = raw.get("seller") if isinstance(raw.get("seller"), Mapping) else {}
    delivery_method = _pick(raw, "deliveryMethod", "delivery_method")

    return StatusPayload(
        buyer_id=first_id(
            _pick(raw, "buyerId", "buyer_id"), buyer.get("userid"), buyer.get("_id")
        ),
        seller_id=first_id(
            _pick(raw, "sellerId", "seller_id"), seller.get("userid"), seller.get("_id")
        ),
        conversation_id=normalize_id(_pick(raw, "conversationId", "conversation_id")),
        delivery_method=str(delivery_method) if delivery_method is not None else None,
        shipped_at=parse_timestamp(_pick(raw, "shippedAt", "shipped_at")),
        delivered_at=parse_timestamp(_pick(raw, "deliveredAt", "delivered_at")),
        auto_release_at=parse_timestamp(_pick(raw, "autoReleaseAt", "auto_release_at")),
    )


def _unwrap_message(raw: Mapping[str, Any]) -> Mapping[str, Any]:
    data = raw.get("data")
    if isinstance(data, Mapping) and isinstance(data.get("message"), Mapping):
        return data["message"]
    if isinstance(raw.get("message"), Mapping):
        return raw["message"]
    return raw


def normalize_message(raw: Any, now: datetime | None = None) -> Message | None:
    """
    Convert a transport or REST message payload into a Message.

    Returns None for payloads without content or attachments, or without a
    resolvable conversation id.
    """
    if isinstance(raw, Message):
        return raw
    if not isinstance(raw, Mapping):
        return None

    message = _unwrap_message(raw)
    content = message.get("content") or ""
    attachments = message.get("attachments") or []
    if not isinstance(attachments, list):
        attachments = []
    if not content and not attachments:
        return None

    conversation_id = first_id(
        message.get("conversation"), message.get("conversationId"), message.get("conversation_id")
    )
    if conversation_id is None:
        return None

    kind = message.get("type") or message.get("kind") or MessageKind.TEXT.value
    if not isinstance(kind, str) or kind not in MessageKind._value2member_map_:
        kind = MessageKind.TEXT.value

    message_id = first_id(message.get("_id"), message.get("id"))
    status = message.get("status") or MessageStatus.SENT.value
    if not isinstance(status, str) or status not in MessageStatus._value2member_map_:
        status = MessageStatus.SENT.value
    if message_id is not None and status == MessageStatus.SENDING.value:
        # a copy carrying a server id has left the client already
        status = MessageStatus.SENT.value

    created_at = parse_timestamp(_pick(message, "createdAt", "created_at"))
    try:
        retry_count = int(_pick(message, "retryCount", "retry_count") or 0)
    except (TypeError, ValueError):
        return None

    try:
        return Message(
            id=message_id,
            temp_id=normalize_id(_pick(message, "tempId", "temp_id")),
            conversation_id=conversation_id,
            sender_id=normalize_id(_pick(message, "sender", "senderId", "sender_id")),
            content=str(content),
            kind=kind,
            status=status,
            created_at=created_at or now or datetime.now(UTC),
            retry_count=retry_count,
            attachments=[a for a in attachments if isinstance(a, Mapping)],
        )
    except ValidationError:
        return None
