"""
Message Reconciler
Deduplicates and orders chat messages, promotes optimistic client entries into
server-confirmed ones, and tracks send/retry state.

A logical message has exactly one live slot. The slot is found by temp id,
then permanent id, then a fallback key for malformed input. When both an
optimistic placeholder and a server copy map to the same slot, the server copy
wins and the temp id is retired for good.
"""

import secrets
from collections import OrderedDict
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import tzinfo
from typing import Any
from zoneinfo import ZoneInfo

from marketsync.config import Settings, settings
from marketsync.exceptions import (
    MessageReconcilerError,
    MessageStateError,
    MessageValidationError,
    UnknownMessageError,
)
from marketsync.infrastructure.observability.logging import get_logger
from marketsync.models.domain.message_domain import (
    DELIVERY_PROGRESS,
    DaySeparator,
    Message,
    MessageKind,
    MessageStatus,
)
from marketsync.services.last_message_cache import LastMessageCache
from marketsync.services.message_history import MessageHistoryStore
from marketsync.services.ports import MessageTransport
from marketsync.utils.clock import Clock, utc_now
from marketsync.utils.message_validation import validate_message
from marketsync.utils.normalizer import normalize_id, normalize_message

logger = get_logger(__name__)

FALLBACK_CONTENT_PREFIX = 32


@dataclass
class _Slot:
    key: str
    seq: int
    message: Message


class MessageReconciler:
    def __init__(
        self,
        transport: MessageTransport | None = None,
        last_messages: LastMessageCache | None = None,
        history: MessageHistoryStore | None = None,
        current_user_id: str | None = None,
        clock: Clock = utc_now,
        config: Settings = settings,
    ):
        self._transport = transport
        self._last_messages = last_messages
        self._history = history
        self.current_user_id = current_user_id
        self._clock = clock
        self._display_tz = ZoneInfo(config.DISPLAY_TIMEZONE)
        self._retired_limit = config.RETIRED_TEMP_ID_LIMIT

        self._slots: dict[str, _Slot] = {}
        self._by_conversation: dict[str, list[str]] = {}
        self._by_temp_id: dict[str, str] = {}
        self._by_id: dict[str, str] = {}
        # temp id -> permanent id, oldest first
        self._retired: OrderedDict[str, str] = OrderedDict()
        # temp id -> (server id, original placeholder) for content-matched promotions
        self._guessed: dict[str, tuple[str, Message]] = {}
        self._seq = 0
        self._hydrating = False

    # ------------------------------------------------------------------
    # Optimistic writes
    # ------------------------------------------------------------------

    def generate_temp_id(self) -> str:
        millis = int(self._clock().timestamp() * 1000)
        return f"temp_{millis}_{secrets.token_hex(5)}"

    def add_optimistic(
        self,
        conversation_id: Any,
        content: str,
        kind: MessageKind | str = MessageKind.TEXT,
        sender_id: str | None = None,
        attachments: list[dict[str, Any]] | None = None,
    ) -> str:
        """Register a pending outgoing message and return its temp id."""
        conv_id = normalize_id(conversation_id)
        if conv_id is None:
            raise MessageReconcilerError("Cannot send to an unresolvable conversation id")

        temp_id = self.generate_temp_id()
        message = Message(
            temp_id=temp_id,
            conversation_id=conv_id,
            sender_id=sender_id or self.current_user_id,
            content=content,
            kind=kind,
            status=MessageStatus.SENDING,
            created_at=self._clock(),
            attachments=attachments or [],
        )
        self._insert(temp_id, message)
        return temp_id

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    def reconcile(self, incoming: Message | dict[str, Any], position: int | None = None) -> Message | None:
        """
        Merge a message from any channel (send ack, push, REST refresh).

        Returns the live message after merging, or None for malformed input.
        """
        message = normalize_message(incoming, now=self._clock())
        if message is None:
            logger.debug("Malformed message ignored")
            return None

        if message.temp_id and message.id:
            self._resolve_guesses(message)

        slot = self._find_slot(message)
        if slot is None and message.id and not message.temp_id:
            slot = self._find_pending_match(message)
            if slot is not None:
                self._guessed[slot.message.temp_id] = (message.id, slot.message)

        if slot is None:
            key = message.id or message.temp_id or self._fallback_key(message, position)
            if key in self._slots:
                return self._slots[key].message
            self._insert(key, message)
            self._after_confirmed(message)
            return message

        merged = self._merge(slot.message, message)
        if merged is slot.message:
            return merged

        if merged.id and self._by_id.get(merged.id, slot.key) != slot.key:
            # the same server message already landed in its own slot via another channel
            self._drop(self._by_id[merged.id])

        self._replace(slot, merged)
        self._after_confirmed(merged)
        return merged

    def reconcile_many(self, messages: Iterable[Message | dict[str, Any]]) -> list[Message]:
        """Merge a batch (e.g. a REST history page). Position feeds the fallback key."""
        results = []
        for position, raw in enumerate(messages):
            merged = self.reconcile(raw, position=position)
            if merged is not None:
                results.append(merged)
        return results

    def hydrate(self, messages: Iterable[Message | dict[str, Any]]) -> int:
        """Seed persisted history without re-triggering persistence hooks."""
        self._hydrating = True
        try:
            return len(self.reconcile_many(messages))
        finally:
            self._hydrating = False

    def _find_slot(self, message: Message) -> _Slot | None:
        if message.temp_id and message.temp_id in self._by_temp_id:
            return self._slots[self._by_temp_id[message.temp_id]]

        if message.id and message.id in self._by_id:
            return self._slots[self._by_id[message.id]]

        if message.temp_id and message.temp_id in self._retired:
            retired_id = self._retired[message.temp_id]
            # never fold a different server message into a confirmed slot
            if retired_id in self._by_id and (message.id is None or message.id == retired_id):
                return self._slots[self._by_id[retired_id]]

        return None

    def _find_pending_match(self, message: Message) -> _Slot | None:
        """A push copy that lost its temp id: match the oldest pending placeholder."""
        for key in self._by_conversation.get(message.conversation_id, []):
            slot = self._slots[key]
            candidate = slot.message
            if not candidate.is_optimistic or candidate.status == MessageStatus.FAILED:
                continue
            if candidate.kind != message.kind or candidate.content != message.content:
                continue
            if not candidate.sender_id or candidate.sender_id != message.sender_id:
                continue
            return slot
        return None

    def _resolve_guesses(self, ack: Message):
        """
        An ack links temp id and server id for certain. Undo any content-based
        promotion that contradicts it before merging.
        """
        guessed = self._guessed.get(ack.temp_id)
        if guessed is not None:
            if guessed[0] == ack.id:
                del self._guessed[ack.temp_id]
            else:
                self._unlink_guess(ack.temp_id)

        for temp_id, (message_id, _) in list(self._guessed.items()):
            if message_id == ack.id and temp_id != ack.temp_id:
                self._unlink_guess(temp_id)

    def _unlink_guess(self, temp_id: str):
        """Put the placeholder back and give the server copy its own slot."""
        message_id, placeholder = self._guessed.pop(temp_id)
        key = self._by_id.get(message_id)
        if key is None:
            return
        slot = self._slots[key]
        server_copy = slot.message.model_copy(update={"temp_id": None})

        self._retired.pop(temp_id, None)
        self._replace(slot, placeholder)
        if message_id not in self._slots:
            self._insert(message_id, server_copy)

        logger.debug(
            "Content match undone by ack",
            temp_id=temp_id,
            message_id=message_id,
            conversation_id=placeholder.conversation_id,
        )

    def _merge(self, current: Message, incoming: Message) -> Message:
        # server-confirmed copies always beat optimistic ones
        if current.id and not incoming.id:
            return current

        status = incoming.status
        if current.id and incoming.id:
            status = _furthest_status(current.status, incoming.status)
        elif incoming.id:
            status = _furthest_status(MessageStatus.SENT, incoming.status)

        return incoming.model_copy(
            update={
                "temp_id": incoming.temp_id or current.temp_id,
                "sender_id": incoming.sender_id or current.sender_id,
                "status": status,
                "retry_count": max(current.retry_count, incoming.retry_count),
            }
        )

    def _fallback_key(self, message: Message, position: int | None) -> str:
        anchor = str(position) if position is not None else message.created_at.isoformat()
        prefix = message.content[:FALLBACK_CONTENT_PREFIX]
        return f"fallback:{message.conversation_id}:{anchor}:{prefix}"

    # ------------------------------------------------------------------
    # Slot bookkeeping
    # ------------------------------------------------------------------

    def _insert(self, key: str, message: Message):
        self._seq += 1
        self._slots[key] = _Slot(key=key, seq=self._seq, message=message)
        self._by_conversation.setdefault(message.conversation_id, []).append(key)
        self._index(key, message)

    def _replace(self, slot: _Slot, message: Message):
        previous = slot.message
        slot.message = message
        if previous.id and previous.id != message.id and self._by_id.get(previous.id) == slot.key:
            del self._by_id[previous.id]
        self._index(slot.key, message)

        if previous.conversation_id != message.conversation_id:
            self._by_conversation[previous.conversation_id].remove(slot.key)
            self._by_conversation.setdefault(message.conversation_id, []).append(slot.key)

    def _drop(self, key: str):
        slot = self._slots.pop(key)
        self._by_conversation[slot.message.conversation_id].remove(key)
        if slot.message.id and self._by_id.get(slot.message.id) == key:
            del self._by_id[slot.message.id]
        if slot.message.temp_id and self._by_temp_id.get(slot.message.temp_id) == key:
            del self._by_temp_id[slot.message.temp_id]

    def _index(self, key: str, message: Message):
        if message.id:
            self._by_id[message.id] = key
            if message.temp_id:
                self._by_temp_id.pop(message.temp_id, None)
                self._retired[message.temp_id] = message.id
                self._retired.move_to_end(message.temp_id)
        elif message.temp_id:
            self._by_temp_id[message.temp_id] = key

    def _after_confirmed(self, message: Message):
        if not message.id or self._hydrating:
            return
        if self._last_messages is not None:
            self._last_messages.save_message(message)
        if self._history is not None:
            self._history.save(message.conversation_id, self.messages(message.conversation_id))

    def _lookup(self, message_id: str) -> _Slot | None:
        key = self._by_temp_id.get(message_id) or self._by_id.get(message_id)
        if key is None and message_id in self._retired:
            key = self._by_id.get(self._retired[message_id])
        if key is None:
            return None
        return self._slots.get(key)

    # ------------------------------------------------------------------
    # Send / retry
    # ------------------------------------------------------------------

    def mark_sent(self, temp_id: str, server_message: Message | dict[str, Any] | None = None) -> Message:
        slot = self._lookup(temp_id)
        if slot is None:
            raise UnknownMessageError(temp_id)

        if server_message is not None:
            payload = server_message
            if isinstance(payload, dict):
                payload = {
                    "conversation": slot.message.conversation_id,
                    "sender": slot.message.sender_id,
                    **payload,
                    "tempId": temp_id,
                }
            else:
                payload = payload.model_copy(update={"temp_id": temp_id})
            merged = self.reconcile(payload)
            if merged is not None:
                return merged

        if slot.message.status in (MessageStatus.SENDING, MessageStatus.FAILED):
            self._replace(slot, slot.message.model_copy(update={"status": MessageStatus.SENT}))
        return slot.message

    def mark_failed(self, temp_id: str) -> Message:
        slot = self._lookup(temp_id)
        if slot is None:
            raise UnknownMessageError(temp_id)
        if slot.message.id:
            # already confirmed through another channel
            return slot.message
        self._replace(slot, slot.message.model_copy(update={"status": MessageStatus.FAILED}))
        return slot.message

    async def send(
        self,
        conversation_id: Any,
        content: str,
        kind: MessageKind | str = MessageKind.TEXT,
        sender_id: str | None = None,
        attachments: list[dict[str, Any]] | None = None,
    ) -> Message:
        """
        Validate, display optimistically, then hand to the transport.

        Raises:
            MessageValidationError: text rejected before anything is displayed
        """
        if MessageKind(kind) == MessageKind.TEXT:
            result = validate_message(content)
            if not result.is_valid:
                raise MessageValidationError(result.reason or "Invalid message", result.detected_content)
            content = content.strip()

        temp_id = self.add_optimistic(conversation_id, content, kind, sender_id, attachments)
        return await self._deliver(temp_id)

    async def retry(self, message_id: str) -> Message:
        """
        Re-send a failed message once. A failure is reported as `failed`
        again; scheduling further attempts is up to the caller.
        """
        slot = self._lookup(message_id)
        if slot is None:
            raise UnknownMessageError(message_id)
        if slot.message.id:
            raise MessageStateError("Message already confirmed by the server", message_id=message_id)
        if slot.message.status != MessageStatus.FAILED:
            raise MessageStateError(
                f"Only failed messages can be retried (status={slot.message.status.value})",
                message_id=message_id,
            )

        self._replace(
            slot,
            slot.message.model_copy(
                update={
                    "status": MessageStatus.SENDING,
                    "retry_count": slot.message.retry_count + 1,
                }
            ),
        )
        logger.info(
            "Retrying message send",
            temp_id=slot.message.temp_id,
            retry_count=slot.message.retry_count,
        )
        return await self._deliver(slot.message.temp_id)

    async def _deliver(self, temp_id: str) -> Message:
        if self._transport is None:
            raise MessageReconcilerError("No message transport configured", recoverable=False)

        pending = self._lookup(temp_id).message
        try:
            server_message = await self._transport.send(
                pending.conversation_id,
                pending.content,
                pending.kind.value,
                temp_id,
                pending.attachments or None,
            )
        except Exception as e:
            logger.warning(
                "Message send failed",
                temp_id=temp_id,
                conversation_id=pending.conversation_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return self.mark_failed(temp_id)

        return self.mark_sent(temp_id, server_message if isinstance(server_message, (dict, Message)) else None)

    # ------------------------------------------------------------------
    # Receipts
    # ------------------------------------------------------------------

    def update_status(self, message_id: str, status: MessageStatus | str) -> Message | None:
        """Apply a delivered/read receipt; confirmed messages never move backwards."""
        slot = self._lookup(message_id)
        if slot is None:
            return None

        status = MessageStatus(status)
        current = slot.message
        if current.id:
            if status not in (MessageStatus.SENT, MessageStatus.DELIVERED, MessageStatus.READ):
                return current
            status = _furthest_status(current.status, status)
        if status == current.status:
            return current

        self._replace(slot, current.model_copy(update={"status": status}))
        self._after_confirmed(slot.message)
        return slot.message

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, message_id: str) -> Message | None:
        slot = self._lookup(message_id)
        return slot.message if slot else None

    def messages(self, conversation_id: Any) -> list[Message]:
        """Messages of a conversation in creation order (arrival order on ties)."""
        conv_id = normalize_id(conversation_id)
        if conv_id is None:
            return []
        slots = [self._slots[key] for key in self._by_conversation.get(conv_id, [])]
        slots.sort(key=lambda s: (s.message.created_at, s.seq))
        return [s.message for s in slots]

    def timeline(self, conversation_id: Any, tz: tzinfo | None = None) -> list[Message | DaySeparator]:
        """Messages with a separator before the first message of each local calendar day."""
        zone = tz or self._display_tz
        items: list[Message | DaySeparator] = []
        previous_day = None
        for message in self.messages(conversation_id):
            day = message.created_at.astimezone(zone).date()
            if day != previous_day:
                items.append(DaySeparator(day=day))
                previous_day = day
            items.append(message)
        return items

    def failed_messages(self, conversation_id: Any | None = None) -> list[Message]:
        if conversation_id is not None:
            candidates = self.messages(conversation_id)
        else:
            candidates = [slot.message for slot in self._slots.values()]
        return [m for m in candidates if m.status == MessageStatus.FAILED]

    def conversation_ids(self) -> list[str]:
        return [conv_id for conv_id, keys in self._by_conversation.items() if keys]

    def cleanup(self) -> int:
        """Trim the retired temp-id index to its configured bound."""
        removed = 0
        while len(self._retired) > self._retired_limit:
            self._retired.popitem(last=False)
            removed += 1
        while len(self._guessed) > self._retired_limit:
            del self._guessed[next(iter(self._guessed))]
        return removed

    def get_stats(self) -> dict:
        pending = sum(1 for s in self._slots.values() if s.message.status == MessageStatus.SENDING)
        return {
            "total": len(self._slots),
            "conversations": len(self.conversation_ids()),
            "pending": pending,
            "failed": len(self.failed_messages()),
            "retired_temp_ids": len(self._retired),
        }


def _furthest_status(a: MessageStatus, b: MessageStatus) -> MessageStatus:
    rank_a = DELIVERY_PROGRESS.get(a.value, -1)
    rank_b = DELIVERY_PROGRESS.get(b.value, -1)
    return a if rank_a > rank_b else b
