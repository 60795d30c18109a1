"""Last-message-per-conversation cache (memory first, persistent store second)."""

import json
from collections.abc import Iterable, Mapping
from datetime import datetime, timedelta
from typing import Any

from pydantic import ValidationError

from marketsync.config import Settings, settings
from marketsync.infrastructure.observability.logging import get_logger, log_store_failure
from marketsync.models.domain.message_domain import LastMessage, Message
from marketsync.services.ports import KeyValueStore
from marketsync.utils.background import BackgroundWriter
from marketsync.utils.clock import Clock, utc_now
from marketsync.utils.normalizer import normalize_id, normalize_message

logger = get_logger(__name__)


class LastMessageCache:
    def __init__(
        self,
        store: KeyValueStore | None = None,
        clock: Clock = utc_now,
        config: Settings = settings,
    ):
        self._store = store
        self._clock = clock
        self._key = config.LAST_MESSAGE_STORAGE_KEY
        self._retention_days = config.LAST_MESSAGE_RETENTION_DAYS
        self._memory: dict[str, LastMessage] = {}
        self._writer = BackgroundWriter("last_messages")

    async def load(self) -> int:
        """Hydrate memory from the store; entries already in memory win."""
        if self._store is None:
            return 0
        try:
            raw = await self._store.get(self._key)
        except Exception as e:
            log_store_failure("get", self._key, e)
            return 0
        if not raw:
            return 0

        try:
            stored = json.loads(raw)
        except ValueError:
            logger.warning("Corrupt last-message cache ignored", key=self._key)
            return 0
        if not isinstance(stored, dict):
            return 0

        loaded = 0
        for conversation_id, data in stored.items():
            if conversation_id in self._memory:
                continue
            try:
                self._memory[conversation_id] = LastMessage.model_validate(data)
                loaded += 1
            except ValidationError:
                continue
        return loaded

    def save(self, conversation_id: Any, data: LastMessage | Mapping[str, Any]) -> bool:
        """Record a last message; the persistent write happens in the background."""
        key = normalize_id(conversation_id)
        if key is None:
            return False

        if not isinstance(data, LastMessage):
            if not data.get("text") or not normalize_id(data.get("sender_id")):
                return False
            payload = dict(data)
            payload.setdefault("timestamp", self._clock())
            payload["updated_at"] = self._clock()
            try:
                data = LastMessage.model_validate(payload)
            except ValidationError:
                return False

        self._memory[key] = data
        self._writer.schedule(self.flush)
        return True

    def save_message(self, message: Message) -> bool:
        if message.is_optimistic or not message.sender_id:
            return False
        return self.save(
            message.conversation_id,
            LastMessage(
                text=message.preview_text(),
                timestamp=message.created_at,
                sender_id=message.sender_id,
                message_id=message.id,
                kind=message.kind,
                updated_at=self._clock(),
            ),
        )

    def get(self, conversation_id: Any) -> LastMessage | None:
        key = normalize_id(conversation_id)
        if key is None:
            return None
        return self._memory.get(key)

    def update_if_newer(
        self, conversation_id: Any, data: Mapping[str, Any], message_timestamp: datetime
    ) -> bool:
        existing = self.get(conversation_id)
        if existing is None or message_timestamp > existing.updated_at:
            return self.save(conversation_id, data)
        return False

    def sync_with_conversations(self, conversations: Iterable[Mapping[str, Any]]) -> int:
        """Adopt backend lastMessage values that are newer than the cached ones."""
        synced = 0
        for conversation in conversations:
            if not isinstance(conversation, Mapping):
                continue
            conversation_id = normalize_id(conversation.get("_id") or conversation.get("id"))
            raw_last = conversation.get("lastMessage")
            if conversation_id is None or not isinstance(raw_last, Mapping):
                continue

            message = normalize_message({**raw_last, "conversation": conversation_id})
            if message is None or not message.sender_id:
                continue

            existing = self.get(conversation_id)
            if existing is None or message.created_at > existing.timestamp:
                if self.save_message(message):
                    synced += 1
        return synced

    def remove(self, conversation_id: Any) -> bool:
        key = normalize_id(conversation_id)
        if key is None or self._memory.pop(key, None) is None:
            return False
        self._writer.schedule(self.flush)
        return True

    def clean_old(self, days: int | None = None) -> int:
        """Drop entries not updated within the retention window. Returns the number removed."""
        cutoff = self._clock() - timedelta(days=self._retention_days if days is None else days)
        stale = [k for k, v in self._memory.items() if v.updated_at < cutoff]
        for key in stale:
            del self._memory[key]

        if stale:
            self._writer.schedule(self.flush)
            logger.info("Stale last messages removed", count=len(stale))
        return len(stale)

    async def flush(self) -> bool:
        """Persist the memory snapshot. Store failures keep memory untouched."""
        if self._store is None:
            return False
        snapshot = {k: v.model_dump(mode="json") for k, v in self._memory.items()}
        try:
            return bool(await self._store.set(self._key, json.dumps(snapshot)))
        except Exception as e:
            log_store_failure("set", self._key, e)
            return False

    async def drain(self):
        await self._writer.drain()

    def __len__(self) -> int:
        return len(self._memory)
