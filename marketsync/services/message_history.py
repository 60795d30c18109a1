"""
Message History Store
Keeps the confirmed messages of recently active conversations so a restarted
session can show them before the first REST page arrives.

Bounded per conversation (newest messages kept) and by conversation count
(least recently saved conversation evicted first). Persisted as one JSON
snapshot under a single key, written in the background.
"""

import json
from collections import OrderedDict
from collections.abc import Iterable
from typing import Any

from pydantic import ValidationError

from marketsync.config import Settings, settings
from marketsync.infrastructure.observability.logging import get_logger, log_store_failure
from marketsync.models.domain.message_domain import Message
from marketsync.services.ports import KeyValueStore
from marketsync.utils.background import BackgroundWriter
from marketsync.utils.normalizer import normalize_id

logger = get_logger(__name__)


class MessageHistoryStore:
    def __init__(self, store: KeyValueStore | None = None, config: Settings = settings):
        self._store = store
        self._key = config.MESSAGE_HISTORY_STORAGE_KEY
        self._limit = config.MESSAGE_HISTORY_LIMIT
        self._max_conversations = config.MESSAGE_HISTORY_MAX_CONVERSATIONS
        self._conversations: OrderedDict[str, list[Message]] = OrderedDict()
        self._writer = BackgroundWriter("message_history")

    async def load(self) -> int:
        """Hydrate from the store; conversations already in memory win. Returns messages loaded."""
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
            logger.warning("Corrupt message history ignored", key=self._key)
            return 0
        if not isinstance(stored, dict):
            return 0

        loaded = 0
        for conversation_id, items in stored.items():
            if conversation_id in self._conversations or not isinstance(items, list):
                continue
            messages = []
            for data in items:
                try:
                    messages.append(Message.model_validate(data))
                except ValidationError:
                    continue
            if messages:
                self._conversations[conversation_id] = messages[-self._limit :]
                loaded += len(self._conversations[conversation_id])

        self._evict()
        logger.debug("Message history loaded", conversations=len(self._conversations), messages=loaded)
        return loaded

    def save(self, conversation_id: Any, messages: Iterable[Message]) -> bool:
        """Replace a conversation's history with its confirmed messages."""
        key = normalize_id(conversation_id)
        if key is None:
            return False

        confirmed = [m for m in messages if m.id]
        if not confirmed:
            return False

        self._conversations[key] = confirmed[-self._limit :]
        self._conversations.move_to_end(key)
        self._evict()
        self._writer.schedule(self.flush)
        return True

    def get(self, conversation_id: Any) -> list[Message]:
        key = normalize_id(conversation_id)
        if key is None:
            return []
        return list(self._conversations.get(key, []))

    def remove(self, conversation_id: Any) -> bool:
        key = normalize_id(conversation_id)
        if key is None or self._conversations.pop(key, None) is None:
            return False
        self._writer.schedule(self.flush)
        return True

    def conversation_ids(self) -> list[str]:
        return list(self._conversations)

    def all_messages(self) -> list[Message]:
        return [m for messages in self._conversations.values() for m in messages]

    def _evict(self):
        while len(self._conversations) > self._max_conversations:
            conversation_id, _ = self._conversations.popitem(last=False)
            logger.debug("Message history evicted", conversation_id=conversation_id)

    async def flush(self) -> bool:
        if self._store is None:
            return False
        snapshot = {
            conversation_id: [m.model_dump(mode="json") for m in messages]
            for conversation_id, messages in self._conversations.items()
        }
        try:
            return bool(await self._store.set(self._key, json.dumps(snapshot)))
        except Exception as e:
            log_store_failure("set", self._key, e)
            return False

    async def drain(self):
        await self._writer.drain()

    def __len__(self) -> int:
        return len(self._conversations)
