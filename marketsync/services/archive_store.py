"""
Archive Store
Seven-day archive of completed/blocked conversation snapshots.

Reads go to an in-memory map that is compacted lazily: any entry whose
expires_at has passed is dropped by the read that notices it. The persistent
store is written in the background and is never the source of truth while the
session is active.
"""

import json
from collections.abc import Mapping
from datetime import timedelta
from typing import Any

from pydantic import ValidationError

from marketsync.config import Settings, settings
from marketsync.infrastructure.observability.logging import get_logger, log_store_failure
from marketsync.models.domain.archive_domain import ArchivedConversation
from marketsync.models.domain.message_domain import Message
from marketsync.services.ports import KeyValueStore
from marketsync.utils.background import BackgroundWriter
from marketsync.utils.clock import Clock, utc_now
from marketsync.utils.normalizer import normalize_id, normalize_message

logger = get_logger(__name__)


class ArchiveStore:
    def __init__(
        self,
        store: KeyValueStore | None = None,
        clock: Clock = utc_now,
        config: Settings = settings,
    ):
        self._store = store
        self._clock = clock
        self._key = config.ARCHIVE_STORAGE_KEY
        self._expiring_soon = timedelta(hours=config.ARCHIVE_EXPIRING_SOON_HOURS)
        self._entries: dict[str, ArchivedConversation] = {}
        self._writer = BackgroundWriter("archive")

    async def load(self) -> int:
        """Hydrate from the persistent store, skipping expired or corrupt entries."""
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
            logger.warning("Corrupt archive payload ignored", key=self._key)
            return 0
        if not isinstance(stored, dict):
            return 0

        now = self._clock()
        loaded = 0
        for conversation_id, data in stored.items():
            if conversation_id in self._entries:
                continue
            try:
                entry = ArchivedConversation.model_validate(data)
            except ValidationError:
                logger.warning("Invalid archived conversation skipped", conversation_id=conversation_id)
                continue
            if entry.is_expired(now):
                continue
            self._entries[conversation_id] = entry
            loaded += 1

        if loaded != len(stored):
            self._schedule_flush()
        return loaded

    def archive(
        self,
        conversation_id: Any,
        snapshot: Mapping[str, Any] | None,
        messages: list[Message | dict[str, Any]],
        user_id: Any,
    ) -> ArchivedConversation | None:
        """Archive a conversation for 7 days, replacing any previous entry."""
        key = normalize_id(conversation_id)
        archived_by = normalize_id(user_id)
        if key is None or archived_by is None:
            logger.debug("Archive skipped, unresolvable id")
            return None

        normalized = [m for m in (normalize_message(raw) for raw in messages) if m is not None]
        entry = ArchivedConversation.create(
            conversation_id=key,
            snapshot=dict(snapshot or {}),
            messages=normalized,
            archived_by=archived_by,
            now=self._clock(),
        )
        self._entries[key] = entry
        self._schedule_flush()

        logger.info(
            "Conversation archived",
            conversation_id=key,
            archived_by=archived_by,
            message_count=len(normalized),
            expires_at=entry.expires_at.isoformat(),
        )
        return entry

    def _compact(self) -> int:
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        if expired:
            self._schedule_flush()
        return len(expired)

    def get_all(self, user_id: Any) -> list[ArchivedConversation]:
        """Non-expired archives visible to the user (archiver or participant)."""
        self._compact()
        viewer = normalize_id(user_id)
        if viewer is None:
            return []
        visible = [entry for entry in self._entries.values() if _is_visible_to(entry, viewer)]
        visible.sort(key=lambda e: e.archived_at, reverse=True)
        return visible

    def get(self, conversation_id: Any) -> ArchivedConversation | None:
        key = normalize_id(conversation_id)
        if key is None:
            return None
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            del self._entries[key]
            self._schedule_flush()
            return None
        return entry

    def is_archived(self, conversation_id: Any) -> bool:
        return self.get(conversation_id) is not None

    def remove(self, conversation_id: Any) -> bool:
        key = normalize_id(conversation_id)
        if key is None or key not in self._entries:
            return False
        del self._entries[key]
        self._schedule_flush()
        return True

    def cleanup_expired(self) -> int:
        """Explicit sweep; returns the number of expired entries dropped."""
        removed = self._compact()
        if removed:
            logger.info("Expired archives removed", removed=removed, remaining=len(self._entries))
        return removed

    def open_view(self, user_id: Any) -> list[ArchivedConversation]:
        """Archive view entry point: sweep first, then list."""
        self.cleanup_expired()
        return self.get_all(user_id)

    def get_stats(self) -> dict:
        self._compact()
        now = self._clock()
        expiring_soon = sum(
            1 for entry in self._entries.values() if entry.time_remaining(now) <= self._expiring_soon
        )
        return {
            "total": len(self._entries),
            "expiring_soon": expiring_soon,
            "size_bytes": len(self._serialize().encode()),
        }

    def _serialize(self) -> str:
        return json.dumps({k: v.model_dump(mode="json") for k, v in self._entries.items()})

    def _schedule_flush(self):
        self._writer.schedule(self.flush)

    async def flush(self) -> bool:
        """Persist the current map. Failures are logged and swallowed."""
        if self._store is None:
            return False
        try:
            return bool(await self._store.set(self._key, self._serialize()))
        except Exception as e:
            log_store_failure("set", self._key, e)
            return False

    async def drain(self):
        await self._writer.drain()

    def __len__(self) -> int:
        return len(self._entries)


def _is_visible_to(entry: ArchivedConversation, user_id: str) -> bool:
    if entry.archived_by == user_id:
        return True
    participants = entry.conversation_snapshot.get("participants") or []
    if not isinstance(participants, list):
        return False
    for participant in participants:
        if isinstance(participant, Mapping) and "user" in participant:
            participant = participant["user"]
        if normalize_id(participant) == user_id:
            return True
    return False
