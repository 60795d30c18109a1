"""Live conversation list and terminal-confirmation archiving."""

from collections.abc import Mapping
from typing import Any

from marketsync.infrastructure.observability.logging import get_logger
from marketsync.models.domain.archive_domain import ArchivedConversation
from marketsync.services.archive_store import ArchiveStore
from marketsync.services.message_reconciler import MessageReconciler
from marketsync.utils.normalizer import normalize_id

logger = get_logger(__name__)


class ConversationService:
    def __init__(self, archive: ArchiveStore, messages: MessageReconciler):
        self.archive = archive
        self.chat = messages
        self._live: dict[str, dict[str, Any]] = {}

    def upsert(self, conversation: Mapping[str, Any]) -> str | None:
        """Add or update a live conversation; archived ones stay hidden."""
        conversation_id = normalize_id(conversation.get("_id") or conversation.get("id"))
        if conversation_id is None:
            return None
        current = self._live.get(conversation_id, {})
        self._live[conversation_id] = {**current, **conversation, "_id": conversation_id}
        return conversation_id

    def upsert_many(self, conversations: list[Mapping[str, Any]]) -> int:
        return sum(1 for conversation in conversations if self.upsert(conversation) is not None)

    def live(self, user_id: Any | None = None) -> list[dict[str, Any]]:
        """Live conversations, excluding archived ones, optionally filtered by participant."""
        viewer = normalize_id(user_id) if user_id is not None else None
        result = []
        for conversation_id, conversation in self._live.items():
            if self.archive.is_archived(conversation_id):
                continue
            if viewer is not None and not _has_participant(conversation, viewer):
                continue
            result.append(conversation)
        return result

    def get(self, conversation_id: Any) -> dict[str, Any] | None:
        key = normalize_id(conversation_id)
        return self._live.get(key) if key else None

    def complete(self, conversation_id: Any, user_id: Any) -> ArchivedConversation | None:
        """
        Terminal confirmation (delivery confirmed or conversation blocked):
        archive the snapshot with its messages and drop it from the live list.
        """
        key = normalize_id(conversation_id)
        if key is None:
            return None

        snapshot = self._live.get(key, {"_id": key})
        entry = self.archive.archive(key, snapshot, self.chat.messages(key), user_id)
        if entry is not None:
            self._live.pop(key, None)
        return entry

    def restore(self, conversation_id: Any) -> dict[str, Any] | None:
        """Move an archived conversation back into the live list."""
        entry = self.archive.get(conversation_id)
        if entry is None:
            return None
        self.archive.remove(entry.conversation_id)
        conversation = {**entry.conversation_snapshot, "_id": entry.conversation_id}
        self._live[entry.conversation_id] = conversation
        self.chat.reconcile_many(entry.messages)
        logger.info("Conversation restored from archive", conversation_id=entry.conversation_id)
        return conversation


def _has_participant(conversation: Mapping[str, Any], user_id: str) -> bool:
    participants = conversation.get("participants") or []
    for participant in participants:
        if isinstance(participant, Mapping) and "user" in participant:
            participant = participant["user"]
        if normalize_id(participant) == user_id:
            return True
    return False
