"""
Status Reconciler
Keeps the latest known order/purchase status per entity and decides which of
several uncoordinated observations (push, REST fetch, local guess) wins.
"""

from collections.abc import Mapping
from datetime import timedelta
from typing import Any

from marketsync.config import Settings, settings
from marketsync.infrastructure.observability.logging import get_logger
from marketsync.models.domain.status_domain import StatusEntry, StatusPayload, StatusSource
from marketsync.utils.clock import Clock, utc_now
from marketsync.utils.normalizer import normalize_id, normalize_status_payload

logger = get_logger(__name__)


class StatusReconciler:
    """
    Keyed cache of latest accepted status observations.

    Write priority:
      - websocket always wins (assumed freshest)
      - api loses to a websocket entry younger than the TTL, and to any entry
        younger than the conflict window that reports a different status
      - local loses to a websocket entry younger than the local guard window

    The cache does not enforce the order lifecycle: a websocket write may move
    an entry "backwards" (e.g. completed -> cancelled).
    """

    def __init__(self, clock: Clock = utc_now, config: Settings = settings):
        self._clock = clock
        self._entries: dict[str, StatusEntry] = {}
        self.ttl: timedelta = config.status_ttl()
        self.api_conflict_window: timedelta = config.api_conflict_window()
        self.local_websocket_guard: timedelta = config.local_websocket_guard()

    def set(
        self,
        entity_id: Any,
        status: str,
        payload: StatusPayload | Mapping[str, Any] | None = None,
        source: StatusSource | str = StatusSource.API,
    ) -> bool:
        """
        Offer an observation to the cache.

        Returns:
            bool: True if the observation was accepted and is now current
        """
        key = normalize_id(entity_id)
        if key is None:
            logger.debug("Status write dropped, unresolvable id", source=str(source))
            return False

        try:
            source = StatusSource(source)
        except ValueError:
            logger.debug("Status write dropped, unknown source", entity_id=key, source=str(source))
            return False

        now = self._clock()
        if not isinstance(payload, StatusPayload):
            payload = normalize_status_payload(payload)

        new_entry = StatusEntry(
            entity_id=key,
            status=str(status or ""),
            timestamp=now,
            source=source,
            payload=payload,
        )

        existing = self._entries.get(key)
        if existing is None or self._accepts(existing, new_entry, now):
            self._entries[key] = new_entry
            return True

        logger.debug(
            "Status write rejected",
            entity_id=key,
            source=source.value,
            status=new_entry.status,
            current_source=existing.source.value,
            current_status=existing.status,
        )
        return False

    def _accepts(self, existing: StatusEntry, incoming: StatusEntry, now) -> bool:
        age = now - existing.timestamp

        if incoming.source == StatusSource.WEBSOCKET:
            return True

        if incoming.source == StatusSource.API:
            if existing.source == StatusSource.WEBSOCKET and age < self.ttl:
                return False
            # a slow fetch racing a just-arrived observation
            if age < self.api_conflict_window and existing.status != incoming.status:
                return False
            return True

        if incoming.source == StatusSource.LOCAL:
            if existing.source == StatusSource.WEBSOCKET and age < self.local_websocket_guard:
                return False
            return True

        return False

    def get(self, entity_id: Any) -> StatusEntry | None:
        """Return the current entry, evicting it if older than the TTL."""
        key = normalize_id(entity_id)
        if key is None:
            return None

        entry = self._entries.get(key)
        if entry is None:
            return None

        if self._clock() - entry.timestamp > self.ttl:
            del self._entries[key]
            return None

        return entry

    def delete(self, entity_id: Any) -> bool:
        key = normalize_id(entity_id)
        if key is None:
            return False
        return self._entries.pop(key, None) is not None

    def clear(self):
        self._entries.clear()

    def cleanup(self) -> int:
        """Evict every TTL-expired entry in one pass. Returns the number removed."""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if now - entry.timestamp > self.ttl]
        for key in expired:
            del self._entries[key]

        if expired:
            logger.debug("Status cache cleanup", removed=len(expired), remaining=len(self._entries))
        return len(expired)

    def get_stats(self) -> dict:
        """Diagnostics: entry counts by source and average age in seconds."""
        now = self._clock()
        entries = list(self._entries.values())
        by_source = {source.value: 0 for source in StatusSource}
        for entry in entries:
            by_source[entry.source.value] += 1

        average_age = (
            round(sum(e.age_seconds(now) for e in entries) / len(entries)) if entries else 0
        )
        return {
            "total": len(entries),
            "by_source": by_source,
            "average_age_seconds": average_age,
        }

    def __len__(self) -> int:
        return len(self._entries)
