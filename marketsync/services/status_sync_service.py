"""
Status Sync Service
Funnels push events, REST fetches and local guesses into the StatusReconciler.

Each entity has at most one in-flight REST fetch. A newer fetch or a push
event for the same entity cancels it, so a superseded response never reaches
the cache.
"""

import asyncio
from collections.abc import Mapping
from typing import Any

from marketsync.infrastructure.observability.logging import get_logger
from marketsync.models.domain.status_domain import StatusSource
from marketsync.services.ports import StatusFetcher
from marketsync.services.status_reconciler import StatusReconciler
from marketsync.utils.normalizer import first_id, normalize_id, normalize_status_payload

logger = get_logger(__name__)


class StatusSyncService:
    def __init__(self, reconciler: StatusReconciler, fetcher: StatusFetcher | None = None):
        self.reconciler = reconciler
        self._fetcher = fetcher
        self._in_flight: dict[str, asyncio.Task] = {}

    def handle_push_event(self, event: Mapping[str, Any]) -> bool:
        """Apply a server push. Push events are always accepted for a valid id."""
        if not isinstance(event, Mapping):
            return False

        entity_id = first_id(
            event.get("entityId"), event.get("purchaseId"), event.get("orderId"), event.get("_id")
        )
        status = event.get("status")
        if entity_id is None or not status:
            logger.debug("Push event dropped", has_id=entity_id is not None, has_status=bool(status))
            return False

        self._cancel(entity_id, reason="push_event")
        return self.reconciler.set(
            entity_id, str(status), normalize_status_payload(event), StatusSource.WEBSOCKET
        )

    def apply_local(self, entity_id: Any, status: str, payload: Mapping[str, Any] | None = None) -> bool:
        """Record a UI-originated guess right after a user action."""
        return self.reconciler.set(entity_id, status, payload, StatusSource.LOCAL)

    async def refresh(self, entity_id: Any) -> bool | None:
        """
        Fetch the entity over REST and offer the result to the cache.

        Returns:
            True/False for accepted/rejected, None if the fetch was superseded
            or failed
        """
        if self._fetcher is None:
            raise RuntimeError("No status fetcher configured")

        key = normalize_id(entity_id)
        if key is None:
            return None

        self._cancel(key, reason="superseded")
        task = asyncio.create_task(self._fetcher.fetch_status(key))
        self._in_flight[key] = task

        try:
            data = await task
        except asyncio.CancelledError:
            if task.cancelled() and self._in_flight.get(key) is not task:
                logger.debug("Status fetch cancelled", entity_id=key)
                return None
            raise
        except Exception as e:
            logger.warning(
                "Status fetch failed", entity_id=key, error=str(e), error_type=type(e).__name__
            )
            return None
        finally:
            if self._in_flight.get(key) is task:
                del self._in_flight[key]

        status = data.get("status") if isinstance(data, Mapping) else None
        if not status:
            logger.warning("Status fetch returned no status", entity_id=key)
            return None

        # staleness is re-checked at write time inside set()
        return self.reconciler.set(key, str(status), normalize_status_payload(data), StatusSource.API)

    def _cancel(self, key: str, reason: str):
        task = self._in_flight.pop(key, None)
        if task is not None and not task.done():
            task.cancel()
            logger.debug("In-flight status fetch cancelled", entity_id=key, reason=reason)

    def in_flight(self) -> list[str]:
        return [key for key, task in self._in_flight.items() if not task.done()]

    def cancel_all(self) -> int:
        keys = list(self._in_flight)
        for key in keys:
            self._cancel(key, reason="shutdown")
        return len(keys)
