"""
Collaborator interfaces consumed by the reconciliation core.

Transport plumbing (push channel, REST client, send transport, storage
backend) lives outside the package; these protocols describe what the core
expects from it.
"""

from typing import Any, Protocol


class StatusFetcher(Protocol):
    """Point-in-time REST fetch of an order/purchase status."""

    async def fetch_status(self, entity_id: str) -> dict[str, Any]:
        """Return {"status": ..., "buyerId": ..., ...} for the entity."""
        ...


class MessageTransport(Protocol):
    """Sends chat messages and returns the server copy."""

    async def send(
        self,
        conversation_id: str,
        content: str,
        kind: str,
        temp_id: str,
        attachments: list[dict[str, Any]] | None = None,
    ) -> dict[str, Any]:
        """Return the server message, ideally echoing temp_id."""
        ...


class KeyValueStore(Protocol):
    """Fallible string key/value store (quota, disabled storage, network)."""

    async def get(self, key: str) -> str | None: ...

    async def set(self, key: str, value: str, ttl_s: int | None = None) -> bool: ...

    async def delete(self, key: str) -> bool: ...

    async def ping(self) -> bool: ...
