"""
Tests for push/fetch/local funnelling and in-flight fetch cancellation.
"""

import asyncio

import pytest

from marketsync.exceptions import TransportError
from marketsync.models.domain.status_domain import StatusSource
from marketsync.services.status_reconciler import StatusReconciler
from marketsync.services.status_sync_service import StatusSyncService


class GatedFetcher:
    """Holds every fetch until `release` is set, then answers from `responses`."""

    def __init__(self, responses=None):
        self.responses = responses or {}
        self.release = asyncio.Event()
        self.calls = []

    async def fetch_status(self, entity_id):
        self.calls.append(entity_id)
        await self.release.wait()
        response = self.responses[entity_id]
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def reconciler(clock):
    return StatusReconciler(clock=clock)


@pytest.mark.asyncio
async def test_refresh_writes_api_observation(reconciler):
    fetcher = GatedFetcher({"p1": {"status": "shipped", "sellerId": "s1"}})
    fetcher.release.set()
    sync = StatusSyncService(reconciler, fetcher)

    assert await sync.refresh({"$oid": "p1"}) is True

    entry = reconciler.get("p1")
    assert entry.source == StatusSource.API
    assert entry.payload.seller_id == "s1"
    assert fetcher.calls == ["p1"]
    assert sync.in_flight() == []


@pytest.mark.asyncio
async def test_push_event_cancels_in_flight_fetch(reconciler):
    fetcher = GatedFetcher({"p1": {"status": "initiated"}})
    sync = StatusSyncService(reconciler, fetcher)

    pending = asyncio.create_task(sync.refresh("p1"))
    await asyncio.sleep(0)
    assert sync.in_flight() == ["p1"]

    assert sync.handle_push_event({"purchaseId": "p1", "status": "shipped"}) is True
    fetcher.release.set()

    assert await pending is None
    entry = reconciler.get("p1")
    assert entry.status == "shipped"
    assert entry.source == StatusSource.WEBSOCKET


@pytest.mark.asyncio
async def test_newer_refresh_supersedes_older_one(reconciler):
    fetcher = GatedFetcher({"p1": {"status": "escrow_reserved"}})
    sync = StatusSyncService(reconciler, fetcher)

    first = asyncio.create_task(sync.refresh("p1"))
    await asyncio.sleep(0)
    second = asyncio.create_task(sync.refresh("p1"))
    await asyncio.sleep(0)
    fetcher.release.set()

    assert await first is None
    assert await second is True
    assert reconciler.get("p1").status == "escrow_reserved"


@pytest.mark.asyncio
async def test_refresh_rejected_by_fresh_push(reconciler):
    fetcher = GatedFetcher({"p1": {"status": "initiated"}})
    fetcher.release.set()
    sync = StatusSyncService(reconciler, fetcher)
    sync.handle_push_event({"entityId": "p1", "status": "shipped"})

    assert await sync.refresh("p1") is False
    assert reconciler.get("p1").status == "shipped"


@pytest.mark.asyncio
async def test_refresh_failure_returns_none(reconciler):
    fetcher = GatedFetcher({"p1": TransportError("503 from upstream"), "p2": {"state": "?"}})
    fetcher.release.set()
    sync = StatusSyncService(reconciler, fetcher)

    assert await sync.refresh("p1") is None
    assert await sync.refresh("p2") is None
    assert await sync.refresh(None) is None
    assert len(reconciler) == 0


@pytest.mark.asyncio
async def test_refresh_without_fetcher_raises(reconciler):
    with pytest.raises(RuntimeError):
        await StatusSyncService(reconciler).refresh("p1")


@pytest.mark.asyncio
async def test_cancel_all_stops_every_fetch(reconciler):
    fetcher = GatedFetcher({"p1": {"status": "shipped"}, "p2": {"status": "shipped"}})
    sync = StatusSyncService(reconciler, fetcher)

    tasks = [asyncio.create_task(sync.refresh(key)) for key in ("p1", "p2")]
    await asyncio.sleep(0)

    assert sorted(sync.in_flight()) == ["p1", "p2"]
    assert sync.cancel_all() == 2
    assert await asyncio.gather(*tasks) == [None, None]
    assert len(reconciler) == 0


def test_push_event_payload_is_normalized(reconciler):
    sync = StatusSyncService(reconciler)

    assert sync.handle_push_event(
        {"orderId": {"$oid": "o1"}, "status": "shipped", "buyer": {"_id": "b1"}}
    )
    assert reconciler.get("o1").payload.buyer_id == "b1"


@pytest.mark.parametrize(
    "event",
    [
        {"status": "shipped"},
        {"entityId": "p1"},
        {"entityId": {"name": "?"}, "status": "shipped"},
        "shipped",
    ],
)
def test_malformed_push_events_are_dropped(reconciler, event):
    assert StatusSyncService(reconciler).handle_push_event(event) is False
    assert len(reconciler) == 0


def test_apply_local(reconciler, clock):
    sync = StatusSyncService(reconciler)
    sync.handle_push_event({"entityId": "p1", "status": "escrow_reserved"})

    assert sync.apply_local("p1", "shipped") is False
    clock.advance(seconds=11)
    assert sync.apply_local("p1", "shipped") is True
    assert reconciler.get("p1").source == StatusSource.LOCAL
