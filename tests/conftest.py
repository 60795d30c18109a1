from datetime import UTC, datetime, timedelta

import pytest

from marketsync.exceptions import StoreError, TransportError


class FakeClock:
    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 3, 10, 12, 0, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class FakeStore:
    def __init__(self):
        self.store: dict[str, str] = {}
        self.fail_writes = False
        self.fail_reads = False
        self.set_calls = 0

    async def set(self, key: str, value: str, ttl_s: int | None = None) -> bool:
        self.set_calls += 1
        if self.fail_writes:
            raise StoreError("QuotaExceededError")
        self.store[key] = value
        return True

    async def get(self, key: str) -> str | None:
        if self.fail_reads:
            raise StoreError("storage disabled")
        return self.store.get(key)

    async def delete(self, key: str) -> bool:
        return self.store.pop(key, None) is not None

    async def ping(self) -> bool:
        return not (self.fail_reads or self.fail_writes)


class FakeTransport:
    """Echoes a server copy for each send; queued failures are raised in order."""

    def __init__(self):
        self.calls: list[dict] = []
        self.failures: list[Exception] = []
        self._next_id = 0

    async def send(self, conversation_id, content, kind, temp_id, attachments=None):
        self.calls.append(
            {"conversation_id": conversation_id, "content": content, "kind": kind, "temp_id": temp_id}
        )
        if self.failures:
            raise self.failures.pop(0)
        self._next_id += 1
        return {
            "_id": f"m{self._next_id}",
            "tempId": temp_id,
            "conversation": conversation_id,
            "sender": "user-1",
            "content": content,
            "type": kind,
            "createdAt": "2024-03-10T12:00:01+00:00",
        }

    def fail_next(self, error: Exception | None = None):
        self.failures.append(error or TransportError("network down"))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_store():
    return FakeStore()


@pytest.fixture
def fake_transport():
    return FakeTransport()
