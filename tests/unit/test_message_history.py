import json
from datetime import UTC, datetime, timedelta

import pytest

from marketsync.config import Settings
from marketsync.models.domain.message_domain import Message, MessageStatus
from marketsync.services.message_history import MessageHistoryStore
from marketsync.services.message_reconciler import MessageReconciler

STORAGE_KEY = "marketsync:message_history"
START = datetime(2024, 3, 10, 12, 0, tzinfo=UTC)


def confirmed(n, conversation="c1"):
    return Message(
        id=f"m{n}",
        conversation_id=conversation,
        sender_id="user-1",
        content=f"message {n}",
        created_at=START + timedelta(seconds=n),
    )


def test_save_keeps_only_confirmed_and_newest():
    history = MessageHistoryStore(config=Settings(MESSAGE_HISTORY_LIMIT=2))
    pending = Message(temp_id="temp_1", conversation_id="c1", content="draft", created_at=START)

    assert history.save("c1", [confirmed(1), confirmed(2), pending, confirmed(3)]) is True

    assert [m.id for m in history.get("c1")] == ["m2", "m3"]
    assert history.save("c2", [pending]) is False
    assert history.get("c2") == []


def test_least_recently_saved_conversation_is_evicted():
    history = MessageHistoryStore(config=Settings(MESSAGE_HISTORY_MAX_CONVERSATIONS=2))
    history.save("c1", [confirmed(1, "c1")])
    history.save("c2", [confirmed(2, "c2")])
    history.save("c1", [confirmed(1, "c1"), confirmed(3, "c1")])

    history.save("c3", [confirmed(4, "c3")])

    assert history.conversation_ids() == ["c1", "c3"]


def test_remove():
    history = MessageHistoryStore()
    history.save({"$oid": "c1"}, [confirmed(1)])

    assert history.remove("c1") is True
    assert history.remove("c1") is False
    assert len(history) == 0


@pytest.mark.asyncio
async def test_persisted_history_loads_into_new_store(fake_store):
    writer = MessageHistoryStore(fake_store)
    writer.save("c1", [confirmed(1), confirmed(2)])
    await writer.drain()

    stored = json.loads(fake_store.store[STORAGE_KEY])
    assert [m["id"] for m in stored["c1"]] == ["m1", "m2"]

    reader = MessageHistoryStore(fake_store)
    assert await reader.load() == 2
    assert reader.get("c1") == writer.get("c1")


@pytest.mark.asyncio
async def test_load_skips_invalid_entries_and_survives_outage(fake_store):
    fake_store.store[STORAGE_KEY] = json.dumps(
        {"c1": [confirmed(1).model_dump(mode="json"), {"id": "broken"}], "c2": "nope"}
    )
    assert await MessageHistoryStore(fake_store).load() == 1

    fake_store.store[STORAGE_KEY] = "{not json"
    assert await MessageHistoryStore(fake_store).load() == 0

    fake_store.fail_reads = True
    assert await MessageHistoryStore(fake_store).load() == 0


@pytest.mark.asyncio
async def test_write_failure_keeps_memory(fake_store):
    fake_store.fail_writes = True
    history = MessageHistoryStore(fake_store)

    history.save("c1", [confirmed(1)])
    await history.drain()

    assert [m.id for m in history.get("c1")] == ["m1"]
    assert await history.flush() is False


def test_reconciler_records_confirmed_messages(clock):
    history = MessageHistoryStore()
    reconciler = MessageReconciler(history=history, current_user_id="user-1", clock=clock)

    temp_id = reconciler.add_optimistic("c1", "hello")
    assert history.get("c1") == []

    reconciler.reconcile(
        {"_id": "m1", "tempId": temp_id, "conversation": "c1", "sender": "user-1", "content": "hello"}
    )
    reconciler.update_status("m1", "read")

    [stored] = history.get("c1")
    assert stored.id == "m1"
    assert stored.status == MessageStatus.READ


def test_hydrate_seeds_reconciler_without_rewriting_history(clock):
    history = MessageHistoryStore()
    history.save("c1", [confirmed(2), confirmed(1)])
    history.save = None  # hydration must not write back

    reconciler = MessageReconciler(history=history, clock=clock)

    assert reconciler.hydrate(history.all_messages()) == 2
    assert [m.id for m in reconciler.messages("c1")] == ["m1", "m2"]
