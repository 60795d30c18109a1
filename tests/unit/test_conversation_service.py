import pytest

from marketsync.services.archive_store import ArchiveStore
from marketsync.services.conversation_service import ConversationService
from marketsync.services.message_reconciler import MessageReconciler

CONVERSATION = {
    "_id": {"$oid": "c1"},
    "participants": [{"user": {"_id": "buyer-1"}}, {"user": "seller-1"}],
    "listing": "AK-47 | Redline",
}


@pytest.fixture
def service(clock):
    archive = ArchiveStore(clock=clock)
    messages = MessageReconciler(current_user_id="buyer-1", clock=clock)
    return ConversationService(archive, messages)


def test_upsert_merges_updates(service):
    assert service.upsert(CONVERSATION) == "c1"
    service.upsert({"_id": "c1", "unread": 2})

    conversation = service.get("c1")
    assert conversation["listing"] == "AK-47 | Redline"
    assert conversation["unread"] == 2
    assert conversation["_id"] == "c1"


def test_upsert_many_skips_unresolvable(service):
    assert service.upsert_many([CONVERSATION, {"_id": None}, {"id": "c2"}]) == 2


def test_live_filters_by_participant(service):
    service.upsert_many([CONVERSATION, {"_id": "c2", "participants": ["someone-else"]}])

    assert [c["_id"] for c in service.live("seller-1")] == ["c1"]
    assert len(service.live()) == 2


def test_complete_archives_with_messages_and_hides_from_live(service):
    service.upsert(CONVERSATION)
    service.chat.reconcile({"_id": "m1", "conversation": "c1", "sender": "buyer-1", "content": "received, thanks"})

    entry = service.complete("c1", "buyer-1")

    assert entry.conversation_id == "c1"
    assert [m.id for m in entry.messages] == ["m1"]
    assert service.live("buyer-1") == []
    assert service.archive.get_all("seller-1") == [entry]


def test_archived_conversation_stays_hidden_on_refresh(service):
    service.upsert(CONVERSATION)
    service.complete("c1", "buyer-1")

    # a later conversation list refresh still contains it
    service.upsert(CONVERSATION)

    assert service.live("buyer-1") == []


def test_archived_conversation_reappears_after_expiry(service, clock):
    service.upsert(CONVERSATION)
    service.complete("c1", "buyer-1")
    service.upsert(CONVERSATION)

    clock.advance(days=7)

    assert [c["_id"] for c in service.live("buyer-1")] == ["c1"]


def test_complete_unknown_conversation_archives_bare_snapshot(service):
    entry = service.complete("c9", "buyer-1")

    assert entry.conversation_snapshot == {"_id": "c9"}
    assert service.complete(None, "buyer-1") is None


def test_restore_moves_conversation_back(service):
    service.upsert(CONVERSATION)
    service.chat.reconcile({"_id": "m1", "conversation": "c1", "sender": "buyer-1", "content": "hi"})
    service.complete("c1", "buyer-1")

    restored = service.restore("c1")

    assert restored["_id"] == "c1"
    assert not service.archive.is_archived("c1")
    assert [c["_id"] for c in service.live("buyer-1")] == ["c1"]
    assert len(service.chat.messages("c1")) == 1
    assert service.restore("c1") is None
