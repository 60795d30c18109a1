"""
Reconciliation session wiring.

One ReconciliationSession is built per user session and handed to whatever
needs it; nothing in the package keeps module-level cache state.
"""

import uuid

import structlog

from marketsync.config import Settings, settings
from marketsync.infrastructure.observability.logging import get_logger
from marketsync.jobs.cleanup_jobs import register_cleanup_jobs
from marketsync.jobs.scheduler import JobScheduler
from marketsync.services.archive_store import ArchiveStore
from marketsync.services.conversation_service import ConversationService
from marketsync.services.last_message_cache import LastMessageCache
from marketsync.services.message_history import MessageHistoryStore
from marketsync.services.message_reconciler import MessageReconciler
from marketsync.services.ports import KeyValueStore, MessageTransport, StatusFetcher
from marketsync.services.status_reconciler import StatusReconciler
from marketsync.services.status_sync_service import StatusSyncService
from marketsync.utils.clock import Clock, utc_now

logger = get_logger(__name__)


class ReconciliationSession:
    def __init__(
        self,
        store: KeyValueStore | None = None,
        transport: MessageTransport | None = None,
        fetcher: StatusFetcher | None = None,
        user_id: str | None = None,
        clock: Clock = utc_now,
        config: Settings = settings,
    ):
        self.session_id = uuid.uuid4().hex
        self.user_id = user_id
        self.store = store
        self.config = config

        self.statuses = StatusReconciler(clock=clock, config=config)
        self.status_sync = StatusSyncService(self.statuses, fetcher)
        self.last_messages = LastMessageCache(store, clock=clock, config=config)
        self.history = MessageHistoryStore(store, config=config)
        self.messages = MessageReconciler(
            transport=transport,
            last_messages=self.last_messages,
            history=self.history,
            current_user_id=user_id,
            clock=clock,
            config=config,
        )
        self.archive = ArchiveStore(store, clock=clock, config=config)
        self.conversations = ConversationService(self.archive, self.messages)
        self.scheduler = register_cleanup_jobs(
            JobScheduler(),
            self.statuses,
            self.messages,
            self.archive,
            self.last_messages,
            config=config,
        )
        self._started = False

    async def start(self):
        """Hydrate persisted state and start the periodic sweeps."""
        if self._started:
            return
        structlog.contextvars.bind_contextvars(session_id=self.session_id)

        archived = await self.archive.load()
        last_messages = await self.last_messages.load()
        await self.history.load()
        hydrated = self.messages.hydrate(self.history.all_messages())
        self.scheduler.start()
        self._started = True

        logger.info(
            "Reconciliation session started",
            user_id=self.user_id,
            archived_loaded=archived,
            last_messages_loaded=last_messages,
            messages_hydrated=hydrated,
        )

    async def close(self):
        """Stop sweeps, cancel in-flight fetches, and flush pending writes."""
        await self.scheduler.shutdown()
        cancelled = self.status_sync.cancel_all()

        for component in (self.archive, self.last_messages, self.history):
            await component.drain()
            await component.flush()

        self._started = False
        logger.info("Reconciliation session closed", cancelled_fetches=cancelled)
        structlog.contextvars.unbind_contextvars("session_id")

    @property
    def is_started(self) -> bool:
        return self._started

    async def __aenter__(self) -> "ReconciliationSession":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()
