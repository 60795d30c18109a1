"""
Cleanup job registration for a reconciliation session.

- status_cache_cleanup: evicts TTL-expired status entries (every ~2 minutes)
- message_cleanup: bounds the retired temp-id index
- archive_cleanup: drops expired archived conversations
- last_message_cleanup: drops previews not updated within the retention window
"""

from marketsync.config import Settings, settings
from marketsync.jobs.scheduler import JobScheduler
from marketsync.services.archive_store import ArchiveStore
from marketsync.services.last_message_cache import LastMessageCache
from marketsync.services.message_reconciler import MessageReconciler
from marketsync.services.status_reconciler import StatusReconciler

STATUS_CACHE_CLEANUP = "status_cache_cleanup"
MESSAGE_CLEANUP = "message_cleanup"
ARCHIVE_CLEANUP = "archive_cleanup"
LAST_MESSAGE_CLEANUP = "last_message_cleanup"


def register_cleanup_jobs(
    scheduler: JobScheduler,
    statuses: StatusReconciler,
    messages: MessageReconciler,
    archive: ArchiveStore,
    last_messages: LastMessageCache,
    config: Settings = settings,
) -> JobScheduler:
    intervals = config.get_job_config()
    scheduler.register(STATUS_CACHE_CLEANUP, statuses.cleanup, intervals[STATUS_CACHE_CLEANUP])
    scheduler.register(MESSAGE_CLEANUP, messages.cleanup, intervals[MESSAGE_CLEANUP])
    scheduler.register(ARCHIVE_CLEANUP, archive.cleanup_expired, intervals[ARCHIVE_CLEANUP])
    scheduler.register(LAST_MESSAGE_CLEANUP, last_messages.clean_old, intervals[LAST_MESSAGE_CLEANUP])
    return scheduler
