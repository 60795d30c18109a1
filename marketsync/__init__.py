"""Order status and chat message reconciliation core."""

from marketsync.services.archive_store import ArchiveStore
from marketsync.services.message_reconciler import MessageReconciler
from marketsync.services.status_reconciler import StatusReconciler
from marketsync.session import ReconciliationSession
from marketsync.utils.normalizer import normalize_id

__version__ = "0.1.0"

__all__ = [
    "ArchiveStore",
    "MessageReconciler",
    "ReconciliationSession",
    "StatusReconciler",
    "normalize_id",
]
