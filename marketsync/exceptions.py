"""Exception hierarchy for the reconciliation core."""


class MarketSyncError(Exception):
    """Base exception for reconciliation core errors."""

    def __init__(self, message: str, recoverable: bool = True):
        super().__init__(message)
        self.recoverable = recoverable


class MessageReconcilerError(MarketSyncError):
    """Base exception for chat message reconciliation errors."""

    def __init__(self, message: str, message_id: str | None = None, recoverable: bool = True):
        super().__init__(message, recoverable=recoverable)
        self.message_id = message_id


class UnknownMessageError(MessageReconcilerError):
    """Raised when an operation references a message id that is not tracked."""

    def __init__(self, message_id: str):
        super().__init__(f"Unknown message: {message_id}", message_id=message_id, recoverable=False)


class MessageStateError(MessageReconcilerError):
    """Raised when a message is not in a state that allows the operation."""


class MessageValidationError(MessageReconcilerError):
    """Raised when outgoing text is rejected before it is displayed."""

    def __init__(self, message: str, detected_content: str | None = None):
        super().__init__(message, recoverable=True)
        self.detected_content = detected_content


class TransportError(MarketSyncError):
    """Raised by collaborators when a send or fetch fails."""


class StoreError(MarketSyncError):
    """Raised by key/value store backends; callers swallow and log it."""
