"""
Error taxonomy for the confirmation pipeline.

There is no AlreadyResolved error: resolving a resolved entry is a
no-op reported through the result objects, not an error.
"""


class ChatLedgerError(Exception):
    """Base exception for pipeline errors."""

    retryable: bool = False


class UnsupportedMessageError(ChatLedgerError):
    """Inbound message has an unknown body kind or an unusable payload."""

    pass


class NotRegisteredError(ChatLedgerError):
    """Sender is not a registered user. Terminal, never retried."""

    def __init__(self, sender: str, invitation_sent: bool = False):
        self.sender = sender
        self.invitation_sent = invitation_sent
        super().__init__(f"Sender '{sender}' is not registered")


class ExtractionFailure(ChatLedgerError):
    """Extraction failed or produced no candidates. No prediction was written."""

    def __init__(self, message: str, retryable: bool = False):
        self.retryable = retryable
        super().__init__(message)


class NotFoundError(ChatLedgerError):
    """Resolution target does not exist or has nothing left to resolve."""

    pass


class StoreFailure(ChatLedgerError):
    """A durable write failed; the affected entry stays unresolved."""

    retryable = True
