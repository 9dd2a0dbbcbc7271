"""
Typed errors raised by the donation ledger.

Every failure the core can detect locally has its own class so callers can
branch on the kind rather than parse messages. The API layer maps each
``code`` onto an HTTP status; nothing else in the system needs to know about
transport.

Design Decisions:
- Single root (LedgerError) so the API needs one exception handler
- Only StorageUnavailable is retryable; everything else is a caller mistake
  or an illegal state and will fail again with the same input
"""


class LedgerError(Exception):
    """Base class for all ledger errors."""

    code = "LedgerError"
    retryable = False

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFound(LedgerError):
    code = "NotFound"


class CampaignNotFound(NotFound):
    code = "CampaignNotFound"


class Forbidden(LedgerError):
    """
    The actor's role may not invoke the operation.

    The message names the role and the operation only, never the target
    entity or its state.
    """

    code = "Forbidden"


class InvalidAmount(LedgerError):
    code = "InvalidAmount"


class AmountMismatch(LedgerError):
    code = "AmountMismatch"


class InvalidTransition(LedgerError):
    code = "InvalidTransition"


class AlreadyVerified(LedgerError):
    code = "AlreadyVerified"


class InsufficientBalance(LedgerError):
    code = "InsufficientBalance"


class CampaignClosed(LedgerError):
    code = "CampaignClosed"


class ValidationFailed(LedgerError):
    """A required field is missing or malformed."""

    code = "ValidationFailed"


class MissingHash(ValidationFailed):
    code = "MissingHash"


class StorageUnavailable(LedgerError):
    """
    Persistence timed out or could not be reached.

    The enclosing unit of work has been rolled back, so the caller may retry
    the same request with backoff.
    """

    code = "StorageUnavailable"
    retryable = True
