# Overview: Error taxonomy shared by the ledger services and the API layer.

"""
Ledger errors.

Every service failure is raised as a LedgerError subclass carrying a message
and a details dict (entity ids, attempted deltas) so the caller can log and
display it. Services never swallow these: the enclosing unit of work either
commits fully or rolls back fully.

The http_status attribute is a hint for the API layer only.
"""


class LedgerError(Exception):
    """Base class for ledger operation errors."""

    http_status = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "code": type(self).__name__,
            "details": self.details,
        }


class ValidationError(LedgerError):
    """Malformed input; rejected before any write."""


class InsufficientStock(LedgerError):
    """An out movement or sale would drive a product balance below zero."""

    http_status = 409


class ProductNotFound(LedgerError):
    http_status = 404


class SessionNotFound(LedgerError):
    http_status = 404


class SaleNotFound(LedgerError):
    http_status = 404


class SessionAlreadyActive(LedgerError):
    """The user already has an active caisse session."""

    http_status = 409


class SessionNotActive(LedgerError):
    """Cash movement attempted on a session that is not active."""

    http_status = 409


class SessionAlreadyClosed(LedgerError):
    """Close attempted on a session that is already closed."""

    http_status = 409


class RefundError(LedgerError):
    """Refund request conflicts with what was sold or already refunded."""

    http_status = 409


class StorageConflict(LedgerError):
    """
    Concurrent-transaction conflict (lock contention, stale row version).

    Recoverable by retrying the whole operation; the services never retry
    on their own.
    """

    http_status = 409


class StorageUnavailable(LedgerError):
    http_status = 503


class ImmutabilityViolation(LedgerError):
    """Attempt to modify or delete an append-only ledger row."""

    http_status = 409


class InsufficientCash(LedgerError):
    """A cash out would leave the drawer below zero."""

    http_status = 409


class CustomerNotFound(LedgerError):
    http_status = 404
