class LedgerError(Exception):
    """Base class for errors raised by the ledger services."""


class ValidationError(LedgerError, ValueError):
    """Malformed input: non-positive amount, bad type, category mismatch."""


class NotFoundError(LedgerError, ValueError):
    """The target row does not exist, belongs to another user, or is deleted."""


class ConsistencyError(LedgerError):
    """A step inside an atomic unit failed after earlier writes succeeded."""


class StoreUnavailableError(LedgerError):
    """The underlying storage failed; the unit of work was rolled back."""
