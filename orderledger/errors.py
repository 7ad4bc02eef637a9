"""Exceptions raised by the order ledger service layer."""


class OrderLedgerError(Exception):
    """Base class for expected, caller-facing failures."""
    pass


class ValidationError(OrderLedgerError):
    """Raised when order, supplier or adjustment input fails validation.

    Nothing has been written when this is raised.
    """
    pass


class NotFoundError(OrderLedgerError):
    """Raised when an operation targets an order or supplier that does not exist."""
    pass
