"""Typed exceptions for ledger failures.

Every error the ledger raises on purpose is a BillingError. The HTTP layer
maps each subclass to a status code and uses error_code as the machine code.
"""


class BillingError(Exception):
    """Base class for billing errors."""

    error_code = "BILLING_ERROR"

    def __init__(self, message: str, error_code: str | None = None):
        self.message = message
        if error_code is not None:
            self.error_code = error_code
        super().__init__(message)


class InvalidInputError(BillingError):
    """
    Request violates a ledger rule: malformed enum, non-positive quantity or
    price, arithmetic mismatch, empty item list, over-collection.

    Always raised before any write.
    """

    error_code = "INVALID_REQUEST"


class NotFoundError(BillingError):
    """Invoice, party, appointment, item or payment does not exist."""

    error_code = "NOT_FOUND"


class ConflictError(BillingError):
    """
    Mutation refused because of the invoice's current state.

    Raised for edits to a paid invoice and for removing its last item.
    """

    error_code = "CONFLICT"


class PersistenceError(BillingError):
    """
    The store failed during an operation; the unit of work was rolled back.

    Carries only the operation name, never query text.
    """

    error_code = "INTERNAL_ERROR"

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"Failed to {operation.replace('_', ' ')}")
