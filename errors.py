"""Error taxonomy for the storefront API.

Service modules raise these; ``main`` turns them into
``{"success": false, "error": ...}`` responses using ``status_code``.
"""


class StoreError(Exception):
    """Base exception for all storefront errors."""

    status_code = 500

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationError(StoreError):
    """Missing or malformed input."""

    status_code = 400


class UnauthorizedError(StoreError):
    """Missing or invalid credentials."""

    status_code = 401


class ForbiddenError(StoreError):
    """Ownership or role mismatch."""

    status_code = 403


class NotFoundError(StoreError):
    """Entity absent."""

    status_code = 404


class OutOfStockError(StoreError):
    status_code = 400


class PriceMismatchError(StoreError):
    status_code = 400


class InsufficientFundsError(StoreError):
    status_code = 400


class ConflictError(StoreError):
    """Duplicate processed reference or duplicate unique field."""

    status_code = 409


class GatewayError(StoreError):
    """Payment provider failed, was unreachable or reported a non-success status."""

    status_code = 502
