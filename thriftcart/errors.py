"""
Common Error Constants and Exceptions

Centralized error messages to avoid string duplication, plus the small
exception hierarchy used across the cart sync layer.
"""

# Validation errors
ERROR_MISSING_PRODUCT_ID = "product_id must be a non-empty string"
ERROR_MISSING_SIZE = "size must be a non-empty string"
ERROR_INVALID_QUANTITY = "quantity must be a positive integer"

# Remote errors
ERROR_NOT_AUTHENTICATED = "No session token available"
ERROR_REMOTE_TIMEOUT = "Remote cart service timed out"
ERROR_REMOTE_UNREACHABLE = "Remote cart service unreachable"
ERROR_REMOTE_REJECTED = "Remote cart service rejected the request"
ERROR_REMOTE_BAD_RESPONSE = "Remote cart service returned an invalid response"

# Backend errors
ERROR_UNAUTHORIZED = "Not authorized, no valid token"
ERROR_ITEM_NOT_IN_CART = "Item not found in cart"
ERROR_MISSING_FIELDS = "Missing required fields"

# Reconciliation
ERROR_RECONCILE_IN_PROGRESS = "Reconciliation already in progress for another account"


class ThriftCartError(Exception):
    """Base class for all thriftcart errors."""


class CartValidationError(ThriftCartError, ValueError):
    """A cart line or wishlist entry failed validation before touching any store."""


class RemoteCartError(ThriftCartError):
    """The remote cart service was unreachable, timed out or refused the call."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ReconciliationInProgressError(ThriftCartError):
    """reconcile_on_login was called for a second account while one is running."""
