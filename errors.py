"""Exceptions raised by the storefront core.

Each subclass maps to one HTTP status in main.py.
"""
from typing import Any, Optional


class ShopError(Exception):
    """Base exception for all storefront errors."""

    status_code = 500

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class NotFound(ShopError):
    """Raised when a user, order, product or coupon doesn't exist."""

    status_code = 404


class Unauthorized(ShopError):
    """Raised when the caller may not act on the resource."""

    status_code = 403


class InvalidState(ShopError):
    """Raised when a business rule rejects the operation."""

    status_code = 400


class InsufficientStock(ShopError):
    """Raised when a cart line asks for more than the product has."""

    status_code = 400

    def __init__(self, product_name: str, available: int):
        self.product_name = product_name
        self.available = available
        super().__init__(
            f"{product_name} is out of stock or insufficient quantity",
            {"available_stock": available},
        )


class Unexpected(ShopError):
    """Raised when persistence fails in the middle of a workflow."""

    status_code = 500
