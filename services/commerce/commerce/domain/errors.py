"""Failure kinds raised by the order and stock services.

Routes never build error responses themselves; the handlers registered in
``commerce.main`` translate these into HTTP responses.
"""
from typing import Any, Dict, Optional


class CommerceError(Exception):
    code = "error"
    http_status = 500
    retryable = False
    default_message = "Request failed"

    def __init__(self, message: Optional[str] = None, **details: Any):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        body = {
            "success": False,
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
        }
        body.update(self.details)
        return body


class ValidationError(CommerceError):
    """Malformed or missing request data; nothing was mutated."""
    code = "validation_error"
    http_status = 400
    default_message = "Invalid request"


class NotFound(CommerceError):
    code = "not_found"
    http_status = 404
    default_message = "Resource not found"


class InsufficientStock(CommerceError):
    code = "insufficient_stock"
    http_status = 409

    def __init__(self, product_id: int, product_name: str, requested: int, available: int):
        super().__init__(
            f"Insufficient stock for {product_name}. Available: {available}, Requested: {requested}",
            product_id=product_id,
            product_name=product_name,
            requested=requested,
            available=available,
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class Conflict(CommerceError):
    """Order number allocation kept colliding; safe to retry the request."""
    code = "conflict"
    http_status = 409
    retryable = True
    default_message = "The order could not be numbered, please retry"


class Unavailable(CommerceError):
    """Database or transaction failure (including timeouts); nothing was committed."""
    code = "unavailable"
    http_status = 503
    retryable = True
    default_message = "Service temporarily unavailable, please retry"
