"""
Typed errors raised by the inventory engine.

Callers (the HTTP layer) map each kind to a client-facing status code via
the ``http_status`` attribute.
"""


class InventoryError(Exception):
    """Base class for every error the engine raises on purpose."""
    http_status = 400


class NotFound(InventoryError):
    """A PO or batch id/number does not resolve for the given shop."""
    http_status = 404


class InvalidState(InventoryError):
    """The requested operation is illegal in the object's current status."""
    http_status = 409


class ValidationError(InventoryError):
    """Missing or malformed required input."""
    http_status = 422


class InsufficientStock(InventoryError):
    """A consumption asked for more grams than the active lots hold."""
    http_status = 409

    def __init__(self, product_id: str, requested: float, available: float) -> None:
        self.product_id = product_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock for {product_id}: requested {requested:g} g, "
            f"available {available:g} g"
        )
