# Overview: Exception taxonomy for the sale pipeline; each error carries its HTTP status.

from __future__ import annotations


class SaleError(Exception):
    """Base for every error the sale pipeline reports to callers."""

    kind = "sale_error"
    status_code = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.kind,
            "message": self.message,
            "details": self.details,
        }


# =============================================================================
# INPUT VALIDATION (400, never retried)
# =============================================================================

class InputValidationError(SaleError):
    kind = "validation_error"
    status_code = 400


class EmptyCartError(InputValidationError):
    kind = "empty_cart"


class InvalidQuantityError(InputValidationError):
    kind = "invalid_quantity"


class InvalidPricingError(InputValidationError):
    kind = "invalid_pricing"


class InvalidPaymentMethodError(InputValidationError):
    kind = "invalid_payment_method"


class InvalidRefundAmountError(InputValidationError):
    kind = "invalid_refund_amount"


# =============================================================================
# NOT FOUND (404)
# =============================================================================

class NotFoundError(SaleError):
    kind = "not_found"
    status_code = 404


class ProductNotFoundError(NotFoundError):
    kind = "product_not_found"


class SaleNotFoundError(NotFoundError):
    kind = "sale_not_found"


# =============================================================================
# BUSINESS RULES (reported synchronously, never auto-retried)
# =============================================================================

class BusinessRuleError(SaleError):
    kind = "business_rule_violation"
    status_code = 409


class InsufficientStockError(BusinessRuleError):
    kind = "insufficient_stock"

    def __init__(self, product_id: int, requested: int, available: int | None = None):
        message = f"Insufficient stock for product {product_id}: requested {requested}"
        if available is not None:
            message += f", available {available}"
        super().__init__(
            message,
            details={
                "product_id": product_id,
                "requested_quantity": requested,
                "on_hand": available,
            },
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class AlreadyRefundedError(BusinessRuleError):
    kind = "already_refunded"


class InvalidSaleStateError(BusinessRuleError):
    kind = "invalid_sale_state"


class RefundExceedsTotalError(BusinessRuleError):
    kind = "refund_exceeds_total"
    status_code = 400


# =============================================================================
# INFRASTRUCTURE (500, internal text never exposed)
# =============================================================================

class SalePersistenceError(SaleError):
    kind = "internal_error"
    status_code = 500

    def to_dict(self) -> dict:
        return {
            "error": self.kind,
            "message": "Internal server error",
            "details": {},
        }
