# Overview: Flask API routes for sales operations; parses input and returns JSON responses.

# backend/retail_pos/routes/sales.py
"""Sales API routes"""

from flask import Blueprint, request, jsonify, g
from flask import current_app

from ..errors import SaleError, SalePersistenceError
from ..services import sales_service
from ..decorators import require_actor
from ..time_utils import parse_iso_datetime


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")

INTERNAL_ERROR = {"error": "internal_error", "message": "Internal server error", "details": {}}


def _sale_error_response(e: SaleError, log_message: str):
    if isinstance(e, SalePersistenceError):
        current_app.logger.exception(log_message)
    return jsonify(e.to_dict()), e.status_code


@sales_bp.post("/")
@require_actor
def create_sale_route():
    """
    Create a completed sale from a cart.

    Body: items[{product_id, quantity, unit_price_cents?, discount_cents?, tax_cents?}],
    payment_method, discount_cents?, tax_cents?, amount_paid_cents?, customer_name?, notes?
    """
    try:
        data = sales_service.parse_request_body(
            request.get_json(silent=True),
            failure_event="sale_create_failed",
            actor_id=g.actor_id,
        )

        sale = sales_service.create_sale(
            data.get("items"),
            data,
            g.actor_id,
        )

        return jsonify({"sale": sale.to_dict()}), 201

    except SaleError as e:
        return _sale_error_response(e, "Failed to persist sale")
    except Exception:
        current_app.logger.exception("Failed to create sale")
        return jsonify(INTERNAL_ERROR), 500


@sales_bp.get("/")
def list_sales_route():
    """List sales, newest first. Filters: status, payment_method, start, end, page, per_page."""
    try:
        start = parse_iso_datetime(request.args.get("start"))
        end = parse_iso_datetime(request.args.get("end"))
    except ValueError:
        return jsonify({
            "error": "validation_error",
            "message": "start and end must be ISO-8601 datetimes",
            "details": {},
        }), 400

    result = sales_service.list_sales(
        status=request.args.get("status"),
        payment_method=request.args.get("payment_method"),
        start=start,
        end=end,
        page=request.args.get("page", 1, type=int),
        per_page=request.args.get("per_page", 20, type=int),
    )

    return jsonify({
        "sales": [sale.to_dict(include_lines=False) for sale in result["sales"]],
        "pagination": result["pagination"],
    }), 200


@sales_bp.get("/<int:sale_id>")
def get_sale_route(sale_id: int):
    """Get sale with lines."""
    try:
        sale = sales_service.get_sale(sale_id)
        return jsonify({"sale": sale.to_dict()}), 200
    except SaleError as e:
        return jsonify(e.to_dict()), e.status_code


@sales_bp.get("/invoice/<string:invoice_number>")
def get_sale_by_invoice_route(invoice_number: str):
    try:
        sale = sales_service.get_sale_by_invoice(invoice_number.strip().upper())
        return jsonify({"sale": sale.to_dict()}), 200
    except SaleError as e:
        return jsonify(e.to_dict()), e.status_code


@sales_bp.post("/<int:sale_id>/refund")
@require_actor
def refund_sale_route(sale_id: int):
    """
    Refund a completed sale.

    Body: reason (required), amount_cents (optional, defaults to the full total).
    Restricted to privileged roles by the upstream authorization layer.
    """
    try:
        data = sales_service.parse_request_body(
            request.get_json(silent=True),
            failure_event="sale_refund_failed",
            actor_id=g.actor_id,
            sale_id=sale_id,
        )

        sale = sales_service.refund_sale(
            sale_id,
            amount_cents=data.get("amount_cents"),
            reason=data.get("reason"),
            actor_id=g.actor_id,
        )

        return jsonify({"sale": sale.to_dict()}), 200

    except SaleError as e:
        return _sale_error_response(e, "Failed to persist refund")
    except Exception:
        current_app.logger.exception("Failed to refund sale")
        return jsonify(INTERNAL_ERROR), 500


@sales_bp.post("/<int:sale_id>/cancel")
@require_actor
def cancel_sale_route(sale_id: int):
    """Cancel a completed sale and restore its stock. Body: reason (required)."""
    try:
        data = sales_service.parse_request_body(
            request.get_json(silent=True),
            failure_event="sale_cancel_failed",
            actor_id=g.actor_id,
            sale_id=sale_id,
        )

        sale = sales_service.cancel_sale(
            sale_id,
            reason=data.get("reason"),
            actor_id=g.actor_id,
        )

        return jsonify({"sale": sale.to_dict()}), 200

    except SaleError as e:
        return _sale_error_response(e, "Failed to persist cancellation")
    except Exception:
        current_app.logger.exception("Failed to cancel sale")
        return jsonify(INTERNAL_ERROR), 500
