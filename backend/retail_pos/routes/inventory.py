# Overview: Flask API routes for stock levels and restocking.

from flask import Blueprint, request, jsonify, g
from flask import current_app

from ..errors import SaleError
from ..services import inventory_service
from ..decorators import require_actor
from ..validation import require_json_object


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.get("/alerts")
def stock_alerts_route():
    """Low-stock and out-of-stock active products for reorder prompts."""
    return jsonify(inventory_service.get_stock_alerts()), 200


@inventory_bp.get("/<int:product_id>")
def get_stock_level_route(product_id: int):
    try:
        return jsonify({"stock": inventory_service.get_stock_level(product_id)}), 200
    except SaleError as e:
        return jsonify(e.to_dict()), e.status_code


@inventory_bp.post("/<int:product_id>/restock")
@require_actor
def restock_route(product_id: int):
    """
    Receive stock for a product. Body: quantity (positive integer).

    Stamps last_restocked_at; sale refunds never do.
    """
    try:
        data = require_json_object(request.get_json(silent=True))
        level = inventory_service.restock(product_id, data.get("quantity"), actor_id=g.actor_id)
        return jsonify({"stock": level}), 200
    except SaleError as e:
        return jsonify(e.to_dict()), e.status_code
    except Exception:
        current_app.logger.exception("Failed to restock product")
        return jsonify({"error": "internal_error", "message": "Internal server error", "details": {}}), 500
