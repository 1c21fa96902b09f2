# Overview: Flask API routes for sale transactions; parses input and returns JSON responses.

# backend/salon/routes/sales.py
"""Sales API routes (create / read / edit / void / complete)"""

from flask import Blueprint, request, jsonify, current_app

from ..services import sales_service
from ..services.exceptions import SaleError, NotFoundError


sales_bp = Blueprint("sales", __name__, url_prefix="/api/sales")
customer_sales_bp = Blueprint("customer_sales", __name__, url_prefix="/api/customers")


def sale_error_response(e: SaleError):
    status = 404 if isinstance(e, NotFoundError) else 400
    return jsonify({"error": str(e), "code": e.code, "details": e.details}), status


@sales_bp.post("")
def create_sale_route():
    """
    Create a sale with services/products, discounts, payments and staff.

    Body: customer_id, services | service_ids, products, staff_ids,
    custom_staff_names, payments | payment_method, bring_own_product,
    manual_discount_amount/_reason, manual_increment_amount/_reason, notes
    """
    try:
        data = request.get_json(silent=True) or {}
        sale = sales_service.create_sale(data)
        return jsonify({"sale": sales_service.serialize_sale(sale)}), 201

    except SaleError as e:
        return sale_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("")
def list_sales_route():
    """
    List sales, newest first.

    Query params:
    - page, per_page: pagination (per_page default 10, max 100)
    - customer_id, staff_id: int filters
    - start_date, end_date: YYYY-MM-DD, inclusive days (start_date alone = that day)
    - search: customer name, case-insensitive
    """
    try:
        filters = {
            "customer_id": request.args.get("customer_id", type=int),
            "staff_id": request.args.get("staff_id", type=int),
            "start_date": request.args.get("start_date"),
            "end_date": request.args.get("end_date"),
            "search": request.args.get("search"),
        }
        page = request.args.get("page", 1, type=int)
        per_page = request.args.get("per_page", 10, type=int)
        return jsonify(sales_service.list_sales(filters, page=page, per_page=per_page))

    except SaleError as e:
        return sale_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list sales")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.get("/<int:sale_id>")
def get_sale_route(sale_id: int):
    try:
        return jsonify({"sale": sales_service.get_sale(sale_id)})

    except SaleError as e:
        return sale_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.put("/<int:sale_id>")
def update_sale_route(sale_id: int):
    """
    Edit a sale. Only the collections present in the body are replaced;
    automatic discounts from creation are kept.
    """
    try:
        data = request.get_json(silent=True) or {}
        sale = sales_service.update_sale(sale_id, data)
        return jsonify({"sale": sales_service.serialize_sale(sale)})

    except SaleError as e:
        return sale_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.delete("/<int:sale_id>")
def delete_sale_route(sale_id: int):
    """Void a sale: restock products and reverse customer aggregates."""
    try:
        result = sales_service.delete_sale(sale_id)
        return jsonify({"deleted": result})

    except SaleError as e:
        return sale_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete sale")
        return jsonify({"error": "Internal server error"}), 500


@sales_bp.post("/<int:sale_id>/complete")
def complete_sale_route(sale_id: int):
    try:
        sale = sales_service.complete_sale(sale_id)
        return jsonify({"sale": sales_service.serialize_sale(sale)})

    except SaleError as e:
        return sale_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to complete sale")
        return jsonify({"error": "Internal server error"}), 500


@customer_sales_bp.get("/<int:customer_id>/sales")
def list_customer_sales_route(customer_id: int):
    try:
        page = request.args.get("page", 1, type=int)
        per_page = request.args.get("per_page", 20, type=int)
        return jsonify(sales_service.list_customer_sales(customer_id, page=page, per_page=per_page))

    except SaleError as e:
        return sale_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list customer sales")
        return jsonify({"error": "Internal server error"}), 500
