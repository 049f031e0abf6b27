# Overview: Flask API routes for sales transactions; parses input and returns JSON responses.

"""
Sales Transaction API Routes

SECURITY:
- Any role may sell; cashiers are confined to their own branch
- Only OWNER/MANAGER may cancel a sale
"""

from flask import Blueprint, request, jsonify, g

from ..decorators import require_actor, engine_errors, pagination_args
from ..schemas import SaleRequest
from ..services import sales_service
from ..validation import require_object, to_datetime, to_int, to_text


transactions_bp = Blueprint("transactions", __name__, url_prefix="/api/transactions")


@transactions_bp.post("/")
@require_actor
@engine_errors("create transaction")
def create_transaction_route():
    """
    Create a sale and debit stock.

    Request body:
    {
        "branch_id": 1,                 (optional for cashiers)
        "items": [{"variant_id": 1, "quantity": 2, "price_cents": 15000}],
        "discount_cents": 0,
        "tax_cents": 0,
        "payment_method": "CASH",
        "is_split_payment": false,
        "payment_amount1_cents": ..., "payment_method2": ..., "payment_amount2_cents": ...
    }

    Returns:
        201: Transaction created
        400: Invalid input or split mismatch
        409: Insufficient stock (details.items lists every short line)
    """
    req = SaleRequest.from_payload(request.get_json(silent=True))
    sale = sales_service.create_sale(g.actor, req)
    return jsonify({"transaction": sale.to_dict()}), 201


@transactions_bp.get("/")
@require_actor
@engine_errors("list transactions")
def list_transactions_route():
    page, limit = pagination_args()
    rows, total = sales_service.list_sales(
        g.actor,
        branch_id=to_int(request.args.get("branch_id"), "branch_id", required=False),
        status=request.args.get("status"),
        date_from=to_datetime(request.args.get("date_from"), "date_from"),
        date_to=to_datetime(request.args.get("date_to"), "date_to"),
        page=page,
        limit=limit,
    )
    return jsonify({
        "transactions": [row.to_dict(include_items=False) for row in rows],
        "pagination": {"page": page, "limit": limit, "total": total},
    }), 200


@transactions_bp.get("/<transaction_id>")
@require_actor
@engine_errors("read transaction")
def get_transaction_route(transaction_id: str):
    sale = sales_service.get_sale(g.actor, transaction_id)
    return jsonify({"transaction": sale.to_dict()}), 200


@transactions_bp.put("/<transaction_id>/cancel")
@require_actor
@engine_errors("cancel transaction")
def cancel_transaction_route(transaction_id: str):
    data = require_object(request.get_json(silent=True))
    sale = sales_service.cancel_sale(
        g.actor,
        transaction_id,
        reason=to_text(data.get("reason"), "reason", max_length=255),
    )
    return jsonify({"transaction": sale.to_dict()}), 200
