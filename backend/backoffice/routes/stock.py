# Overview: Flask API routes for stock levels, manual adjustments and low-stock alerts.

"""
Stock API Routes

DESIGN:
- Reads are branch-scoped; cashiers only see their own branch
- Manual adjustments always produce exactly one StockAdjustment row
- Alerts flag (variant, branch) pairs whose quantity drops below a threshold
"""

from flask import Blueprint, request, jsonify, g

from ..decorators import require_actor, engine_errors, pagination_args
from ..schemas import AdjustStockRequest, StockAlertRequest
from ..services import adjustment_service, stock_service
from ..services.tenant_service import require_branch_access, tenant_branch_ids
from ..permissions import require_permission
from ..validation import to_int


stock_bp = Blueprint("stock", __name__, url_prefix="/api/stock")


@stock_bp.get("/<int:variant_id>/<int:branch_id>")
@require_actor
@engine_errors("read stock")
def get_stock_route(variant_id: int, branch_id: int):
    stock = stock_service.get_stock_for_actor(g.actor, variant_id, branch_id)
    return jsonify({"stock": stock.to_dict()}), 200


# =============================================================================
# ADJUSTMENTS
# =============================================================================

@stock_bp.post("/adjustment")
@require_actor
@engine_errors("create stock adjustment")
def create_adjustment_route():
    """
    Manual stock correction.

    Request body:
    {
        "variant_id": 1,
        "branch_id": 1,
        "type": "add" | "subtract",
        "quantity": 5,
        "reason": "damaged",   (optional, see adjustment reasons)
        "notes": "..."         (optional)
    }

    Returns:
        201: adjustment created, with new stock level
        400: invalid input
        404: no stock record for the pair
        409: subtraction below zero
    """
    req = AdjustStockRequest.from_payload(request.get_json(silent=True))
    adjustment, stock = stock_service.adjust_stock(g.actor, req)
    return jsonify({
        "adjustment": adjustment.to_dict(),
        "new_stock": stock.quantity,
    }), 201


@stock_bp.get("/adjustments")
@require_actor
@engine_errors("list stock adjustments")
def list_adjustments_route():
    require_permission(g.actor, "VIEW_ADJUSTMENTS")
    page, limit = pagination_args()
    branch_id = to_int(request.args.get("branch_id"), "branch_id", required=False)
    if branch_id is not None:
        require_branch_access(g.actor, branch_id)

    rows, total = adjustment_service.list_adjustments(
        tenant_branch_ids(g.actor.tenant_id),
        branch_id=branch_id,
        variant_id=to_int(request.args.get("variant_id"), "variant_id", required=False),
        reason=request.args.get("reason"),
        page=page,
        limit=limit,
    )
    return jsonify({
        "adjustments": [row.to_dict() for row in rows],
        "pagination": {"page": page, "limit": limit, "total": total},
    }), 200


@stock_bp.get("/adjustment/<int:variant_id>/<int:branch_id>/history")
@require_actor
@engine_errors("read adjustment history")
def adjustment_history_route(variant_id: int, branch_id: int):
    require_permission(g.actor, "VIEW_ADJUSTMENTS")
    require_branch_access(g.actor, branch_id)
    limit = to_int(request.args.get("limit"), "limit", required=False, minimum=1, maximum=200) or 20
    rows = adjustment_service.adjustment_history(variant_id, branch_id, limit=limit)
    return jsonify({"history": [row.to_dict() for row in rows]}), 200


# =============================================================================
# ALERTS
# =============================================================================

@stock_bp.post("/alert")
@require_actor
@engine_errors("set stock alert")
def set_alert_route():
    req = StockAlertRequest.from_payload(request.get_json(silent=True))
    alert = stock_service.set_alert(g.actor, req)
    return jsonify({"alert": alert.to_dict()}), 200


@stock_bp.get("/alert/<int:variant_id>/<int:branch_id>")
@require_actor
@engine_errors("read stock alert")
def get_alert_route(variant_id: int, branch_id: int):
    alert = stock_service.get_alert(g.actor, variant_id, branch_id)
    return jsonify({"alert": alert.to_dict() if alert else None}), 200


@stock_bp.delete("/alert/<int:variant_id>/<int:branch_id>")
@require_actor
@engine_errors("deactivate stock alert")
def delete_alert_route(variant_id: int, branch_id: int):
    alert = stock_service.deactivate_alert(g.actor, variant_id, branch_id)
    return jsonify({"alert": alert.to_dict()}), 200


@stock_bp.get("/alerts/low")
@require_actor
@engine_errors("list low stock")
def low_stock_route():
    branch_id = to_int(request.args.get("branch_id"), "branch_id", required=False)
    items = stock_service.list_low_stock(g.actor, branch_id)
    return jsonify({"items": items, "count": len(items)}), 200
