# Overview: Flask API routes for returns and exchanges; parses input and returns JSON responses.

# backend/backoffice/routes/returns.py
"""
Return Processing API Routes

WHY: Take goods back against an original sale, with a manager approval
workflow for non-privileged staff.

DESIGN:
- Returns reference the original transaction and its sold lines
- PENDING returns move no stock until approved
- Approvers may complete or reject a PENDING return exactly once
"""

from flask import Blueprint, request, jsonify, g

from ..decorators import require_actor, engine_errors, pagination_args
from ..schemas import ReturnRequest
from ..services import return_service
from ..validation import require_object, to_int, to_text


returns_bp = Blueprint("returns", __name__, url_prefix="/api/returns")


@returns_bp.post("/")
@require_actor
@engine_errors("create return")
def create_return_route():
    """
    Create a return (PENDING, or COMPLETED when auto-approved).

    Request body:
    {
        "transaction_id": "uuid",
        "items": [{"transaction_item_id": 10, "quantity": 1}],
        "reason": "WRONG_SIZE",
        "return_type": "EXCHANGE",                       (optional)
        "exchange_items": [{"variant_id": 7, "quantity": 1}],
        "manager_override": false,
        "approved_by": "Manager name"                    (optional)
    }

    Returns:
        201: Return created
        400: Invalid input
        404: Transaction not found
        409: Quantity exceeds what is left to return
        422: Return window expired
    """
    req = ReturnRequest.from_payload(request.get_json(silent=True))
    ret = return_service.create_return(g.actor, req)
    return jsonify({"return": ret.to_dict()}), 201


@returns_bp.get("/")
@require_actor
@engine_errors("list returns")
def list_returns_route():
    page, limit = pagination_args(default_limit=20)
    rows, total = return_service.list_returns(
        g.actor,
        status=request.args.get("status"),
        branch_id=to_int(request.args.get("branch_id"), "branch_id", required=False),
        search=to_text(request.args.get("search"), "search", max_length=64),
        page=page,
        limit=limit,
    )
    return jsonify({
        "returns": [row.to_dict(include_items=False) for row in rows],
        "pagination": {"page": page, "limit": limit, "total": total},
    }), 200


@returns_bp.get("/stats")
@require_actor
@engine_errors("read return stats")
def return_stats_route():
    branch_id = to_int(request.args.get("branch_id"), "branch_id", required=False)
    return jsonify(return_service.return_stats(g.actor, branch_id)), 200


@returns_bp.get("/<int:return_id>")
@require_actor
@engine_errors("read return")
def get_return_route(return_id: int):
    ret = return_service.get_return(g.actor, return_id)
    return jsonify({"return": ret.to_dict()}), 200


@returns_bp.patch("/<int:return_id>/approve")
@require_actor
@engine_errors("approve return")
def approve_return_route(return_id: int):
    data = require_object(request.get_json(silent=True))
    ret = return_service.approve_return(
        g.actor,
        return_id,
        approved_by=to_text(data.get("approved_by"), "approved_by", max_length=128),
    )
    return jsonify({"return": ret.to_dict()}), 200


@returns_bp.patch("/<int:return_id>/reject")
@require_actor
@engine_errors("reject return")
def reject_return_route(return_id: int):
    data = require_object(request.get_json(silent=True))
    ret = return_service.reject_return(
        g.actor,
        return_id,
        rejected_by=to_text(data.get("rejected_by"), "rejected_by", max_length=128),
        rejection_notes=to_text(data.get("rejection_notes"), "rejection_notes", max_length=500),
    )
    return jsonify({"return": ret.to_dict()}), 200
