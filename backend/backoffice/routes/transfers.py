# backend/backoffice/routes/transfers.py
"""
Inter-branch stock transfer API routes.
"""
from flask import Blueprint, request, jsonify, g

from ..decorators import require_actor, engine_errors, pagination_args
from ..schemas import TransferRequest
from ..services import transfer_service
from ..validation import require_object, to_int, to_text


transfers_bp = Blueprint("transfers", __name__, url_prefix="/api/stock-transfers")


@transfers_bp.post("/")
@require_actor
@engine_errors("create transfer")
def create_transfer_route():
    """
    Request a transfer.

    Request body:
    {
        "variant_id": int,
        "from_branch_id": int,
        "to_branch_id": int,
        "quantity": int,
        "notes": str (optional)
    }

    Returns:
        201: Transfer created (PENDING, or COMPLETED for managers/owners)
        400: Invalid request
        403: Forbidden
        409: Insufficient stock at source
    """
    req = TransferRequest.from_payload(request.get_json(silent=True))
    transfer = transfer_service.create_transfer(g.actor, req)
    return jsonify({"transfer": transfer.to_dict()}), 201


@transfers_bp.get("/")
@require_actor
@engine_errors("list transfers")
def list_transfers_route():
    page, limit = pagination_args()
    rows, total = transfer_service.list_transfers(
        g.actor,
        status=request.args.get("status"),
        branch_id=to_int(request.args.get("branch_id"), "branch_id", required=False),
        variant_id=to_int(request.args.get("variant_id"), "variant_id", required=False),
        page=page,
        limit=limit,
    )
    return jsonify({
        "transfers": [row.to_dict() for row in rows],
        "pagination": {"page": page, "limit": limit, "total": total},
    }), 200


@transfers_bp.get("/stats/summary")
@require_actor
@engine_errors("read transfer stats")
def transfer_stats_route():
    branch_id = to_int(request.args.get("branch_id"), "branch_id", required=False)
    return jsonify(transfer_service.transfer_stats(g.actor, branch_id)), 200


@transfers_bp.get("/<int:transfer_id>")
@require_actor
@engine_errors("read transfer")
def get_transfer_route(transfer_id: int):
    transfer = transfer_service.get_transfer(g.actor, transfer_id)
    return jsonify({"transfer": transfer.to_dict()}), 200


@transfers_bp.patch("/<int:transfer_id>/approve")
@require_actor
@engine_errors("approve transfer")
def approve_transfer_route(transfer_id: int):
    transfer = transfer_service.approve_transfer(g.actor, transfer_id)
    return jsonify({"transfer": transfer.to_dict()}), 200


@transfers_bp.patch("/<int:transfer_id>/reject")
@require_actor
@engine_errors("reject transfer")
def reject_transfer_route(transfer_id: int):
    data = require_object(request.get_json(silent=True))
    transfer = transfer_service.reject_transfer(
        g.actor,
        transfer_id,
        reason=to_text(data.get("reason"), "reason", max_length=255),
    )
    return jsonify({"transfer": transfer.to_dict()}), 200
