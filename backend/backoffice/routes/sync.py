# backend/backoffice/routes/sync.py
"""
Offline sync API route.

POS terminals that sold while disconnected push their queued sales here.
Resending the same batch is safe: already-stored entries come back as
"duplicate" successes.
"""
from flask import Blueprint, request, jsonify, g

from ..decorators import require_actor, engine_errors
from ..services import sync_service
from ..validation import require_object


sync_bp = Blueprint("sync", __name__, url_prefix="/api/sync")


@sync_bp.post("/transactions/batch")
@require_actor
@engine_errors("sync offline transactions")
def sync_transactions_route():
    """
    Request body:
    {
        "transactions": [
            {"id": "local-uuid", "created_at": "2026-01-05T09:30:00Z", "items": [...], "payment_method": "CASH"}
        ]
    }

    Returns:
        200: {"success", "failed", "results", "errors"}
    """
    data = require_object(request.get_json(silent=True))
    result = sync_service.replay(g.actor, data.get("transactions"))
    return jsonify(result), 200
