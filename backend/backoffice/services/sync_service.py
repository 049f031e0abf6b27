# Overview: Offline batch reconciler; replays sales recorded on disconnected terminals.

from __future__ import annotations

from typing import Any

from flask import current_app
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from ..errors import Conflict, EngineError, ValidationError
from ..extensions import db
from ..models import Transaction
from ..permissions import Actor, require_permission
from ..schemas import OfflineSaleRequest
from . import sales_service

SYNC_STATUS_SYNCED = "synced"
SYNC_STATUS_DUPLICATE = "duplicate"

MAX_BATCH_SIZE = 500


def _find_existing(request: OfflineSaleRequest) -> Transaction | None:
    criteria = [Transaction.id == request.local_id]
    if request.sale.transaction_no:
        criteria.append(Transaction.transaction_no == request.sale.transaction_no)
    return db.session.query(Transaction).filter(or_(*criteria)).first()


def _duplicate_result(actor: Actor, local_id: str, existing: Transaction) -> dict:
    if existing.tenant_id != actor.tenant_id:
        raise Conflict("Transaction id or number already used", details={"local_id": local_id})
    return {
        "local_id": local_id,
        "server_id": existing.id,
        "transaction_no": existing.transaction_no,
        "status": SYNC_STATUS_DUPLICATE,
    }


def replay(actor: Actor, payloads: Any) -> dict:
    """
    Replay a batch of offline sales, one unit of work per entry.

    Entries whose id (or transaction_no) is already stored are reported as
    successful duplicates, so a terminal can resend a batch safely. A failing
    entry is reported in ``errors`` and does not stop the rest.

    Returns:
        {"success": int, "failed": int, "results": [...], "errors": [...]}
    """
    require_permission(actor, "SYNC_OFFLINE_SALES")
    if not isinstance(payloads, list) or not payloads:
        raise ValidationError("transactions must be a non-empty list", field="transactions")
    if len(payloads) > MAX_BATCH_SIZE:
        raise ValidationError(f"Batch exceeds {MAX_BATCH_SIZE} transactions", field="transactions")

    results: list[dict] = []
    errors: list[dict] = []

    for raw in payloads:
        local_id = raw.get("id") if isinstance(raw, dict) else None
        try:
            request = OfflineSaleRequest.from_payload(raw)
            existing = _find_existing(request)
            if existing is not None:
                results.append(_duplicate_result(actor, request.local_id, existing))
                continue

            try:
                sale = sales_service.create_sale(
                    actor,
                    request.sale,
                    device_source=sales_service.DEVICE_SOURCE_OFFLINE,
                )
            except (IntegrityError, Conflict):
                # Lost a race with a concurrent replay of the same entry
                existing = _find_existing(request)
                if existing is None:
                    raise Conflict("Transaction could not be stored", details={"local_id": local_id})
                results.append(_duplicate_result(actor, request.local_id, existing))
                continue

            results.append({
                "local_id": request.local_id,
                "server_id": sale.id,
                "transaction_no": sale.transaction_no,
                "status": SYNC_STATUS_SYNCED,
            })
        except EngineError as exc:
            errors.append({"local_id": local_id, "error": exc.message, "code": exc.code})

    current_app.logger.info(
        "Offline sync by user %s: %s succeeded, %s failed", actor.user_id, len(results), len(errors)
    )
    return {
        "success": len(results),
        "failed": len(errors),
        "results": results,
        "errors": errors,
    }
