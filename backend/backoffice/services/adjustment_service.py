# backend/backoffice/services/adjustment_service.py
"""
Audit/Adjustment Recorder.

WHY: Every stock change that is not a sale or a transfer must be explained.
This module is the only writer of StockAdjustment rows and the single owner
of the adjustment reason vocabulary.

RULES:
- Insert-only; there is no update or delete API
- A failed insert propagates, aborting the caller's unit of work, so stock
  never moves without its explanation
"""
from __future__ import annotations

from enum import Enum

from ..errors import ValidationError
from ..extensions import db
from ..models import StockAdjustment, StockRecord


class AdjustmentReason(str, Enum):
    STOCK_OPNAME = "STOCK_OPNAME"
    DAMAGED = "DAMAGED"
    LOST = "LOST"
    SUPPLIER_RETURN = "SUPPLIER_RETURN"
    INPUT_ERROR = "INPUT_ERROR"
    OTHER = "OTHER"


# Client reason keys -> stored reason. None marks a neutral addition.
REASON_MAP: dict[str, AdjustmentReason | None] = {
    "restock": None,
    "return": None,
    "found": None,
    "correction": AdjustmentReason.STOCK_OPNAME,
    "stock_opname": AdjustmentReason.STOCK_OPNAME,
    "damaged": AdjustmentReason.DAMAGED,
    "expired": AdjustmentReason.DAMAGED,
    "lost": AdjustmentReason.LOST,
    "supplier_return": AdjustmentReason.SUPPLIER_RETURN,
    "input_error": AdjustmentReason.INPUT_ERROR,
    "sample": AdjustmentReason.OTHER,
    "other_add": AdjustmentReason.OTHER,
    "other_subtract": AdjustmentReason.OTHER,
    "other": AdjustmentReason.OTHER,
}


def resolve_reason(key: str | None) -> AdjustmentReason | None:
    """
    Map a client reason key (or an enum name) to the stored reason.

    Raises:
        ValidationError: unknown key
    """
    if key is None:
        return None
    normalized = key.strip().lower()
    if not normalized:
        return None
    if normalized in REASON_MAP:
        return REASON_MAP[normalized]
    try:
        return AdjustmentReason(normalized.upper())
    except ValueError:
        raise ValidationError(f"Unknown adjustment reason: {key}", field="reason")


def record(
    stock: StockRecord,
    previous_qty: int,
    new_qty: int,
    reason: AdjustmentReason | None,
    actor_id: int,
    notes: str | None = None,
) -> StockAdjustment:
    """
    Append one adjustment row for ``stock``.

    Must be called inside the unit of work that changed the stock record.
    """
    adjustment = StockAdjustment(
        stock_id=stock.id,
        variant_id=stock.variant_id,
        branch_id=stock.branch_id,
        previous_qty=previous_qty,
        new_qty=new_qty,
        difference=new_qty - previous_qty,
        reason=reason.value if reason else None,
        notes=notes,
        adjusted_by_id=actor_id,
    )
    db.session.add(adjustment)
    db.session.flush()
    return adjustment


def list_adjustments(
    tenant_branch_ids: list[int],
    *,
    branch_id: int | None = None,
    variant_id: int | None = None,
    reason: str | None = None,
    page: int = 1,
    limit: int = 50,
) -> tuple[list[StockAdjustment], int]:
    query = db.session.query(StockAdjustment).filter(StockAdjustment.branch_id.in_(tenant_branch_ids))
    if branch_id is not None:
        query = query.filter(StockAdjustment.branch_id == branch_id)
    if variant_id is not None:
        query = query.filter(StockAdjustment.variant_id == variant_id)
    if reason:
        query = query.filter(StockAdjustment.reason == reason.upper())

    total = query.count()
    rows = (
        query.order_by(StockAdjustment.created_at.desc(), StockAdjustment.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return rows, total


def adjustment_history(variant_id: int, branch_id: int | None = None, limit: int = 20) -> list[StockAdjustment]:
    query = db.session.query(StockAdjustment).filter_by(variant_id=variant_id)
    if branch_id is not None:
        query = query.filter_by(branch_id=branch_id)
    return query.order_by(StockAdjustment.created_at.desc(), StockAdjustment.id.desc()).limit(limit).all()
