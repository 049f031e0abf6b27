# backend/backoffice/services/stock_service.py
"""
Stock Ledger.

WHY: StockRecord.quantity is what the branch can sell. Sales, transfers,
returns and manual corrections all move it through apply_delta, which does
read -> check -> write on a locked row so concurrent writers never both
pass a stale availability check.

INVARIANTS:
- quantity >= 0 at every commit (checked here, and by a DB CHECK constraint)
- rows are created lazily on the first credit to a new (variant, branch)
- manual corrections always come with exactly one StockAdjustment
"""
from __future__ import annotations

from dataclasses import dataclass

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import Conflict, InsufficientStock, NotFound, ValidationError
from ..events import EVENT_STOCK_UPDATED
from ..extensions import db, events
from ..models import StockAdjustment, StockAlert, StockRecord
from ..permissions import Actor, require_permission
from ..schemas import AdjustmentType, AdjustStockRequest, StockAlertRequest
from . import adjustment_service
from .adjustment_service import AdjustmentReason
from .concurrency import lock_for_update, run_in_transaction
from .tenant_service import require_branch_access, require_variant_in_tenant, resolve_branch, tenant_branch_ids


OPERATION_SALE = "sale"
OPERATION_SALE_CANCEL = "sale_cancel"
OPERATION_TRANSFER_OUT = "transfer_out"
OPERATION_TRANSFER_IN = "transfer_in"
OPERATION_RETURN = "return"
OPERATION_EXCHANGE = "exchange"
OPERATION_ADJUSTMENT = "adjustment"


@dataclass
class StockChange:
    stock: StockRecord
    previous_qty: int
    new_qty: int
    created: bool = False

    @property
    def delta(self) -> int:
        return self.new_qty - self.previous_qty


def _locked_record(variant_id: int, branch_id: int) -> StockRecord | None:
    return lock_for_update(
        db.session.query(StockRecord).filter_by(variant_id=variant_id, branch_id=branch_id)
    ).first()


def lock_record(variant_id: int, branch_id: int) -> StockRecord:
    """
    Lock an existing stock record without changing it. Unit of work only.

    Raises:
        NotFound: no stock record exists
    """
    stock = _locked_record(variant_id, branch_id)
    if stock is None:
        raise NotFound("Stock record", f"{variant_id}/{branch_id}")
    return stock


def get_stock(variant_id: int, branch_id: int) -> StockRecord:
    """
    Current quantity and price for a (variant, branch).

    Raises:
        NotFound: no stock record exists yet
    """
    stock = db.session.query(StockRecord).filter_by(variant_id=variant_id, branch_id=branch_id).first()
    if not stock:
        raise NotFound("Stock record", f"{variant_id}/{branch_id}")
    return stock


def get_stock_for_actor(actor: Actor, variant_id: int, branch_id: int) -> StockRecord:
    require_permission(actor, "VIEW_STOCK")
    require_branch_access(actor, branch_id)
    require_variant_in_tenant(variant_id, actor.tenant_id)
    return get_stock(variant_id, branch_id)


def apply_delta(
    variant_id: int,
    branch_id: int,
    delta: int,
    *,
    price_cents: int | None = None,
    create_missing: bool = False,
    operation: str = OPERATION_ADJUSTMENT,
    actor: Actor | None = None,
    product_name: str | None = None,
) -> StockChange:
    """
    Move a stock record by ``delta`` under a row lock.

    Args:
        delta: signed quantity change
        price_cents: optional new unit price
        create_missing: create the record (quantity 0) when absent; only
            meaningful for credits
        operation: label carried on the stock notification

    Raises:
        InsufficientStock: quantity + delta would be negative
        NotFound: record absent and not created
    """
    def _op() -> StockChange:
        stock = _locked_record(variant_id, branch_id)
        created = False
        if stock is None:
            if delta < 0:
                raise InsufficientStock.single(variant_id, branch_id, 0, -delta, product_name)
            if not create_missing:
                raise NotFound("Stock record", f"{variant_id}/{branch_id}")
            stock = StockRecord(
                variant_id=variant_id,
                branch_id=branch_id,
                quantity=0,
                price_cents=price_cents or 0,
            )
            db.session.add(stock)
            try:
                db.session.flush()
            except IntegrityError as exc:
                raise Conflict("Stock record created concurrently") from exc
            created = True

        previous = stock.quantity
        new_quantity = previous + delta
        if new_quantity < 0:
            raise InsufficientStock.single(variant_id, branch_id, previous, -delta, product_name)

        stock.quantity = new_quantity
        if price_cents is not None:
            stock.price_cents = price_cents
        db.session.flush()

        events.stage(
            db.session,
            EVENT_STOCK_UPDATED,
            {
                "variant_id": variant_id,
                "branch_id": branch_id,
                "quantity": new_quantity,
                "previous_qty": previous,
                "operation": operation,
            },
            actor=actor,
            branch_id=branch_id,
        )
        return StockChange(stock=stock, previous_qty=previous, new_qty=new_quantity, created=created)

    return run_in_transaction(_op)


def upsert_stock(
    actor: Actor,
    variant_id: int,
    branch_id: int,
    quantity: int,
    price_cents: int | None = None,
    notes: str | None = None,
) -> StockRecord:
    """
    First-write creation or absolute set of a stock record.

    A quantity change is recorded as an adjustment: a neutral addition for a
    new record, STOCK_OPNAME for a recount of an existing one.
    """
    require_permission(actor, "ADJUST_STOCK")
    if quantity < 0:
        raise ValidationError("quantity must be >= 0", field="quantity")
    if price_cents is not None and price_cents < 0:
        raise ValidationError("price_cents must be >= 0", field="price_cents")
    resolve_branch(actor, branch_id)
    require_variant_in_tenant(variant_id, actor.tenant_id)

    def _op() -> StockRecord:
        existing = _locked_record(variant_id, branch_id)
        previous = existing.quantity if existing else 0
        change = apply_delta(
            variant_id,
            branch_id,
            quantity - previous,
            price_cents=price_cents,
            create_missing=True,
            operation=OPERATION_ADJUSTMENT,
            actor=actor,
        )
        if change.delta:
            adjustment_service.record(
                change.stock,
                change.previous_qty,
                change.new_qty,
                AdjustmentReason.STOCK_OPNAME if existing else None,
                actor.user_id,
                notes=notes or ("Stock recount" if existing else "Initial stock"),
            )
        return change.stock

    return run_in_transaction(_op)


def adjust_stock(actor: Actor, request: AdjustStockRequest) -> tuple[StockAdjustment, StockRecord]:
    """
    Manual add/subtract correction on an existing stock record.

    Returns:
        (adjustment, stock) after commit

    Raises:
        NotFound: no stock record for the pair
        InsufficientStock: subtraction below zero
        ValidationError: unknown reason key
    """
    require_permission(actor, "ADJUST_STOCK")
    resolve_branch(actor, request.branch_id)
    variant = require_variant_in_tenant(request.variant_id, actor.tenant_id)
    reason = adjustment_service.resolve_reason(request.reason)
    verb = "Add" if request.type == AdjustmentType.ADD else "Subtract"

    def _op():
        if _locked_record(request.variant_id, request.branch_id) is None:
            raise NotFound("Stock record", f"{request.variant_id}/{request.branch_id}")

        change = apply_delta(
            request.variant_id,
            request.branch_id,
            request.difference,
            operation=OPERATION_ADJUSTMENT,
            actor=actor,
            product_name=variant.product.name,
        )
        adjustment = adjustment_service.record(
            change.stock,
            change.previous_qty,
            change.new_qty,
            reason,
            actor.user_id,
            notes=request.notes or f"{verb}: {request.reason or 'unspecified'}",
        )
        events.audit(
            db.session,
            action="STOCK_ADJUSTMENT",
            entity_type="StockAdjustment",
            entity_id=adjustment.id,
            description=f"{verb} stock {request.quantity} ({change.previous_qty} -> {change.new_qty})",
            actor=actor,
            branch_id=request.branch_id,
            metadata={
                "variant_id": request.variant_id,
                "branch_id": request.branch_id,
                "type": request.type.value,
                "quantity": request.quantity,
                "previous_qty": change.previous_qty,
                "new_qty": change.new_qty,
                "reason": request.reason,
            },
        )
        return adjustment, change.stock

    adjustment, stock = run_in_transaction(_op)
    current_app.logger.info(
        "Stock adjusted: variant=%s branch=%s %s%s",
        request.variant_id, request.branch_id, "+" if request.difference > 0 else "", request.difference,
    )
    return adjustment, stock


# =============================================================================
# STOCK ALERTS
# =============================================================================

def set_alert(actor: Actor, request: StockAlertRequest) -> StockAlert:
    require_permission(actor, "MANAGE_STOCK_ALERTS")
    resolve_branch(actor, request.branch_id)
    require_variant_in_tenant(request.variant_id, actor.tenant_id)

    def _op() -> StockAlert:
        alert = lock_for_update(
            db.session.query(StockAlert).filter_by(variant_id=request.variant_id, branch_id=request.branch_id)
        ).first()
        if alert is None:
            alert = StockAlert(variant_id=request.variant_id, branch_id=request.branch_id)
            db.session.add(alert)
        alert.min_stock = request.min_stock
        alert.is_active = True
        db.session.flush()
        return alert

    return run_in_transaction(_op)


def get_alert(actor: Actor, variant_id: int, branch_id: int) -> StockAlert | None:
    require_permission(actor, "VIEW_STOCK")
    require_branch_access(actor, branch_id)
    return (
        db.session.query(StockAlert)
        .filter_by(variant_id=variant_id, branch_id=branch_id, is_active=True)
        .first()
    )


def deactivate_alert(actor: Actor, variant_id: int, branch_id: int) -> StockAlert:
    require_permission(actor, "MANAGE_STOCK_ALERTS")
    resolve_branch(actor, branch_id)

    def _op() -> StockAlert:
        alert = lock_for_update(
            db.session.query(StockAlert).filter_by(variant_id=variant_id, branch_id=branch_id)
        ).first()
        if alert is None:
            raise NotFound("Stock alert", f"{variant_id}/{branch_id}")
        alert.is_active = False
        db.session.flush()
        return alert

    return run_in_transaction(_op)


def list_low_stock(actor: Actor, branch_id: int | None = None) -> list[dict]:
    """Active alerts whose current quantity is below the threshold."""
    require_permission(actor, "VIEW_STOCK")
    if actor.is_branch_bound:
        branch_ids = [actor.branch_id]
    elif branch_id is not None:
        require_branch_access(actor, branch_id)
        branch_ids = [branch_id]
    else:
        branch_ids = tenant_branch_ids(actor.tenant_id)

    rows = (
        db.session.query(StockAlert, StockRecord)
        .join(
            StockRecord,
            (StockRecord.variant_id == StockAlert.variant_id) & (StockRecord.branch_id == StockAlert.branch_id),
        )
        .filter(
            StockAlert.is_active.is_(True),
            StockAlert.branch_id.in_(branch_ids),
            StockRecord.quantity < StockAlert.min_stock,
        )
        .order_by(StockRecord.quantity.asc())
        .all()
    )
    return [
        {
            **alert.to_dict(),
            "quantity": stock.quantity,
            "product_name": alert.variant.product.name if alert.variant else None,
            "sku": alert.variant.sku if alert.variant else None,
        }
        for alert, stock in rows
    ]
