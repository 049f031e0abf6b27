# backend/backoffice/services/return_service.py
"""
Return/Exchange Engine.

WHY: Take goods back against an original sale without ever returning more
than was sold, and apply the right stock effect for the item's condition.

LIFECYCLE:
1. PENDING: validated and recorded, no stock has moved
2. COMPLETED: stock effects applied
3. REJECTED: declined, no stock has moved

Creation goes straight to COMPLETED when an approver name is supplied, the
actor is privileged, or approval is switched off (RETURN_REQUIRES_APPROVAL).

STOCK EFFECTS ON COMPLETION:
- Write-off reasons (DAMAGED, DEFECTIVE, EXPIRED): no restock; one DAMAGED
  StockAdjustment per item records the units as received and written off
- Any other reason: the returned quantity goes back on the shelf
- EXCHANGE: replacement items are debited (InsufficientStock if short) and
  the price difference is recorded as a cash movement
"""
from __future__ import annotations

from flask import current_app
from sqlalchemy import func, or_

from ..errors import (
    AlreadyProcessed,
    ExceedsReturnable,
    Forbidden,
    NotFound,
    ReturnWindowExpired,
    ValidationError,
)
from ..extensions import db, events
from ..models import (
    CashMovement,
    ExchangeItem,
    Return,
    ReturnItem,
    StockRecord,
    Transaction,
    TransactionItem,
    User,
)
from ..permissions import Actor, require_permission
from ..schemas import ReturnReason, ReturnRequest, ReturnType
from ..time_utils import as_utc_naive, utcnow
from . import adjustment_service, stock_service
from .adjustment_service import AdjustmentReason
from .concurrency import lock_for_update, run_in_transaction
from .sequence_service import PREFIX_RETURN, next_document_number
from .tenant_service import require_branch_access, require_variant_in_tenant, tenant_branch_ids


# Return status constants
RETURN_STATUS_PENDING = "PENDING"
RETURN_STATUS_COMPLETED = "COMPLETED"
RETURN_STATUS_REJECTED = "REJECTED"

# Statuses that count against the returnable remainder
OPEN_OR_COMPLETED = (RETURN_STATUS_PENDING, RETURN_STATUS_COMPLETED)

WRITE_OFF_REASONS = frozenset({ReturnReason.DAMAGED, ReturnReason.DEFECTIVE, ReturnReason.EXPIRED})
EXCHANGE_REASONS = frozenset({ReturnReason.WRONG_SIZE, ReturnReason.WRONG_ITEM})

CASH_KIND_REFUND = "RETURN_REFUND"
CASH_KIND_EXCHANGE = "EXCHANGE_DIFFERENCE"


def _return_no_taken(number: str) -> bool:
    return db.session.query(Return.id).filter_by(return_no=number).first() is not None


def _actor_name(actor: Actor) -> str:
    user = db.session.get(User, actor.user_id)
    return user.name if user else str(actor.user_id)


def returned_quantities(transaction_item_ids: list[int]) -> dict[int, int]:
    """Quantity already claimed by PENDING or COMPLETED returns, per sold line."""
    if not transaction_item_ids:
        return {}
    rows = (
        db.session.query(ReturnItem.transaction_item_id, func.sum(ReturnItem.quantity))
        .join(Return, Return.id == ReturnItem.return_id)
        .filter(
            ReturnItem.transaction_item_id.in_(transaction_item_ids),
            Return.status.in_(OPEN_OR_COMPLETED),
        )
        .group_by(ReturnItem.transaction_item_id)
        .all()
    )
    return {item_id: int(quantity or 0) for item_id, quantity in rows}


def _check_return_window(sale: Transaction, manager_override: bool) -> bool:
    """Returns True when the sale is past the window (and an override allowed it)."""
    deadline_days = current_app.config.get("RETURN_DEADLINE_DAYS", 7)
    if not deadline_days or deadline_days <= 0:
        return False
    days_since_sale = (utcnow() - as_utc_naive(sale.created_at)).days
    if days_since_sale <= deadline_days:
        return False
    if not manager_override:
        raise ReturnWindowExpired(deadline_days, days_since_sale)
    return True


def _validate_lines(sale: Transaction, request: ReturnRequest) -> list[tuple[TransactionItem, int]]:
    sold_lines = {item.id: item for item in sale.items}
    requested: dict[int, int] = {}
    for line in request.items:
        if line.transaction_item_id not in sold_lines:
            raise ValidationError(
                f"Item {line.transaction_item_id} is not part of transaction {sale.transaction_no}",
                field="items",
            )
        requested[line.transaction_item_id] = requested.get(line.transaction_item_id, 0) + line.quantity

    already = returned_quantities(list(requested))
    validated = []
    for item_id, quantity in requested.items():
        sold = sold_lines[item_id]
        returnable = sold.quantity - already.get(item_id, 0)
        if quantity > returnable:
            raise ExceedsReturnable(item_id, max(returnable, 0), quantity)
        validated.append((sold, quantity))
    return validated


def _exchange_lines(request: ReturnRequest, branch_id: int, tenant_id: int) -> list[dict]:
    """Price replacement items from the current stock price at the return branch."""
    lines = []
    for item in request.exchange_items:
        variant = require_variant_in_tenant(item.variant_id, tenant_id)
        stock = (
            db.session.query(StockRecord)
            .filter_by(variant_id=item.variant_id, branch_id=branch_id)
            .first()
        )
        if not stock:
            raise NotFound("Stock record", f"{item.variant_id}/{branch_id}")
        lines.append({
            "variant_id": item.variant_id,
            "product_name": variant.product.name,
            "variant_info": variant.label or None,
            "quantity": item.quantity,
            "unit_price_cents": stock.price_cents,
            "subtotal_cents": stock.price_cents * item.quantity,
        })
    return lines


def _complete(ret: Return, actor: Actor, approved_by: str) -> None:
    """Apply stock and cash effects, flip to COMPLETED. Runs inside a unit of work."""
    write_off = ReturnReason(ret.reason) in WRITE_OFF_REASONS

    for item in ret.items:
        if write_off:
            # Quantity does not move; the row is only locked for the adjustment
            stock = stock_service.lock_record(item.variant_id, ret.branch_id)
            current = stock.quantity
            adjustment_service.record(
                stock,
                current + item.quantity,
                current,
                AdjustmentReason.DAMAGED,
                actor.user_id,
                notes=f"Write-off from return {ret.return_no} ({ret.reason})",
            )
        else:
            stock_service.apply_delta(
                item.variant_id,
                ret.branch_id,
                item.quantity,
                create_missing=True,
                operation=stock_service.OPERATION_RETURN,
                actor=actor,
            )

    if ret.return_type == ReturnType.EXCHANGE.value:
        for item in ret.exchange_items:
            stock_service.apply_delta(
                item.variant_id,
                ret.branch_id,
                -item.quantity,
                operation=stock_service.OPERATION_EXCHANGE,
                actor=actor,
                product_name=item.product_name,
            )
        if ret.price_difference_cents:
            db.session.add(CashMovement(
                kind=CASH_KIND_EXCHANGE,
                amount_cents=ret.price_difference_cents,
                branch_id=ret.branch_id,
                return_id=ret.id,
                recorded_by_id=actor.user_id,
                description=f"Exchange difference for {ret.return_no}",
            ))
    elif ret.refund_amount_cents:
        db.session.add(CashMovement(
            kind=CASH_KIND_REFUND,
            amount_cents=-ret.refund_amount_cents,
            branch_id=ret.branch_id,
            return_id=ret.id,
            recorded_by_id=actor.user_id,
            description=f"Refund for {ret.return_no}",
        ))

    ret.status = RETURN_STATUS_COMPLETED
    ret.approved_by = approved_by
    ret.approved_at = utcnow()
    db.session.flush()


def create_return(actor: Actor, request: ReturnRequest) -> Return:
    """
    Record a return or exchange against an original sale.

    Args:
        actor: user taking the return
        request: sold lines and quantities, reason, optional exchange items

    Returns:
        Return: PENDING, or COMPLETED when auto-approved

    Raises:
        NotFound: unknown transaction, or no stock record to price an exchange item
        ExceedsReturnable: quantity beyond what is left to return on a line
        ReturnWindowExpired: past RETURN_DEADLINE_DAYS without an override
        Forbidden: override or branch outside the actor's rights
        InsufficientStock: auto-approved exchange without replacement stock
    """
    require_permission(actor, "CREATE_RETURN")
    if request.return_type == ReturnType.EXCHANGE:
        if not current_app.config.get("EXCHANGE_ENABLED", True):
            raise ValidationError("Exchanges are disabled", field="return_type")
        if request.reason not in EXCHANGE_REASONS:
            raise ValidationError(
                "Exchanges are only allowed for WRONG_SIZE or WRONG_ITEM",
                field="reason",
            )
    if request.manager_override and not actor.is_privileged:
        raise Forbidden("Only a manager can override the return deadline")

    auto_complete = (
        request.approved_by is not None
        or actor.is_privileged
        or not current_app.config.get("RETURN_REQUIRES_APPROVAL", True)
    )

    def _op() -> Return:
        # Locking the sale serializes concurrent returns against it
        sale = lock_for_update(db.session.query(Transaction).filter_by(id=request.transaction_id)).first()
        if not sale or sale.tenant_id != actor.tenant_id:
            raise NotFound("Transaction", request.transaction_id)
        if actor.is_branch_bound and sale.branch_id != actor.branch_id:
            raise Forbidden("Cashiers may only take returns for their own branch")
        if sale.status != "COMPLETED":
            raise ValidationError(f"Cannot return items from a {sale.status} transaction")

        is_overdue = _check_return_window(sale, request.manager_override)
        lines = _validate_lines(sale, request)
        subtotal = sum(sold.unit_price_cents * quantity for sold, quantity in lines)

        exchange_lines = []
        price_difference = None
        refund_amount = subtotal
        if request.return_type == ReturnType.EXCHANGE:
            exchange_lines = _exchange_lines(request, sale.branch_id, actor.tenant_id)
            exchange_subtotal = sum(line["subtotal_cents"] for line in exchange_lines)
            price_difference = exchange_subtotal - subtotal
            refund_amount = max(0, -price_difference)

        ret = Return(
            return_no=next_document_number(
                document_type="RETURN",
                prefix=PREFIX_RETURN,
                exists=_return_no_taken,
            ),
            tenant_id=actor.tenant_id,
            transaction_id=sale.id,
            branch_id=sale.branch_id,
            processed_by_id=actor.user_id,
            reason=request.reason.value,
            reason_detail=request.reason_detail,
            notes=request.notes,
            condition_note=request.condition_note,
            return_type=request.return_type.value,
            status=RETURN_STATUS_PENDING,
            subtotal_cents=subtotal,
            refund_amount_cents=refund_amount,
            price_difference_cents=price_difference,
            refund_method=request.refund_method.value if request.refund_method else None,
            is_overdue=is_overdue,
            manager_override=request.manager_override,
        )
        db.session.add(ret)
        for sold, quantity in lines:
            db.session.add(ReturnItem(
                return_doc=ret,
                transaction_item_id=sold.id,
                variant_id=sold.variant_id,
                quantity=quantity,
                unit_price_cents=sold.unit_price_cents,
                subtotal_cents=sold.unit_price_cents * quantity,
            ))
        for line in exchange_lines:
            db.session.add(ExchangeItem(return_doc=ret, **line))
        db.session.flush()

        if auto_complete:
            _complete(ret, actor, request.approved_by or _actor_name(actor))

        events.audit(
            db.session,
            action="RETURN_CREATED",
            entity_type="Return",
            entity_id=ret.id,
            description=f"Return {ret.return_no} for {sale.transaction_no} ({ret.status})",
            actor=actor,
            branch_id=ret.branch_id,
            metadata={
                "transaction_id": sale.id,
                "reason": ret.reason,
                "return_type": ret.return_type,
                "refund_amount_cents": ret.refund_amount_cents,
                "price_difference_cents": ret.price_difference_cents,
                "is_overdue": is_overdue,
            },
        )
        return ret

    ret = run_in_transaction(_op)
    current_app.logger.info(
        "Return %s created by user %s with status %s (refund %s cents)",
        ret.return_no, actor.user_id, ret.status, ret.refund_amount_cents,
    )
    return ret


def _load_locked(actor: Actor, return_id: int) -> Return:
    ret = lock_for_update(db.session.query(Return).filter_by(id=return_id)).first()
    if not ret or ret.tenant_id != actor.tenant_id:
        raise NotFound("Return", return_id)
    return ret


def approve_return(actor: Actor, return_id: int, approved_by: str | None = None) -> Return:
    """
    Approve a PENDING return and apply its stock effects.

    Raises:
        AlreadyProcessed: return is not PENDING
        ValidationError: the original sale was cancelled meanwhile
        InsufficientStock: exchange items no longer available
    """
    require_permission(actor, "APPROVE_RETURN")

    def _op() -> Return:
        # Sale before return, the same lock order as cancel_sale
        sale_id = db.session.query(Return.transaction_id).filter_by(id=return_id).scalar()
        sale = None
        if sale_id is not None:
            sale = lock_for_update(db.session.query(Transaction).filter_by(id=sale_id)).first()
        ret = _load_locked(actor, return_id)
        if ret.status != RETURN_STATUS_PENDING:
            raise AlreadyProcessed("Return", ret.status)
        if sale is None or sale.status != "COMPLETED":
            status = sale.status if sale else "missing"
            raise ValidationError(f"Cannot approve a return against a {status} transaction")

        _complete(ret, actor, approved_by or _actor_name(actor))

        events.audit(
            db.session,
            action="RETURN_APPROVED",
            entity_type="Return",
            entity_id=ret.id,
            description=f"Return {ret.return_no} approved by {ret.approved_by}",
            actor=actor,
            branch_id=ret.branch_id,
            metadata={"refund_amount_cents": ret.refund_amount_cents},
        )
        return ret

    ret = run_in_transaction(_op)
    current_app.logger.info("Return %s approved by user %s", ret.return_no, actor.user_id)
    return ret


def reject_return(
    actor: Actor,
    return_id: int,
    rejected_by: str | None = None,
    rejection_notes: str | None = None,
) -> Return:
    """Decline a PENDING return. No stock moves."""
    require_permission(actor, "APPROVE_RETURN")

    def _op() -> Return:
        ret = _load_locked(actor, return_id)
        if ret.status != RETURN_STATUS_PENDING:
            raise AlreadyProcessed("Return", ret.status)

        ret.status = RETURN_STATUS_REJECTED
        ret.rejected_by = rejected_by or _actor_name(actor)
        ret.rejection_notes = rejection_notes
        db.session.flush()

        events.audit(
            db.session,
            action="RETURN_REJECTED",
            entity_type="Return",
            entity_id=ret.id,
            description=f"Return {ret.return_no} rejected",
            actor=actor,
            branch_id=ret.branch_id,
            metadata={"notes": rejection_notes},
        )
        return ret

    ret = run_in_transaction(_op)
    current_app.logger.info("Return %s rejected by user %s", ret.return_no, actor.user_id)
    return ret


# =============================================================================
# QUERIES
# =============================================================================

def get_return(actor: Actor, return_id: int) -> Return:
    require_permission(actor, "VIEW_RETURNS")
    ret = db.session.get(Return, return_id)
    if not ret or ret.tenant_id != actor.tenant_id:
        raise NotFound("Return", return_id)
    if actor.is_branch_bound and ret.branch_id != actor.branch_id:
        raise Forbidden("Cashiers may only view their own branch")
    return ret


def _scoped_query(actor: Actor, branch_id: int | None):
    query = db.session.query(Return).filter(Return.tenant_id == actor.tenant_id)
    if actor.is_branch_bound:
        return query.filter(Return.branch_id == actor.branch_id)
    if branch_id is not None:
        require_branch_access(actor, branch_id)
        return query.filter(Return.branch_id == branch_id)
    return query.filter(Return.branch_id.in_(tenant_branch_ids(actor.tenant_id)))


def list_returns(
    actor: Actor,
    *,
    status: str | None = None,
    branch_id: int | None = None,
    search: str | None = None,
    page: int = 1,
    limit: int = 20,
) -> tuple[list[Return], int]:
    require_permission(actor, "VIEW_RETURNS")
    query = _scoped_query(actor, branch_id)
    if status:
        query = query.filter(Return.status == status.upper())
    if search:
        pattern = f"%{search}%"
        query = query.join(Transaction, Transaction.id == Return.transaction_id).filter(
            or_(Return.return_no.ilike(pattern), Transaction.transaction_no.ilike(pattern))
        )

    total = query.count()
    rows = (
        query.order_by(Return.created_at.desc(), Return.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return rows, total


def return_stats(actor: Actor, branch_id: int | None = None) -> dict:
    require_permission(actor, "VIEW_RETURNS")
    query = _scoped_query(actor, branch_id)
    refunded = (
        query.filter(Return.status == RETURN_STATUS_COMPLETED)
        .with_entities(func.coalesce(func.sum(Return.refund_amount_cents), 0))
        .scalar()
    )
    return {
        "pending": query.filter(Return.status == RETURN_STATUS_PENDING).count(),
        "rejected": query.filter(Return.status == RETURN_STATUS_REJECTED).count(),
        "completed": query.filter(Return.status == RETURN_STATUS_COMPLETED).count(),
        "total": query.count(),
        "total_refund_amount_cents": int(refunded or 0),
    }
