# backend/backoffice/services/sales_service.py
"""
Sales Transaction Engine.

WHY: A sale and its stock debits must land together or not at all. The
availability check and the debit happen on locked rows inside the same unit
of work, so two terminals selling the last unit cannot both succeed.

LIFECYCLE:
- COMPLETED: created with items, stock debited
- CANCELLED: stock restored, record kept

The transaction record itself is the audit trail for the debit; sales do
not write StockAdjustment rows.
"""
from __future__ import annotations

from collections import OrderedDict
from datetime import datetime

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..errors import AlreadyCancelled, Conflict, Forbidden, InsufficientStock, NotFound, ValidationError
from ..extensions import db, events
from ..models import ProductVariant, Return, StockRecord, Transaction, TransactionItem, User
from ..models.sales import new_transaction_id
from ..permissions import Actor, require_permission
from ..schemas import PaymentRequest, SaleRequest
from ..time_utils import utcnow
from . import stock_service
from .concurrency import lock_for_update, run_in_transaction
from .sequence_service import PREFIX_TRANSACTION, next_document_number
from .tenant_service import require_branch_access, require_variant_in_tenant, resolve_branch, tenant_branch_ids


SALE_STATUS_COMPLETED = "COMPLETED"
SALE_STATUS_CANCELLED = "CANCELLED"

DEVICE_SOURCE_POS = "POS"
DEVICE_SOURCE_OFFLINE = "OFFLINE_SYNC"


def _transaction_no_taken(number: str) -> bool:
    return db.session.query(Transaction.id).filter_by(transaction_no=number).first() is not None


def _validate_split_payment(payment: PaymentRequest, total_cents: int) -> None:
    if not payment.is_split:
        return
    tolerance = current_app.config.get("SPLIT_PAYMENT_TOLERANCE_CENTS", 1)
    paid = payment.amount1_cents + payment.amount2_cents
    if abs(paid - total_cents) > tolerance:
        raise ValidationError(
            "Split payment amounts must add up to the total",
            field="payment_amount2_cents",
            details={"total_cents": total_cents, "paid_cents": paid},
        )


def _aggregate_quantities(items) -> "OrderedDict[int, int]":
    """Combined quantity per variant, so repeated lines are checked together."""
    totals: OrderedDict[int, int] = OrderedDict()
    for item in items:
        totals[item.variant_id] = totals.get(item.variant_id, 0) + item.quantity
    return totals


def _validate_on_hand(branch_id: int, quantities: dict[int, int], variants: dict[int, ProductVariant]) -> None:
    """
    Lock every touched stock row and fail with all shortfalls at once.

    Rows are locked in variant-id order to keep lock acquisition consistent
    across concurrent sales.
    """
    shortfalls = []
    for variant_id in sorted(quantities):
        requested = quantities[variant_id]
        stock = lock_for_update(
            db.session.query(StockRecord).filter_by(variant_id=variant_id, branch_id=branch_id)
        ).first()
        available = stock.quantity if stock else 0
        if requested > available:
            shortfalls.append({
                "variant_id": variant_id,
                "branch_id": branch_id,
                "product_name": variants[variant_id].product.name,
                "available": available,
                "requested": requested,
            })
    if shortfalls:
        raise InsufficientStock(shortfalls)


def _flush_new_sale(*, generated_number: bool) -> None:
    """
    Insert the sale rows.

    A unique violation on a server-generated number means another writer
    took it after the existence probe ran; raising Conflict makes the unit
    of work retry and allocate again. Client-chosen ids and numbers keep the
    IntegrityError so the offline reconciler can resolve the duplicate.
    """
    try:
        db.session.flush()
    except IntegrityError as exc:
        if generated_number:
            raise Conflict("Transaction number already taken") from exc
        raise


def _completed_returns(transaction_id: str) -> list[str]:
    rows = (
        db.session.query(Return.return_no)
        .filter(Return.transaction_id == transaction_id, Return.status == "COMPLETED")
        .order_by(Return.id)
        .all()
    )
    return [row.return_no for row in rows]


def _resolve_cashier(actor: Actor, cashier_id: int | None) -> int:
    if cashier_id is None or cashier_id == actor.user_id:
        return actor.user_id
    user = db.session.get(User, cashier_id)
    if not user or user.tenant_id != actor.tenant_id:
        raise NotFound("User", cashier_id)
    return user.id


def create_sale(actor: Actor, request: SaleRequest, *, device_source: str = DEVICE_SOURCE_POS) -> Transaction:
    """
    Create a COMPLETED sale and debit stock for every line.

    Args:
        actor: cashier or back-office user
        request: validated sale payload (items, payment, adjustments)
        device_source: POS for live sales, OFFLINE_SYNC for replays

    Returns:
        Transaction: committed sale with items

    Raises:
        ValidationError: negative total, split mismatch
        InsufficientStock: any line exceeds available stock (nothing is debited)
        Forbidden / NotFound: branch or variant outside the actor's scope
    """
    require_permission(actor, "CREATE_SALE")
    branch = resolve_branch(actor, request.branch_id)
    variants = {
        variant_id: require_variant_in_tenant(variant_id, actor.tenant_id)
        for variant_id in {item.variant_id for item in request.items}
    }
    cashier_id = _resolve_cashier(actor, request.cashier_id)

    subtotal = request.subtotal_cents
    total = request.total_cents
    if total < 0:
        raise ValidationError("Discount cannot exceed subtotal plus tax", field="discount_cents")
    _validate_split_payment(request.payment, total)

    quantities = _aggregate_quantities(request.items)

    def _op() -> Transaction:
        _validate_on_hand(branch.id, quantities, variants)

        transaction_no = request.transaction_no or next_document_number(
            document_type="TRANSACTION",
            prefix=PREFIX_TRANSACTION,
            exists=_transaction_no_taken,
        )
        payment = request.payment
        sale = Transaction(
            id=request.transaction_id or new_transaction_id(),
            transaction_no=transaction_no,
            tenant_id=actor.tenant_id,
            branch_id=branch.id,
            cashier_id=cashier_id,
            customer_name=request.customer_name,
            customer_phone=request.customer_phone,
            subtotal_cents=subtotal,
            discount_cents=request.discount_cents,
            tax_cents=request.tax_cents,
            total_cents=total,
            payment_method=payment.method.value,
            bank_name=payment.bank_name,
            reference_no=payment.reference_no,
            is_split_payment=payment.is_split,
            payment_amount1_cents=payment.amount1_cents if payment.is_split else None,
            payment_method2=payment.method2.value if payment.is_split else None,
            payment_amount2_cents=payment.amount2_cents if payment.is_split else None,
            bank_name2=payment.bank_name2 if payment.is_split else None,
            reference_no2=payment.reference_no2 if payment.is_split else None,
            notes=request.notes,
            status=SALE_STATUS_COMPLETED,
            device_source=device_source,
            created_at=request.created_at or utcnow(),
            synced_at=utcnow() if device_source == DEVICE_SOURCE_OFFLINE else None,
        )
        with db.session.no_autoflush:
            db.session.add(sale)
            for item in request.items:
                variant = variants[item.variant_id]
                db.session.add(TransactionItem(
                    transaction=sale,
                    variant_id=item.variant_id,
                    product_name=variant.product.name,
                    variant_info=variant.label or None,
                    sku=variant.sku,
                    quantity=item.quantity,
                    unit_price_cents=item.unit_price_cents,
                    subtotal_cents=item.subtotal_cents,
                ))
        _flush_new_sale(generated_number=request.transaction_no is None)

        for variant_id, quantity in quantities.items():
            stock_service.apply_delta(
                variant_id,
                branch.id,
                -quantity,
                operation=stock_service.OPERATION_SALE,
                actor=actor,
                product_name=variants[variant_id].product.name,
            )
        return sale

    sale = run_in_transaction(_op)
    current_app.logger.info(
        "Sale %s created at branch %s: %s items, total %s cents",
        sale.transaction_no, branch.id, len(request.items), total,
    )
    return sale


def cancel_sale(actor: Actor, transaction_id: str, reason: str | None = None) -> Transaction:
    """
    Cancel a COMPLETED sale and put every sold quantity back on the shelf.

    Sales with COMPLETED returns are refused, since part of the goods
    already moved back. PENDING returns stay open but can no longer be
    approved.

    Raises:
        NotFound: unknown transaction (or another tenant's)
        AlreadyCancelled: transaction is already CANCELLED
        ValidationError: completed returns exist against the sale
    """
    require_permission(actor, "CANCEL_SALE")

    def _op() -> Transaction:
        sale = lock_for_update(db.session.query(Transaction).filter_by(id=transaction_id)).first()
        if not sale or sale.tenant_id != actor.tenant_id:
            raise NotFound("Transaction", transaction_id)
        if sale.status == SALE_STATUS_CANCELLED:
            raise AlreadyCancelled("Transaction")
        completed = _completed_returns(sale.id)
        if completed:
            raise ValidationError(
                "Cannot cancel a transaction with completed returns",
                details={"returns": completed},
            )

        for variant_id, quantity in _aggregate_quantities(sale.items).items():
            stock_service.apply_delta(
                variant_id,
                sale.branch_id,
                quantity,
                create_missing=True,
                operation=stock_service.OPERATION_SALE_CANCEL,
                actor=actor,
            )

        sale.status = SALE_STATUS_CANCELLED
        sale.cancelled_at = utcnow()
        sale.cancelled_by_id = actor.user_id
        sale.cancel_reason = reason
        db.session.flush()

        events.audit(
            db.session,
            action="TRANSACTION_CANCELLED",
            entity_type="Transaction",
            entity_id=sale.id,
            description=f"Transaction {sale.transaction_no} cancelled",
            actor=actor,
            branch_id=sale.branch_id,
            metadata={"reason": reason, "total_cents": sale.total_cents},
        )
        return sale

    sale = run_in_transaction(_op)
    current_app.logger.info("Sale %s cancelled by user %s", sale.transaction_no, actor.user_id)
    return sale


# =============================================================================
# QUERIES
# =============================================================================

def get_sale(actor: Actor, transaction_id: str) -> Transaction:
    require_permission(actor, "VIEW_SALES")
    sale = db.session.get(Transaction, transaction_id)
    if not sale or sale.tenant_id != actor.tenant_id:
        raise NotFound("Transaction", transaction_id)
    if actor.is_branch_bound and sale.branch_id != actor.branch_id:
        raise Forbidden("Cashiers may only view their own branch")
    return sale


def list_sales(
    actor: Actor,
    *,
    branch_id: int | None = None,
    status: str | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    page: int = 1,
    limit: int = 50,
) -> tuple[list[Transaction], int]:
    require_permission(actor, "VIEW_SALES")
    query = db.session.query(Transaction).filter(Transaction.tenant_id == actor.tenant_id)
    if actor.is_branch_bound:
        query = query.filter(Transaction.branch_id == actor.branch_id)
    elif branch_id is not None:
        require_branch_access(actor, branch_id)
        query = query.filter(Transaction.branch_id == branch_id)
    else:
        query = query.filter(Transaction.branch_id.in_(tenant_branch_ids(actor.tenant_id)))
    if status:
        query = query.filter(Transaction.status == status.upper())
    if date_from:
        query = query.filter(Transaction.created_at >= date_from)
    if date_to:
        query = query.filter(Transaction.created_at <= date_to)

    total = query.count()
    rows = (
        query.order_by(Transaction.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return rows, total
