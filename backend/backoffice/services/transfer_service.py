# backend/backoffice/services/transfer_service.py
"""
Inter-branch stock transfer workflow.

WHY: Move a variant's stock between two branches of the same tenant with an
approval step for non-privileged requesters.

LIFECYCLE:
1. PENDING: requested, no stock has moved
2. COMPLETED: source debited and destination credited in one unit of work
3. CANCELLED: rejected while PENDING, no stock has moved

Privileged requesters (AUTO_APPROVE_ROLES) skip PENDING: creation runs the
same locked check-and-move as approval.
"""
from __future__ import annotations

from flask import current_app
from sqlalchemy import func

from ..errors import AlreadyProcessed, Forbidden, InsufficientStock, NotFound
from ..extensions import db, events
from ..models import StockRecord, StockTransfer
from ..permissions import Actor, Role, require_permission
from ..schemas import TransferRequest
from ..time_utils import utcnow
from . import stock_service
from .concurrency import lock_for_update, run_in_transaction
from .sequence_service import PREFIX_TRANSFER, next_document_number
from .tenant_service import require_branch_access, require_branch_in_tenant, require_variant_in_tenant


# Transfer status constants
TRANSFER_STATUS_PENDING = "PENDING"
TRANSFER_STATUS_COMPLETED = "COMPLETED"
TRANSFER_STATUS_CANCELLED = "CANCELLED"


def _transfer_no_taken(number: str) -> bool:
    return db.session.query(StockTransfer.id).filter_by(transfer_no=number).first() is not None


def _check_source(transfer_variant_id: int, from_branch_id: int, quantity: int, product_name: str | None) -> StockRecord:
    source = lock_for_update(
        db.session.query(StockRecord).filter_by(variant_id=transfer_variant_id, branch_id=from_branch_id)
    ).first()
    available = source.quantity if source else 0
    if available < quantity:
        raise InsufficientStock.single(transfer_variant_id, from_branch_id, available, quantity, product_name)
    return source


def _complete(transfer: StockTransfer, actor: Actor, product_name: str | None = None) -> None:
    """Debit source, credit (or create) destination, flip to COMPLETED."""
    source = _check_source(transfer.variant_id, transfer.from_branch_id, transfer.quantity, product_name)

    stock_service.apply_delta(
        transfer.variant_id,
        transfer.from_branch_id,
        -transfer.quantity,
        operation=stock_service.OPERATION_TRANSFER_OUT,
        actor=actor,
        product_name=product_name,
    )
    destination = stock_service.apply_delta(
        transfer.variant_id,
        transfer.to_branch_id,
        transfer.quantity,
        create_missing=True,
        operation=stock_service.OPERATION_TRANSFER_IN,
        actor=actor,
    )
    if destination.created:
        destination.stock.price_cents = source.price_cents

    transfer.status = TRANSFER_STATUS_COMPLETED
    transfer.processed_by_id = actor.user_id
    transfer.completed_at = utcnow()
    db.session.flush()


def _load_locked(actor: Actor, transfer_id: int) -> StockTransfer:
    transfer = lock_for_update(db.session.query(StockTransfer).filter_by(id=transfer_id)).first()
    if not transfer or transfer.tenant_id != actor.tenant_id:
        raise NotFound("Transfer", transfer_id)
    return transfer


def create_transfer(actor: Actor, request: TransferRequest) -> StockTransfer:
    """
    Request a transfer (PENDING), or execute it immediately for privileged roles.

    Args:
        actor: requesting user
        request: variant, source/destination branches, quantity, notes

    Returns:
        StockTransfer: PENDING or COMPLETED

    Raises:
        Forbidden: cashier, or branch outside the tenant
        InsufficientStock: source holds less than requested
    """
    require_permission(actor, "REQUEST_TRANSFER")
    require_branch_in_tenant(request.from_branch_id, actor.tenant_id)
    require_branch_in_tenant(request.to_branch_id, actor.tenant_id)
    variant = require_variant_in_tenant(request.variant_id, actor.tenant_id)
    product_name = variant.product.name

    def _op() -> StockTransfer:
        _check_source(request.variant_id, request.from_branch_id, request.quantity, product_name)

        transfer = StockTransfer(
            transfer_no=next_document_number(
                document_type="TRANSFER",
                prefix=PREFIX_TRANSFER,
                exists=_transfer_no_taken,
            ),
            tenant_id=actor.tenant_id,
            variant_id=request.variant_id,
            from_branch_id=request.from_branch_id,
            to_branch_id=request.to_branch_id,
            quantity=request.quantity,
            status=TRANSFER_STATUS_PENDING,
            notes=request.notes,
            requested_by_id=actor.user_id,
        )
        db.session.add(transfer)
        db.session.flush()

        if actor.is_privileged:
            _complete(transfer, actor, product_name)

        events.audit(
            db.session,
            action="TRANSFER_CREATED",
            entity_type="StockTransfer",
            entity_id=transfer.id,
            description=f"Transfer {transfer.transfer_no}: {transfer.quantity} x {product_name} ({transfer.status})",
            actor=actor,
            branch_id=transfer.from_branch_id,
            metadata=transfer.to_dict(),
        )
        return transfer

    transfer = run_in_transaction(_op)
    current_app.logger.info(
        "Transfer %s created by user %s with status %s", transfer.transfer_no, actor.user_id, transfer.status
    )
    return transfer


def approve_transfer(actor: Actor, transfer_id: int) -> StockTransfer:
    """
    Approve a PENDING transfer, re-checking source stock at approval time.

    Raises:
        AlreadyProcessed: transfer is not PENDING
        InsufficientStock: source no longer holds the quantity
    """
    require_permission(actor, "APPROVE_TRANSFER")

    def _op() -> StockTransfer:
        transfer = _load_locked(actor, transfer_id)
        if transfer.status != TRANSFER_STATUS_PENDING:
            raise AlreadyProcessed("Transfer", transfer.status)

        product_name = transfer.variant.product.name if transfer.variant else None
        _complete(transfer, actor, product_name)

        events.audit(
            db.session,
            action="TRANSFER_APPROVED",
            entity_type="StockTransfer",
            entity_id=transfer.id,
            description=f"Transfer {transfer.transfer_no} approved",
            actor=actor,
            branch_id=transfer.from_branch_id,
        )
        return transfer

    transfer = run_in_transaction(_op)
    current_app.logger.info("Transfer %s approved by user %s", transfer.transfer_no, actor.user_id)
    return transfer


def reject_transfer(actor: Actor, transfer_id: int, reason: str | None = None) -> StockTransfer:
    """
    Cancel a PENDING transfer. No stock moves.

    Allowed for approvers, or for the original requester on their own transfer.
    """
    if actor.role == Role.KASIR:
        raise Forbidden("Cashiers cannot manage transfers")

    def _op() -> StockTransfer:
        transfer = _load_locked(actor, transfer_id)
        if not actor.can("APPROVE_TRANSFER") and transfer.requested_by_id != actor.user_id:
            raise Forbidden("Only approvers or the requester can cancel this transfer")
        if transfer.status != TRANSFER_STATUS_PENDING:
            raise AlreadyProcessed("Transfer", transfer.status)

        transfer.status = TRANSFER_STATUS_CANCELLED
        transfer.processed_by_id = actor.user_id
        transfer.cancelled_at = utcnow()
        if reason:
            note = f"[CANCELLED: {reason}]"
            transfer.notes = f"{transfer.notes}\n{note}" if transfer.notes else note
        db.session.flush()

        events.audit(
            db.session,
            action="TRANSFER_CANCELLED",
            entity_type="StockTransfer",
            entity_id=transfer.id,
            description=f"Transfer {transfer.transfer_no} cancelled",
            actor=actor,
            branch_id=transfer.from_branch_id,
            metadata={"reason": reason},
        )
        return transfer

    transfer = run_in_transaction(_op)
    current_app.logger.info("Transfer %s cancelled by user %s", transfer.transfer_no, actor.user_id)
    return transfer


# =============================================================================
# QUERIES
# =============================================================================

def get_transfer(actor: Actor, transfer_id: int) -> StockTransfer:
    require_permission(actor, "VIEW_TRANSFERS")
    transfer = db.session.get(StockTransfer, transfer_id)
    if not transfer or transfer.tenant_id != actor.tenant_id:
        raise NotFound("Transfer", transfer_id)
    return transfer


def _scoped_query(actor: Actor, branch_id: int | None):
    query = db.session.query(StockTransfer).filter(StockTransfer.tenant_id == actor.tenant_id)
    if branch_id is not None:
        require_branch_access(actor, branch_id)
        query = query.filter(
            (StockTransfer.from_branch_id == branch_id) | (StockTransfer.to_branch_id == branch_id)
        )
    return query


def list_transfers(
    actor: Actor,
    *,
    status: str | None = None,
    branch_id: int | None = None,
    variant_id: int | None = None,
    page: int = 1,
    limit: int = 50,
) -> tuple[list[StockTransfer], int]:
    require_permission(actor, "VIEW_TRANSFERS")
    query = _scoped_query(actor, branch_id)
    if status:
        query = query.filter(StockTransfer.status == status.upper())
    if variant_id is not None:
        query = query.filter(StockTransfer.variant_id == variant_id)

    total = query.count()
    rows = (
        query.order_by(StockTransfer.created_at.desc(), StockTransfer.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return rows, total


def transfer_stats(actor: Actor, branch_id: int | None = None) -> dict:
    require_permission(actor, "VIEW_TRANSFERS")
    query = _scoped_query(actor, branch_id)
    return {
        "total": query.count(),
        "completed": query.filter(StockTransfer.status == TRANSFER_STATUS_COMPLETED).count(),
        "pending": query.filter(StockTransfer.status == TRANSFER_STATUS_PENDING).count(),
        "total_quantity": int(
            query.filter(StockTransfer.status == TRANSFER_STATUS_COMPLETED)
            .with_entities(func.coalesce(func.sum(StockTransfer.quantity), 0))
            .scalar()
        ),
    }
