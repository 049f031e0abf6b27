"""
Multi-Tenant Service: Tenant Validation and Scoping Helpers

WHY: Centralize tenant validation logic for reuse across services and routes.
Every operation is scoped to the actor's tenant, and cross-tenant access
must be explicitly denied.

SECURITY INVARIANTS:
1. Every Actor carries a tenant_id
2. Branch and variant ids from client input are validated against it
3. A foreign id is reported as "not found" so its existence is not revealed
4. KASIR actors are confined to their own branch

USAGE:
    from backoffice.services.tenant_service import resolve_branch, require_variant_in_tenant

    branch = resolve_branch(actor, payload_branch_id)
    variant = require_variant_in_tenant(variant_id, actor.tenant_id)
"""

from __future__ import annotations

from flask import current_app

from ..errors import Forbidden, NotFound, ValidationError
from ..extensions import db
from ..models import Branch, Product, ProductVariant, User
from ..permissions import Actor


def _log_cross_tenant_attempt(resource: str, resource_id, tenant_id: int) -> None:
    current_app.logger.warning(
        "Cross-tenant access denied: %s %s requested by tenant %s",
        resource, resource_id, tenant_id,
    )


def actor_for_user(user_id: int, ip: str | None = None) -> Actor:
    """Build the actor context for an active user."""
    user = db.session.get(User, user_id)
    if not user or not user.is_active:
        raise NotFound("User", user_id)
    return Actor(
        user_id=user.id,
        role=user.role,
        tenant_id=user.tenant_id,
        branch_id=user.branch_id,
        ip=ip,
    )


def require_branch_in_tenant(branch_id: int, tenant_id: int) -> Branch:
    """
    Validate that a branch belongs to the tenant.

    Raises:
        NotFound: branch missing or owned by another tenant
    """
    branch = db.session.get(Branch, branch_id)
    if not branch:
        raise NotFound("Branch", branch_id)
    if branch.tenant_id != tenant_id:
        _log_cross_tenant_attempt("branch", branch_id, tenant_id)
        raise NotFound("Branch", branch_id)
    return branch


def require_variant_in_tenant(variant_id: int, tenant_id: int) -> ProductVariant:
    variant = (
        db.session.query(ProductVariant)
        .join(Product, Product.id == ProductVariant.product_id)
        .filter(ProductVariant.id == variant_id)
        .first()
    )
    if not variant:
        raise NotFound("Product variant", variant_id)
    if variant.product.tenant_id != tenant_id:
        _log_cross_tenant_attempt("variant", variant_id, tenant_id)
        raise NotFound("Product variant", variant_id)
    return variant


def resolve_branch(actor: Actor, requested_branch_id: int | None = None) -> Branch:
    """
    Decide which branch an operation runs in.

    - Branch-bound actors (KASIR) always use their own branch; naming a
      different one is Forbidden
    - Tenant-wide actors use the requested branch, falling back to their
      home branch when they have one
    """
    if actor.is_branch_bound:
        if actor.branch_id is None:
            raise Forbidden("Cashier is not assigned to a branch")
        if requested_branch_id is not None and requested_branch_id != actor.branch_id:
            raise Forbidden("Cashiers may only operate on their own branch")
        return require_branch_in_tenant(actor.branch_id, actor.tenant_id)

    branch_id = requested_branch_id if requested_branch_id is not None else actor.branch_id
    if branch_id is None:
        raise ValidationError("branch_id is required", field="branch_id")
    return require_branch_in_tenant(branch_id, actor.tenant_id)


def require_branch_access(actor: Actor, branch_id: int) -> None:
    """Read access check for an existing branch-scoped record."""
    require_branch_in_tenant(branch_id, actor.tenant_id)
    if actor.is_branch_bound and branch_id != actor.branch_id:
        raise Forbidden("Cashiers may only view their own branch")


def tenant_branch_ids(tenant_id: int) -> list[int]:
    return [
        row.id for row in db.session.query(Branch.id).filter_by(tenant_id=tenant_id).all()
    ]
