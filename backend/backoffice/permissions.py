"""
Role and permission definitions.

WHY: One place decides which role may perform which engine operation.
Services call ``require_permission(actor, code)`` before touching data, so
the HTTP layer, the CLI and the offline replayer share the same rules.

ROLES:
- OWNER: tenant-wide, every permission
- MANAGER: tenant-wide operations manager
- ADMIN: back-office clerk, may request but not approve
- KASIR: cashier, bound to one branch
"""

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from .errors import Forbidden


class Role:
    OWNER = "OWNER"
    MANAGER = "MANAGER"
    ADMIN = "ADMIN"
    KASIR = "KASIR"


ALL_ROLES = (Role.OWNER, Role.MANAGER, Role.ADMIN, Role.KASIR)
BACK_OFFICE_ROLES = (Role.OWNER, Role.MANAGER, Role.ADMIN)


# =============================================================================
# PERMISSION DEFINITIONS
# =============================================================================

PERMISSION_ROLES = {
    # Stock
    "VIEW_STOCK": ALL_ROLES,
    "ADJUST_STOCK": BACK_OFFICE_ROLES,
    "MANAGE_STOCK_ALERTS": BACK_OFFICE_ROLES,
    "VIEW_ADJUSTMENTS": BACK_OFFICE_ROLES,
    # Transfers
    "REQUEST_TRANSFER": BACK_OFFICE_ROLES,
    "VIEW_TRANSFERS": BACK_OFFICE_ROLES,
    "APPROVE_TRANSFER": (Role.OWNER, Role.MANAGER),
    # Sales
    "CREATE_SALE": ALL_ROLES,
    "VIEW_SALES": ALL_ROLES,
    "CANCEL_SALE": (Role.OWNER, Role.MANAGER),
    "SYNC_OFFLINE_SALES": ALL_ROLES,
    # Returns
    "CREATE_RETURN": ALL_ROLES,
    "VIEW_RETURNS": ALL_ROLES,
    "APPROVE_RETURN": BACK_OFFICE_ROLES,
}


@dataclass(frozen=True)
class Actor:
    """
    Who is performing an operation.

    MULTI-TENANT: tenant_id is mandatory. branch_id is set for users bound to
    a single branch (always for KASIR) and None for tenant-wide users.
    """
    user_id: int
    role: str
    tenant_id: int
    branch_id: int | None = None
    ip: str | None = None

    @property
    def is_branch_bound(self) -> bool:
        return self.role == Role.KASIR

    @property
    def is_privileged(self) -> bool:
        """Roles allowed to skip the second approval step (config AUTO_APPROVE_ROLES)."""
        roles = current_app.config.get("AUTO_APPROVE_ROLES", (Role.OWNER, Role.MANAGER))
        return self.role in roles

    def can(self, permission_code: str) -> bool:
        return self.role in PERMISSION_ROLES.get(permission_code, ())


def require_permission(actor: Actor, permission_code: str) -> None:
    if not actor.can(permission_code):
        raise Forbidden(
            f"Role {actor.role} is not allowed to perform this action",
            details={"permission": permission_code},
        )
