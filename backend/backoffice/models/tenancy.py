from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Tenant(db.Model):
    """
    Tenant (business) - the root of data isolation.

    MULTI-TENANT: Every branch, user and product belongs to exactly one
    tenant. Operations never read or write across tenants.
    """
    __tablename__ = "tenants"
    __table_args__ = (
        db.UniqueConstraint("code", name="uq_tenants_code"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    code = db.Column(db.String(32), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    def __repr__(self) -> str:
        return f"<Tenant id={self.id} code={self.code!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Branch(db.Model):
    """
    Branch (cabang) - a physical store holding its own stock.

    MULTI-TENANT: scoped by tenant_id; stock, sales, transfers and returns
    are all branch-scoped and therefore transitively tenant-scoped.
    """
    __tablename__ = "branches"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "name", name="uq_branches_tenant_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    name = db.Column(db.String(128), nullable=False)
    code = db.Column(db.String(32), nullable=True)
    address = db.Column(db.String(255), nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    tenant = db.relationship("Tenant", backref=db.backref("branches", lazy=True))

    def __repr__(self) -> str:
        return f"<Branch id={self.id} name={self.name!r} tenant_id={self.tenant_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "code": self.code,
            "address": self.address,
            "is_active": self.is_active,
        }
