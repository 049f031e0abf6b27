from __future__ import annotations

from ..extensions import db


class Product(db.Model):
    """
    Product master data.

    MULTI-TENANT: scoped by tenant_id. Variants inherit the tenant through
    their product.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_tenant_name", "tenant_id", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    variants = db.relationship("ProductVariant", back_populates="product", lazy=True)

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} tenant_id={self.tenant_id}>"


class ProductVariant(db.Model):
    """
    A sellable variant (size, colour, ...) of a product.

    Stock is held per (variant, branch); see StockRecord.
    """
    __tablename__ = "product_variants"
    __table_args__ = (
        db.UniqueConstraint("product_id", "sku", name="uq_product_variants_product_sku"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    sku = db.Column(db.String(64), nullable=False)
    variant_name = db.Column(db.String(64), nullable=True)
    variant_value = db.Column(db.String(64), nullable=True)

    product = db.relationship("Product", back_populates="variants")

    @property
    def label(self) -> str:
        if self.variant_name and self.variant_value:
            return f"{self.variant_name}: {self.variant_value}"
        return self.variant_value or ""

    def __repr__(self) -> str:
        return f"<ProductVariant id={self.id} sku={self.sku!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "product_name": self.product.name if self.product else None,
            "sku": self.sku,
            "variant_name": self.variant_name,
            "variant_value": self.variant_value,
        }
