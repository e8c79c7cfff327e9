from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z, utcnow
from .common import new_id


class Supplier(db.Model):
    __tablename__ = "suppliers"
    __table_args__ = (
        db.UniqueConstraint("company_id", "name", name="uq_suppliers_company_name"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    company_id = db.Column(db.String(36), db.ForeignKey("companies.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    nif = db.Column(db.String(32), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "name": self.name,
            "nif": self.nif,
            "email": self.email,
            "phone": self.phone,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Product(db.Model):
    """
    Catalog product.

    STOCK DESIGN:
    current_stock is a maintained counter, not a ledger sum. It is the only
    shared mutable resource of the inventory core, so every writer goes through
    stock_service._apply_stock_change with the row locked, and each change is
    mirrored by exactly one StockMovement row.

    version_id_col gives optimistic concurrency on top of the row lock: a write
    based on a stale read raises StaleDataError instead of silently
    overwriting the counter.

    Invariant: current_stock >= 0 after every committed operation.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("company_id", "sku", name="uq_products_company_sku"),
        db.Index("ix_products_company_name", "company_id", "name"),
        db.CheckConstraint("current_stock >= 0", name="ck_products_stock_non_negative"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    company_id = db.Column(db.String(36), db.ForeignKey("companies.id"), nullable=False, index=True)
    supplier_id = db.Column(db.String(36), db.ForeignKey("suppliers.id"), nullable=True, index=True)

    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    unit_price_cents = db.Column(db.Integer, nullable=False, default=0)
    # Basis points: 2300 = 23%
    vat_rate_bps = db.Column(db.Integer, nullable=False, default=0)

    stock_tracked = db.Column(db.Boolean, nullable=False, default=True)
    reorder_threshold = db.Column(db.Integer, nullable=False, default=0)
    current_stock = db.Column(db.Integer, nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    supplier = db.relationship("Supplier", backref=db.backref("products", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    @property
    def needs_reorder(self) -> bool:
        return bool(self.stock_tracked) and self.current_stock <= self.reorder_threshold

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} stock={self.current_stock}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "supplier_id": self.supplier_id,
            "sku": self.sku,
            "name": self.name,
            "description": self.description,
            "unit_price_cents": self.unit_price_cents,
            "vat_rate_bps": self.vat_rate_bps,
            "stock_tracked": self.stock_tracked,
            "reorder_threshold": self.reorder_threshold,
            "current_stock": self.current_stock,
            "needs_reorder": self.needs_reorder,
            "is_active": self.is_active,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Service(db.Model):
    """
    Bookable service (grooming, vaccination, ...).

    When consumes_inventory is set, each unit of the service uses the listed
    consumed items; booking reserves them and completion consumes them.
    """
    __tablename__ = "services"
    __table_args__ = (
        db.UniqueConstraint("company_id", "name", name="uq_services_company_name"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    company_id = db.Column(db.String(36), db.ForeignKey("companies.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    duration_minutes = db.Column(db.Integer, nullable=False)
    price_cents = db.Column(db.Integer, nullable=False, default=0)
    vat_rate_bps = db.Column(db.Integer, nullable=False, default=0)

    consumes_inventory = db.Column(db.Boolean, nullable=False, default=False)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    consumed_items = db.relationship(
        "ServiceConsumedItem",
        backref="service",
        lazy=True,
        cascade="all, delete-orphan",
        order_by="ServiceConsumedItem.product_id",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "company_id": self.company_id,
            "name": self.name,
            "description": self.description,
            "duration_minutes": self.duration_minutes,
            "price_cents": self.price_cents,
            "vat_rate_bps": self.vat_rate_bps,
            "consumes_inventory": self.consumes_inventory,
            "consumed_items": [item.to_dict() for item in self.consumed_items],
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class ServiceConsumedItem(db.Model):
    """Product quantity used by one unit of a service (the service 'recipe')."""
    __tablename__ = "service_consumed_items"
    __table_args__ = (
        db.UniqueConstraint("service_id", "product_id", name="uq_service_consumed_product"),
    )

    id = db.Column(db.String(36), primary_key=True, default=new_id)
    service_id = db.Column(db.String(36), db.ForeignKey("services.id"), nullable=False, index=True)
    product_id = db.Column(db.String(36), db.ForeignKey("products.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "quantity": self.quantity,
        }
