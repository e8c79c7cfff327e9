# Overview: Catalog reference data; products, bookable services and suppliers.

from __future__ import annotations

from sqlalchemy import or_

from ..errors import BusinessRuleViolationError, ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import Company, Product, Service, ServiceConsumedItem, Supplier
from ..validation import (
    PRODUCT_POLICY,
    SERVICE_POLICY,
    SUPPLIER_POLICY,
    enforce_rules_product,
    enforce_rules_service,
    validate_payload,
)
from .audit_service import append_audit_event
from .concurrency import run_in_transaction
from .stock_service import get_reserved_quantity
"""
New products start with current_stock = 0. Stock only ever changes through
stock_service (receipt, adjustment, reconciliation) or the reservation and
sale paths, never through a catalog update.
"""


def _require_company(company_id: str) -> Company:
    company = db.session.query(Company).filter_by(id=company_id).first()
    if company is None or not company.is_active:
        raise NotFoundError("Company not found", details={"company_id": company_id})
    return company


def _check_supplier(company_id: str, supplier_id: str | None) -> None:
    if supplier_id is None:
        return
    supplier = db.session.query(Supplier).filter_by(id=supplier_id).first()
    if supplier is None or supplier.company_id != company_id:
        raise NotFoundError("Supplier not found", details={"supplier_id": supplier_id})


def _check_sku_free(company_id: str, sku: str, exclude_id: str | None = None) -> None:
    q = db.session.query(Product.id).filter(Product.company_id == company_id, Product.sku == sku)
    if exclude_id:
        q = q.filter(Product.id != exclude_id)
    if q.first() is not None:
        raise ConflictError(f"SKU already exists: {sku}", details={"sku": sku})


# =============================================================================
# Products
# =============================================================================

def create_product(*, company_id: str, data: dict, performed_by: str) -> Product:
    patch = validate_payload(model=Product, payload=data, policy=PRODUCT_POLICY, partial=False)
    enforce_rules_product(patch)

    def _op():
        _require_company(company_id)
        _check_supplier(company_id, patch.get("supplier_id"))
        _check_sku_free(company_id, patch["sku"])

        product = Product(company_id=company_id, current_stock=0, **patch)
        db.session.add(product)
        db.session.flush()

        append_audit_event(
            event_type="product.created",
            entity_type="product",
            entity_id=product.id,
            performed_by=performed_by,
            payload={"sku": product.sku},
        )
        return product

    return run_in_transaction(_op)


def update_product(product_id: str, *, data: dict, performed_by: str) -> Product:
    patch = validate_payload(model=Product, payload=data, policy=PRODUCT_POLICY, partial=True)
    enforce_rules_product(patch)
    if not patch:
        raise ValidationError("No fields to update")

    def _op():
        product = get_product(product_id)
        if "sku" in patch and patch["sku"] != product.sku:
            _check_sku_free(product.company_id, patch["sku"], exclude_id=product.id)
        if "supplier_id" in patch:
            _check_supplier(product.company_id, patch["supplier_id"])
        if patch.get("stock_tracked") is False and product.stock_tracked:
            reserved = get_reserved_quantity(product.id)
            if reserved:
                raise BusinessRuleViolationError(
                    "Cannot stop tracking stock while reservations are active",
                    details={"product_id": product.id, "reserved": reserved},
                )

        for key, value in patch.items():
            setattr(product, key, value)

        append_audit_event(
            event_type="product.updated",
            entity_type="product",
            entity_id=product.id,
            performed_by=performed_by,
            payload={"fields": sorted(patch)},
        )
        return product

    return run_in_transaction(_op)


def get_product(product_id: str) -> Product:
    product = db.session.query(Product).filter_by(id=product_id).first()
    if product is None:
        raise NotFoundError("Product not found", details={"product_id": product_id})
    return product


def list_products(
    *,
    company_id: str,
    search: str | None = None,
    active_only: bool = False,
    page: int | None = None,
    per_page: int | None = None,
) -> dict:
    base_query = db.session.query(Product).filter(Product.company_id == company_id)
    if active_only:
        base_query = base_query.filter(Product.is_active.is_(True))
    if search:
        like = f"%{search.strip()}%"
        base_query = base_query.filter(or_(Product.sku.ilike(like), Product.name.ilike(like)))
    base_query = base_query.order_by(Product.name.asc(), Product.id.asc())

    if page is None:
        products = base_query.all()
        return {"items": [p.to_dict() for p in products], "count": len(products)}

    per_page = min(per_page or 20, 100)
    page = max(page, 1)
    total = base_query.count()
    total_pages = (total + per_page - 1) // per_page if total > 0 else 1
    products = base_query.offset((page - 1) * per_page).limit(per_page).all()

    return {
        "items": [p.to_dict() for p in products],
        "count": len(products),
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "total_pages": total_pages,
            "has_next": page < total_pages,
            "has_prev": page > 1,
        },
    }


# =============================================================================
# Services
# =============================================================================

def _normalize_consumed_items(consumed_items, company_id: str) -> list[dict]:
    if consumed_items is None:
        return []
    if not isinstance(consumed_items, list):
        raise ValidationError("consumed_items must be a list")

    seen = set()
    cleaned = []
    for i, raw in enumerate(consumed_items):
        if not isinstance(raw, dict) or not raw.get("product_id"):
            raise ValidationError(f"consumed_items[{i}].product_id is required")
        quantity = raw.get("quantity")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise ValidationError(f"consumed_items[{i}].quantity must be a positive integer")
        product_id = raw["product_id"]
        if product_id in seen:
            raise ValidationError(f"consumed_items[{i}] duplicates product {product_id}")
        seen.add(product_id)

        product = db.session.query(Product).filter_by(id=product_id).first()
        if product is None or product.company_id != company_id:
            raise NotFoundError("Product not found", details={"product_id": product_id})
        cleaned.append({"product_id": product_id, "quantity": quantity})
    return cleaned


def create_service(
    *,
    company_id: str,
    data: dict,
    performed_by: str,
    consumed_items: list[dict] | None = None,
) -> Service:
    """A service that consumes inventory must list at least one consumed item."""
    patch = validate_payload(model=Service, payload=data, policy=SERVICE_POLICY, partial=False)
    enforce_rules_service(patch)

    def _op():
        _require_company(company_id)
        items = _normalize_consumed_items(consumed_items, company_id)
        if patch.get("consumes_inventory") and not items:
            raise ValidationError("A service that consumes inventory must list its consumed items")
        if items and not patch.get("consumes_inventory"):
            raise ValidationError("consumed_items given but consumes_inventory is false")

        existing = db.session.query(Service.id).filter_by(company_id=company_id, name=patch["name"]).first()
        if existing is not None:
            raise ConflictError(f"Service already exists: {patch['name']}", details={"name": patch["name"]})

        service = Service(company_id=company_id, **patch)
        for item in items:
            service.consumed_items.append(ServiceConsumedItem(**item))
        db.session.add(service)
        db.session.flush()

        append_audit_event(
            event_type="service.created",
            entity_type="service",
            entity_id=service.id,
            performed_by=performed_by,
            payload={"name": service.name, "consumed_items": items},
        )
        return service

    return run_in_transaction(_op)


def get_service(service_id: str) -> Service:
    service = db.session.query(Service).filter_by(id=service_id).first()
    if service is None:
        raise NotFoundError("Service not found", details={"service_id": service_id})
    return service


def list_services(*, company_id: str, active_only: bool = False) -> list[Service]:
    q = db.session.query(Service).filter(Service.company_id == company_id)
    if active_only:
        q = q.filter(Service.is_active.is_(True))
    return q.order_by(Service.name.asc()).all()


# =============================================================================
# Suppliers
# =============================================================================

def create_supplier(*, company_id: str, data: dict, performed_by: str) -> Supplier:
    patch = validate_payload(model=Supplier, payload=data, policy=SUPPLIER_POLICY, partial=False)

    def _op():
        _require_company(company_id)
        existing = db.session.query(Supplier.id).filter_by(company_id=company_id, name=patch["name"]).first()
        if existing is not None:
            raise ConflictError(f"Supplier already exists: {patch['name']}", details={"name": patch["name"]})
        supplier = Supplier(company_id=company_id, **patch)
        db.session.add(supplier)
        db.session.flush()
        append_audit_event(
            event_type="supplier.created",
            entity_type="supplier",
            entity_id=supplier.id,
            performed_by=performed_by,
        )
        return supplier

    return run_in_transaction(_op)


def list_suppliers(*, company_id: str) -> list[Supplier]:
    return (
        db.session.query(Supplier)
        .filter(Supplier.company_id == company_id)
        .order_by(Supplier.name.asc())
        .all()
    )
