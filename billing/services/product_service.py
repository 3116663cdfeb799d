from sqlalchemy.orm import Session
from sqlalchemy import or_
from typing import Optional, List

from billing.core.config import settings
from billing.core.exceptions import ConflictError, NotFoundError, ValidationError
from billing.models.invoice import InvoiceItem
from billing.models.order import OrderItem
from billing.models.product import Product
from billing.utils.db import atomic, clamp_page, search_pattern
from billing.utils.money import ensure_cents, normalize_currency
from billing.logger_config import logger


def _validate_price(unit_price_cents: int) -> int:
    ensure_cents(unit_price_cents, "unit_price_cents")
    if unit_price_cents < 0:
        raise ValidationError("Price cannot be negative")
    return unit_price_cents


def get_product(db: Session, product_id: int) -> Product:
    """Get product by ID or raise NotFoundError."""
    product = db.query(Product).filter(Product.id == product_id).first()
    if not product:
        logger.warning(f"Product not found: {product_id}")
        raise NotFoundError(f"Product {product_id} not found")
    return product


def get_all_products(
    db: Session,
    skip: int = 0,
    limit: int = 20,
    search: Optional[str] = None,
    active: Optional[bool] = None
) -> tuple[List[Product], int]:
    """Get all products with optional search and active filter."""
    limit, skip = clamp_page(limit, skip)
    query = db.query(Product)

    if active is not None:
        query = query.filter(Product.active == active)

    search_term = search_pattern(search)
    if search_term:
        query = query.filter(
            or_(
                Product.name.ilike(search_term),
                Product.sku.ilike(search_term),
                Product.description.ilike(search_term),
            )
        )

    total = query.count()
    products = query.order_by(Product.name.asc(), Product.id.asc()).offset(skip).limit(limit).all()
    return products, total


def product_usage_count(db: Session, product_id: int) -> int:
    """Number of order and invoice lines referencing the product."""
    order_lines = db.query(OrderItem).filter(OrderItem.product_id == product_id).count()
    invoice_lines = db.query(InvoiceItem).filter(InvoiceItem.product_id == product_id).count()
    return order_lines + invoice_lines


def create_product(
    db: Session,
    name: str,
    unit_price_cents: int,
    sku: Optional[str] = None,
    description: Optional[str] = None,
    currency: Optional[str] = None,
    active: bool = True,
) -> Product:
    """Create a new product."""
    name = (name or "").strip()
    if not name:
        raise ValidationError("Product name is required")
    _validate_price(unit_price_cents)
    sku = sku.strip() if sku and sku.strip() else None

    if sku and db.query(Product).filter(Product.sku == sku).first():
        raise ConflictError(f"A product with SKU {sku} already exists")

    product = Product(
        name=name,
        sku=sku,
        description=description,
        unit_price_cents=unit_price_cents,
        currency=normalize_currency(currency, settings.DEFAULT_CURRENCY),
        active=active,
    )

    with atomic(db, "product creation"):
        db.add(product)

    db.refresh(product)
    logger.info(f"Product created: {product.id} ({product.name}) @ {product.unit_price_cents} {product.currency}")
    return product


def update_product(
    db: Session,
    product_id: int,
    name: Optional[str] = None,
    unit_price_cents: Optional[int] = None,
    sku: Optional[str] = None,
    description: Optional[str] = None,
    currency: Optional[str] = None,
) -> Product:
    """
    Update product details.

    Existing order/invoice lines keep their snapshots; only lines created
    afterwards see the new name or price.
    """
    product = get_product(db, product_id)

    with atomic(db, f"product {product_id} update"):
        if name is not None:
            name = name.strip()
            if not name:
                raise ValidationError("Product name is required")
            product.name = name
        if unit_price_cents is not None:
            product.unit_price_cents = _validate_price(unit_price_cents)
        if sku is not None:
            sku = sku.strip() or None
            if sku:
                existing = db.query(Product).filter(Product.sku == sku).first()
                if existing and existing.id != product_id:
                    raise ConflictError(f"A product with SKU {sku} already exists")
            product.sku = sku
        if description is not None:
            product.description = description
        if currency is not None:
            product.currency = normalize_currency(currency, settings.DEFAULT_CURRENCY)

    db.refresh(product)
    logger.info(f"Product {product_id} updated")
    return product


def set_product_active(db: Session, product_id: int, active: bool) -> Product:
    product = get_product(db, product_id)
    with atomic(db, f"product {product_id} activation change"):
        product.active = active
    db.refresh(product)
    logger.info(f"Product {product_id} {'activated' if active else 'deactivated'}")
    return product


def activate_product(db: Session, product_id: int) -> Product:
    return set_product_active(db, product_id, True)


def deactivate_product(db: Session, product_id: int) -> Product:
    return set_product_active(db, product_id, False)


def delete_product(db: Session, product_id: int) -> None:
    """Delete a product that no line references; referenced products can only be deactivated."""
    product = get_product(db, product_id)

    usage = product_usage_count(db, product_id)
    if usage:
        raise ConflictError(
            f"Product {product_id} is referenced by {usage} order/invoice lines; deactivate it instead"
        )

    with atomic(db, f"product {product_id} deletion"):
        db.delete(product)

    logger.info(f"Product {product_id} deleted")
