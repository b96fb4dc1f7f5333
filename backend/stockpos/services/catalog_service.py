# Overview: Catalogue master data (categories, suppliers, products, customers).

from __future__ import annotations

import logging

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import CustomerNotFound, ProductNotFound, ValidationError
from ..models import Category, Customer, Product, Supplier
from ..money import parse_amount
from .concurrency import write_transaction
from .movement_service import append_movement

logger = logging.getLogger(__name__)


def _required_text(payload: dict, field: str, max_len: int) -> str:
    value = payload.get(field)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required", details={"field": field})
    value = value.strip()
    if len(value) > max_len:
        raise ValidationError(f"{field} is too long (max {max_len})", details={"field": field})
    return value


def _optional_int(payload: dict, field: str, *, minimum: int = 0) -> int | None:
    value = payload.get(field)
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < minimum:
        raise ValidationError(f"{field} must be an integer >= {minimum}", details={"field": field, "value": value})
    return value


# =============================================================================
# PRODUCTS
# =============================================================================

def create_product(payload: dict, *, user_id: int | None = None) -> Product:
    """
    Create a product.

    stock_quantity is never taken from the payload. An opening stock is
    recorded as an "in" movement in the same transaction, so the product's
    balance is backed by its movement log from the first row.
    """
    sku = _required_text(payload, "sku", 100)
    name = _required_text(payload, "name", 200)
    selling_price = parse_amount(payload.get("selling_price", 0), "selling_price")
    cost_price = parse_amount(payload.get("cost_price", 0), "cost_price")
    min_stock_level = _optional_int(payload, "min_stock_level") or 0
    opening_stock = _optional_int(payload, "opening_stock") or 0
    category_id = _optional_int(payload, "category_id", minimum=1)
    supplier_id = _optional_int(payload, "supplier_id", minimum=1)

    with write_transaction():
        if db.session.query(Product.id).filter_by(sku=sku).first() is not None:
            raise ValidationError("A product with this SKU already exists", details={"field": "sku", "value": sku})
        if category_id is not None and db.session.get(Category, category_id) is None:
            raise ValidationError("Category not found", details={"field": "category_id", "value": category_id})
        if supplier_id is not None and db.session.get(Supplier, supplier_id) is None:
            raise ValidationError("Supplier not found", details={"field": "supplier_id", "value": supplier_id})

        product = Product(
            sku=sku,
            barcode=payload.get("barcode"),
            name=name,
            description=payload.get("description"),
            category_id=category_id,
            supplier_id=supplier_id,
            cost_price=cost_price,
            selling_price=selling_price,
            min_stock_level=min_stock_level,
            stock_quantity=0,
        )
        db.session.add(product)
        try:
            db.session.flush()
        except IntegrityError:
            raise ValidationError("A product with this SKU already exists", details={"field": "sku", "value": sku})

        if opening_stock:
            append_movement(
                product,
                movement_type="in",
                quantity=opening_stock,
                direction="in",
                reason="Opening balance",
                user_id=user_id,
                cost_per_unit=cost_price,
            )

    logger.info("Product %s (%s) created with opening stock %s", product.id, sku, opening_stock)
    return product


def get_product_by_id(product_id: int) -> Product:
    product = db.session.get(Product, product_id)
    if product is None:
        raise ProductNotFound("Product not found", details={"product_id": product_id})
    return product


def list_products(
    *,
    search: str | None = None,
    category_id: int | None = None,
    include_inactive: bool = False,
    page: int = 1,
    per_page: int = 20,
) -> dict:
    """Paginated product listing, ordered by name."""
    if page < 1 or per_page < 1 or per_page > 100:
        raise ValidationError("page must be >= 1 and per_page between 1 and 100")

    q = db.session.query(Product)
    if not include_inactive:
        q = q.filter(Product.is_active.is_(True))
    if category_id is not None:
        q = q.filter(Product.category_id == category_id)
    if search:
        pattern = f"%{search}%"
        q = q.filter(or_(Product.name.ilike(pattern), Product.sku.ilike(pattern), Product.barcode.ilike(pattern)))

    total = q.count()
    items = q.order_by(Product.name, Product.id).offset((page - 1) * per_page).limit(per_page).all()
    return {
        "items": [p.to_dict() for p in items],
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "pages": (total + per_page - 1) // per_page,
        },
    }


def deactivate_product(product_id: int) -> Product:
    """Soft delete. The movement history stays intact."""
    with write_transaction():
        product = get_product_by_id(product_id)
        product.is_active = False
    logger.info("Product %s deactivated", product_id)
    return product


# =============================================================================
# CATEGORIES / SUPPLIERS
# =============================================================================

def create_category(payload: dict) -> Category:
    name = _required_text(payload, "name", 100)
    with write_transaction():
        if db.session.query(Category.id).filter_by(name=name).first() is not None:
            raise ValidationError("Category already exists", details={"field": "name", "value": name})
        category = Category(name=name, description=payload.get("description"))
        db.session.add(category)
    return category


def list_categories() -> list[Category]:
    return db.session.query(Category).filter_by(is_active=True).order_by(Category.name).all()


def create_supplier(payload: dict) -> Supplier:
    name = _required_text(payload, "name", 200)
    with write_transaction():
        supplier = Supplier(
            name=name,
            contact_person=payload.get("contact_person"),
            email=payload.get("email"),
            phone=payload.get("phone"),
            address=payload.get("address"),
        )
        db.session.add(supplier)
    return supplier


def list_suppliers() -> list[Supplier]:
    return db.session.query(Supplier).filter_by(is_active=True).order_by(Supplier.name).all()


# =============================================================================
# CUSTOMERS
# =============================================================================

def create_customer(payload: dict) -> Customer:
    first_name = _required_text(payload, "first_name", 50)
    last_name = _required_text(payload, "last_name", 50)
    with write_transaction():
        customer = Customer(
            first_name=first_name,
            last_name=last_name,
            email=payload.get("email"),
            phone=payload.get("phone"),
            loyalty_points=0,
        )
        db.session.add(customer)
    return customer


def get_customer(customer_id: int) -> Customer:
    customer = db.session.get(Customer, customer_id)
    if customer is None:
        raise CustomerNotFound("Customer not found", details={"customer_id": customer_id})
    return customer


def list_customers(*, search: str | None = None, page: int = 1, per_page: int = 20) -> dict:
    """Active customers ordered by name; search matches name, email or phone."""
    if page < 1 or per_page < 1 or per_page > 100:
        raise ValidationError("page must be >= 1 and per_page between 1 and 100")

    q = db.session.query(Customer).filter(Customer.is_active.is_(True))
    if search:
        pattern = f"%{search}%"
        q = q.filter(or_(
            Customer.first_name.ilike(pattern),
            Customer.last_name.ilike(pattern),
            Customer.email.ilike(pattern),
            Customer.phone.ilike(pattern),
        ))

    total = q.count()
    items = (
        q.order_by(Customer.last_name, Customer.first_name, Customer.id)
        .offset((page - 1) * per_page)
        .limit(per_page)
        .all()
    )
    return {
        "items": [c.to_dict() for c in items],
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "pages": (total + per_page - 1) // per_page,
        },
    }
