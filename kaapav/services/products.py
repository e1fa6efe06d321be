from __future__ import annotations

from typing import Any

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from kaapav.core.errors import ConflictError, NotFoundError, ValidationError
from kaapav.models.product import Product

STOCK_MODES = ("set", "add", "subtract")
PRODUCT_FIELDS = (
    "sku",
    "name",
    "description",
    "category",
    "price",
    "compare_price",
    "stock",
    "image_url",
    "is_bestseller",
    "is_active",
)


def get_product(db: Session, product_id: str, *, active_only: bool = True) -> Product | None:
    query = db.query(Product).filter(Product.product_id == product_id)
    if active_only:
        query = query.filter(Product.is_active.is_(True))
    return query.first()


def require_product(db: Session, product_id: str) -> Product:
    product = get_product(db, product_id, active_only=False)
    if product is None:
        raise NotFoundError("Product not found", details={"product_id": product_id})
    return product


def find_product_by_text(db: Session, text: str) -> Product | None:
    term = (text or "").strip().lower()
    if len(term) < 2:
        return None
    like = f"%{term}%"
    return (
        db.query(Product)
        .filter(Product.is_active.is_(True))
        .filter(or_(func.lower(Product.name).like(like), func.lower(Product.product_id).like(like), func.lower(Product.sku).like(like)))
        .order_by(Product.order_count.desc())
        .first()
    )


def products_in_category(db: Session, category: str, *, limit: int = 10) -> list[Product]:
    return (
        db.query(Product)
        .filter(Product.is_active.is_(True), func.lower(Product.category) == category.lower())
        .order_by(Product.order_count.desc())
        .limit(limit)
        .all()
    )


def list_products(
    db: Session,
    *,
    category: str | None = None,
    search: str | None = None,
    in_stock: bool | None = None,
    include_inactive: bool = False,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Product], int]:
    query = db.query(Product)
    if not include_inactive:
        query = query.filter(Product.is_active.is_(True))
    if category:
        query = query.filter(func.lower(Product.category) == category.lower())
    if search:
        like = f"%{search.strip().lower()}%"
        query = query.filter(or_(func.lower(Product.name).like(like), func.lower(Product.product_id).like(like)))
    if in_stock is True:
        query = query.filter(Product.stock > 0)
    elif in_stock is False:
        query = query.filter(Product.stock <= 0)
    total = query.count()
    rows = query.order_by(Product.created_at.desc()).offset(max(0, offset)).limit(min(max(1, limit), 200)).all()
    return rows, total


def list_categories(db: Session) -> list[dict[str, Any]]:
    rows = (
        db.query(Product.category, func.count(Product.id))
        .filter(Product.is_active.is_(True), Product.category.isnot(None))
        .group_by(Product.category)
        .order_by(Product.category)
        .all()
    )
    return [{"category": row[0], "count": int(row[1])} for row in rows]


def create_product(db: Session, data: dict[str, Any]) -> Product:
    product_id = str(data.get("product_id") or "").strip()
    name = str(data.get("name") or "").strip()
    if not product_id or not name:
        raise ValidationError("product_id and name are required")
    if int(data.get("price") or 0) < 0:
        raise ValidationError("price must be positive")
    if get_product(db, product_id, active_only=False) is not None:
        raise ConflictError("Product already exists", details={"product_id": product_id})
    product = Product(product_id=product_id)
    for field_name in PRODUCT_FIELDS:
        if data.get(field_name) is not None:
            setattr(product, field_name, data[field_name])
    db.add(product)
    db.commit()
    db.refresh(product)
    return product


def update_product(db: Session, product_id: str, changes: dict[str, Any]) -> Product:
    product = require_product(db, product_id)
    for field_name in PRODUCT_FIELDS:
        if field_name in changes and changes[field_name] is not None:
            setattr(product, field_name, changes[field_name])
    db.commit()
    db.refresh(product)
    return product


def deactivate_product(db: Session, product_id: str) -> None:
    product = require_product(db, product_id)
    product.is_active = False
    db.commit()


def update_stock(db: Session, product_id: str, quantity: int, mode: str = "set") -> Product:
    if mode not in STOCK_MODES:
        raise ValidationError("Invalid stock mode", details={"mode": mode})
    product = require_product(db, product_id)
    current = int(product.stock or 0)
    if mode == "set":
        product.stock = max(0, quantity)
    elif mode == "add":
        product.stock = current + quantity
    else:
        product.stock = max(0, current - quantity)
    db.commit()
    db.refresh(product)
    return product
