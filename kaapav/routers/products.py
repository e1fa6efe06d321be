from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from kaapav.core.database import get_db
from kaapav.deps import get_current_agent, require_admin
from kaapav.models.product import Product
from kaapav.services.products import (
    create_product,
    deactivate_product,
    list_categories,
    list_products,
    require_product,
    update_product,
    update_stock,
)

router = APIRouter(prefix="/api/products", tags=["products"], dependencies=[Depends(get_current_agent)])


class ProductCreate(BaseModel):
    product_id: str = Field(..., min_length=1, max_length=60)
    name: str = Field(..., min_length=1, max_length=200)
    sku: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    price: int = Field(0, ge=0)
    compare_price: Optional[int] = Field(None, ge=0)
    stock: int = Field(0, ge=0)
    image_url: Optional[str] = None
    is_bestseller: bool = False


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    sku: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    price: Optional[int] = Field(None, ge=0)
    compare_price: Optional[int] = Field(None, ge=0)
    image_url: Optional[str] = None
    is_bestseller: Optional[bool] = None
    is_active: Optional[bool] = None


class StockPayload(BaseModel):
    quantity: int = Field(..., ge=0)
    mode: str = Field("set", pattern="^(set|add|subtract)$")


def product_to_dict(product: Product) -> dict[str, Any]:
    return {
        "product_id": product.product_id,
        "sku": product.sku,
        "name": product.name,
        "description": product.description,
        "category": product.category,
        "price": product.price,
        "compare_price": product.compare_price,
        "stock": product.stock,
        "image_url": product.image_url,
        "order_count": product.order_count,
        "is_bestseller": bool(product.is_bestseller),
        "is_active": bool(product.is_active),
    }


@router.get("")
def get_products(
    category: Optional[str] = None,
    search: Optional[str] = None,
    in_stock: Optional[bool] = None,
    include_inactive: bool = False,
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    rows, total = list_products(
        db,
        category=category,
        search=search,
        in_stock=in_stock,
        include_inactive=include_inactive,
        limit=limit,
        offset=offset,
    )
    return {"products": [product_to_dict(p) for p in rows], "total": total, "limit": limit, "offset": offset}


@router.get("/categories")
def get_categories(db: Session = Depends(get_db)):
    return {"categories": list_categories(db)}


@router.post("")
def post_product(payload: ProductCreate, db: Session = Depends(get_db)):
    return product_to_dict(create_product(db, payload.model_dump()))


@router.get("/{product_id}")
def get_product(product_id: str, db: Session = Depends(get_db)):
    return product_to_dict(require_product(db, product_id))


@router.put("/{product_id}")
def put_product(product_id: str, payload: ProductUpdate, db: Session = Depends(get_db)):
    return product_to_dict(update_product(db, product_id, payload.model_dump(exclude_unset=True)))


@router.put("/{product_id}/stock")
def put_stock(product_id: str, payload: StockPayload, db: Session = Depends(get_db)):
    product = update_stock(db, product_id, payload.quantity, payload.mode)
    return {"product_id": product.product_id, "stock": product.stock}


@router.delete("/{product_id}", dependencies=[Depends(require_admin)])
def delete_product(product_id: str, db: Session = Depends(get_db)):
    deactivate_product(db, product_id)
    return {"ok": True}
