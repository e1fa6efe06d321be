from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from kaapav.core.database import get_db
from kaapav.deps import get_current_agent, require_admin
from kaapav.models.customer import Customer
from kaapav.routers.orders import order_to_dict
from kaapav.services.chats import add_label, remove_label
from kaapav.services.customers import (
    customer_profile,
    list_customers,
    soft_delete_customer,
    update_customer,
)

router = APIRouter(prefix="/api/customers", tags=["customers"], dependencies=[Depends(get_current_agent)])


class CustomerUpdate(BaseModel):
    name: Optional[str] = Field(None, max_length=120)
    email: Optional[str] = Field(None, max_length=160)
    language: Optional[str] = None
    segment: Optional[str] = None
    opted_in_marketing: Optional[bool] = None
    is_blocked: Optional[bool] = None


class LabelPayload(BaseModel):
    label: str = Field(..., min_length=1, max_length=60)


def customer_to_dict(customer: Customer) -> dict[str, Any]:
    return {
        "phone": customer.phone,
        "name": customer.name,
        "email": customer.email,
        "language": customer.language,
        "segment": customer.segment,
        "opted_in_marketing": bool(customer.opted_in_marketing),
        "is_blocked": bool(customer.is_blocked),
        "is_valid_whatsapp": bool(customer.is_valid_whatsapp),
        "total_spent": customer.total_spent,
        "order_count": customer.order_count,
        "message_count": customer.message_count,
        "last_location_address": customer.last_location_address,
        "first_seen": customer.first_seen,
        "last_seen": customer.last_seen,
        "last_purchase": customer.last_purchase,
    }


@router.get("")
def get_customers(
    segment: Optional[str] = None,
    label: Optional[str] = None,
    search: Optional[str] = None,
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
):
    rows, total = list_customers(db, segment=segment, label=label, search=search, limit=limit, offset=offset)
    return {"customers": [customer_to_dict(c) for c in rows], "total": total, "limit": limit, "offset": offset}


@router.get("/{phone}")
def get_customer_profile(phone: str, db: Session = Depends(get_db)):
    profile = customer_profile(db, phone)
    return {
        "customer": customer_to_dict(profile["customer"]),
        "labels": profile["labels"],
        "stats": profile["stats"],
        "recent_orders": [order_to_dict(order) for order in profile["recent_orders"]],
    }


@router.put("/{phone}")
def put_customer(phone: str, payload: CustomerUpdate, db: Session = Depends(get_db)):
    customer = update_customer(db, phone, payload.model_dump(exclude_unset=True))
    return customer_to_dict(customer)


@router.delete("/{phone}", dependencies=[Depends(require_admin)])
def delete_customer(phone: str, db: Session = Depends(get_db)):
    soft_delete_customer(db, phone)
    return {"ok": True}


@router.post("/{phone}/labels")
def post_label(phone: str, payload: LabelPayload, db: Session = Depends(get_db)):
    return {"phone": phone, "labels": add_label(db, phone, payload.label)}


@router.delete("/{phone}/labels/{label}")
def delete_label(phone: str, label: str, db: Session = Depends(get_db)):
    return {"phone": phone, "labels": remove_label(db, phone, label)}
