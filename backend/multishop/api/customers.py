"""
Customers API Endpoints
Every route requires an owner or admin of an active shop.
"""
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import EmailStr, Field
from sqlalchemy.ext.asyncio import AsyncSession

from multishop.api.deps import Actor, Pagination, get_pagination, http_error, require_admin
from multishop.api.schemas import CamelModel
from multishop.api.serializers import serialize_customer, serialize_order
from multishop.db.database import get_db
from multishop.services import customers as customer_service
from multishop.services.errors import ServiceError

router = APIRouter()


class CustomerCreate(CamelModel):
    email: EmailStr
    first_name: str = Field(..., min_length=1, max_length=100)
    last_name: str = Field(..., min_length=1, max_length=100)
    phone: Optional[str] = None
    date_of_birth: Optional[date] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    zip_code: Optional[str] = None
    notes: Optional[str] = None


class CustomerUpdate(CamelModel):
    email: Optional[EmailStr] = None
    first_name: Optional[str] = Field(None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(None, min_length=1, max_length=100)
    phone: Optional[str] = None
    date_of_birth: Optional[date] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    zip_code: Optional[str] = None
    notes: Optional[str] = None
    status: Optional[str] = None


@router.get("")
async def list_customers(
    search: Optional[str] = None,
    pagination: Pagination = Depends(get_pagination),
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    customers, total = await customer_service.list_customers(
        db, actor.tenant_id, page=pagination.page, limit=pagination.limit, search=search,
    )
    return {
        "customers": [serialize_customer(c) for c in customers],
        "pagination": pagination.meta(total),
    }


@router.get("/{customer_id}")
async def get_customer(
    customer_id: int,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    try:
        customer, orders = await customer_service.get_customer(db, actor.tenant_id, customer_id)
    except ServiceError as e:
        raise http_error(e)
    return {
        **serialize_customer(customer),
        "orders": [serialize_order(o, include_items=False, include_customer=False) for o in orders],
    }


@router.post("", status_code=201)
async def create_customer(
    payload: CustomerCreate,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    try:
        customer = await customer_service.create_customer(
            db, actor.tenant_id, actor.user, payload.model_dump(exclude_unset=True),
        )
    except ServiceError as e:
        raise http_error(e)
    return {"message": "Customer created successfully", "customer": serialize_customer(customer)}


@router.put("/{customer_id}")
async def update_customer(
    customer_id: int,
    payload: CustomerUpdate,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    try:
        customer = await customer_service.update_customer(
            db, actor.tenant_id, actor.user, customer_id, payload.model_dump(exclude_unset=True),
        )
    except ServiceError as e:
        raise http_error(e)
    return {"message": "Customer updated successfully", "customer": serialize_customer(customer)}


@router.delete("/{customer_id}")
async def delete_customer(
    customer_id: int,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    try:
        await customer_service.delete_customer(db, actor.tenant_id, actor.user, customer_id)
    except ServiceError as e:
        raise http_error(e)
    return {"message": "Customer deleted successfully"}
