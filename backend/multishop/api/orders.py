"""
Orders API Endpoints
Placement, cancellation, status/payment transitions and order reads.
"""
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import Field
from sqlalchemy.ext.asyncio import AsyncSession

from multishop.api.deps import Actor, Pagination, get_active_actor, get_pagination, http_error, require_admin
from multishop.api.schemas import CamelModel
from multishop.api.serializers import jsonable, serialize_order
from multishop.core.logging import orders_logger
from multishop.db.database import get_db
from multishop.services import orders as order_service
from multishop.services.errors import ServiceError, ValidationError

router = APIRouter()


class OrderItemIn(CamelModel):
    product_id: int
    quantity: int = Field(..., ge=1, le=order_service.MAX_LINE_QUANTITY)


class OrderCreate(CamelModel):
    customer_id: int
    items: list[OrderItemIn] = Field(..., min_length=1)
    billing_address: dict[str, Any]
    shipping_address: dict[str, Any]
    payment_method: str = Field(..., min_length=1)
    tax_amount: Optional[float] = Field(None, ge=0)
    shipping_amount: Optional[float] = Field(None, ge=0)
    discount_amount: Optional[float] = Field(None, ge=0)
    notes: Optional[str] = None
    currency: Optional[str] = Field(None, min_length=3, max_length=3)


class OrderStatusUpdate(CamelModel):
    status: str
    tracking_number: Optional[str] = None


class PaymentStatusUpdate(CamelModel):
    payment_status: str


@router.get("/stats")
async def order_stats(
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    stats = await order_service.get_order_stats(db, actor.tenant_id)
    return jsonable(stats)


@router.get("")
async def list_orders(
    status: Optional[str] = None,
    payment_status: Optional[str] = None,
    customer_id: Optional[int] = None,
    pagination: Pagination = Depends(get_pagination),
    actor: Actor = Depends(get_active_actor),
    db: AsyncSession = Depends(get_db),
):
    try:
        orders, total = await order_service.list_orders(
            db,
            actor.tenant_id,
            page=pagination.page,
            limit=pagination.limit,
            status=status,
            payment_status=payment_status,
            customer_id=customer_id,
        )
    except ServiceError as e:
        raise http_error(e)
    return {
        "orders": [serialize_order(o) for o in orders],
        "pagination": pagination.meta(total),
    }


@router.get("/{order_id}")
async def get_order(
    order_id: int,
    actor: Actor = Depends(get_active_actor),
    db: AsyncSession = Depends(get_db),
):
    try:
        order = await order_service.get_order(db, actor.tenant_id, order_id)
    except ServiceError as e:
        raise http_error(e)
    return serialize_order(order)


@router.post("", status_code=201)
async def create_order(
    payload: OrderCreate,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """
    Place an order for a customer of the caller's shop.

    Rejected preconditions (unknown customer, missing or inactive product,
    short stock) return 400 with the reason; anything else returns 500 and
    nothing is written.
    """
    try:
        order = await order_service.place_order(
            db,
            actor.tenant_id,
            actor.user,
            customer_id=payload.customer_id,
            items=payload.items,
            billing_address=payload.billing_address,
            shipping_address=payload.shipping_address,
            payment_method=payload.payment_method,
            tax_amount=payload.tax_amount,
            shipping_amount=payload.shipping_amount,
            discount_amount=payload.discount_amount,
            notes=payload.notes,
            currency=payload.currency,
        )
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)
    except ServiceError as e:
        raise http_error(e)
    except Exception as e:
        orders_logger.error("Create order failed", error=e, tenant_id=actor.tenant_id)
        raise HTTPException(status_code=500, detail="Failed to create order")

    return {"message": "Order created successfully", "order": serialize_order(order)}


@router.patch("/{order_id}/cancel")
async def cancel_order(
    order_id: int,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    try:
        order = await order_service.cancel_order(db, actor.tenant_id, actor.user, order_id)
    except ServiceError as e:
        raise http_error(e)
    return {"message": "Order cancelled successfully", "order": serialize_order(order)}


@router.patch("/{order_id}/status")
async def update_order_status(
    order_id: int,
    payload: OrderStatusUpdate,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    try:
        order = await order_service.update_order_status(
            db, actor.tenant_id, actor.user, order_id, payload.status, payload.tracking_number,
        )
    except ServiceError as e:
        raise http_error(e)
    return {"message": "Order status updated successfully", "order": serialize_order(order)}


@router.patch("/{order_id}/payment")
async def update_payment_status(
    order_id: int,
    payload: PaymentStatusUpdate,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    try:
        order = await order_service.update_payment_status(
            db, actor.tenant_id, actor.user, order_id, payload.payment_status,
        )
    except ServiceError as e:
        raise http_error(e)
    return {"message": "Payment status updated successfully", "order": serialize_order(order)}
