"""
Order Service Layer

Order placement with inventory reservation, cancellation, status and
payment transitions, and order reads.

Every write path runs inside one `atomic(session)` scope: stock and
customer counters move with conditional UPDATE statements against rows
read with `SELECT ... FOR UPDATE`, and any failure rolls back everything
written so far.
"""
import secrets
import string
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Iterable, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, func, case
from sqlalchemy.orm import selectinload

from multishop.core.config import settings
from multishop.core.logging import orders_logger, log_operation
from multishop.db.database import atomic
from multishop.db.enums import OrderStatus, PaymentStatus, ProductStatus, enum_value
from multishop.db.models import Customer, Order, OrderItem, Product, User
from multishop.services.audit import log_audit_from_user, AuditActions, AuditTargetTypes
from multishop.services.errors import (
    ValidationError,
    InvalidCustomerError,
    ProductNotFoundError,
    ProductUnavailableError,
    InsufficientInventoryError,
    OrderNotFoundError,
    OrderNotCancellableError,
    InvalidStatusTransitionError,
)

CENT = Decimal("0.01")
_BASE36 = string.digits + string.ascii_lowercase

# Largest value a Numeric(10, 2) money column holds
MAX_AMOUNT = Decimal("99999999.99")
MAX_LINE_QUANTITY = 10_000

CANCELLABLE_STATUSES = (OrderStatus.pending.value, OrderStatus.processing.value)

# Forward moves only; cancellation is handled by cancel_order
STATUS_TRANSITIONS = {
    OrderStatus.pending.value: {OrderStatus.processing.value},
    OrderStatus.processing.value: {OrderStatus.shipped.value},
    OrderStatus.shipped.value: {OrderStatus.delivered.value},
    OrderStatus.delivered.value: {OrderStatus.refunded.value},
}


@dataclass
class LineItem:
    product_id: int
    quantity: int


def _base36(number: int) -> str:
    if number == 0:
        return "0"
    digits = []
    while number:
        number, rem = divmod(number, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_order_number(timestamp_ms: Optional[int] = None) -> str:
    """`ORD-<base36 ms timestamp>-<6 random base36 chars>`, upper case."""
    if timestamp_ms is None:
        timestamp_ms = int(time.time() * 1000)
    suffix = "".join(secrets.choice(_BASE36) for _ in range(6))
    return f"ORD-{_base36(timestamp_ms)}-{suffix}".upper()


def to_money(value, field: str = "amount") -> Decimal:
    """Normalize an optional monetary input to a 2-place Decimal (None -> 0.00)."""
    if value is None:
        return Decimal("0.00")
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid {field}")
    if not amount.is_finite() or amount < 0 or amount > MAX_AMOUNT:
        raise ValidationError(f"Invalid {field}")
    return amount.quantize(CENT)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _normalize_items(items: Iterable) -> list[LineItem]:
    normalized = []
    for item in items:
        if isinstance(item, LineItem):
            line = item
        elif isinstance(item, dict):
            line = LineItem(
                product_id=item.get("product_id", item.get("productId")),
                quantity=item.get("quantity"),
            )
        else:
            line = LineItem(product_id=item.product_id, quantity=item.quantity)
        if line.product_id is None:
            raise ValidationError("Product ID is required")
        if not isinstance(line.quantity, int) or isinstance(line.quantity, bool) or line.quantity < 1:
            raise ValidationError("Quantity must be at least 1")
        if line.quantity > MAX_LINE_QUANTITY:
            raise ValidationError(f"Quantity cannot exceed {MAX_LINE_QUANTITY}")
        normalized.append(line)
    if not normalized:
        raise ValidationError("Order must contain at least one item")
    return normalized


async def _lock_products(session: AsyncSession, tenant_id: int, product_ids: Iterable[int]) -> dict[int, Product]:
    """Lock the tenant's rows for `product_ids` in ascending id order."""
    ids = sorted(set(product_ids))
    if not ids:
        return {}
    q = (
        select(Product)
        .where(Product.id.in_(ids), Product.tenant_id == tenant_id)
        .order_by(Product.id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    res = await session.execute(q)
    return {product.id: product for product in res.scalars().all()}


async def _lock_order(session: AsyncSession, tenant_id: int, order_id: int) -> Optional[Order]:
    q = (
        select(Order)
        .where(Order.id == order_id, Order.tenant_id == tenant_id)
        .options(selectinload(Order.items))
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    res = await session.execute(q)
    return res.scalar_one_or_none()


@log_operation("place_order", orders_logger)
async def place_order(
    session: AsyncSession,
    tenant_id: int,
    actor: Optional[User],
    customer_id: int,
    items: Iterable,
    billing_address: dict,
    shipping_address: dict,
    payment_method: str,
    tax_amount=None,
    shipping_amount=None,
    discount_amount=None,
    notes: Optional[str] = None,
    currency: Optional[str] = None,
) -> Order:
    """
    Validate a cart against live product state and persist the order atomically.

    - Customer must belong to the tenant
    - Every product must belong to the tenant and be active
    - Tracked products are decremented with a conditional UPDATE
      (`inventory >= quantity`) on a locked row; zero rows means not enough stock
    - Line items snapshot name, SKU, first image and price
    - Customer counters move by one order and the order total

    Returns the committed order with items and customer loaded.
    Raises a ValidationError subclass for any rejected precondition; nothing
    is persisted in that case.
    """
    lines = _normalize_items(items)
    tax = to_money(tax_amount, "tax amount")
    shipping = to_money(shipping_amount, "shipping amount")
    discount = to_money(discount_amount, "discount amount")

    async with atomic(session):
        res = await session.execute(
            select(Customer).where(Customer.id == customer_id, Customer.tenant_id == tenant_id)
        )
        customer = res.scalar_one_or_none()
        if customer is None:
            raise InvalidCustomerError()

        # Lock up front in id order so two carts never wait on each other in a cycle
        products = await _lock_products(session, tenant_id, (line.product_id for line in lines))
        # Stock left per product as earlier lines of this cart consume it
        available = {pid: p.inventory for pid, p in products.items()}

        subtotal = Decimal("0.00")
        snapshots = []
        for line in lines:
            product = products.get(line.product_id)
            if product is None:
                raise ProductNotFoundError(line.product_id)
            if enum_value(product.status) != ProductStatus.active.value:
                raise ProductUnavailableError(product.name)

            if product.track_inventory:
                if available[product.id] < line.quantity:
                    raise InsufficientInventoryError(product.name, available[product.id])
                upd = (
                    update(Product)
                    .where(Product.id == product.id)
                    .where(Product.tenant_id == tenant_id)
                    .where(Product.inventory >= line.quantity)
                    .values(
                        inventory=Product.inventory - line.quantity,
                        sales_count=Product.sales_count + line.quantity,
                    )
                    .execution_options(synchronize_session=False)
                )
                res_upd = await session.execute(upd)
                if res_upd.rowcount == 0:
                    # Stock moved between the locked read and the write
                    raise InsufficientInventoryError(product.name, available[product.id])
                available[product.id] -= line.quantity

            unit_price = Decimal(product.price).quantize(CENT)
            item_total = (unit_price * line.quantity).quantize(CENT)
            subtotal += item_total
            if subtotal > MAX_AMOUNT:
                raise ValidationError("Order amount is too large")
            images = product.images or []
            snapshots.append(OrderItem(
                product_id=product.id,
                product_name=product.name,
                product_sku=product.sku,
                product_image=images[0] if images else None,
                quantity=line.quantity,
                unit_price=unit_price,
                total_price=item_total,
            ))

        total_amount = subtotal + tax + shipping - discount
        if total_amount > MAX_AMOUNT:
            raise ValidationError("Order amount is too large")

        order = Order(
            tenant_id=tenant_id,
            customer_id=customer.id,
            order_number=generate_order_number(),
            status=OrderStatus.pending.value,
            payment_status=PaymentStatus.pending.value,
            payment_method=payment_method,
            subtotal=subtotal,
            tax_amount=tax,
            shipping_amount=shipping,
            discount_amount=discount,
            total_amount=total_amount,
            currency=currency or settings.DEFAULT_CURRENCY,
            billing_address=billing_address,
            shipping_address=shipping_address,
            notes=notes,
            items=snapshots,
        )
        session.add(order)
        await session.flush()

        await session.execute(
            update(Customer)
            .where(Customer.id == customer.id)
            .where(Customer.tenant_id == tenant_id)
            .values(
                total_orders=Customer.total_orders + 1,
                total_spent=Customer.total_spent + total_amount,
                last_order_at=_utcnow(),
            )
            .execution_options(synchronize_session=False)
        )

        await log_audit_from_user(
            session, actor, tenant_id,
            action=AuditActions.ORDER_CREATE,
            target_type=AuditTargetTypes.ORDER,
            target_id=order.id,
            meta={"order_number": order.order_number, "total_amount": str(total_amount), "items": len(snapshots)},
        )
        order_id = order.id
        order_number = order.order_number

    orders_logger.info(
        "Order placed",
        tenant_id=tenant_id,
        order_id=order_id,
        order_number=order_number,
        total_amount=str(total_amount),
    )
    return await get_order(session, tenant_id, order_id)


@log_operation("cancel_order", orders_logger)
async def cancel_order(
    session: AsyncSession,
    tenant_id: int,
    actor: Optional[User],
    order_id: int,
) -> Order:
    """
    Cancel a pending or processing order and put its stock back.

    The status flip is a conditional UPDATE on the locked order row, so only
    one of two concurrent cancellations can restore inventory.
    """
    async with atomic(session):
        order = await _lock_order(session, tenant_id, order_id)
        if order is None:
            raise OrderNotFoundError()
        previous = enum_value(order.status)
        if previous not in CANCELLABLE_STATUSES:
            raise OrderNotCancellableError()

        res = await session.execute(
            update(Order)
            .where(Order.id == order.id)
            .where(Order.tenant_id == tenant_id)
            .where(Order.status.in_(CANCELLABLE_STATUSES))
            .values(status=OrderStatus.cancelled.value)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount == 0:
            raise OrderNotCancellableError()

        restock: dict[int, int] = {}
        for item in order.items:
            restock[item.product_id] = restock.get(item.product_id, 0) + item.quantity

        products = await _lock_products(session, tenant_id, restock)
        for product_id in sorted(products):
            product = products[product_id]
            if not product.track_inventory:
                continue
            quantity = restock[product_id]
            await session.execute(
                update(Product)
                .where(Product.id == product.id)
                .where(Product.tenant_id == tenant_id)
                .values(
                    inventory=Product.inventory + quantity,
                    sales_count=case(
                        (Product.sales_count > quantity, Product.sales_count - quantity),
                        else_=0,
                    ),
                )
                .execution_options(synchronize_session=False)
            )

        await log_audit_from_user(
            session, actor, tenant_id,
            action=AuditActions.ORDER_CANCEL,
            target_type=AuditTargetTypes.ORDER,
            target_id=order.id,
            meta={"previous_status": previous},
        )

    orders_logger.info("Order cancelled", tenant_id=tenant_id, order_id=order_id, previous_status=previous)
    return await get_order(session, tenant_id, order_id)


def parse_order_status(value) -> str:
    try:
        return OrderStatus(enum_value(value)).value
    except ValueError:
        raise ValidationError("Invalid order status")


def parse_payment_status(value) -> str:
    try:
        return PaymentStatus(enum_value(value)).value
    except ValueError:
        raise ValidationError("Invalid payment status")


async def update_order_status(
    session: AsyncSession,
    tenant_id: int,
    actor: Optional[User],
    order_id: int,
    status,
    tracking_number: Optional[str] = None,
) -> Order:
    """
    Move an order one step along pending -> processing -> shipped -> delivered -> refunded.

    A `cancelled` target goes through cancel_order so stock is restored.
    Shipping stamps `shipped_at` (and the tracking number when given);
    delivery stamps `delivered_at`.
    """
    target = parse_order_status(status)
    if target == OrderStatus.cancelled.value:
        return await cancel_order(session, tenant_id, actor, order_id)

    async with atomic(session):
        order = await _lock_order(session, tenant_id, order_id)
        if order is None:
            raise OrderNotFoundError()
        current = enum_value(order.status)
        if target not in STATUS_TRANSITIONS.get(current, ()):
            raise InvalidStatusTransitionError(current, target)

        values = {"status": target}
        if target == OrderStatus.shipped.value:
            values["shipped_at"] = _utcnow()
            if tracking_number:
                values["tracking_number"] = tracking_number
        elif target == OrderStatus.delivered.value:
            values["delivered_at"] = _utcnow()

        res = await session.execute(
            update(Order)
            .where(Order.id == order.id)
            .where(Order.tenant_id == tenant_id)
            .where(Order.status == current)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount == 0:
            raise InvalidStatusTransitionError(current, target)

        await log_audit_from_user(
            session, actor, tenant_id,
            action=AuditActions.ORDER_STATUS_CHANGE,
            target_type=AuditTargetTypes.ORDER,
            target_id=order.id,
            meta={"from": current, "to": target, "tracking_number": tracking_number},
        )

    orders_logger.info("Order status changed", tenant_id=tenant_id, order_id=order_id, status=target)
    return await get_order(session, tenant_id, order_id)


async def update_payment_status(
    session: AsyncSession,
    tenant_id: int,
    actor: Optional[User],
    order_id: int,
    payment_status,
) -> Order:
    """Record a payment outcome. Moving to `paid` stamps `paid_at`."""
    target = parse_payment_status(payment_status)

    async with atomic(session):
        order = await _lock_order(session, tenant_id, order_id)
        if order is None:
            raise OrderNotFoundError()
        current = enum_value(order.payment_status)

        values = {"payment_status": target}
        if target == PaymentStatus.paid.value and current != PaymentStatus.paid.value:
            values["paid_at"] = _utcnow()

        await session.execute(
            update(Order)
            .where(Order.id == order.id)
            .where(Order.tenant_id == tenant_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )

        await log_audit_from_user(
            session, actor, tenant_id,
            action=AuditActions.ORDER_PAYMENT_CHANGE,
            target_type=AuditTargetTypes.ORDER,
            target_id=order.id,
            meta={"from": current, "to": target},
        )

    return await get_order(session, tenant_id, order_id)


async def get_order(session: AsyncSession, tenant_id: int, order_id: int) -> Order:
    """Get an order with its items and customer, fresh from the database."""
    q = (
        select(Order)
        .where(Order.id == order_id, Order.tenant_id == tenant_id)
        .options(selectinload(Order.items), selectinload(Order.customer))
        .execution_options(populate_existing=True)
    )
    res = await session.execute(q)
    order = res.scalar_one_or_none()
    if order is None:
        raise OrderNotFoundError()
    return order


async def list_orders(
    session: AsyncSession,
    tenant_id: int,
    page: int = 1,
    limit: int = 20,
    status: Optional[str] = None,
    payment_status: Optional[str] = None,
    customer_id: Optional[int] = None,
) -> tuple[list[Order], int]:
    """Newest first. Returns (orders, total)."""
    conditions = [Order.tenant_id == tenant_id]
    if status:
        conditions.append(Order.status == parse_order_status(status))
    if payment_status:
        conditions.append(Order.payment_status == parse_payment_status(payment_status))
    if customer_id is not None:
        conditions.append(Order.customer_id == customer_id)

    total = (await session.execute(select(func.count(Order.id)).where(*conditions))).scalar() or 0

    q = (
        select(Order)
        .where(*conditions)
        .options(selectinload(Order.items), selectinload(Order.customer))
        .order_by(Order.created_at.desc(), Order.id.desc())
        .limit(limit)
        .offset((page - 1) * limit)
        .execution_options(populate_existing=True)
    )
    res = await session.execute(q)
    return list(res.scalars().all()), total


async def get_order_stats(session: AsyncSession, tenant_id: int) -> dict:
    """Order counts and paid revenue: all time, this month, today (UTC)."""
    now = _utcnow()
    start_of_month = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    start_of_day = now.replace(hour=0, minute=0, second=0, microsecond=0)

    async def count_since(since=None) -> int:
        q = select(func.count(Order.id)).where(Order.tenant_id == tenant_id)
        if since is not None:
            q = q.where(Order.created_at >= since)
        return (await session.execute(q)).scalar() or 0

    async def revenue_since(since=None) -> Decimal:
        q = select(func.coalesce(func.sum(Order.total_amount), 0)).where(
            Order.tenant_id == tenant_id,
            Order.payment_status == PaymentStatus.paid.value,
        )
        if since is not None:
            q = q.where(Order.created_at >= since)
        return Decimal(str((await session.execute(q)).scalar() or 0)).quantize(CENT)

    return {
        "orders": {
            "total": await count_since(),
            "monthly": await count_since(start_of_month),
            "daily": await count_since(start_of_day),
        },
        "revenue": {
            "total": await revenue_since(),
            "monthly": await revenue_since(start_of_month),
            "daily": await revenue_since(start_of_day),
        },
    }
