"""
Dashboard Service Layer
Read-only aggregates over committed orders, products and customers.
"""
from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from sqlalchemy.orm import selectinload

from multishop.core.config import settings
from multishop.core.logging import dashboard_logger
from multishop.db.enums import PaymentStatus, enum_value
from multishop.db.models import Customer, Order, OrderItem, Product

CENT = Decimal("0.01")


def _money(value) -> Decimal:
    return Decimal(str(value or 0)).quantize(CENT)


async def _count(session: AsyncSession, model, tenant_id: int, since=None) -> int:
    q = select(func.count(model.id)).where(model.tenant_id == tenant_id)
    if since is not None:
        q = q.where(model.created_at >= since)
    return (await session.execute(q)).scalar() or 0


async def _paid_revenue(session: AsyncSession, tenant_id: int, since=None) -> Decimal:
    q = select(func.sum(Order.total_amount)).where(
        Order.tenant_id == tenant_id,
        Order.payment_status == PaymentStatus.paid.value,
    )
    if since is not None:
        q = q.where(Order.created_at >= since)
    return _money((await session.execute(q)).scalar())


async def get_overview(session: AsyncSession, tenant_id: int) -> dict:
    """
    Shop overview.

    Counts, paid revenue (all time / this month / last 7 days), order
    counts for the month and week, up to 10 low-stock tracked products,
    the 10 best sellers by units and the 10 most recent orders.
    """
    now = datetime.now(timezone.utc)
    start_of_month = now.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    start_of_week = now - timedelta(days=7)

    low_stock = await session.execute(
        select(Product)
        .where(
            Product.tenant_id == tenant_id,
            Product.track_inventory.is_(True),
            Product.inventory <= settings.LOW_STOCK_THRESHOLD,
        )
        .order_by(Product.inventory.asc(), Product.id.asc())
        .limit(10)
    )

    total_sold = func.sum(OrderItem.quantity).label("total_sold")
    top_selling = await session.execute(
        select(
            OrderItem.product_id,
            OrderItem.product_name,
            total_sold,
            func.sum(OrderItem.total_price).label("total_revenue"),
        )
        .join(Order, Order.id == OrderItem.order_id)
        .where(Order.tenant_id == tenant_id)
        .group_by(OrderItem.product_id, OrderItem.product_name)
        .order_by(total_sold.desc())
        .limit(10)
    )

    recent = await session.execute(
        select(Order)
        .where(Order.tenant_id == tenant_id)
        .options(selectinload(Order.customer))
        .order_by(Order.created_at.desc(), Order.id.desc())
        .limit(10)
    )

    overview = {
        "overview": {
            "total_products": await _count(session, Product, tenant_id),
            "total_customers": await _count(session, Customer, tenant_id),
            "total_orders": await _count(session, Order, tenant_id),
            "total_revenue": await _paid_revenue(session, tenant_id),
            "monthly_orders": await _count(session, Order, tenant_id, start_of_month),
            "monthly_revenue": await _paid_revenue(session, tenant_id, start_of_month),
            "weekly_orders": await _count(session, Order, tenant_id, start_of_week),
            "weekly_revenue": await _paid_revenue(session, tenant_id, start_of_week),
        },
        "low_stock_products": list(low_stock.scalars().all()),
        "top_selling_products": [
            {
                "product_id": row.product_id,
                "product_name": row.product_name,
                "total_sold": int(row.total_sold or 0),
                "total_revenue": _money(row.total_revenue),
            }
            for row in top_selling
        ],
        "recent_orders": list(recent.scalars().all()),
    }
    dashboard_logger.debug("Overview computed", tenant_id=tenant_id)
    return overview


async def get_sales_analytics(session: AsyncSession, tenant_id: int, days: int = 30) -> dict:
    """Paid revenue and order count per day over the window, plus order count per status."""
    start_date = datetime.now(timezone.utc) - timedelta(days=days)
    day = func.date(Order.created_at)

    daily = await session.execute(
        select(
            day.label("date"),
            func.count(Order.id).label("orders"),
            func.sum(Order.total_amount).label("revenue"),
        )
        .where(
            Order.tenant_id == tenant_id,
            Order.created_at >= start_date,
            Order.payment_status == PaymentStatus.paid.value,
        )
        .group_by(day)
        .order_by(day.asc())
    )

    breakdown = await session.execute(
        select(Order.status, func.count(Order.id).label("count"))
        .where(Order.tenant_id == tenant_id)
        .group_by(Order.status)
    )

    return {
        "days": days,
        "daily_sales": [
            {"date": str(row.date), "orders": row.orders, "revenue": _money(row.revenue)}
            for row in daily
        ],
        "order_status_breakdown": [
            {"status": enum_value(row.status), "count": row.count}
            for row in breakdown
        ],
    }
