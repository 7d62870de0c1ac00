"""
Shop audit trail.

An entry joins the caller's transaction: it is flushed, never committed here,
so a rolled-back order or product change leaves no audit row behind.
"""
import json
from datetime import datetime
from typing import Optional

from sqlalchemy import desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from multishop.core.logging import api_logger, request_id_var
from multishop.db.models import AuditLog, User


class AuditTargetTypes:
    ORDER = "order"
    PRODUCT = "product"
    CATEGORY = "category"
    CUSTOMER = "customer"
    USER = "user"
    TENANT = "tenant"


class AuditActions:
    """`<target>.<verb>` names; the prefix doubles as a filter in get_audit_logs."""

    ORDER_CREATE = "order.create"
    ORDER_CANCEL = "order.cancel"
    ORDER_STATUS_CHANGE = "order.status_change"
    ORDER_PAYMENT_CHANGE = "order.payment_change"

    PRODUCT_CREATE = "product.create"
    PRODUCT_UPDATE = "product.update"
    PRODUCT_DELETE = "product.delete"
    PRODUCT_BULK_UPDATE = "product.bulk_update"

    CATEGORY_CREATE = "category.create"
    CATEGORY_UPDATE = "category.update"
    CATEGORY_DELETE = "category.delete"

    CUSTOMER_CREATE = "customer.create"
    CUSTOMER_UPDATE = "customer.update"
    CUSTOMER_DELETE = "customer.delete"

    AUTH_REGISTER = "auth.register"
    AUTH_LOGIN = "auth.login"
    AUTH_PASSWORD_CHANGE = "auth.password_change"
    TENANT_UPDATE = "tenant.update"


async def log_audit(
    db: AsyncSession,
    tenant_id: int,
    action: str,
    target_type: str,
    target_id: Optional[int] = None,
    meta: Optional[dict] = None,
    user_id: Optional[int] = None,
) -> AuditLog:
    """Stage one audit row in `db`; user_id is None for storefront and system actions."""
    entry = AuditLog(
        tenant_id=tenant_id,
        user_id=user_id,
        action=action,
        target_type=target_type,
        target_id=target_id,
        meta=json.dumps(meta, default=str) if meta else None,
        request_id=request_id_var.get(),
    )
    db.add(entry)
    await db.flush()
    api_logger.debug("audit_logged", action=action, target=f"{target_type}:{target_id}", user_id=user_id)
    return entry


async def log_audit_from_user(
    db: AsyncSession,
    user: Optional[User],
    tenant_id: int,
    action: str,
    target_type: str,
    target_id: Optional[int] = None,
    meta: Optional[dict] = None,
) -> AuditLog:
    return await log_audit(
        db, tenant_id, action, target_type,
        target_id=target_id,
        meta=meta,
        user_id=getattr(user, "id", None),
    )


def _audit_filters(
    tenant_id: int,
    action: Optional[str],
    target_type: Optional[str],
    target_id: Optional[int],
    start_date: Optional[datetime],
) -> list:
    filters = [AuditLog.tenant_id == tenant_id]
    if action:
        # substring match: "order" finds order.create, order.cancel, ...
        filters.append(AuditLog.action.ilike(f"%{action}%"))
    if target_type:
        filters.append(AuditLog.target_type == target_type)
    if target_id is not None:
        filters.append(AuditLog.target_id == target_id)
    if start_date:
        filters.append(AuditLog.created_at >= start_date)
    return filters


async def get_audit_logs(
    db: AsyncSession,
    tenant_id: int,
    action: Optional[str] = None,
    target_type: Optional[str] = None,
    target_id: Optional[int] = None,
    start_date: Optional[datetime] = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[AuditLog], int]:
    """One page of a shop's audit trail, newest first, plus the unpaged total."""
    filters = _audit_filters(tenant_id, action, target_type, target_id, start_date)

    total = (await db.execute(select(func.count(AuditLog.id)).where(*filters))).scalar() or 0
    page = await db.execute(
        select(AuditLog)
        .where(*filters)
        .order_by(desc(AuditLog.created_at), desc(AuditLog.id))
        .offset(offset)
        .limit(limit)
    )
    return list(page.scalars().all()), total
