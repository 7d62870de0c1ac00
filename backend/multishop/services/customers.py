"""
Customer Service Layer

Counters (`total_orders`, `total_spent`, `last_order_at`) belong to order
placement and are never accepted from callers here.
"""
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete, func, or_

from multishop.core.logging import customers_logger
from multishop.db.database import atomic
from multishop.db.enums import CustomerStatus, enum_value
from multishop.db.models import Customer, Order, User
from multishop.services.audit import log_audit_from_user, AuditActions, AuditTargetTypes
from multishop.services.errors import ValidationError, NotFoundError, DuplicateError, ConflictError

CUSTOMER_FIELDS = {
    "email", "first_name", "last_name", "phone", "date_of_birth", "address",
    "city", "state", "country", "zip_code", "notes", "status",
}


class CustomerNotFound(NotFoundError):
    default_message = "Customer not found"


def _clean(data: dict) -> dict:
    data = {k: v for k, v in data.items() if k in CUSTOMER_FIELDS}
    if "status" in data:
        try:
            data["status"] = CustomerStatus(enum_value(data["status"])).value
        except ValueError:
            raise ValidationError("Invalid customer status")
    if data.get("email"):
        data["email"] = data["email"].lower()
    return data


async def _email_taken(session: AsyncSession, tenant_id: int, email: str, exclude_id: Optional[int] = None) -> bool:
    q = select(Customer.id).where(Customer.tenant_id == tenant_id, func.lower(Customer.email) == email.lower())
    if exclude_id is not None:
        q = q.where(Customer.id != exclude_id)
    return (await session.execute(q)).first() is not None


async def _get(session: AsyncSession, tenant_id: int, customer_id: int) -> Customer:
    res = await session.execute(
        select(Customer)
        .where(Customer.id == customer_id, Customer.tenant_id == tenant_id)
        .execution_options(populate_existing=True)
    )
    customer = res.scalar_one_or_none()
    if customer is None:
        raise CustomerNotFound()
    return customer


async def list_customers(
    session: AsyncSession,
    tenant_id: int,
    page: int = 1,
    limit: int = 20,
    search: Optional[str] = None,
) -> tuple[list[Customer], int]:
    conditions = [Customer.tenant_id == tenant_id]
    if search:
        pattern = f"%{search}%"
        conditions.append(or_(
            Customer.first_name.ilike(pattern),
            Customer.last_name.ilike(pattern),
            Customer.email.ilike(pattern),
        ))
    total = (await session.execute(select(func.count(Customer.id)).where(*conditions))).scalar() or 0
    res = await session.execute(
        select(Customer)
        .where(*conditions)
        .order_by(Customer.created_at.desc(), Customer.id.desc())
        .limit(limit)
        .offset((page - 1) * limit)
    )
    return list(res.scalars().all()), total


async def get_customer(session: AsyncSession, tenant_id: int, customer_id: int) -> tuple[Customer, list[Order]]:
    """Customer plus their 10 most recent orders."""
    customer = await _get(session, tenant_id, customer_id)
    res = await session.execute(
        select(Order)
        .where(Order.customer_id == customer.id, Order.tenant_id == tenant_id)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .limit(10)
    )
    return customer, list(res.scalars().all())


async def create_customer(session: AsyncSession, tenant_id: int, actor: Optional[User], data: dict) -> Customer:
    data = _clean(data)
    if not data.get("email") or not data.get("first_name") or not data.get("last_name"):
        raise ValidationError("Email, first name and last name are required")

    async with atomic(session):
        if await _email_taken(session, tenant_id, data["email"]):
            raise DuplicateError("Customer email already exists")
        customer = Customer(
            tenant_id=tenant_id,
            email=data["email"],
            first_name=data["first_name"],
            last_name=data["last_name"],
            phone=data.get("phone"),
            date_of_birth=data.get("date_of_birth"),
            address=data.get("address"),
            city=data.get("city"),
            state=data.get("state"),
            country=data.get("country"),
            zip_code=data.get("zip_code"),
            notes=data.get("notes"),
            status=data.get("status") or CustomerStatus.active.value,
        )
        session.add(customer)
        await session.flush()
        await log_audit_from_user(
            session, actor, tenant_id,
            action=AuditActions.CUSTOMER_CREATE,
            target_type=AuditTargetTypes.CUSTOMER,
            target_id=customer.id,
        )
        customer_id = customer.id

    customers_logger.info("Customer created", tenant_id=tenant_id, customer_id=customer_id)
    return await _get(session, tenant_id, customer_id)


async def update_customer(
    session: AsyncSession,
    tenant_id: int,
    actor: Optional[User],
    customer_id: int,
    data: dict,
) -> Customer:
    data = _clean(data)
    async with atomic(session):
        customer = await _get(session, tenant_id, customer_id)
        if data.get("email") and data["email"] != customer.email.lower():
            if await _email_taken(session, tenant_id, data["email"], exclude_id=customer.id):
                raise DuplicateError("Email already exists")
        for field, value in data.items():
            if field in ("email", "first_name", "last_name") and not value:
                continue
            setattr(customer, field, value)
        await session.flush()
        await log_audit_from_user(
            session, actor, tenant_id,
            action=AuditActions.CUSTOMER_UPDATE,
            target_type=AuditTargetTypes.CUSTOMER,
            target_id=customer.id,
            meta={"fields": sorted(data.keys())},
        )
    return await _get(session, tenant_id, customer_id)


async def delete_customer(session: AsyncSession, tenant_id: int, actor: Optional[User], customer_id: int) -> None:
    async with atomic(session):
        customer = await _get(session, tenant_id, customer_id)
        order_count = (await session.execute(
            select(func.count(Order.id)).where(Order.customer_id == customer.id)
        )).scalar() or 0
        if order_count > 0:
            raise ConflictError("Cannot delete customer with existing orders")
        await session.execute(
            delete(Customer).where(Customer.id == customer.id, Customer.tenant_id == tenant_id)
        )
        await log_audit_from_user(
            session, actor, tenant_id,
            action=AuditActions.CUSTOMER_DELETE,
            target_type=AuditTargetTypes.CUSTOMER,
            target_id=customer_id,
        )
    customers_logger.info("Customer deleted", tenant_id=tenant_id, customer_id=customer_id)
