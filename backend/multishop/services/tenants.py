"""
Tenant & Account Service Layer
Shop registration, login, profile and storefront tenant resolution.
"""
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, or_, func
from sqlalchemy.orm import selectinload

from multishop.core.logging import auth_logger
from multishop.core.security import get_password_hash, verify_password, create_user_token
from multishop.db.database import atomic
from multishop.db.enums import (
    TenantStatus, SubscriptionPlan, SubscriptionStatus, UserRole, UserStatus, enum_value,
)
from multishop.db.models import Tenant, User
from multishop.services.audit import log_audit, AuditActions, AuditTargetTypes
from multishop.services.errors import (
    ValidationError, NotFoundError, DuplicateError, AuthenticationError, PermissionDeniedError,
)

PROFILE_FIELDS = {"first_name", "last_name", "phone", "avatar"}
TENANT_FIELDS = {"name", "phone", "address", "logo", "theme", "settings"}


class TenantNotFound(NotFoundError):
    default_message = "Shop not found"


async def register(
    session: AsyncSession,
    email: str,
    password: str,
    first_name: str,
    last_name: str,
    tenant_name: str,
    subdomain: str,
    phone: Optional[str] = None,
) -> tuple[User, Tenant, str]:
    """
    Create a shop and its owner account.

    Returns (user, tenant, access_token).
    """
    email = email.lower()
    subdomain = subdomain.lower()

    async with atomic(session):
        existing = await session.execute(
            select(Tenant.id).where(or_(Tenant.subdomain == subdomain, func.lower(Tenant.email) == email))
        )
        if existing.first() is not None:
            raise DuplicateError("Subdomain or email already exists")

        existing_user = await session.execute(select(User.id).where(func.lower(User.email) == email))
        if existing_user.first() is not None:
            raise DuplicateError("Email already registered")

        tenant = Tenant(
            name=tenant_name,
            domain=f"{subdomain}.localhost",
            subdomain=subdomain,
            email=email,
            phone=phone,
            theme={},
            settings={},
            status=TenantStatus.active.value,
            subscription_plan=SubscriptionPlan.basic.value,
            subscription_status=SubscriptionStatus.active.value,
        )
        session.add(tenant)
        await session.flush()

        user = User(
            tenant_id=tenant.id,
            email=email,
            hashed_password=get_password_hash(password),
            first_name=first_name,
            last_name=last_name,
            phone=phone,
            role=UserRole.owner.value,
            status=UserStatus.active.value,
            is_email_verified=True,
        )
        session.add(user)
        await session.flush()

        await log_audit(
            session, tenant.id,
            action=AuditActions.AUTH_REGISTER,
            target_type=AuditTargetTypes.TENANT,
            target_id=tenant.id,
            user_id=user.id,
        )

    await session.refresh(tenant)
    await session.refresh(user)
    auth_logger.info("Shop registered", tenant_id=tenant.id, subdomain=subdomain)
    token = create_user_token(user.id, tenant.id, enum_value(user.role))
    return user, tenant, token


async def login(
    session: AsyncSession,
    email: str,
    password: str,
    subdomain: Optional[str] = None,
) -> tuple[User, Tenant, str]:
    """Returns (user, tenant, access_token). Refuses shops that are not active."""
    tenant = None
    if subdomain:
        res = await session.execute(select(Tenant).where(Tenant.subdomain == subdomain.lower()))
        tenant = res.scalar_one_or_none()
        if tenant is None:
            raise TenantNotFound()

    q = (
        select(User)
        .where(func.lower(User.email) == email.lower(), User.status == UserStatus.active.value)
        .options(selectinload(User.tenant))
        .order_by(User.id)
    )
    if tenant is not None:
        q = q.where(User.tenant_id == tenant.id)
    user = (await session.execute(q)).scalars().first()

    if user is None or not verify_password(password, user.hashed_password):
        auth_logger.warning("Login failed", email=email, subdomain=subdomain)
        raise AuthenticationError("Invalid credentials")

    tenant = user.tenant
    if enum_value(tenant.status) != TenantStatus.active.value:
        raise PermissionDeniedError("Account is suspended")

    async with atomic(session):
        user.last_login_at = datetime.now(timezone.utc)
        await log_audit(
            session, user.tenant_id,
            action=AuditActions.AUTH_LOGIN,
            target_type=AuditTargetTypes.USER,
            target_id=user.id,
            user_id=user.id,
        )
    await session.refresh(user)

    auth_logger.info("Login succeeded", user_id=user.id, tenant_id=user.tenant_id)
    token = create_user_token(user.id, user.tenant_id, enum_value(user.role))
    return user, tenant, token


async def get_user_with_tenant(session: AsyncSession, user_id: int, tenant_id: int) -> Optional[User]:
    res = await session.execute(
        select(User)
        .where(User.id == user_id, User.tenant_id == tenant_id)
        .options(selectinload(User.tenant))
    )
    return res.scalar_one_or_none()


async def update_profile(session: AsyncSession, user: User, data: dict) -> User:
    data = {k: v for k, v in data.items() if k in PROFILE_FIELDS}
    async with atomic(session):
        for field, value in data.items():
            if field in ("first_name", "last_name") and not value:
                continue
            setattr(user, field, value)
    await session.refresh(user)
    return user


async def change_password(session: AsyncSession, user: User, current_password: str, new_password: str) -> None:
    if not verify_password(current_password, user.hashed_password):
        raise ValidationError("Current password is incorrect")
    if len(new_password) < 6:
        raise ValidationError("Password must be at least 6 characters")
    async with atomic(session):
        user.hashed_password = get_password_hash(new_password)
        await log_audit(
            session, user.tenant_id,
            action=AuditActions.AUTH_PASSWORD_CHANGE,
            target_type=AuditTargetTypes.USER,
            target_id=user.id,
            user_id=user.id,
        )
    auth_logger.info("Password changed", user_id=user.id)


async def update_tenant(session: AsyncSession, actor: User, tenant: Tenant, data: dict) -> Tenant:
    """Shop settings; only the owner reaches this (enforced by the route dependency)."""
    data = {k: v for k, v in data.items() if k in TENANT_FIELDS}
    async with atomic(session):
        for field, value in data.items():
            if field == "name" and not value:
                continue
            setattr(tenant, field, value)
        await log_audit(
            session, tenant.id,
            action=AuditActions.TENANT_UPDATE,
            target_type=AuditTargetTypes.TENANT,
            target_id=tenant.id,
            meta={"fields": sorted(data.keys())},
            user_id=actor.id,
        )
    await session.refresh(tenant)
    return tenant


async def resolve_tenant(
    session: AsyncSession,
    subdomain: Optional[str] = None,
    host: Optional[str] = None,
) -> Tenant:
    """
    Storefront tenant lookup: explicit subdomain first, then the Host domain.

    Raises TenantNotFound when nothing matches and PermissionDeniedError when
    the shop is not active.
    """
    tenant = None
    if subdomain:
        res = await session.execute(select(Tenant).where(Tenant.subdomain == subdomain.lower()))
        tenant = res.scalar_one_or_none()
    elif host:
        domain = host.split(":")[0].lower()
        res = await session.execute(select(Tenant).where(Tenant.domain == domain))
        tenant = res.scalar_one_or_none()

    if tenant is None:
        raise TenantNotFound("Tenant not found")
    if enum_value(tenant.status) != TenantStatus.active.value:
        raise PermissionDeniedError("Tenant is not active")
    return tenant
