from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from multishop.core.config import settings
from multishop.core.security import get_current_user as jwt_get_current_user
from multishop.db.database import get_db
from multishop.db.enums import TenantStatus, SubscriptionStatus, UserRole, UserStatus, enum_value
from multishop.db.models import Tenant, User
from multishop.services.errors import ServiceError
from multishop.services.tenants import get_user_with_tenant, resolve_tenant


@dataclass
class Actor:
    """The authenticated user and the shop the token was issued for."""
    user: User
    tenant: Tenant

    @property
    def tenant_id(self) -> int:
        return self.tenant.id

    @property
    def role(self) -> str:
        return enum_value(self.user.role)


def http_error(exc: ServiceError) -> HTTPException:
    """Translate a service-layer error into the matching HTTPException."""
    return HTTPException(status_code=exc.status_code, detail=exc.message)


async def get_actor(
    current_user_data: dict = Depends(jwt_get_current_user),
    db: AsyncSession = Depends(get_db),
) -> Actor:
    """Resolve the bearer token into a live user of the token's tenant."""
    user = await get_user_with_tenant(db, current_user_data["user_id"], current_user_data["tenant_id"])
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    if enum_value(user.status) != UserStatus.active.value:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Account is inactive")
    return Actor(user=user, tenant=user.tenant)


async def get_active_actor(actor: Actor = Depends(get_actor)) -> Actor:
    """Actor whose shop is active and paid up."""
    if enum_value(actor.tenant.status) != TenantStatus.active.value:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Tenant account is inactive")
    if enum_value(actor.tenant.subscription_status) != SubscriptionStatus.active.value:
        raise HTTPException(status_code=status.HTTP_402_PAYMENT_REQUIRED, detail="Subscription is not active")
    return actor


async def require_admin(actor: Actor = Depends(get_active_actor)) -> Actor:
    if actor.role not in (UserRole.owner.value, UserRole.admin.value):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied. Admin role required.")
    return actor


async def require_owner(actor: Actor = Depends(get_active_actor)) -> Actor:
    if actor.role != UserRole.owner.value:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied. Owner role required.")
    return actor


async def get_public_tenant(request: Request, db: AsyncSession = Depends(get_db)) -> Tenant:
    """Storefront shop from the X-Tenant-Subdomain header, falling back to Host."""
    try:
        return await resolve_tenant(
            db,
            subdomain=request.headers.get("X-Tenant-Subdomain"),
            host=request.headers.get("Host"),
        )
    except ServiceError as e:
        raise http_error(e)


@dataclass
class Pagination:
    page: int
    limit: int

    def meta(self, total: int) -> dict:
        return {
            "page": self.page,
            "limit": self.limit,
            "total": total,
            "pages": (total + self.limit - 1) // self.limit if self.limit else 0,
        }


def get_pagination(
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
) -> Pagination:
    limit = min(limit or settings.DEFAULT_PAGE_SIZE, settings.MAX_PAGE_SIZE)
    return Pagination(page=page, limit=limit)
