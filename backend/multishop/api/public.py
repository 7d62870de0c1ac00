"""
Public Storefront Endpoints
No authentication; the shop comes from X-Tenant-Subdomain or the Host header.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.ext.asyncio import AsyncSession

from multishop.api.deps import Pagination, get_pagination, get_public_tenant, http_error
from multishop.api.serializers import serialize_category, serialize_product, serialize_public_tenant
from multishop.core.logging import api_logger
from multishop.db.database import get_db
from multishop.db.models import Tenant
from multishop.services import catalog
from multishop.services.errors import ServiceError

router = APIRouter()


class ContactForm(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    email: EmailStr
    subject: Optional[str] = Field(None, max_length=200)
    message: str = Field(..., min_length=1, max_length=5000)


@router.get("/shop")
async def shop_info(tenant: Tenant = Depends(get_public_tenant)):
    return {"shop": serialize_public_tenant(tenant)}


@router.get("/products")
async def public_products(
    search: Optional[str] = None,
    category_id: Optional[int] = None,
    featured: bool = False,
    pagination: Pagination = Depends(get_pagination),
    tenant: Tenant = Depends(get_public_tenant),
    db: AsyncSession = Depends(get_db),
):
    products, total = await catalog.list_public_products(
        db, tenant.id,
        page=pagination.page, limit=pagination.limit,
        search=search, category_id=category_id, featured=featured,
    )
    return {
        "products": [serialize_product(p, include_category=True, public=True) for p in products],
        "pagination": pagination.meta(total),
    }


@router.get("/products/featured")
async def featured_products(
    limit: int = Query(8, ge=1, le=50),
    tenant: Tenant = Depends(get_public_tenant),
    db: AsyncSession = Depends(get_db),
):
    products = await catalog.list_featured_products(db, tenant.id, limit=limit)
    return {"products": [serialize_product(p, include_category=True, public=True) for p in products]}


@router.get("/products/{slug}")
async def public_product(
    slug: str,
    tenant: Tenant = Depends(get_public_tenant),
    db: AsyncSession = Depends(get_db),
):
    try:
        product = await catalog.get_public_product(db, tenant.id, slug)
    except ServiceError as e:
        raise http_error(e)
    return serialize_product(product, include_category=True, public=True)


@router.get("/categories")
async def public_categories(
    tenant: Tenant = Depends(get_public_tenant),
    db: AsyncSession = Depends(get_db),
):
    categories = await catalog.list_public_categories(db, tenant.id)
    return {"categories": [serialize_category(c) for c in categories]}


@router.post("/contact")
async def contact(
    payload: ContactForm,
    tenant: Tenant = Depends(get_public_tenant),
):
    # Delivery is out of scope; the submission is only logged
    api_logger.info(
        "Contact form submission",
        tenant_id=tenant.id,
        name=payload.name,
        email=payload.email,
        subject=payload.subject,
    )
    return {"message": "Contact form submitted successfully"}
