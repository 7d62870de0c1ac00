"""
Products API Endpoints
Reads for any active shop user; writes for owners and admins.
"""
from typing import Any, Optional

from fastapi import APIRouter, Depends
from pydantic import Field
from sqlalchemy.ext.asyncio import AsyncSession

from multishop.api.deps import Actor, Pagination, get_active_actor, get_pagination, http_error, require_admin
from multishop.api.schemas import CamelModel
from multishop.api.serializers import serialize_product
from multishop.db.database import get_db
from multishop.services import catalog
from multishop.services.errors import ServiceError

router = APIRouter()


class ProductCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=255)
    slug: Optional[str] = None
    description: Optional[str] = None
    short_description: Optional[str] = None
    sku: str = Field(..., min_length=1, max_length=100)
    price: float = Field(..., ge=0)
    compare_price: Optional[float] = Field(None, ge=0)
    cost_price: Optional[float] = Field(None, ge=0)
    category_id: int
    images: Optional[list[str]] = None
    inventory: Optional[int] = Field(None, ge=0)
    track_inventory: Optional[bool] = None
    weight: Optional[float] = Field(None, ge=0)
    dimensions: Optional[dict[str, Any]] = None
    tags: Optional[list[str]] = None
    meta_title: Optional[str] = None
    meta_description: Optional[str] = None
    status: Optional[str] = None
    is_featured: Optional[bool] = None


class ProductUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    slug: Optional[str] = None
    description: Optional[str] = None
    short_description: Optional[str] = None
    sku: Optional[str] = Field(None, min_length=1, max_length=100)
    price: Optional[float] = Field(None, ge=0)
    compare_price: Optional[float] = Field(None, ge=0)
    cost_price: Optional[float] = Field(None, ge=0)
    category_id: Optional[int] = None
    images: Optional[list[str]] = None
    inventory: Optional[int] = Field(None, ge=0)
    track_inventory: Optional[bool] = None
    weight: Optional[float] = Field(None, ge=0)
    dimensions: Optional[dict[str, Any]] = None
    tags: Optional[list[str]] = None
    meta_title: Optional[str] = None
    meta_description: Optional[str] = None
    status: Optional[str] = None
    is_featured: Optional[bool] = None


class BulkUpdate(CamelModel):
    product_ids: list[int] = Field(..., min_length=1)
    updates: dict[str, Any]


@router.get("")
async def list_products(
    search: Optional[str] = None,
    category_id: Optional[int] = None,
    status: Optional[str] = None,
    pagination: Pagination = Depends(get_pagination),
    actor: Actor = Depends(get_active_actor),
    db: AsyncSession = Depends(get_db),
):
    try:
        products, total = await catalog.list_products(
            db, actor.tenant_id,
            page=pagination.page, limit=pagination.limit,
            search=search, category_id=category_id, status=status,
        )
    except ServiceError as e:
        raise http_error(e)
    return {
        "products": [serialize_product(p, include_category=True) for p in products],
        "pagination": pagination.meta(total),
    }


@router.patch("/bulk")
async def bulk_update_products(
    payload: BulkUpdate,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    try:
        updated = await catalog.bulk_update_products(
            db, actor.tenant_id, actor.user, payload.product_ids, payload.updates,
        )
    except ServiceError as e:
        raise http_error(e)
    return {"message": "Products updated successfully", "updated": updated}


@router.get("/{product_id}")
async def get_product(
    product_id: int,
    actor: Actor = Depends(get_active_actor),
    db: AsyncSession = Depends(get_db),
):
    try:
        product = await catalog.get_product(db, actor.tenant_id, product_id, count_view=True)
    except ServiceError as e:
        raise http_error(e)
    return serialize_product(product, include_category=True)


@router.post("", status_code=201)
async def create_product(
    payload: ProductCreate,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    try:
        product = await catalog.create_product(
            db, actor.tenant_id, actor.user, payload.model_dump(exclude_unset=True),
        )
    except ServiceError as e:
        raise http_error(e)
    return {"message": "Product created successfully", "product": serialize_product(product, include_category=True)}


@router.put("/{product_id}")
async def update_product(
    product_id: int,
    payload: ProductUpdate,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    try:
        product = await catalog.update_product(
            db, actor.tenant_id, actor.user, product_id, payload.model_dump(exclude_unset=True),
        )
    except ServiceError as e:
        raise http_error(e)
    return {"message": "Product updated successfully", "product": serialize_product(product, include_category=True)}


@router.delete("/{product_id}")
async def delete_product(
    product_id: int,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    try:
        await catalog.delete_product(db, actor.tenant_id, actor.user, product_id)
    except ServiceError as e:
        raise http_error(e)
    return {"message": "Product deleted successfully"}
