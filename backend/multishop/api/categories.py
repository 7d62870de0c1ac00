from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import Field
from sqlalchemy.ext.asyncio import AsyncSession

from multishop.api.deps import Actor, Pagination, get_active_actor, get_pagination, http_error, require_admin
from multishop.api.schemas import CamelModel
from multishop.api.serializers import serialize_category, serialize_category_tree
from multishop.db.database import get_db
from multishop.services import catalog
from multishop.services.errors import ServiceError

router = APIRouter()


class CategoryCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=200)
    slug: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None
    parent_id: Optional[int] = None
    sort_order: Optional[int] = None
    is_active: Optional[bool] = None


class CategoryUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    slug: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None
    parent_id: Optional[int] = None
    sort_order: Optional[int] = None
    is_active: Optional[bool] = None


@router.get("")
async def list_categories(
    search: Optional[str] = None,
    pagination: Pagination = Depends(get_pagination),
    actor: Actor = Depends(get_active_actor),
    db: AsyncSession = Depends(get_db),
):
    categories, total = await catalog.list_categories(
        db, actor.tenant_id, page=pagination.page, limit=pagination.limit, search=search,
    )
    return {
        "categories": [serialize_category(c) for c in categories],
        "pagination": pagination.meta(total),
    }


@router.get("/tree")
async def category_tree(
    actor: Actor = Depends(get_active_actor),
    db: AsyncSession = Depends(get_db),
):
    tree = await catalog.get_category_tree(db, actor.tenant_id)
    return {"categories": serialize_category_tree(tree)}


@router.get("/{category_id}")
async def get_category(
    category_id: int,
    actor: Actor = Depends(get_active_actor),
    db: AsyncSession = Depends(get_db),
):
    try:
        category = await catalog.get_category(db, actor.tenant_id, category_id)
    except ServiceError as e:
        raise http_error(e)
    return serialize_category(category)


@router.post("", status_code=201)
async def create_category(
    payload: CategoryCreate,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    try:
        category = await catalog.create_category(
            db, actor.tenant_id, actor.user, payload.model_dump(exclude_unset=True),
        )
    except ServiceError as e:
        raise http_error(e)
    return {"message": "Category created successfully", "category": serialize_category(category)}


@router.put("/{category_id}")
async def update_category(
    category_id: int,
    payload: CategoryUpdate,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    try:
        category = await catalog.update_category(
            db, actor.tenant_id, actor.user, category_id, payload.model_dump(exclude_unset=True),
        )
    except ServiceError as e:
        raise http_error(e)
    return {"message": "Category updated successfully", "category": serialize_category(category)}


@router.delete("/{category_id}")
async def delete_category(
    category_id: int,
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    try:
        await catalog.delete_category(db, actor.tenant_id, actor.user, category_id)
    except ServiceError as e:
        raise http_error(e)
    return {"message": "Category deleted successfully"}
