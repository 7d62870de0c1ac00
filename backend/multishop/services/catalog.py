"""
Catalog Service Layer
Products and categories, always scoped to one tenant.
"""
import re
from decimal import Decimal
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, delete, func, or_, exists
from sqlalchemy.orm import selectinload

from multishop.core.logging import catalog_logger
from multishop.db.database import atomic
from multishop.db.enums import ProductStatus, enum_value
from multishop.db.models import Category, Product, OrderItem, User
from multishop.services.audit import log_audit_from_user, AuditActions, AuditTargetTypes
from multishop.services.errors import ValidationError, NotFoundError, DuplicateError, ConflictError

# Fields a bulk update may touch; stock and counters are never bulk-edited
BULK_UPDATABLE_FIELDS = {
    "status",
    "is_featured",
    "category_id",
    "price",
    "compare_price",
    "cost_price",
    "track_inventory",
    "tags",
}

PRODUCT_FIELDS = {
    "name", "slug", "description", "short_description", "sku", "price", "compare_price",
    "cost_price", "category_id", "images", "inventory", "track_inventory", "weight",
    "dimensions", "tags", "meta_title", "meta_description", "status", "is_featured",
}

CATEGORY_FIELDS = {"name", "slug", "description", "image", "parent_id", "sort_order", "is_active"}


def slugify(name: str) -> str:
    return re.sub(r"[^a-z0-9]", "-", name.lower())


def _check_status(value) -> str:
    try:
        return ProductStatus(enum_value(value)).value
    except ValueError:
        raise ValidationError("Invalid product status")


def _check_price(data: dict):
    for field in ("price", "compare_price", "cost_price"):
        if data.get(field) is not None and Decimal(str(data[field])) < 0:
            raise ValidationError(f"{field} must be >= 0")
    if data.get("inventory") is not None and int(data["inventory"]) < 0:
        raise ValidationError("Inventory must be >= 0")


class ProductNotFound(NotFoundError):
    default_message = "Product not found"


class CategoryNotFound(NotFoundError):
    default_message = "Category not found"


async def _category_in_tenant(session: AsyncSession, tenant_id: int, category_id) -> Optional[Category]:
    if category_id is None:
        return None
    res = await session.execute(
        select(Category).where(Category.id == category_id, Category.tenant_id == tenant_id)
    )
    return res.scalar_one_or_none()


async def _sku_taken(session: AsyncSession, tenant_id: int, sku: str, exclude_id: Optional[int] = None) -> bool:
    q = select(Product.id).where(Product.tenant_id == tenant_id, Product.sku == sku)
    if exclude_id is not None:
        q = q.where(Product.id != exclude_id)
    return (await session.execute(q)).first() is not None


async def _product_slug_taken(session: AsyncSession, tenant_id: int, slug: str, exclude_id: Optional[int] = None) -> bool:
    q = select(Product.id).where(Product.tenant_id == tenant_id, Product.slug == slug)
    if exclude_id is not None:
        q = q.where(Product.id != exclude_id)
    return (await session.execute(q)).first() is not None


# === Products ===

async def list_products(
    session: AsyncSession,
    tenant_id: int,
    page: int = 1,
    limit: int = 20,
    search: Optional[str] = None,
    category_id: Optional[int] = None,
    status: Optional[str] = None,
) -> tuple[list[Product], int]:
    conditions = [Product.tenant_id == tenant_id]
    if search:
        pattern = f"%{search}%"
        conditions.append(or_(
            Product.name.ilike(pattern),
            Product.sku.ilike(pattern),
            Product.description.ilike(pattern),
        ))
    if category_id is not None:
        conditions.append(Product.category_id == category_id)
    if status:
        conditions.append(Product.status == _check_status(status))

    total = (await session.execute(select(func.count(Product.id)).where(*conditions))).scalar() or 0
    q = (
        select(Product)
        .where(*conditions)
        .options(selectinload(Product.category))
        .order_by(Product.created_at.desc(), Product.id.desc())
        .limit(limit)
        .offset((page - 1) * limit)
    )
    res = await session.execute(q)
    return list(res.scalars().all()), total


async def get_product(
    session: AsyncSession,
    tenant_id: int,
    product_id: int,
    count_view: bool = False,
) -> Product:
    """Get a product with its category. `count_view` bumps view_count first."""
    if count_view:
        async with atomic(session):
            res = await session.execute(
                update(Product)
                .where(Product.id == product_id, Product.tenant_id == tenant_id)
                .values(view_count=Product.view_count + 1)
                .execution_options(synchronize_session=False)
            )
        if res.rowcount == 0:
            raise ProductNotFound()

    q = (
        select(Product)
        .where(Product.id == product_id, Product.tenant_id == tenant_id)
        .options(selectinload(Product.category))
        .execution_options(populate_existing=True)
    )
    product = (await session.execute(q)).scalar_one_or_none()
    if product is None:
        raise ProductNotFound()
    return product


async def create_product(session: AsyncSession, tenant_id: int, actor: Optional[User], data: dict) -> Product:
    data = {k: v for k, v in data.items() if k in PRODUCT_FIELDS}
    if not data.get("name") or not data.get("sku") or data.get("price") is None:
        raise ValidationError("Name, SKU and price are required")
    _check_price(data)

    async with atomic(session):
        if await _sku_taken(session, tenant_id, data["sku"]):
            raise DuplicateError("SKU already exists")
        if await _category_in_tenant(session, tenant_id, data.get("category_id")) is None:
            raise ValidationError("Invalid category")

        slug = data.get("slug") or slugify(data["name"])
        if await _product_slug_taken(session, tenant_id, slug):
            raise DuplicateError("Slug already exists")

        product = Product(
            tenant_id=tenant_id,
            name=data["name"],
            slug=slug,
            description=data.get("description"),
            short_description=data.get("short_description"),
            sku=data["sku"],
            price=data["price"],
            compare_price=data.get("compare_price"),
            cost_price=data.get("cost_price"),
            category_id=data["category_id"],
            images=data.get("images") or [],
            inventory=data.get("inventory") or 0,
            track_inventory=data.get("track_inventory") is not False,
            weight=data.get("weight"),
            dimensions=data.get("dimensions"),
            tags=data.get("tags") or [],
            meta_title=data.get("meta_title"),
            meta_description=data.get("meta_description"),
            status=_check_status(data.get("status") or ProductStatus.draft.value),
            is_featured=bool(data.get("is_featured")),
        )
        session.add(product)
        await session.flush()
        await log_audit_from_user(
            session, actor, tenant_id,
            action=AuditActions.PRODUCT_CREATE,
            target_type=AuditTargetTypes.PRODUCT,
            target_id=product.id,
            meta={"sku": product.sku},
        )
        product_id = product.id

    catalog_logger.info("Product created", tenant_id=tenant_id, product_id=product_id)
    return await get_product(session, tenant_id, product_id)


async def update_product(
    session: AsyncSession,
    tenant_id: int,
    actor: Optional[User],
    product_id: int,
    data: dict,
) -> Product:
    """Partial update. SKU/slug stay unique per tenant and the category must be the tenant's."""
    data = {k: v for k, v in data.items() if k in PRODUCT_FIELDS}
    _check_price(data)
    if "status" in data:
        data["status"] = _check_status(data["status"])

    async with atomic(session):
        res = await session.execute(
            select(Product).where(Product.id == product_id, Product.tenant_id == tenant_id).with_for_update()
        )
        product = res.scalar_one_or_none()
        if product is None:
            raise ProductNotFound()

        if data.get("sku") and data["sku"] != product.sku:
            if await _sku_taken(session, tenant_id, data["sku"], exclude_id=product.id):
                raise DuplicateError("SKU already exists")
        if data.get("slug") and data["slug"] != product.slug:
            if await _product_slug_taken(session, tenant_id, data["slug"], exclude_id=product.id):
                raise DuplicateError("Slug already exists")
        if data.get("category_id") is not None:
            if await _category_in_tenant(session, tenant_id, data["category_id"]) is None:
                raise ValidationError("Invalid category")

        for field, value in data.items():
            if field in ("name", "sku", "price", "category_id") and value is None:
                continue
            setattr(product, field, value)
        await session.flush()
        await log_audit_from_user(
            session, actor, tenant_id,
            action=AuditActions.PRODUCT_UPDATE,
            target_type=AuditTargetTypes.PRODUCT,
            target_id=product.id,
            meta={"fields": sorted(data.keys())},
        )

    return await get_product(session, tenant_id, product_id)


async def delete_product(session: AsyncSession, tenant_id: int, actor: Optional[User], product_id: int) -> None:
    """Delete a product that no order references; ordered products should be archived instead."""
    async with atomic(session):
        res = await session.execute(
            select(Product).where(Product.id == product_id, Product.tenant_id == tenant_id)
        )
        product = res.scalar_one_or_none()
        if product is None:
            raise ProductNotFound()
        ordered = (await session.execute(
            select(exists().where(OrderItem.product_id == product.id))
        )).scalar()
        if ordered:
            raise ConflictError("Product has orders; archive it instead")
        await session.execute(
            delete(Product).where(Product.id == product.id, Product.tenant_id == tenant_id)
        )
        await log_audit_from_user(
            session, actor, tenant_id,
            action=AuditActions.PRODUCT_DELETE,
            target_type=AuditTargetTypes.PRODUCT,
            target_id=product_id,
        )
    catalog_logger.info("Product deleted", tenant_id=tenant_id, product_id=product_id)


async def bulk_update_products(
    session: AsyncSession,
    tenant_id: int,
    actor: Optional[User],
    product_ids: list[int],
    updates: dict,
) -> int:
    """Apply whitelisted field updates to many products of one tenant. Returns rows changed."""
    rejected = set(updates) - BULK_UPDATABLE_FIELDS
    if rejected:
        raise ValidationError(f"Fields not allowed in bulk update: {', '.join(sorted(rejected))}")
    if not product_ids or not updates:
        raise ValidationError("Product IDs and updates are required")
    _check_price(updates)
    values = dict(updates)
    if "status" in values:
        values["status"] = _check_status(values["status"])

    async with atomic(session):
        if "category_id" in values and await _category_in_tenant(session, tenant_id, values["category_id"]) is None:
            raise ValidationError("Invalid category")
        res = await session.execute(
            update(Product)
            .where(Product.id.in_(product_ids), Product.tenant_id == tenant_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await log_audit_from_user(
            session, actor, tenant_id,
            action=AuditActions.PRODUCT_BULK_UPDATE,
            target_type=AuditTargetTypes.PRODUCT,
            meta={"product_ids": product_ids, "fields": sorted(values.keys())},
        )
    return res.rowcount


# === Categories ===

async def list_categories(
    session: AsyncSession,
    tenant_id: int,
    page: int = 1,
    limit: int = 50,
    search: Optional[str] = None,
) -> tuple[list[Category], int]:
    conditions = [Category.tenant_id == tenant_id]
    if search:
        conditions.append(Category.name.ilike(f"%{search}%"))
    total = (await session.execute(select(func.count(Category.id)).where(*conditions))).scalar() or 0
    res = await session.execute(
        select(Category)
        .where(*conditions)
        .order_by(Category.sort_order.asc(), Category.name.asc())
        .limit(limit)
        .offset((page - 1) * limit)
    )
    return list(res.scalars().all()), total


async def get_category(session: AsyncSession, tenant_id: int, category_id: int) -> Category:
    category = await _category_in_tenant(session, tenant_id, category_id)
    if category is None:
        raise CategoryNotFound()
    return category


async def get_category_tree(session: AsyncSession, tenant_id: int) -> list[dict]:
    """Nested `{category, children}` nodes built from parent_id, roots first."""
    res = await session.execute(
        select(Category)
        .where(Category.tenant_id == tenant_id)
        .order_by(Category.sort_order.asc(), Category.name.asc())
    )
    categories = list(res.scalars().all())
    nodes = {c.id: {"category": c, "children": []} for c in categories}
    roots = []
    for c in categories:
        parent = nodes.get(c.parent_id)
        if parent is not None and c.parent_id != c.id:
            parent["children"].append(nodes[c.id])
        else:
            roots.append(nodes[c.id])
    return roots


async def _check_parent(session: AsyncSession, tenant_id: int, parent_id, category_id: Optional[int] = None):
    if parent_id is None:
        return
    if category_id is not None and parent_id == category_id:
        raise ValidationError("A category cannot be its own parent")
    parent = await _category_in_tenant(session, tenant_id, parent_id)
    if parent is None:
        raise ValidationError("Invalid parent category")
    if category_id is None:
        return

    # Walk up from the new parent; meeting category_id means the move closes a loop
    seen = {parent.id}
    ancestor_id = parent.parent_id
    while ancestor_id is not None and ancestor_id not in seen:
        if ancestor_id == category_id:
            raise ValidationError("A category cannot be its own ancestor")
        seen.add(ancestor_id)
        ancestor_id = (await session.execute(
            select(Category.parent_id).where(Category.id == ancestor_id, Category.tenant_id == tenant_id)
        )).scalar_one_or_none()


async def _category_slug_taken(session: AsyncSession, tenant_id: int, slug: str, exclude_id: Optional[int] = None) -> bool:
    q = select(Category.id).where(Category.tenant_id == tenant_id, Category.slug == slug)
    if exclude_id is not None:
        q = q.where(Category.id != exclude_id)
    return (await session.execute(q)).first() is not None


async def create_category(session: AsyncSession, tenant_id: int, actor: Optional[User], data: dict) -> Category:
    data = {k: v for k, v in data.items() if k in CATEGORY_FIELDS}
    if not data.get("name"):
        raise ValidationError("Name is required")
    slug = data.get("slug") or slugify(data["name"])

    async with atomic(session):
        if await _category_slug_taken(session, tenant_id, slug):
            raise DuplicateError("Slug already exists")
        await _check_parent(session, tenant_id, data.get("parent_id"))
        category = Category(
            tenant_id=tenant_id,
            name=data["name"],
            slug=slug,
            description=data.get("description"),
            image=data.get("image"),
            parent_id=data.get("parent_id"),
            sort_order=data.get("sort_order") or 0,
            is_active=data.get("is_active") is not False,
        )
        session.add(category)
        await session.flush()
        await log_audit_from_user(
            session, actor, tenant_id,
            action=AuditActions.CATEGORY_CREATE,
            target_type=AuditTargetTypes.CATEGORY,
            target_id=category.id,
        )
    await session.refresh(category)
    return category


async def update_category(
    session: AsyncSession,
    tenant_id: int,
    actor: Optional[User],
    category_id: int,
    data: dict,
) -> Category:
    data = {k: v for k, v in data.items() if k in CATEGORY_FIELDS}
    async with atomic(session):
        category = await _category_in_tenant(session, tenant_id, category_id)
        if category is None:
            raise CategoryNotFound()
        if data.get("slug") and data["slug"] != category.slug:
            if await _category_slug_taken(session, tenant_id, data["slug"], exclude_id=category.id):
                raise DuplicateError("Slug already exists")
        if "parent_id" in data:
            await _check_parent(session, tenant_id, data["parent_id"], category.id)
        for field, value in data.items():
            if field == "name" and not value:
                continue
            setattr(category, field, value)
        await session.flush()
        await log_audit_from_user(
            session, actor, tenant_id,
            action=AuditActions.CATEGORY_UPDATE,
            target_type=AuditTargetTypes.CATEGORY,
            target_id=category.id,
            meta={"fields": sorted(data.keys())},
        )
    await session.refresh(category)
    return category


async def delete_category(session: AsyncSession, tenant_id: int, actor: Optional[User], category_id: int) -> None:
    """Refused while products or child categories still point at it."""
    async with atomic(session):
        category = await _category_in_tenant(session, tenant_id, category_id)
        if category is None:
            raise CategoryNotFound()
        in_use = (await session.execute(select(exists().where(Product.category_id == category.id)))).scalar()
        if in_use:
            raise ConflictError("Category has products")
        has_children = (await session.execute(select(exists().where(Category.parent_id == category.id)))).scalar()
        if has_children:
            raise ConflictError("Category has subcategories")
        await session.execute(
            delete(Category).where(Category.id == category.id, Category.tenant_id == tenant_id)
        )
        await log_audit_from_user(
            session, actor, tenant_id,
            action=AuditActions.CATEGORY_DELETE,
            target_type=AuditTargetTypes.CATEGORY,
            target_id=category_id,
        )


# === Storefront ===

def _storefront_conditions(tenant_id: int) -> list:
    return [
        Product.tenant_id == tenant_id,
        Product.status == ProductStatus.active.value,
        Category.is_active.is_(True),
    ]


async def list_public_products(
    session: AsyncSession,
    tenant_id: int,
    page: int = 1,
    limit: int = 20,
    search: Optional[str] = None,
    category_id: Optional[int] = None,
    featured: bool = False,
) -> tuple[list[Product], int]:
    """Active products in active categories, featured first."""
    conditions = _storefront_conditions(tenant_id)
    if search:
        pattern = f"%{search}%"
        conditions.append(or_(Product.name.ilike(pattern), Product.description.ilike(pattern)))
    if category_id is not None:
        conditions.append(Product.category_id == category_id)
    if featured:
        conditions.append(Product.is_featured.is_(True))

    total = (await session.execute(
        select(func.count(Product.id)).join(Category, Category.id == Product.category_id).where(*conditions)
    )).scalar() or 0
    res = await session.execute(
        select(Product)
        .join(Category, Category.id == Product.category_id)
        .where(*conditions)
        .options(selectinload(Product.category))
        .order_by(Product.is_featured.desc(), Product.created_at.desc(), Product.id.desc())
        .limit(limit)
        .offset((page - 1) * limit)
    )
    return list(res.scalars().all()), total


async def list_featured_products(session: AsyncSession, tenant_id: int, limit: int = 8) -> list[Product]:
    res = await session.execute(
        select(Product)
        .join(Category, Category.id == Product.category_id)
        .where(*_storefront_conditions(tenant_id), Product.is_featured.is_(True))
        .options(selectinload(Product.category))
        .order_by(Product.created_at.desc(), Product.id.desc())
        .limit(limit)
    )
    return list(res.scalars().all())


async def get_public_product(session: AsyncSession, tenant_id: int, slug: str) -> Product:
    """Active product by slug; counts the view."""
    res = await session.execute(
        select(Product.id)
        .join(Category, Category.id == Product.category_id)
        .where(*_storefront_conditions(tenant_id), Product.slug == slug)
    )
    product_id = res.scalar_one_or_none()
    if product_id is None:
        raise ProductNotFound()
    return await get_product(session, tenant_id, product_id, count_view=True)


async def list_public_categories(session: AsyncSession, tenant_id: int) -> list[Category]:
    res = await session.execute(
        select(Category)
        .where(Category.tenant_id == tenant_id, Category.is_active.is_(True))
        .order_by(Category.sort_order.asc(), Category.name.asc())
    )
    return list(res.scalars().all())
