from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from multishop.api.deps import Actor, require_admin
from multishop.api.serializers import jsonable, serialize_order, serialize_product
from multishop.db.database import get_db
from multishop.services import dashboard as dashboard_service

router = APIRouter()


@router.get("/overview")
async def overview(
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    data = await dashboard_service.get_overview(db, actor.tenant_id)
    return {
        "overview": jsonable(data["overview"]),
        "low_stock_products": [serialize_product(p) for p in data["low_stock_products"]],
        "top_selling_products": jsonable(data["top_selling_products"]),
        "recent_orders": [
            serialize_order(o, include_items=False) for o in data["recent_orders"]
        ],
    }


@router.get("/analytics")
async def sales_analytics(
    days: int = Query(30, ge=1, le=365),
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    return jsonable(await dashboard_service.get_sales_analytics(db, actor.tenant_id, days=days))
