import json
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from multishop.api.deps import Actor, require_admin
from multishop.api.serializers import ts
from multishop.db.database import get_db
from multishop.services.audit import get_audit_logs

router = APIRouter()


def _serialize_entry(entry) -> dict:
    return {
        "id": entry.id,
        "user_id": entry.user_id,
        "action": entry.action,
        "target_type": entry.target_type,
        "target_id": entry.target_id,
        "meta": json.loads(entry.meta) if entry.meta else None,
        "request_id": entry.request_id,
        "created_at": ts(entry.created_at),
    }


@router.get("/logs")
async def audit_logs(
    page: int = Query(1, ge=1),
    page_size: int = Query(25, ge=1, le=200),
    action: Optional[str] = Query(None),
    resource: Optional[str] = Query(None),
    target_id: Optional[int] = Query(None),
    from_date: Optional[str] = Query(None, description="ISO format start date/time"),
    actor: Actor = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """Read-only audit trail of the caller's shop (owner/admin)."""
    start_date = None
    if from_date is not None:
        try:
            start_date = datetime.fromisoformat(from_date)
        except ValueError:
            raise HTTPException(status_code=400, detail="Invalid from_date format")

    entries, total = await get_audit_logs(
        db,
        actor.tenant_id,
        action=action,
        target_type=resource,
        target_id=target_id,
        start_date=start_date,
        limit=page_size,
        offset=(page - 1) * page_size,
    )
    return {
        "items": [_serialize_entry(e) for e in entries],
        "total": total,
        "page": page,
        "page_size": page_size,
    }
