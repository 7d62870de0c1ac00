from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from multishop.core.config import settings
from multishop.core.logging import db_logger
from multishop.db.database import get_db

router = APIRouter()


@router.get('/health')
@router.get('/healthz')
def healthz():
    """Liveness only; never touches the database."""
    return {"status": "ok", "service": settings.APP_NAME, "env": settings.APP_ENV}


@router.get('/readyz')
async def readyz(db: AsyncSession = Depends(get_db)):
    try:
        await db.execute(text('SELECT 1'))
    except Exception as e:
        db_logger.error('Readiness probe: database unreachable', error=e)
        raise HTTPException(status_code=503, detail='Not ready')
    return {"status": "ready", "checks": {"database": "ok"}}
