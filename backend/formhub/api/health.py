from fastapi import APIRouter, Depends, status
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from formhub.core.errors import ApiError
from formhub.core.logging import db_logger
from formhub.db.database import get_db

router = APIRouter()


@router.get('/healthz')
def healthz():
    return {"status": "ok"}


@router.get('/readyz')
async def readyz(db: AsyncSession = Depends(get_db)):
    # Check DB connectivity
    try:
        await db.execute(text('SELECT 1'))
    except Exception as e:
        db_logger.error('Readiness DB check failed', error=e)
        raise ApiError('Not ready', status.HTTP_503_SERVICE_UNAVAILABLE, 'unavailable')

    return {"status": "ready"}
