import logging

from fastapi import APIRouter, Depends, HTTPException, status

import analytics
import crud
from cache import rate_limit
from envelope import success_response
from models import User
from security import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/stats", tags=["Statistics"], dependencies=[Depends(rate_limit)]
)


@router.get("/overview")
async def stats_overview(user: User = Depends(get_current_user)):
    data = await analytics.overview(user.id)
    logger.info("Statistics retrieved", extra={"user_id": str(user.id)})
    return success_response(data)


@router.get("/url/{url_id}")
async def stats_for_url(url_id: str, user: User = Depends(get_current_user)):
    url = await crud.get_owned_url(url_id, user)
    if url is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="URL not found")
    data = await analytics.url_stats(url)
    logger.info(
        "URL statistics retrieved", extra={"url_id": url_id, "user_id": str(user.id)}
    )
    return success_response(data)


@router.get("/realtime")
async def stats_realtime(user: User = Depends(get_current_user)):
    data = await analytics.realtime(user.id)
    logger.info("Real-time analytics retrieved", extra={"user_id": str(user.id)})
    return success_response(data)
