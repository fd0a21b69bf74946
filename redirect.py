import logging

import redis
from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import RedirectResponse

import crud
from cache import client_ip, get_redis_db, is_known_missing, mark_missing
from envelope import success_response
from models import ClickRecord
from schemas import serialize_url_info

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Redirect"])


def click_from_request(request: Request) -> ClickRecord:
    headers = request.headers
    return ClickRecord(
        ip=client_ip(request),
        user_agent=headers.get("user-agent") or "Unknown",
        referer=headers.get("referer") or "Direct",
        country=headers.get("cf-ipcountry") or "Unknown",  # Cloudflare geo headers
        city=headers.get("cf-ipcity") or "Unknown",
    )


@router.get("/{short_code}")
async def redirect_to_original_url(
    short_code: str,
    request: Request,
    redis_client: redis.Redis = Depends(get_redis_db),
):
    """
    Redirects to the original URL based on the provided short code.
    """
    # 1. Codes that recently missed are answered from Redis
    if is_known_missing(redis_client, short_code):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Short URL not found"
        )

    # 2. Query MongoDB
    url = await crud.get_by_code(short_code)
    if url is None:
        # Cache a "not found" value to prevent cache penetration
        mark_missing(redis_client, short_code)
        logger.warning(
            "Short code not found",
            extra={"short_code": short_code, "ip": client_ip(request)},
        )
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Short URL not found"
        )

    # 3. Expired, exhausted or deactivated links are gone
    reason = url.inaccessible_reason()
    if reason is not None:
        logger.warning(
            "Inaccessible URL accessed",
            extra={"short_code": short_code, "reason": reason, "ip": client_ip(request)},
        )
        raise HTTPException(status_code=status.HTTP_410_GONE, detail=reason)

    # 4. Record the click, then redirect
    await url.add_click(click_from_request(request))
    logger.info(
        "URL redirected successfully",
        extra={"short_code": short_code, "clicks": url.clicks},
    )
    return RedirectResponse(url=url.original_url, status_code=status.HTTP_302_FOUND)


@router.get("/{short_code}/info")
async def short_url_info(short_code: str):
    """
    Preview of a short URL. Does not count as a click.
    """
    url = await crud.get_by_code(short_code)
    if url is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Short URL not found"
        )
    return success_response(serialize_url_info(url))
