import logging
from typing import Optional

import redis
from fastapi import APIRouter, Depends, HTTPException, Query, status

import crud
from cache import forget_missing, get_redis_db, rate_limit
from envelope import success_response
from models import User
from schemas import BulkDeleteRequest, ShortenRequest, UpdateUrlRequest, serialize_url
from security import get_current_user, get_optional_user

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/urls", tags=["URLs"], dependencies=[Depends(rate_limit)]
)


def _not_found() -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="URL not found")


@router.post("/shorten", status_code=status.HTTP_201_CREATED)
async def shorten_url(
    payload: ShortenRequest,
    user: Optional[User] = Depends(get_optional_user),
    redis_client: redis.Redis = Depends(get_redis_db),
):
    """
    Creates a short URL. Without customCode a random code is generated and
    retried on collision; with customCode the exact code must be free.
    """
    try:
        url = await crud.create_url(payload, user)
    except crud.ShortCodeTakenError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Custom code is already taken",
        )
    except crud.ShortCodeExhaustedError:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Unable to generate unique short code. Please try again.",
        )

    forget_missing(redis_client, url.short_code)
    logger.info(
        "URL shortened successfully",
        extra={
            "short_code": url.short_code,
            "user_id": str(user.id) if user else None,
            "custom_code": url.custom_code,
        },
    )
    return success_response(
        {"url": serialize_url(url)},
        message="URL shortened successfully",
        status_code=status.HTTP_201_CREATED,
    )


@router.get("/my-urls")
async def my_urls(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    search: Optional[str] = Query(None, max_length=200),
    sort_by: str = Query(
        "createdAt", alias="sortBy", pattern="^(" + "|".join(crud.SORT_FIELDS) + ")$"
    ),
    sort_order: str = Query("desc", alias="sortOrder", pattern="^(asc|desc)$"),
    user: User = Depends(get_current_user),
):
    urls, pagination = await crud.list_user_urls(
        user, page=page, limit=limit, search=search, sort_by=sort_by, sort_order=sort_order
    )
    logger.info(
        "User URLs retrieved", extra={"user_id": str(user.id), "count": len(urls)}
    )
    return success_response(
        {"urls": [serialize_url(url) for url in urls], "pagination": pagination}
    )


@router.delete("/bulk/delete")
async def bulk_delete(
    payload: BulkDeleteRequest, user: User = Depends(get_current_user)
):
    deleted = await crud.bulk_delete_urls(payload.url_ids, user)
    logger.info(
        "Bulk delete URLs", extra={"deleted_count": deleted, "user_id": str(user.id)}
    )
    return success_response(
        {"deletedCount": deleted}, message=f"{deleted} URLs deleted successfully"
    )


@router.get("/{url_id}")
async def get_url(url_id: str, user: User = Depends(get_current_user)):
    url = await crud.get_owned_url(url_id, user)
    if url is None:
        raise _not_found()
    return success_response({"url": serialize_url(url, include_history=True)})


@router.put("/{url_id}")
async def update_url(
    url_id: str, payload: UpdateUrlRequest, user: User = Depends(get_current_user)
):
    url = await crud.get_owned_url(url_id, user)
    if url is None:
        raise _not_found()
    url = await crud.update_url(url, payload.changes())
    logger.info(
        "URL updated successfully", extra={"url_id": url_id, "user_id": str(user.id)}
    )
    return success_response(
        {"url": serialize_url(url)}, message="URL updated successfully"
    )


@router.delete("/{url_id}")
async def delete_url(url_id: str, user: User = Depends(get_current_user)):
    url = await crud.get_owned_url(url_id, user)
    if url is None:
        raise _not_found()
    await crud.delete_url(url)
    logger.info(
        "URL deleted successfully", extra={"url_id": url_id, "user_id": str(user.id)}
    )
    return success_response(message="URL deleted successfully")
