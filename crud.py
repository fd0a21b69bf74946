"""Persistence operations for URL records."""

import logging
import math
import re
from typing import Any, Dict, List, Optional, Tuple

from beanie import PydanticObjectId
from bson import ObjectId
from pymongo.errors import DuplicateKeyError

from models import Url, User, utcnow
from schemas import ShortenRequest
from shortcode import get_code_generator

logger = logging.getLogger(__name__)

MAX_CODE_ATTEMPTS = 10

# camelCase query value -> document field
SORT_FIELDS = {
    "createdAt": "created_at",
    "updatedAt": "updated_at",
    "clicks": "clicks",
    "originalUrl": "original_url",
    "shortCode": "short_code",
    "title": "title",
}
SEARCH_FIELDS = ("original_url", "short_code", "title", "description")


class ShortCodeTakenError(Exception):
    """Raised when a caller-chosen short code already exists."""


class ShortCodeExhaustedError(Exception):
    """Raised when no free short code was found within MAX_CODE_ATTEMPTS."""


async def code_exists(short_code: str) -> bool:
    return await Url.find_one(Url.short_code == short_code) is not None


async def _insert_if_absent(url: Url) -> bool:
    """
    Inserts the record unless its short code is already present. The unique
    index on short_code settles races between the existence check and the
    insert.
    """
    if await code_exists(url.short_code):
        return False
    try:
        await url.insert()
    except DuplicateKeyError:
        logger.info(
            "Short code claimed concurrently", extra={"short_code": url.short_code}
        )
        return False
    return True


async def create_url(
    payload: ShortenRequest,
    user: Optional[User] = None,
) -> Url:
    url = Url(
        original_url=payload.original_url,
        short_code=payload.custom_code or "",
        custom_code=bool(payload.custom_code),
        user_id=user.id if user else None,
        title=payload.title,
        description=payload.description,
        expires_at=payload.expires_at,
        max_clicks=payload.max_clicks,
        tags=payload.tags or [],
    )

    if payload.custom_code:
        if not await _insert_if_absent(url):
            raise ShortCodeTakenError(payload.custom_code)
        return url

    generate = get_code_generator()
    for attempt in range(1, MAX_CODE_ATTEMPTS + 1):
        url.short_code = generate()
        if await _insert_if_absent(url):
            return url
        logger.debug(
            "Short code collision",
            extra={"short_code": url.short_code, "attempt": attempt},
        )

    logger.error(
        "Short code generation exhausted", extra={"attempts": MAX_CODE_ATTEMPTS}
    )
    raise ShortCodeExhaustedError()


async def get_by_code(short_code: str) -> Optional[Url]:
    return await Url.find_one(Url.short_code == short_code)


async def get_owned_url(url_id: str, user: User) -> Optional[Url]:
    if not ObjectId.is_valid(url_id):
        return None
    return await Url.find_one(
        Url.id == PydanticObjectId(url_id), Url.user_id == user.id
    )


def build_search_query(user: User, search: Optional[str]) -> Dict[str, Any]:
    query: Dict[str, Any] = {"user_id": user.id}
    if search:
        pattern = {"$regex": re.escape(search), "$options": "i"}
        query["$or"] = [{field: pattern} for field in SEARCH_FIELDS]
    return query


async def list_user_urls(
    user: User,
    page: int = 1,
    limit: int = 10,
    search: Optional[str] = None,
    sort_by: str = "createdAt",
    sort_order: str = "desc",
) -> Tuple[List[Url], Dict[str, Any]]:
    query = build_search_query(user, search)
    field = SORT_FIELDS.get(sort_by, "created_at")
    direction = "-" if sort_order == "desc" else "+"

    urls = (
        await Url.find(query)
        .sort(f"{direction}{field}")
        .skip((page - 1) * limit)
        .limit(limit)
        .to_list()
    )
    total = await Url.find(query).count()

    pagination = {
        "currentPage": page,
        "totalPages": math.ceil(total / limit),
        "totalUrls": total,
        "hasNext": page * limit < total,
        "hasPrev": page > 1,
    }
    return urls, pagination


async def update_url(url: Url, changes: Dict[str, Any]) -> Url:
    if changes:
        changes["updated_at"] = utcnow()
        await url.set(changes)
    return url


async def delete_url(url: Url) -> None:
    await url.delete()


async def bulk_delete_urls(url_ids: List[str], user: User) -> int:
    result = await Url.find(
        {
            "_id": {"$in": [PydanticObjectId(url_id) for url_id in url_ids]},
            "user_id": user.id,
        }
    ).delete()
    return result.deleted_count if result else 0
